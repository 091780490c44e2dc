import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional, Set

import aiohttp

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
BUTTON_TEXT = "✍️ Открыть уведомления"


@dataclass(frozen=True)
class Notification:
    chat_id: Optional[str]
    text: str
    web_app_url: str


class TelegramNotifier:
    """Уведомления клиенту в Telegram с кнопкой, открывающей Web App.

    Доставка "не более одного раза": сообщение не переотправляется, а любая
    ошибка только пишется в лог.
    """

    def __init__(self, bot_token: Optional[str] = None, timeout: float = 10):
        self.bot_token = bot_token if bot_token is not None else os.getenv("TELEGRAM_BOT_TOKEN")
        self.timeout = timeout
        self._pending: Set[asyncio.Task] = set()

    def emit(self, notification: Notification) -> None:
        """Ставит отправку в фон и сразу возвращает управление."""
        task = asyncio.create_task(self.notify(notification))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def notify(self, notification: Notification) -> None:
        if not self.bot_token:
            logger.error("TELEGRAM_BOT_TOKEN is not set, notification not sent")
            return
        if not notification.chat_id:
            logger.warning("Client has no telegram_user_id, notification not sent")
            return

        payload = {
            "chat_id": notification.chat_id,
            "text": notification.text,
            "parse_mode": "HTML",
            "reply_markup": {
                "inline_keyboard": [
                    [{"text": BUTTON_TEXT, "web_app": {"url": notification.web_app_url}}]
                ]
            },
        }

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                        f"{TELEGRAM_API_URL}/bot{self.bot_token}/sendMessage",
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    result = await response.json(content_type=None)
                    if not isinstance(result, dict) or not result.get("ok"):
                        description = result.get("description") if isinstance(result, dict) else result
                        logger.error(f"Telegram sendMessage failed: {description}")
                    else:
                        logger.info(f"Notification sent to chat {notification.chat_id}")
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Network error while sending Telegram notification: {e}")

    async def aclose(self) -> None:
        """Дожидается уведомлений, которые еще в пути."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
