import logging
from enum import Enum
from typing import Awaitable, Callable

from playwright.async_api import Error as PlaywrightError, async_playwright

from .s3_client import StorageError

logger = logging.getLogger(__name__)

PAGE_SHELL = """<!DOCTYPE html><html lang="ru"><head><meta charset="UTF-8"><style>
body {{ font-family: 'DejaVu Sans', sans-serif; font-size: 11px; line-height: 1.4; color: #333; }}
table {{ width: 100%; border-collapse: collapse; margin: 15px 0; text-align: left; font-size: 0.9em; }}
th, td {{ border: 1px solid #ccc; padding: 6px; text-align: left; }}
th {{ background-color: #f2f2f2; font-weight: bold; width: 40%; }}
h2, h4 {{ text-align: center; }}
</style></head><body>{body}</body></html>"""


class DocumentKind(str, Enum):
    CONTRACT = "contract"
    RETURN_ACT = "return_act"


class DocumentPublishError(Exception):
    pass


def document_path(kind: DocumentKind, client_id: str, rental_id: str, signed: bool) -> str:
    if kind == DocumentKind.CONTRACT:
        if signed:
            return f"signed/{client_id}/rental_{rental_id}_signed.pdf"
        return f"drafts/{client_id}/rental_{rental_id}.pdf"
    suffix = "_signed" if signed else ""
    return f"returns/{client_id}/return_act_{rental_id}{suffix}.pdf"


def wrap_page(html_body: str) -> str:
    return PAGE_SHELL.format(body=html_body)


async def render_pdf(html: str) -> bytes:
    """Печатает HTML в PDF через headless Chromium. Браузер закрывается при любом исходе."""
    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch()
        try:
            context = await browser.new_context()
            page = await context.new_page()
            await page.set_content(html, wait_until="load")
            return await page.pdf(format="A4", print_background=True)
        finally:
            await browser.close()


class DocumentPublisher:
    def __init__(self, storage, pdf_renderer: Callable[[str], Awaitable[bytes]] = render_pdf):
        self.storage = storage
        self.pdf_renderer = pdf_renderer

    async def publish(
            self,
            kind: DocumentKind,
            client_id: str,
            rental_id: str,
            signed: bool,
            html_body: str,
    ) -> str:
        """Рендерит документ, кладет его в хранилище и возвращает публичную ссылку.

        Путь зависит только от (kind, client_id, rental_id, signed), поэтому
        повторная публикация перезаписывает прежний файл.
        """
        file_key = document_path(kind, client_id, rental_id, signed)
        try:
            pdf_bytes = await self.pdf_renderer(wrap_page(html_body))
            url = await self.storage.upload_bytes(file_key, pdf_bytes, "application/pdf")
        except (PlaywrightError, StorageError) as e:
            logger.error(f"Failed to publish {file_key}: {e}")
            raise DocumentPublishError(str(e)) from e

        logger.info(f"Published {kind.value} for rental {rental_id}: {url}")
        return url
