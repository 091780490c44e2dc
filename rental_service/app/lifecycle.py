import logging
import os
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from . import documents, schemas
from .notifier import Notification
from .publisher import DocumentKind, DocumentPublishError
from .records import ConcurrentUpdateError, InvalidTransitionError, RecordAccessor, RecordNotFoundError
from .schemas import ActionResult, RentalStatus

logger = logging.getLogger(__name__)

DEFAULT_WEB_APP_URL = "https://t.me/bikepark54bot/app"

RETURN_SIGNATURE_TEXT = (
    "Пожалуйста, подпишите акт сдачи электровелосипеда в личном кабинете, чтобы завершить аренду."
)
VERIFICATION_TEXTS = {
    "approved": "✅ Поздравляем! Ваш аккаунт был подтвержден. Теперь вы можете полноценно пользоваться приложением.",
    "rejected": "❌ К сожалению, в верификации было отказано. Для уточнения деталей свяжитесь с поддержкой.",
}

# Ошибки внешних зависимостей при работе с документами
DOCUMENT_ERRORS = (DocumentPublishError, ConcurrentUpdateError, RecordNotFoundError, SQLAlchemyError)


def result(status_code: int, **body: Any) -> ActionResult:
    return ActionResult(status_code=status_code, body=body)


def error(status_code: int, message: str) -> ActionResult:
    return result(status_code, error=message)


def _rental_extra(rental) -> Dict[str, Any]:
    extra = rental.extra_data
    return extra if isinstance(extra, dict) else {}


class RentalLifecycleController:
    """Обработчики действий клиента и администратора.

    Каждый обработчик сначала проверяет входные поля (400 без побочных
    эффектов), затем состояние аренды (409), и только потом что-то меняет.
    """

    def __init__(self, records: RecordAccessor, publisher, notifier, web_app_url: Optional[str] = None):
        self.records = records
        self.publisher = publisher
        self.notifier = notifier
        self.web_app_url = web_app_url or os.getenv("TELEGRAM_WEBAPP_URL", DEFAULT_WEB_APP_URL)

    # --- Клиентские действия ---

    async def verify_token(self, request: schemas.TokenRequest) -> ActionResult:
        if not request.token:
            return error(400, "token is required.")
        client = await self.records.get_client_by_token(request.token)
        if client is None:
            return error(401, "Invalid or expired token.")
        return result(200, userId=client.id, userName=client.name)

    async def update_location(self, request: schemas.LocationRequest) -> ActionResult:
        if not request.userId or request.latitude is None or request.longitude is None:
            return error(400, "userId, latitude, and longitude are required.")
        location = f"POINT({request.longitude} {request.latitude})"
        try:
            updated = await self.records.update_client(request.userId, last_location=location)
        except SQLAlchemyError as e:
            raise RuntimeError(f"Failed to update location: {e}") from e
        if not updated:
            return error(404, "Client not found.")
        return result(200, message="Location updated successfully.")

    async def get_pending_contracts(self, request: schemas.UserRequest) -> ActionResult:
        if not request.userId:
            return error(400, "userId is required.")
        rentals = await self.records.list_rentals(request.userId, schemas.SIGNATURE_PENDING_STATUSES)
        notifications = [
            schemas.PendingRental.model_validate(rental).model_dump(mode="json") for rental in rentals
        ]
        return result(200, notifications=notifications)

    async def get_contract_details(self, request: schemas.RentalRequest) -> ActionResult:
        if not request.userId or not request.rentalId:
            return error(400, "userId and rentalId are required.")
        rental = await self.records.get_rental(request.rentalId, request.userId)
        if rental is None:
            return error(404, "Rental not found.")
        return result(200, rental=schemas.ContractDetails.model_validate(rental).model_dump(mode="json"))

    async def get_active_rental(self, request: schemas.UserRequest) -> ActionResult:
        if not request.userId:
            return error(400, "userId is required.")
        rental = await self.records.get_latest_rental(request.userId, schemas.IN_FLIGHT_STATUSES)
        if rental is None:
            return result(200, rental=None)
        return result(200, rental=schemas.ActiveRental.model_validate(rental).model_dump(mode="json"))

    async def get_payment_method(self, request: schemas.UserRequest) -> ActionResult:
        if not request.userId:
            return error(400, "userId is required.")
        client = await self.records.get_client(request.userId)
        if client is None:
            return error(404, "Client not found.")
        extra = client.extra if isinstance(client.extra, dict) else {}
        details = extra.get("payment_method_details")
        if not details:
            return error(404, "No saved payment method found for this user.")
        return result(200, payment_method=details)

    async def unbind_payment_method(self, request: schemas.UserRequest) -> ActionResult:
        if not request.userId:
            return error(400, "userId is required.")
        removed = await self.records.remove_client_extra_key(
            request.userId, "payment_method_details", yookassa_payment_method_id=None
        )
        if not removed:
            return error(404, "Клиент не найден.")
        return result(200, message="Способ оплаты успешно отвязан.")

    async def confirm_contract(self, request: schemas.SignatureRequest) -> ActionResult:
        if not request.userId or not request.rentalId or not request.signatureData:
            return error(400, "userId, rentalId, and signatureData are required.")

        try:
            rental = await self.records.get_rental(request.rentalId, request.userId)
            if rental is None:
                return error(404, "Rental not found.")
            if rental.status != RentalStatus.AWAITING_CONTRACT_SIGNING.value:
                raise InvalidTransitionError(rental.id, rental.status, RentalStatus.ACTIVE.value)

            html = documents.render_contract(rental, request.signatureData)
            url = await self.publisher.publish(
                DocumentKind.CONTRACT, request.userId, request.rentalId, True, html
            )
            # Статус меняется только вместе со ссылкой на документ
            await self.records.merge_rental_extra(
                request.rentalId,
                {"contract_document_url": url},
                new_status=RentalStatus.ACTIVE.value,
                expected_statuses=[RentalStatus.AWAITING_CONTRACT_SIGNING.value],
            )
        except InvalidTransitionError as e:
            logger.warning(f"Contract confirmation rejected: {e}")
            return error(409, str(e))
        except DOCUMENT_ERRORS as e:
            logger.error(f"Contract confirmation error for rental {request.rentalId}: {e}")
            return error(500, f"Не удалось сгенерировать договор: {e}")

        logger.info(f"Rental {request.rentalId} activated")
        return result(200, message="Contract signed and rental activated")

    async def generate_return_act(self, request: schemas.RentalRequest) -> ActionResult:
        if not request.userId or not request.rentalId:
            return error(400, "userId and rentalId are required.")

        try:
            rental = await self.records.get_rental(request.rentalId, request.userId)
            if rental is None:
                return error(404, "Rental not found.")

            extra = _rental_extra(rental)
            html = documents.render_return_act(
                rental, extra.get("defects") or [], None, extra.get("damage_amount") or 0
            )
            url = await self.publisher.publish(
                DocumentKind.RETURN_ACT, request.userId, request.rentalId, False, html
            )
        except DOCUMENT_ERRORS as e:
            logger.error(f"Return Act generation error for rental {request.rentalId}: {e}")
            return error(500, f"Не удалось сгенерировать акт сдачи: {e}")

        return result(200, message="Return Act generated successfully", publicUrl=url)

    async def confirm_return_act(self, request: schemas.SignatureRequest) -> ActionResult:
        if not request.userId or not request.rentalId or not request.signatureData:
            return error(400, "userId, rentalId, and signatureData are required.")

        try:
            rental = await self.records.get_rental(request.rentalId, request.userId)
            if rental is None:
                return error(404, "Rental not found.")
            if rental.status != RentalStatus.AWAITING_RETURN_SIGNATURE.value:
                raise InvalidTransitionError(rental.id, rental.status, RentalStatus.COMPLETED.value)

            extra = _rental_extra(rental)
            html = documents.render_return_act(
                rental, extra.get("defects") or [], request.signatureData, extra.get("damage_amount") or 0
            )
            url = await self.publisher.publish(
                DocumentKind.RETURN_ACT, request.userId, request.rentalId, True, html
            )
            await self.records.merge_rental_extra(
                request.rentalId,
                {"return_act_url": url},
                new_status=RentalStatus.COMPLETED.value,
                expected_statuses=[RentalStatus.AWAITING_RETURN_SIGNATURE.value],
            )
        except InvalidTransitionError as e:
            logger.warning(f"Return act confirmation rejected: {e}")
            return error(409, str(e))
        except DOCUMENT_ERRORS as e:
            logger.error(f"Return Act confirmation error for rental {request.rentalId}: {e}")
            return error(500, f"Не удалось подписать акт сдачи: {e}")

        logger.info(f"Rental {request.rentalId} completed")
        return result(200, message="Return act signed successfully.")

    # --- Действия администратора ---

    async def finalize_return(self, request: schemas.FinalizeReturnRequest) -> ActionResult:
        if not request.rental_id or not request.new_bike_status:
            return error(400, "rental_id и new_bike_status обязательны.")
        in_service = request.new_bike_status == schemas.BIKE_STATUS_IN_SERVICE
        if in_service and not request.service_reason:
            return error(400, "Причина ремонта обязательна, если велосипед отправляется в сервис.")

        rental = await self.records.get_rental(request.rental_id)
        if rental is None:
            return error(404, "Аренда не найдена.")

        patch: Dict[str, Any] = {"defects": request.defects or []}
        if request.return_act_url:
            patch["return_act_url"] = request.return_act_url

        try:
            await self.records.merge_rental_extra(
                request.rental_id,
                patch,
                new_status=RentalStatus.AWAITING_RETURN_SIGNATURE.value,
                expected_statuses=schemas.IN_FLIGHT_STATUSES,
            )
        except InvalidTransitionError as e:
            logger.warning(f"Finalize return rejected: {e}")
            return error(409, str(e))

        # Ошибка обновления велосипеда не отменяет приемку
        try:
            bike_updated = await self.records.update_bike(
                rental.bike_id,
                status=request.new_bike_status,
                service_reason=request.service_reason if in_service else None,
            )
            if not bike_updated:
                logger.error(f"Bike {rental.bike_id} not found, status not updated")
        except SQLAlchemyError as e:
            logger.error(f"Failed to update bike {rental.bike_id} status: {e}")

        chat_id = rental.client.telegram_user_id if rental.client is not None else None
        self.notifier.emit(Notification(
            chat_id=chat_id,
            text=RETURN_SIGNATURE_TEXT,
            web_app_url=f"{self.web_app_url}?startapp=notifications",
        ))

        return result(200, message="Приемка оформлена, акт ожидает подписи клиента.")

    async def set_verification_status(self, request: schemas.VerificationStatusRequest) -> ActionResult:
        if not request.userId or not request.status:
            return error(400, "userId и status обязательны.")
        if request.status not in schemas.VERIFICATION_STATUSES:
            return error(400, "Недопустимый статус.")

        try:
            await self.records.update_client(request.userId, verification_status=request.status)
        except SQLAlchemyError as e:
            raise RuntimeError(f"Не удалось обновить статус клиента: {e}") from e

        try:
            client = await self.records.get_client(request.userId)
        except SQLAlchemyError as e:
            logger.warning(f"Client {request.userId} lookup for notification failed: {e}")
            client = None

        if client is None:
            logger.warning(f"Client {request.userId} not found, verification notification skipped")
            return result(200, message="Статус обновлен, но уведомление не отправлено (клиент не найден).")

        self.notifier.emit(Notification(
            chat_id=client.telegram_user_id,
            text=VERIFICATION_TEXTS[request.status],
            web_app_url=self.web_app_url,
        ))
        return result(200, message="Статус успешно обновлен, уведомление отправлено.")
