from enum import Enum
from pydantic import BaseModel, Field, StrictFloat, StrictInt
from datetime import datetime
from typing import Any, Dict, List, Optional, Union


class RentalStatus(str, Enum):
    AWAITING_CONTRACT_SIGNING = "awaiting_contract_signing"
    ACTIVE = "active"
    OVERDUE = "overdue"
    PENDING_RETURN = "pending_return"
    AWAITING_RETURN_SIGNATURE = "awaiting_return_signature"
    COMPLETED = "completed"


# Аренды, которые ждут подписи клиента
SIGNATURE_PENDING_STATUSES = (
    RentalStatus.AWAITING_CONTRACT_SIGNING.value,
    RentalStatus.AWAITING_RETURN_SIGNATURE.value,
)

# Аренды "в процессе": из них выбирается текущая аренда и их же можно принять
IN_FLIGHT_STATUSES = (
    RentalStatus.ACTIVE.value,
    RentalStatus.OVERDUE.value,
    RentalStatus.PENDING_RETURN.value,
)

BIKE_STATUS_IN_SERVICE = "in_service"

VERIFICATION_STATUSES = ("approved", "rejected")


class UserAction(str, Enum):
    UPDATE_LOCATION = "update-location"
    VERIFY_TOKEN = "verify-token"
    GET_PENDING_CONTRACTS = "get-pending-contracts"
    GET_CONTRACT_DETAILS = "get-contract-details"
    CONFIRM_CONTRACT = "confirm-contract"
    GET_ACTIVE_RENTAL = "get-active-rental"
    GET_PAYMENT_METHOD = "get-payment-method"
    GENERATE_RETURN_ACT = "generate-return-act"
    CONFIRM_RETURN_ACT = "confirm-return-act"
    UNBIND_PAYMENT_METHOD = "unbind-payment-method"


class AdminAction(str, Enum):
    FINALIZE_RETURN = "finalize-return"
    SET_VERIFICATION_STATUS = "set-verification-status"


class ActionResult(BaseModel):
    status_code: int
    body: Dict[str, Any]


# --- Запросы ---
# Обязательность полей проверяют обработчики, чтобы вернуть понятное сообщение.
# Здесь проверяются только типы.

class UserRequest(BaseModel):
    userId: Optional[str] = None


class TokenRequest(BaseModel):
    token: Optional[str] = None


class LocationRequest(UserRequest):
    latitude: Optional[Union[StrictInt, StrictFloat]] = None
    longitude: Optional[Union[StrictInt, StrictFloat]] = None


class RentalRequest(UserRequest):
    rentalId: Optional[str] = None


class SignatureRequest(RentalRequest):
    signatureData: Optional[str] = None


class FinalizeReturnRequest(BaseModel):
    rental_id: Optional[str] = None
    new_bike_status: Optional[str] = None
    service_reason: Optional[str] = None
    return_act_url: Optional[str] = None
    defects: Optional[List[str]] = None


class VerificationStatusRequest(UserRequest):
    status: Optional[str] = None


# --- Ответы ---

class TariffTitle(BaseModel):
    title: Optional[str] = None

    class Config:
        from_attributes = True


class Tariff(TariffTitle):
    id: str
    price: Optional[float] = None


class Bike(BaseModel):
    id: str
    model_name: Optional[str] = None
    frame_number: Optional[str] = None
    battery_numbers: Optional[Any] = None
    registration_number: Optional[str] = None
    iot_device_id: Optional[str] = None
    additional_equipment: Optional[str] = None
    status: Optional[str] = None
    service_reason: Optional[str] = None

    class Config:
        from_attributes = True


class ClientCard(BaseModel):
    name: Optional[str] = None
    city: Optional[str] = None
    recognized_passport_data: Optional[Any] = None

    class Config:
        from_attributes = True


class PendingRental(BaseModel):
    id: str
    status: str
    bike_id: Optional[str] = None
    extra_data: Optional[Dict[str, Any]] = None
    tariffs: Optional[TariffTitle] = Field(default=None, validation_alias="tariff")
    bikes: Optional[Bike] = Field(default=None, validation_alias="bike")

    class Config:
        from_attributes = True


class ContractDetails(BaseModel):
    id: str
    extra_data: Optional[Dict[str, Any]] = None
    clients: Optional[ClientCard] = Field(default=None, validation_alias="client")
    tariffs: Optional[TariffTitle] = Field(default=None, validation_alias="tariff")
    bikes: Optional[Bike] = Field(default=None, validation_alias="bike")

    class Config:
        from_attributes = True


class ActiveRental(BaseModel):
    id: str
    user_id: str
    bike_id: Optional[str] = None
    tariff_id: Optional[str] = None
    status: str
    extra_data: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    tariffs: Optional[Tariff] = Field(default=None, validation_alias="tariff")

    class Config:
        from_attributes = True
