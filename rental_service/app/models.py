from sqlalchemy import Column, Integer, DateTime, String, Float, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from uuid import uuid4

from .database import Base


def _uuid() -> str:
    return str(uuid4())


class Client(Base):
    __tablename__ = "clients"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String)
    city = Column(String, nullable=True)
    recognized_passport_data = Column(JSON, nullable=True)  # строка с JSON или объект
    extra = Column(JSON, nullable=True)
    verification_status = Column(String, nullable=True)  # approved, rejected
    telegram_user_id = Column(String, nullable=True)
    auth_token = Column(String, nullable=True, index=True)
    last_location = Column(String, nullable=True)
    yookassa_payment_method_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Bike(Base):
    __tablename__ = "bikes"

    id = Column(String, primary_key=True, default=_uuid)
    model_name = Column(String)
    frame_number = Column(String, nullable=True)
    battery_numbers = Column(JSON, nullable=True)  # список или одно значение
    registration_number = Column(String, nullable=True)
    iot_device_id = Column(String, nullable=True)
    additional_equipment = Column(String, nullable=True)
    status = Column(String, default="available")  # available, rented, in_service
    service_reason = Column(String, nullable=True)


class Tariff(Base):
    __tablename__ = "tariffs"

    id = Column(String, primary_key=True, default=_uuid)
    title = Column(String)
    price = Column(Float, nullable=True)


class Rental(Base):
    __tablename__ = "rentals"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("clients.id"), index=True)
    bike_id = Column(String, ForeignKey("bikes.id"), index=True)
    tariff_id = Column(String, ForeignKey("tariffs.id"), nullable=True)
    status = Column(String, default="awaiting_contract_signing", index=True)
    extra_data = Column(JSON, nullable=True)
    # Увеличивается при каждой записи extra_data
    extra_version = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    client = relationship(Client, lazy="raise")
    bike = relationship(Bike, lazy="raise")
    tariff = relationship(Tariff, lazy="raise")
