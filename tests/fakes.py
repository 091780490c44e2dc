import os
import unittest
from datetime import datetime

os.environ.setdefault("RENTAL_DB_URL", "sqlite+aiosqlite://")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rental_service.app import models
from rental_service.app.lifecycle import RentalLifecycleController
from rental_service.app.publisher import DocumentPublisher
from rental_service.app.records import RecordAccessor, create_tables
from rental_service.app.s3_client import StorageError

SIGNATURE = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="


class FakeStorage:
    def __init__(self, fail=False):
        self.files = {}
        self.uploads = []
        self.fail = fail

    async def upload_bytes(self, file_key, data, content_type="application/pdf"):
        if self.fail:
            raise StorageError("bucket unavailable")
        self.uploads.append(file_key)
        self.files[file_key] = data
        return f"https://storage.test/{file_key}"


async def html_as_pdf(html):
    return html.encode("utf-8")


class FakeNotifier:
    def __init__(self):
        self.sent = []

    def emit(self, notification):
        self.sent.append(notification)

    async def aclose(self):
        pass


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
        await create_tables(self.engine)
        self.session_factory = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)
        self.records = RecordAccessor(self.session_factory)
        self.storage = FakeStorage()
        self.notifier = FakeNotifier()
        self.controller = RentalLifecycleController(
            records=self.records,
            publisher=DocumentPublisher(self.storage, pdf_renderer=html_as_pdf),
            notifier=self.notifier,
            web_app_url="https://t.me/testbot/app",
        )

    async def asyncTearDown(self):
        await self.engine.dispose()

    async def add(self, *objects):
        async with self.session_factory() as session:
            session.add_all(objects)
            await session.commit()

    async def fetch(self, model, record_id):
        async with self.session_factory() as session:
            return await session.get(model, record_id)

    async def seed_rental(self, status="awaiting_contract_signing", extra_data=None, created_at=None,
                          rental_id="r1", client_id="u1", bike_id="b1"):
        if await self.fetch(models.Client, client_id) is None:
            await self.add(models.Client(
                id=client_id,
                name="Иванов Иван Иванович",
                city="Новосибирск",
                recognized_passport_data='{"birth_date": "01.02.1990", "series": "5010", "number": "123456"}',
                extra={"phone": "+79990000000"},
                telegram_user_id="777",
                auth_token=f"token-{client_id}",
            ))
        if await self.fetch(models.Bike, bike_id) is None:
            await self.add(models.Bike(
                id=bike_id,
                model_name="Monster 60V",
                frame_number="FR-001",
                battery_numbers=["B-1", "B-2"],
                registration_number="REG-9",
                iot_device_id="IOT-5",
                status="rented",
            ))
        if await self.fetch(models.Tariff, "t1") is None:
            await self.add(models.Tariff(id="t1", title="Неделя", price=3500))
        await self.add(models.Rental(
            id=rental_id,
            user_id=client_id,
            bike_id=bike_id,
            tariff_id="t1",
            status=status,
            extra_data=extra_data,
            created_at=created_at or datetime(2026, 10, 1, 12, 0),
        ))
