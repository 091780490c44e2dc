import unittest
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy import update

from fakes import DatabaseTestCase
from rental_service.app import models
from rental_service.app.records import (
    ConcurrentUpdateError,
    InvalidTransitionError,
    MERGE_ATTEMPTS,
    RecordNotFoundError,
    merge_extra,
)


class MergeExtraTests(unittest.TestCase):
    def test_patch_wins_and_other_keys_survive(self):
        current = {"defects": ["scratch"], "damage_amount": 500, "contract_document_url": "old"}
        merged = merge_extra(current, {"contract_document_url": "new"})
        self.assertEqual(merged, {"defects": ["scratch"], "damage_amount": 500, "contract_document_url": "new"})
        self.assertEqual(current["contract_document_url"], "old")

    def test_empty_current(self):
        self.assertEqual(merge_extra(None, {"a": 1}), {"a": 1})
        self.assertEqual(merge_extra("garbage", {"a": 1}), {"a": 1})


class RecordAccessorTests(DatabaseTestCase):
    async def test_merge_rental_extra_preserves_keys_and_bumps_version(self):
        await self.seed_rental(extra_data={"damage_amount": 100})

        await self.records.merge_rental_extra("r1", {"defects": ["scratch"]})
        await self.records.merge_rental_extra("r1", {"return_act_url": "https://x/act.pdf"})

        rental = await self.fetch(models.Rental, "r1")
        self.assertEqual(rental.extra_data, {
            "damage_amount": 100,
            "defects": ["scratch"],
            "return_act_url": "https://x/act.pdf",
        })
        self.assertEqual(rental.extra_version, 2)
        self.assertEqual(rental.status, "awaiting_contract_signing")

    async def test_merge_with_status_guard(self):
        await self.seed_rental(status="active")

        with self.assertRaises(InvalidTransitionError):
            await self.records.merge_rental_extra(
                "r1", {"x": 1}, new_status="completed", expected_statuses=["awaiting_return_signature"]
            )
        rental = await self.fetch(models.Rental, "r1")
        self.assertEqual(rental.status, "active")
        self.assertIsNone(rental.extra_data)

        await self.records.merge_rental_extra(
            "r1", {"x": 1}, new_status="awaiting_return_signature", expected_statuses=["active", "overdue"]
        )
        rental = await self.fetch(models.Rental, "r1")
        self.assertEqual(rental.status, "awaiting_return_signature")
        self.assertEqual(rental.extra_data, {"x": 1})

    async def test_merge_missing_rental(self):
        with self.assertRaises(RecordNotFoundError):
            await self.records.merge_rental_extra("nope", {"x": 1})

    async def test_merge_gives_up_when_version_keeps_changing(self):
        await self.seed_rental(extra_data={"keep": True})
        factory = self.records.session_factory
        writes = []

        @asynccontextmanager
        async def racing_session():
            async with factory() as session:
                execute = session.execute

                async def execute_after_competing_write(statement, *args, **kwargs):
                    if statement.is_dml:
                        # Другой запрос успевает записать extra_data между чтением и записью
                        writes.append(statement)
                        await execute(
                            update(models.Rental)
                            .where(models.Rental.id == "r1")
                            .values(extra_version=models.Rental.extra_version + 1)
                            .execution_options(synchronize_session=False)
                        )
                    return await execute(statement, *args, **kwargs)

                session.execute = execute_after_competing_write
                yield session

        self.records.session_factory = racing_session
        with self.assertRaises(ConcurrentUpdateError):
            await self.records.merge_rental_extra("r1", {"x": 1})

        self.assertEqual(len(writes), MERGE_ATTEMPTS)
        rental = await self.fetch(models.Rental, "r1")
        self.assertEqual(rental.extra_data, {"keep": True})
        self.assertEqual(rental.extra_version, MERGE_ATTEMPTS)

    async def test_latest_rental_by_created_at(self):
        await self.seed_rental(rental_id="old", status="active", created_at=datetime(2026, 9, 1))
        await self.seed_rental(rental_id="new", status="pending_return", created_at=datetime(2026, 10, 1))
        await self.seed_rental(rental_id="done", status="completed", created_at=datetime(2026, 10, 5))

        rental = await self.records.get_latest_rental("u1", ["active", "overdue", "pending_return"])
        self.assertEqual(rental.id, "new")
        self.assertEqual(rental.tariff.title, "Неделя")
        self.assertIsNone(await self.records.get_latest_rental("someone-else", ["active"]))

    async def test_get_rental_checks_owner(self):
        await self.seed_rental()
        self.assertIsNotNone(await self.records.get_rental("r1", "u1"))
        self.assertIsNone(await self.records.get_rental("r1", "u2"))
        rental = await self.records.get_rental("r1")
        self.assertEqual(rental.bike.model_name, "Monster 60V")
        self.assertEqual(rental.client.name, "Иванов Иван Иванович")

    async def test_remove_client_extra_key(self):
        await self.add(models.Client(
            id="c1",
            name="Client",
            extra={"payment_method_details": {"last4": "4242"}, "phone": "+7"},
            yookassa_payment_method_id="pm-1",
        ))
        self.assertTrue(await self.records.remove_client_extra_key(
            "c1", "payment_method_details", yookassa_payment_method_id=None
        ))
        client = await self.fetch(models.Client, "c1")
        self.assertEqual(client.extra, {"phone": "+7"})
        self.assertIsNone(client.yookassa_payment_method_id)
        self.assertFalse(await self.records.remove_client_extra_key("missing", "payment_method_details"))


if __name__ == "__main__":
    unittest.main()
