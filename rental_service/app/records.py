import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm import selectinload

from . import models

logger = logging.getLogger(__name__)

# Сколько раз перечитывать extra_data, если ее успели изменить параллельно
MERGE_ATTEMPTS = 3


class RecordNotFoundError(Exception):
    def __init__(self, kind: str, record_id: Any):
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id


class InvalidTransitionError(Exception):
    def __init__(self, rental_id: Any, current_status: str, target_status: Optional[str]):
        super().__init__(
            f"Rental {rental_id} is in status '{current_status}', "
            f"transition to '{target_status}' is not allowed"
        )
        self.rental_id = rental_id
        self.current_status = current_status
        self.target_status = target_status


class ConcurrentUpdateError(Exception):
    def __init__(self, rental_id: Any):
        super().__init__(f"Rental {rental_id} was modified concurrently, giving up after {MERGE_ATTEMPTS} attempts")
        self.rental_id = rental_id


def merge_extra(current: Optional[Mapping[str, Any]], patch: Mapping[str, Any]) -> Dict[str, Any]:
    """Поверх текущих ключей кладет ключи patch, остальные ключи сохраняются."""
    if current is not None and not isinstance(current, Mapping):
        logger.warning(f"extra_data is {type(current).__name__}, not a mapping; starting from empty")
        current = None
    merged = dict(current or {})
    merged.update(patch)
    return merged


class RecordAccessor:
    """Чтение и запись клиентов, велосипедов и аренд. Бизнес-логики здесь нет."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    # --- Клиенты ---

    async def get_client(self, client_id: str) -> Optional[models.Client]:
        async with self.session_factory() as session:
            return await session.get(models.Client, client_id)

    async def get_client_by_token(self, token: str) -> Optional[models.Client]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(models.Client).where(models.Client.auth_token == token)
            )
            return result.scalars().first()

    async def update_client(self, client_id: str, **values) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(models.Client).where(models.Client.id == client_id).values(**values)
            )
            await session.commit()
            return result.rowcount > 0

    async def remove_client_extra_key(self, client_id: str, key: str, **values) -> bool:
        """Удаляет один ключ из clients.extra, остальные ключи не трогает."""
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(models.Client).where(models.Client.id == client_id).with_for_update()
                )
                client = result.scalars().first()
                if client is None:
                    return False
                extra = dict(client.extra or {})
                extra.pop(key, None)
                client.extra = extra
                for field, value in values.items():
                    setattr(client, field, value)
            return True

    # --- Велосипеды ---

    async def update_bike(self, bike_id: str, **values) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(models.Bike).where(models.Bike.id == bike_id).values(**values)
            )
            await session.commit()
            return result.rowcount > 0

    # --- Аренды ---

    async def get_rental(self, rental_id: str, user_id: Optional[str] = None) -> Optional[models.Rental]:
        """Аренда вместе с клиентом, велосипедом и тарифом."""
        query = (
            select(models.Rental)
            .options(
                selectinload(models.Rental.client),
                selectinload(models.Rental.bike),
                selectinload(models.Rental.tariff),
            )
            .where(models.Rental.id == rental_id)
        )
        if user_id is not None:
            query = query.where(models.Rental.user_id == user_id)
        async with self.session_factory() as session:
            result = await session.execute(query)
            return result.scalars().first()

    async def list_rentals(self, user_id: str, statuses: Iterable[str]) -> List[models.Rental]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(models.Rental)
                .options(selectinload(models.Rental.bike), selectinload(models.Rental.tariff))
                .where(models.Rental.user_id == user_id, models.Rental.status.in_(list(statuses)))
                .order_by(models.Rental.created_at.desc())
            )
            return list(result.scalars().all())

    async def get_latest_rental(self, user_id: str, statuses: Iterable[str]) -> Optional[models.Rental]:
        """Самая поздняя по created_at аренда в одном из статусов, или None."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(models.Rental)
                .options(selectinload(models.Rental.tariff))
                .where(models.Rental.user_id == user_id, models.Rental.status.in_(list(statuses)))
                .order_by(models.Rental.created_at.desc())
                .limit(1)
            )
            return result.scalars().first()

    async def merge_rental_extra(
            self,
            rental_id: str,
            patch: Mapping[str, Any],
            *,
            new_status: Optional[str] = None,
            expected_statuses: Optional[Iterable[str]] = None,
    ) -> Dict[str, Any]:
        """Добавляет ключи в rentals.extra_data и, если нужно, меняет статус.

        Запись идет одним UPDATE с условием на extra_version (и на статус, если
        передан expected_statuses). Если между чтением и записью строку изменили,
        чтение повторяется. Возвращает записанный extra_data.
        """
        expected = list(expected_statuses) if expected_statuses is not None else None

        for attempt in range(1, MERGE_ATTEMPTS + 1):
            async with self.session_factory() as session:
                result = await session.execute(
                    select(
                        models.Rental.status,
                        models.Rental.extra_data,
                        models.Rental.extra_version,
                    ).where(models.Rental.id == rental_id)
                )
                row = result.one_or_none()
                if row is None:
                    raise RecordNotFoundError("Rental", rental_id)
                if expected is not None and row.status not in expected:
                    raise InvalidTransitionError(rental_id, row.status, new_status)

                extra_data = merge_extra(row.extra_data, patch)
                values = {"extra_data": extra_data, "extra_version": row.extra_version + 1}
                if new_status is not None:
                    values["status"] = new_status

                statement = update(models.Rental).where(
                    models.Rental.id == rental_id,
                    models.Rental.extra_version == row.extra_version,
                )
                if expected is not None:
                    statement = statement.where(models.Rental.status.in_(expected))

                result = await session.execute(
                    statement.values(**values).execution_options(synchronize_session=False)
                )
                await session.commit()
                if result.rowcount == 1:
                    return extra_data

            logger.warning(f"Rental {rental_id} extra_data changed during merge, retry {attempt}/{MERGE_ATTEMPTS}")

        raise ConcurrentUpdateError(rental_id)


async def create_tables(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
