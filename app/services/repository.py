"""Engagement persistence with whole-record optimistic updates."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy import update as sql_update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.models.db_models import Engagement, EngagementStatus, utc_now
from app.schemas.engagements import EngagementRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Columns copied between the row and the aggregate as-is
SCALAR_FIELDS = (
    "id",
    "client_name",
    "client_email",
    "tax_year",
    "status",
    "storage_provider",
    "storage_folder_id",
    "storage_folder_url",
    "storage_drive_id",
    "storage_page_token",
    "prep_brief",
    "last_activity_at",
    "reminder_count",
    "version",
    "created_at",
    "updated_at",
)


class PersistenceError(Exception):
    """The engagement store could not complete an operation."""


class EngagementNotFound(PersistenceError):
    def __init__(self, engagement_id: str):
        super().__init__(f"Engagement {engagement_id} not found")
        self.engagement_id = engagement_id


class ConcurrentUpdateError(PersistenceError):
    """Another writer kept winning the version race."""


def row_to_record(row: Engagement) -> EngagementRecord:
    """Build the aggregate from a database row."""
    data: Dict[str, Any] = {name: getattr(row, name) for name in SCALAR_FIELDS}
    data["checklist"] = row.checklist or []
    data["documents"] = row.documents or []
    data["reconciliation"] = row.reconciliation
    data["agent_log"] = row.agent_log or []
    return EngagementRecord.model_validate(data)


def record_to_values(record: EngagementRecord) -> Dict[str, Any]:
    """Column values for writing the aggregate back in one statement."""
    values: Dict[str, Any] = {
        name: getattr(record, name)
        for name in SCALAR_FIELDS
        if name not in ("id", "version", "created_at", "updated_at")
    }
    if values["last_activity_at"] is None:
        values.pop("last_activity_at")
    values["checklist"] = [item.model_dump(mode="json", by_alias=True) for item in record.checklist]
    values["documents"] = [doc.model_dump(mode="json", by_alias=True) for doc in record.documents]
    values["reconciliation"] = (
        record.reconciliation.model_dump(mode="json", by_alias=True)
        if record.reconciliation is not None
        else None
    )
    values["agent_log"] = [entry.model_dump(mode="json", by_alias=True) for entry in record.agent_log]
    return values


class EngagementRepository:
    """
    Read and write engagement aggregates.

    Every mutation goes through :meth:`update`, which reads the whole record,
    applies a mutator in memory and writes the whole record back guarded by
    the row's version number.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_attempts: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.max_attempts = max_attempts or settings.OPTIMISTIC_RETRIES

    async def get(self, engagement_id: str) -> Optional[EngagementRecord]:
        try:
            async with self.session_factory() as session:
                row = await session.get(Engagement, engagement_id)
                return row_to_record(row) if row is not None else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load engagement {engagement_id}") from e

    async def list_all(self) -> List[EngagementRecord]:
        return await self._list(select(Engagement).order_by(Engagement.created_at.desc()))

    async def list_by_status(self, statuses: Iterable[EngagementStatus]) -> List[EngagementRecord]:
        return await self._list(
            select(Engagement)
            .where(Engagement.status.in_(list(statuses)))
            .order_by(Engagement.created_at)
        )

    async def list_stale(self, idle_since: datetime, max_reminders: int) -> List[EngagementRecord]:
        """Active engagements with no activity since ``idle_since`` and reminders left."""
        return await self._list(
            select(Engagement)
            .where(
                Engagement.status.in_([EngagementStatus.INTAKE_DONE, EngagementStatus.COLLECTING]),
                Engagement.last_activity_at < idle_since,
                Engagement.reminder_count < max_reminders,
            )
            .order_by(Engagement.last_activity_at)
        )

    async def _list(self, query) -> List[EngagementRecord]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return [row_to_record(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to list engagements") from e

    async def create(self, record: EngagementRecord) -> EngagementRecord:
        now = utc_now()
        values = record_to_values(record)
        values.setdefault("last_activity_at", now)
        row = Engagement(id=record.id, version=1, created_at=now, updated_at=now, **values)
        try:
            async with self.session_factory() as session:
                session.add(row)
                await session.commit()
                await session.refresh(row)
                return row_to_record(row)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create engagement {record.id}") from e

    async def update(self, engagement_id: str, mutate: Callable[[EngagementRecord], T]) -> T:
        """
        Apply ``mutate`` to the current record and write it back atomically.

        The mutator may run more than once when another writer commits in
        between, so it must not have side effects beyond the record.

        Returns:
            Whatever the mutator returned on the attempt that was committed.

        Raises:
            EngagementNotFound: no engagement with this id.
            ConcurrentUpdateError: every attempt lost the version race.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                async with self.session_factory() as session:
                    row = await session.get(Engagement, engagement_id)
                    if row is None:
                        raise EngagementNotFound(engagement_id)

                    record = row_to_record(row)
                    expected_version = record.version
                    result = mutate(record)

                    values = record_to_values(record)
                    values["version"] = expected_version + 1
                    values["updated_at"] = utc_now()
                    statement = (
                        sql_update(Engagement)
                        .where(Engagement.id == engagement_id, Engagement.version == expected_version)
                        .values(**values)
                        .execution_options(synchronize_session=False)
                    )
                    outcome = await session.execute(statement)
                    if outcome.rowcount == 1:
                        await session.commit()
                        return result

                    await session.rollback()
            except SQLAlchemyError as e:
                raise PersistenceError(f"Failed to update engagement {engagement_id}") from e

            logger.warning(
                f"Version conflict on engagement {engagement_id} "
                f"(attempt {attempt}/{self.max_attempts}), re-reading"
            )

        raise ConcurrentUpdateError(
            f"Engagement {engagement_id} changed concurrently {self.max_attempts} times"
        )
