"""Shared fixtures: an in-memory engagement store, record factories and a fixed clock."""
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

import pytest

from app.models.db_models import EngagementStatus, new_id
from app.schemas.engagements import (
    ChecklistItem,
    DocumentRecord,
    EngagementRecord,
    ProcessingStatus,
)
from app.services.repository import EngagementNotFound

T = TypeVar("T")

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class InMemoryEngagementRepository:
    """Dict-backed stand-in for EngagementRepository with the same update contract."""

    def __init__(self):
        self.records: Dict[str, EngagementRecord] = {}
        self.writes = 0

    def seed(self, record: EngagementRecord) -> EngagementRecord:
        self.records[record.id] = record.model_copy(deep=True)
        return record

    def stored(self, engagement_id: str) -> EngagementRecord:
        return self.records[engagement_id]

    async def get(self, engagement_id: str) -> Optional[EngagementRecord]:
        record = self.records.get(engagement_id)
        return record.model_copy(deep=True) if record is not None else None

    async def list_all(self) -> List[EngagementRecord]:
        return [record.model_copy(deep=True) for record in self.records.values()]

    async def list_by_status(self, statuses: Iterable[EngagementStatus]) -> List[EngagementRecord]:
        wanted = set(statuses)
        return [record.model_copy(deep=True) for record in self.records.values() if record.status in wanted]

    async def list_stale(self, idle_since: datetime, max_reminders: int) -> List[EngagementRecord]:
        return [
            record.model_copy(deep=True)
            for record in self.records.values()
            if record.status in (EngagementStatus.INTAKE_DONE, EngagementStatus.COLLECTING)
            and record.last_activity_at is not None
            and record.last_activity_at < idle_since
            and record.reminder_count < max_reminders
        ]

    async def create(self, record: EngagementRecord) -> EngagementRecord:
        stored = record.model_copy(deep=True)
        stored.created_at = stored.created_at or NOW
        stored.updated_at = stored.created_at
        stored.last_activity_at = stored.last_activity_at or stored.created_at
        self.records[stored.id] = stored
        return stored.model_copy(deep=True)

    async def update(self, engagement_id: str, mutate: Callable[[EngagementRecord], T]) -> T:
        current = self.records.get(engagement_id)
        if current is None:
            raise EngagementNotFound(engagement_id)
        working = current.model_copy(deep=True)
        result = mutate(working)
        working.version = current.version + 1
        self.records[engagement_id] = working
        self.writes += 1
        return result


def make_item(item_id: str = "item-w2", **overrides) -> ChecklistItem:
    data = dict(
        id=item_id,
        title="W-2 from employer",
        why="Wage income",
        priority="high",
        expected_document_type="W-2",
    )
    data.update(overrides)
    return ChecklistItem(**data)


def make_document(doc_id: Optional[str] = None, **overrides) -> DocumentRecord:
    data = dict(
        id=doc_id or new_id(),
        file_name="w2.pdf",
        storage_item_id=f"id:{doc_id or new_id()}",
    )
    data.update(overrides)
    return DocumentRecord(**data)


def make_classified(doc_id: Optional[str] = None, document_type: str = "W-2", **overrides) -> DocumentRecord:
    data = dict(
        document_type=document_type,
        confidence=0.95,
        tax_year=2025,
        classified_at=NOW - timedelta(hours=1),
        processing_status=ProcessingStatus.CLASSIFIED,
    )
    data.update(overrides)
    return make_document(doc_id, **data)


def make_engagement(**overrides) -> EngagementRecord:
    data = dict(
        id=new_id(),
        client_name="Dana Reyes",
        client_email="dana@example.com",
        tax_year=2025,
        status=EngagementStatus.COLLECTING,
        storage_provider="dropbox",
        storage_folder_url="https://www.dropbox.com/sh/abc123/client-docs",
        last_activity_at=NOW - timedelta(hours=2),
        created_at=NOW - timedelta(days=7),
    )
    data.update(overrides)
    return EngagementRecord(**data)


@pytest.fixture
def repository():
    """Fresh in-memory engagement store."""
    return InMemoryEngagementRepository()


@pytest.fixture
def clock():
    """Clock fixed at NOW."""
    return lambda: NOW
