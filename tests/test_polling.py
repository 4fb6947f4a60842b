"""Tests for storage polling, the recovery sweep and stale-engagement detection."""
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.models.db_models import EngagementStatus
from app.schemas.engagements import PENDING_TYPE, PROCESSING_ERROR_TYPE, ProcessingStatus
from app.schemas.events import DocumentUploaded, StaleEngagement
from app.services.collaborators import CursorResetError, StorageFile, SyncResult
from app.services.polling import (
    PollingCoordinator,
    RecoverySweeper,
    dispatch_reminders,
    find_stale_engagements,
)
from app.services.storage import StorageRegistry
from tests.conftest import NOW, make_classified, make_document, make_engagement

FILES = [
    StorageFile(id="id:w2", name="w2.pdf", mime_type="application/pdf"),
    StorageFile(id="id:1099", name="1099-int.pdf", mime_type="application/pdf"),
]


@pytest.fixture
def storage_client():
    client = MagicMock()
    client.sync = AsyncMock(return_value=SyncResult(files=list(FILES), next_page_token="cursor-2"))
    return client


@pytest.fixture
def dispatcher():
    dispatcher = MagicMock()
    dispatcher.dispatch = AsyncMock()
    return dispatcher


@pytest.fixture
def coordinator(repository, storage_client, dispatcher, clock):
    return PollingCoordinator(
        repository,
        StorageRegistry({"dropbox": storage_client}),
        dispatcher,
        RecoverySweeper(repository, dispatcher, clock=clock),
        clock=clock,
    )


def _dispatched(dispatcher):
    return [call.args[0] for call in dispatcher.dispatch.await_args_list]


@pytest.mark.asyncio
async def test_new_files_become_pending_documents(coordinator, repository, dispatcher):
    engagement = repository.seed(make_engagement(status=EngagementStatus.INTAKE_DONE, storage_page_token="cursor-1"))

    result = await coordinator.poll_engagement(engagement)

    stored = repository.stored(engagement.id)
    assert [doc.storage_item_id for doc in stored.documents] == ["id:w2", "id:1099"]
    assert all(doc.document_type == PENDING_TYPE for doc in stored.documents)
    assert all(doc.processing_status == ProcessingStatus.PENDING for doc in stored.documents)
    assert stored.status == EngagementStatus.COLLECTING
    assert stored.storage_page_token == "cursor-2"
    assert result.new_documents == [doc.id for doc in stored.documents]

    events = _dispatched(dispatcher)
    assert all(isinstance(event, DocumentUploaded) for event in events)
    assert [(e.document_id, e.storage_item_id, e.file_name) for e in events] == [
        (doc.id, doc.storage_item_id, doc.file_name) for doc in stored.documents
    ]


@pytest.mark.asyncio
async def test_polling_is_idempotent(coordinator, repository, dispatcher):
    """The same sync result twice only creates documents once."""
    engagement = repository.seed(make_engagement())

    await coordinator.poll_engagement(engagement)
    second = await coordinator.poll_engagement(repository.stored(engagement.id))

    assert len(repository.stored(engagement.id).documents) == 2
    assert second.new_documents == []
    assert dispatcher.dispatch.await_count == 2


@pytest.mark.asyncio
async def test_no_new_files_only_advances_cursor(coordinator, repository, storage_client, dispatcher):
    engagement = repository.seed(make_engagement(status=EngagementStatus.INTAKE_DONE))
    storage_client.sync.return_value = SyncResult(files=[], next_page_token="cursor-9")

    await coordinator.poll_engagement(engagement)

    stored = repository.stored(engagement.id)
    assert stored.storage_page_token == "cursor-9"
    assert stored.status == EngagementStatus.INTAKE_DONE
    dispatcher.dispatch.assert_not_awaited()


@pytest.mark.asyncio
async def test_deleted_files_are_skipped(coordinator, repository, storage_client):
    engagement = repository.seed(make_engagement())
    storage_client.sync.return_value = SyncResult(
        files=[StorageFile(id="id:gone", name="old.pdf", deleted=True)], next_page_token="c"
    )

    result = await coordinator.poll_engagement(engagement)

    assert result.new_documents == []
    assert repository.stored(engagement.id).documents == []


@pytest.mark.asyncio
async def test_expired_cursor_restarts_sync(coordinator, repository, storage_client):
    engagement = repository.seed(make_engagement(storage_page_token="stale"))
    storage_client.sync.side_effect = [
        CursorResetError("cursor reset"),
        SyncResult(files=list(FILES), next_page_token="fresh"),
    ]

    await coordinator.poll_engagement(engagement)

    assert storage_client.sync.await_args_list[0].args[1] == "stale"
    assert storage_client.sync.await_args_list[1].args[1] is None
    assert repository.stored(engagement.id).storage_page_token == "fresh"


@pytest.mark.asyncio
async def test_events_go_out_after_documents_are_stored(coordinator, repository, dispatcher):
    engagement = repository.seed(make_engagement())
    seen = []

    async def check_stored(event):
        seen.append(repository.stored(engagement.id).find_document(event.document_id) is not None)

    dispatcher.dispatch.side_effect = check_stored

    await coordinator.poll_engagement(engagement)

    assert seen == [True, True]


@pytest.mark.asyncio
async def test_engagement_without_folder_is_skipped(coordinator, repository, storage_client):
    engagement = repository.seed(make_engagement(storage_provider="sharepoint", storage_folder_id=None))

    result = await coordinator.poll_engagement(engagement)

    assert result.skipped
    storage_client.sync.assert_not_awaited()


@pytest.mark.asyncio
async def test_poll_all_polls_active_engagements_only(coordinator, repository, storage_client):
    active = repository.seed(make_engagement(status=EngagementStatus.COLLECTING))
    ready = repository.seed(make_engagement(status=EngagementStatus.READY))
    pending = repository.seed(make_engagement(status=EngagementStatus.PENDING))

    summary = await coordinator.poll_all()

    assert summary.polled == 1
    assert summary.new_documents == 2
    assert len(repository.stored(active.id).documents) == 2
    assert repository.stored(ready.id).documents == []
    assert repository.stored(pending.id).documents == []


@pytest.mark.asyncio
async def test_poll_all_continues_after_failure(coordinator, repository, storage_client):
    first = repository.seed(make_engagement(created_at=NOW - timedelta(days=2)))
    second = repository.seed(make_engagement(created_at=NOW - timedelta(days=1)))
    storage_client.sync.side_effect = [
        RuntimeError("provider unavailable"),
        SyncResult(files=list(FILES), next_page_token="c"),
    ]

    summary = await coordinator.poll_all()

    assert summary.failed == 1
    assert summary.polled == 1
    assert repository.stored(first.id).documents == []
    assert len(repository.stored(second.id).documents) == 2


@pytest.mark.asyncio
async def test_sweep_resets_stuck_document_once(repository, dispatcher, clock):
    stuck = make_document(
        "stuck",
        processing_status=ProcessingStatus.IN_PROGRESS,
        processing_started_at=NOW - timedelta(minutes=6),
    )
    running = make_document(
        "running",
        processing_status=ProcessingStatus.IN_PROGRESS,
        processing_started_at=NOW - timedelta(minutes=4),
    )
    engagement = repository.seed(make_engagement(documents=[stuck, running]))
    sweeper = RecoverySweeper(repository, dispatcher, clock=clock)

    retried = await sweeper.sweep([engagement.id])

    assert retried == 1
    stored = repository.stored(engagement.id)
    assert stored.find_document("stuck").processing_status == ProcessingStatus.PENDING
    assert stored.find_document("running").processing_status == ProcessingStatus.IN_PROGRESS
    assert stored.find_document("running").processing_started_at == NOW - timedelta(minutes=4)
    events = _dispatched(dispatcher)
    assert len(events) == 1
    assert events[0].document_id == "stuck"


@pytest.mark.asyncio
async def test_sweep_retries_failed_documents(repository, dispatcher, clock):
    failed = make_document("failed", document_type=PROCESSING_ERROR_TYPE, processing_status=ProcessingStatus.ERROR)
    archived = make_document(
        "archived",
        document_type=PROCESSING_ERROR_TYPE,
        processing_status=ProcessingStatus.ERROR,
        archived=True,
    )
    engagement = repository.seed(make_engagement(documents=[failed, archived, make_classified("ok")]))

    retried = await RecoverySweeper(repository, dispatcher, clock=clock).sweep([engagement.id])

    assert retried == 1
    stored = repository.stored(engagement.id)
    assert stored.find_document("failed").document_type == PENDING_TYPE
    assert stored.find_document("archived").document_type == PROCESSING_ERROR_TYPE
    assert [event.document_id for event in _dispatched(dispatcher)] == ["failed"]


@pytest.mark.asyncio
async def test_sweep_skips_missing_engagement(repository, dispatcher, clock):
    assert await RecoverySweeper(repository, dispatcher, clock=clock).sweep(["missing"]) == 0


@pytest.mark.asyncio
async def test_find_stale_engagements(repository):
    stale = repository.seed(make_engagement(last_activity_at=NOW - timedelta(days=4)))
    repository.seed(make_engagement(last_activity_at=NOW - timedelta(days=1)))
    repository.seed(make_engagement(last_activity_at=NOW - timedelta(days=10), reminder_count=5))
    repository.seed(make_engagement(last_activity_at=NOW - timedelta(days=10), status=EngagementStatus.READY))

    found = await find_stale_engagements(repository, NOW)

    assert [engagement.id for engagement in found] == [stale.id]


@pytest.mark.asyncio
async def test_dispatch_reminders(repository, dispatcher):
    stale = repository.seed(make_engagement(last_activity_at=NOW - timedelta(days=5)))

    reminded = await dispatch_reminders(repository, dispatcher, NOW)

    assert reminded == [stale.id]
    assert _dispatched(dispatcher) == [StaleEngagement(engagement_id=stale.id)]
