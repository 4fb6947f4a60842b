"""Storage polling, stuck-document recovery and stale-engagement detection."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from app.config import settings
from app.models.db_models import EngagementStatus, new_id, utc_now
from app.schemas.engagements import DocumentRecord, EngagementRecord
from app.schemas.events import DocumentUploaded, StaleEngagement
from app.services.collaborators import CursorResetError, StorageFile, SyncResult
from app.services.dispatcher import EventDispatcher
from app.services.document_state import Failed, classification_state, needs_retry, reset_for_retry
from app.services.repository import EngagementNotFound, EngagementRepository
from app.services.storage import StorageRegistry, folder_ref_for

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (EngagementStatus.INTAKE_DONE, EngagementStatus.COLLECTING)


@dataclass
class PollResult:
    engagement_id: str
    new_documents: List[str] = field(default_factory=list)
    skipped: bool = False


@dataclass
class PollSummary:
    polled: int = 0
    new_documents: int = 0
    failed: int = 0
    retried_stuck: int = 0


def placeholder_document(file: StorageFile) -> DocumentRecord:
    """A document row for a newly discovered file, waiting for assessment."""
    return DocumentRecord(id=new_id(), file_name=file.name, storage_item_id=file.id)


class RecoverySweeper:
    """Reset stuck or failed documents and queue them for another assessment."""

    def __init__(
        self,
        repository: EngagementRepository,
        dispatcher: EventDispatcher,
        stuck_after: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.stuck_after = stuck_after or timedelta(minutes=settings.STUCK_DOCUMENT_MINUTES)
        self.clock = clock

    async def sweep(self, engagement_ids: Sequence[str]) -> int:
        """
        Sweep the given engagements.

        Returns:
            Number of documents reset and re-dispatched.
        """
        retried = 0
        for engagement_id in engagement_ids:
            retried += await self.sweep_engagement(engagement_id)
        return retried

    async def sweep_engagement(self, engagement_id: str) -> int:
        def reset(engagement: EngagementRecord) -> List[DocumentRecord]:
            now = self.clock()
            reset_docs = []
            for doc in engagement.documents:
                if needs_retry(doc, now, self.stuck_after):
                    reason = "failed" if isinstance(classification_state(doc), Failed) else "stuck"
                    logger.info(f"Retrying {reason} document {doc.id} ({doc.file_name}) for engagement {engagement.id}")
                    reset_for_retry(doc)
                    reset_docs.append(doc.model_copy())
            return reset_docs

        try:
            reset_docs = await self.repository.update(engagement_id, reset)
        except EngagementNotFound:
            logger.warning(f"Recovery sweep skipped: engagement {engagement_id} not found")
            return 0

        # Dispatch only after the reset is stored
        for doc in reset_docs:
            await self.dispatcher.dispatch(
                DocumentUploaded(
                    engagement_id=engagement_id,
                    document_id=doc.id,
                    storage_item_id=doc.storage_item_id,
                    file_name=doc.file_name,
                )
            )
        return len(reset_docs)


class PollingCoordinator:
    """Discover new files in each active engagement's storage folder."""

    def __init__(
        self,
        repository: EngagementRepository,
        storage: StorageRegistry,
        dispatcher: EventDispatcher,
        sweeper: Optional[RecoverySweeper] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.storage = storage
        self.dispatcher = dispatcher
        self.sweeper = sweeper or RecoverySweeper(repository, dispatcher, clock=clock)
        self.clock = clock

    async def _sync(self, engagement: EngagementRecord) -> Optional[SyncResult]:
        folder = folder_ref_for(engagement)
        if folder is None:
            return None
        client = self.storage.get(engagement.storage_provider)
        try:
            return await client.sync(folder, engagement.storage_page_token)
        except CursorResetError:
            logger.info(f"Sync cursor expired for engagement {engagement.id}, restarting from scratch")
            return await client.sync(folder, None)

    async def poll_engagement(self, engagement: EngagementRecord) -> PollResult:
        """
        Ingest new files for one engagement.

        New documents, the page token and the COLLECTING status are written
        together; ``document_uploaded`` events go out only after that write.
        """
        sync = await self._sync(engagement)
        if sync is None:
            logger.debug(f"Engagement {engagement.id} has no storage folder configured")
            return PollResult(engagement_id=engagement.id, skipped=True)

        def ingest(current: EngagementRecord) -> List[DocumentRecord]:
            known = {doc.storage_item_id for doc in current.documents}
            added = []
            for file in sync.files:
                if file.deleted or file.id in known:
                    continue
                doc = placeholder_document(file)
                current.documents.append(doc)
                known.add(file.id)
                added.append(doc.model_copy())

            current.storage_page_token = sync.next_page_token
            if added and current.status in (EngagementStatus.PENDING, EngagementStatus.INTAKE_DONE):
                current.status = EngagementStatus.COLLECTING
            return added

        new_docs = await self.repository.update(engagement.id, ingest)

        for doc in new_docs:
            await self.dispatcher.dispatch(
                DocumentUploaded(
                    engagement_id=engagement.id,
                    document_id=doc.id,
                    storage_item_id=doc.storage_item_id,
                    file_name=doc.file_name,
                )
            )

        if new_docs:
            logger.info(f"Poll {engagement.id}: dispatched {len(new_docs)} documents ({engagement.storage_provider})")
        return PollResult(engagement_id=engagement.id, new_documents=[doc.id for doc in new_docs])

    async def poll_all(self) -> PollSummary:
        """Poll every active engagement, then run the recovery sweep over them."""
        engagements = await self.repository.list_by_status(ACTIVE_STATUSES)
        summary = PollSummary()

        for engagement in engagements:
            try:
                result = await self.poll_engagement(engagement)
            except Exception as e:
                summary.failed += 1
                logger.error(f"Error polling engagement {engagement.id}: {e}", exc_info=True)
                continue
            if not result.skipped:
                summary.polled += 1
            summary.new_documents += len(result.new_documents)

        summary.retried_stuck = await self.sweeper.sweep([engagement.id for engagement in engagements])
        logger.info(
            f"Poll complete: {summary.polled} polled, {summary.new_documents} new, "
            f"{summary.failed} failed, {summary.retried_stuck} retried"
        )
        return summary


async def find_stale_engagements(
    repository: EngagementRepository,
    now: datetime,
    stale_after: Optional[timedelta] = None,
    max_reminders: Optional[int] = None,
) -> List[EngagementRecord]:
    """Active engagements idle past the threshold that still have reminders left."""
    stale_after = stale_after or timedelta(days=settings.STALE_AFTER_DAYS)
    max_reminders = settings.MAX_REMINDERS if max_reminders is None else max_reminders
    return await repository.list_stale(now - stale_after, max_reminders)


async def dispatch_reminders(
    repository: EngagementRepository,
    dispatcher: EventDispatcher,
    now: datetime,
) -> List[str]:
    """Send a stale_engagement event for every stale engagement."""
    stale = await find_stale_engagements(repository, now)
    for engagement in stale:
        await dispatcher.dispatch(StaleEngagement(engagement_id=engagement.id))
    logger.info(f"Dispatched reminders for {len(stale)} stale engagements")
    return [engagement.id for engagement in stale]
