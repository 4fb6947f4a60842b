"""Event dispatcher: routes engine events to the assessment, reconciliation and outreach handlers."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Union

from pydantic import BaseModel

from app.models.db_models import utc_now
from app.schemas.engagements import EngagementRecord
from app.schemas.events import (
    CheckCompletion,
    DocumentAssessed,
    DocumentUploaded,
    EngagementCreated,
    IntakeCompleted,
    StaleEngagement,
    parse_event,
)
from app.services.assessment import AssessmentService
from app.services.outreach import OutreachService
from app.services.reconciliation import ReconciliationResult, ReconciliationService
from app.services.repository import EngagementNotFound, EngagementRepository, PersistenceError

logger = logging.getLogger(__name__)


class EventDispatcher:
    """
    Route events to handlers and chain follow-up events.

    Chaining rules:
        document_uploaded  -> assessment, then always document_assessed
        document_assessed  -> outreach if the document has issues,
                              otherwise reconciliation (+ completion notice when ready)
        check_completion   -> reconciliation (+ completion notice when ready)

    Business failures are logged and never raised; only persistence errors
    propagate to the caller.
    """

    def __init__(
        self,
        repository: EngagementRepository,
        assessment: AssessmentService,
        reconciliation: ReconciliationService,
        outreach: OutreachService,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.assessment = assessment
        self.reconciliation = reconciliation
        self.outreach = outreach
        self.clock = clock

    async def dispatch(self, event: Union[BaseModel, Dict[str, Any]]) -> None:
        """Handle one event, including any events it chains to."""
        if isinstance(event, dict):
            parsed = parse_event(event)
            if parsed is None:
                return
            event = parsed

        event_type = getattr(event, "type", None)
        engagement_id = getattr(event, "engagement_id", None)
        logger.info(f"Received event: {event_type} for engagement {engagement_id}")

        try:
            outcome = await self._route(event)
        except PersistenceError:
            raise
        except Exception as e:
            logger.error(f"Handler for {event_type} failed on engagement {engagement_id}: {e}", exc_info=True)
            outcome = "error"

        if outcome is None:
            return
        await self._audit(engagement_id, event_type, outcome)

    async def _route(self, event: BaseModel) -> Optional[str]:
        if isinstance(event, EngagementCreated):
            await self.outreach.run("engagement_created", event.engagement_id)
            return "welcome_sent"

        if isinstance(event, IntakeCompleted):
            await self.outreach.run("intake_complete", event.engagement_id)
            return "instructions_sent"

        if isinstance(event, DocumentUploaded):
            result = await self.assessment.run(
                engagement_id=event.engagement_id,
                document_id=event.document_id,
                storage_item_id=event.storage_item_id,
                file_name=event.file_name,
                trigger="document_uploaded",
            )
            await self.dispatch(
                DocumentAssessed(
                    engagement_id=event.engagement_id,
                    document_id=event.document_id,
                    document_type=result.document_type,
                    has_issues=result.has_issues,
                )
            )
            return f"assessed:{result.document_type}"

        if isinstance(event, DocumentAssessed):
            if event.has_issues:
                await self.outreach.run(
                    "document_issues",
                    event.engagement_id,
                    {"document_id": event.document_id, "document_type": event.document_type},
                )
                return "issues_reported"
            result = await self.reconciliation.run(
                event.engagement_id, "document_assessed", document_id=event.document_id
            )
            return await self._notify_if_ready(event.engagement_id, result)

        if isinstance(event, StaleEngagement):
            await self.outreach.run("stale_engagement", event.engagement_id)
            return "reminder_sent"

        if isinstance(event, CheckCompletion):
            result = await self.reconciliation.run(event.engagement_id, "check_completion")
            return await self._notify_if_ready(event.engagement_id, result)

        logger.warning(f"Unknown event type: {getattr(event, 'type', None)!r}, ignoring")
        return None

    async def _notify_if_ready(self, engagement_id: str, result: ReconciliationResult) -> str:
        if result.is_ready:
            await self.outreach.run("engagement_complete", engagement_id)
            return "ready"
        return f"{result.completion_percentage or 0}% complete"

    async def _audit(self, engagement_id: Optional[str], event_type: Optional[str], outcome: str):
        """Append one dispatcher entry to the engagement's activity log."""
        if engagement_id is None:
            return

        def record(engagement: EngagementRecord):
            engagement.log_activity("dispatcher", event_type or "unknown", outcome, self.clock())

        try:
            await self.repository.update(engagement_id, record)
        except EngagementNotFound:
            logger.warning(f"Dispatch audit skipped: engagement {engagement_id} not found")
