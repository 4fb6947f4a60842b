"""Service wiring for the API routes."""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException

from app.config import settings
from app.database import AsyncSessionLocal
from app.services.assessment import AssessmentService
from app.services.claude_client import ClaudeClassifier
from app.services.dispatcher import EventDispatcher
from app.services.document_extraction import DocumentExtractor
from app.services.notifications import get_notifier
from app.services.outreach import OutreachService
from app.services.polling import PollingCoordinator, RecoverySweeper
from app.services.reconciliation import ReconciliationService
from app.services.repository import EngagementRepository
from app.services.storage import StorageRegistry

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    """The services one running application shares."""
    repository: EngagementRepository
    storage: StorageRegistry
    dispatcher: EventDispatcher
    polling: PollingCoordinator


def build_engine(
    repository: Optional[EngagementRepository] = None,
    storage: Optional[StorageRegistry] = None,
) -> Engine:
    """Construct the dispatcher and its handlers around one repository."""
    repository = repository or EngagementRepository(AsyncSessionLocal)
    storage = storage or StorageRegistry()

    if not settings.ANTHROPIC_API_KEY:
        logger.warning("ANTHROPIC_API_KEY not set, document classification will fail")
    classifier = ClaudeClassifier()

    assessment = AssessmentService(
        repository,
        storage,
        DocumentExtractor(),
        classifier,
        explainer=classifier if settings.ANTHROPIC_API_KEY else None,
    )
    dispatcher = EventDispatcher(
        repository,
        assessment,
        ReconciliationService(repository),
        OutreachService(repository, get_notifier(), settings.ACCOUNTANT_EMAIL or None),
    )
    polling = PollingCoordinator(repository, storage, dispatcher, RecoverySweeper(repository, dispatcher))
    return Engine(repository=repository, storage=storage, dispatcher=dispatcher, polling=polling)


# Global engine instance
_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """Get or create the application engine."""
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def verify_cron_secret(authorization: Optional[str] = Header(None)):
    """Reject cron calls without the shared bearer secret."""
    if not settings.CRON_SECRET or authorization != f"Bearer {settings.CRON_SECRET}":
        raise HTTPException(status_code=401, detail="Unauthorized")
