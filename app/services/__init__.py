"""Services package."""
from app.services.assessment import AssessmentResult, AssessmentService
from app.services.claude_client import ClaudeClassifier
from app.services.dispatcher import EventDispatcher
from app.services.document_extraction import DocumentExtractor
from app.services.notifications import EmailNotifier, LoggingNotifier, get_notifier
from app.services.outreach import OutreachService
from app.services.polling import PollingCoordinator, RecoverySweeper, find_stale_engagements
from app.services.reconciliation import ReconciliationService
from app.services.repository import (
    ConcurrentUpdateError,
    EngagementNotFound,
    EngagementRepository,
    PersistenceError,
)
from app.services.storage import StorageRegistry, detect_provider

__all__ = [
    "AssessmentResult",
    "AssessmentService",
    "ClaudeClassifier",
    "EventDispatcher",
    "DocumentExtractor",
    "EmailNotifier",
    "LoggingNotifier",
    "get_notifier",
    "OutreachService",
    "PollingCoordinator",
    "RecoverySweeper",
    "find_stale_engagements",
    "ReconciliationService",
    "ConcurrentUpdateError",
    "EngagementNotFound",
    "EngagementRepository",
    "PersistenceError",
    "StorageRegistry",
    "detect_provider",
]
