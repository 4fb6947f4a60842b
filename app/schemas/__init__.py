"""Pydantic schemas package."""
from app.schemas.engagements import (
    DOCUMENT_TYPES,
    PENDING_TYPE,
    PROCESSING_ERROR_TYPE,
    UNKNOWN_TYPE,
    AgentLogEntry,
    ChecklistItem,
    DocumentIssues,
    DocumentRecord,
    EngagementCreate,
    EngagementRecord,
    EngagementSummary,
    FriendlyIssue,
    IntakeComplete,
    ItemStatus,
    Override,
    ProcessingStatus,
    Reconciliation,
    ReclassifyRequest,
)
from app.schemas.events import (
    AgentEvent,
    CheckCompletion,
    DocumentAssessed,
    DocumentUploaded,
    EngagementCreated,
    IntakeCompleted,
    StaleEngagement,
    parse_event,
)

__all__ = [
    "DOCUMENT_TYPES",
    "PENDING_TYPE",
    "PROCESSING_ERROR_TYPE",
    "UNKNOWN_TYPE",
    "AgentLogEntry",
    "ChecklistItem",
    "DocumentIssues",
    "DocumentRecord",
    "EngagementCreate",
    "EngagementRecord",
    "EngagementSummary",
    "FriendlyIssue",
    "IntakeComplete",
    "ItemStatus",
    "Override",
    "ProcessingStatus",
    "Reconciliation",
    "ReclassifyRequest",
    "AgentEvent",
    "CheckCompletion",
    "DocumentAssessed",
    "DocumentUploaded",
    "EngagementCreated",
    "IntakeCompleted",
    "StaleEngagement",
    "parse_event",
]
