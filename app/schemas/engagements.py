"""Pydantic schemas for engagements and their nested aggregate state."""
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.models.db_models import EngagementStatus

# Classification labels the classifier may return
DOCUMENT_TYPES = (
    "W-2",
    "1099-NEC",
    "1099-MISC",
    "1099-INT",
    "1099-DIV",
    "1099-B",
    "1099-R",
    "K-1",
    "RECEIPT",
    "STATEMENT",
    "OTHER",
)

# Persisted sentinel labels; see app.services.document_state for the typed view
PENDING_TYPE = "PENDING"
PROCESSING_ERROR_TYPE = "PROCESSING_ERROR"
UNKNOWN_TYPE = "UNKNOWN"

Priority = Literal["high", "medium", "low"]
ItemStatusValue = Literal["pending", "received", "complete"]
Severity = Literal["error", "warning"]


class ProcessingStatus(str, Enum):
    """Document processing status enumeration."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    CLASSIFIED = "classified"
    ERROR = "error"


class CamelModel(BaseModel):
    """Base model stored and served with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChecklistItem(CamelModel):
    """One expected deliverable on an engagement's checklist."""
    id: str
    title: str
    why: str = ""
    priority: Priority = "medium"
    status: ItemStatusValue = "pending"
    document_ids: List[str] = []
    expected_document_type: Optional[str] = None


class FriendlyIssue(CamelModel):
    """Cached human-friendly rendering of one encoded issue."""
    original: str
    friendly_message: str
    suggested_action: str
    severity: Severity


class Override(CamelModel):
    """Manual reclassification record."""
    original_type: str
    reason: str


class DocumentRecord(CamelModel):
    """One uploaded file and its processing record."""
    id: str
    file_name: str
    storage_item_id: str
    document_type: str = PENDING_TYPE
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    tax_year: Optional[int] = None
    issues: List[str] = []
    issue_details: Optional[List[FriendlyIssue]] = None
    classified_at: Optional[datetime] = None
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    processing_started_at: Optional[datetime] = None
    approved: Optional[bool] = None
    approved_at: Optional[datetime] = None
    override: Optional[Override] = None
    archived: bool = False
    archived_at: Optional[datetime] = None
    archived_reason: Optional[str] = None

    @property
    def has_unresolved_issues(self) -> bool:
        """Issues that an accountant has not approved."""
        return len(self.issues) > 0 and self.approved is not True


class ItemStatus(CamelModel):
    """Computed status of one checklist item."""
    item_id: str
    status: ItemStatusValue
    document_ids: List[str] = []


class Reconciliation(CamelModel):
    """Last computed completion snapshot."""
    completion_percentage: int = Field(ge=0, le=100)
    item_statuses: List[ItemStatus] = []
    issues: List[str] = []
    ran_at: datetime


class AgentLogEntry(CamelModel):
    """One audit entry in an engagement's activity log."""
    timestamp: datetime
    agent: str
    trigger: str
    outcome: str
    document_id: Optional[str] = None


class EngagementRecord(CamelModel):
    """In-memory aggregate of one engagement, read and written as a unit."""
    id: str
    client_name: str
    client_email: str
    tax_year: int
    status: EngagementStatus = EngagementStatus.PENDING
    storage_provider: Optional[str] = None
    storage_folder_id: Optional[str] = None
    storage_folder_url: Optional[str] = None
    storage_drive_id: Optional[str] = None
    storage_page_token: Optional[str] = None
    checklist: List[ChecklistItem] = []
    documents: List[DocumentRecord] = []
    reconciliation: Optional[Reconciliation] = None
    agent_log: List[AgentLogEntry] = []
    prep_brief: Optional[str] = None
    last_activity_at: Optional[datetime] = None
    reminder_count: int = 0
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def find_document(self, document_id: str) -> Optional[DocumentRecord]:
        """Return the document with the given id, if any."""
        for document in self.documents:
            if document.id == document_id:
                return document
        return None

    def log_activity(
        self,
        agent: str,
        trigger: str,
        outcome: str,
        now: datetime,
        document_id: Optional[str] = None,
    ):
        """Append an audit entry and bump last activity."""
        self.agent_log.append(
            AgentLogEntry(
                timestamp=now,
                agent=agent,
                trigger=trigger,
                outcome=outcome,
                document_id=document_id,
            )
        )
        self.last_activity_at = now


# ================== API PAYLOADS ==================

class EngagementCreate(CamelModel):
    """Engagement creation request."""
    client_name: str = Field(..., min_length=1, max_length=255)
    client_email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    tax_year: int = Field(..., ge=2020, le=2030)
    storage_folder_url: str = Field(..., min_length=1)
    storage_folder_id: Optional[str] = None
    storage_drive_id: Optional[str] = None


class ChecklistItemCreate(CamelModel):
    """Checklist item supplied at intake."""
    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    why: str = ""
    priority: Priority = "medium"
    expected_document_type: Optional[str] = None


class IntakeComplete(CamelModel):
    """Intake completion request carrying the generated checklist."""
    checklist: List[ChecklistItemCreate] = Field(..., min_length=1)


class ReclassifyRequest(CamelModel):
    """Manual reclassification request."""
    new_type: str

    @field_validator("new_type")
    @classmethod
    def validate_new_type(cls, v: str) -> str:
        """Only known classification labels are accepted."""
        if v not in DOCUMENT_TYPES:
            raise ValueError("Invalid document type")
        return v


class DocumentIssues(CamelModel):
    """Friendly issue listing for one document."""
    document_id: str
    file_name: str
    document_type: str
    approved: Optional[bool] = None
    has_errors: bool
    has_warnings: bool
    issues: List[FriendlyIssue]


class EngagementSummary(CamelModel):
    """Engagement list entry."""
    id: str
    client_name: str
    tax_year: int
    status: EngagementStatus
    document_count: int
    completion_percentage: Optional[int] = None
    last_activity_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: "EngagementRecord") -> "EngagementSummary":
        return cls(
            id=record.id,
            client_name=record.client_name,
            tax_year=record.tax_year,
            status=record.status,
            document_count=len([doc for doc in record.documents if not doc.archived]),
            completion_percentage=(
                record.reconciliation.completion_percentage if record.reconciliation else None
            ),
            last_activity_at=record.last_activity_at,
        )
