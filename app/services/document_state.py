"""Per-document processing state machine.

Documents move ``pending -> in_progress -> classified | error``. Only the
recovery sweep or an explicit retry moves a document back to ``pending``.

The persisted record keeps the sentinel labels ``PENDING`` and
``PROCESSING_ERROR`` in ``document_type``; everything in this module reasons
about the typed view returned by :func:`classification_state` instead.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Union

from app.schemas.engagements import (
    PENDING_TYPE,
    PROCESSING_ERROR_TYPE,
    DocumentRecord,
    FriendlyIssue,
    ProcessingStatus,
)
from app.services.issues import render_issue_details

logger = logging.getLogger(__name__)

DEFAULT_STUCK_AFTER = timedelta(minutes=5)


class InvalidTransition(Exception):
    """Raised when a transition is not allowed from the document's state."""


@dataclass(frozen=True)
class Unclassified:
    """Discovered but not yet classified."""


@dataclass(frozen=True)
class Classified:
    document_type: str
    confidence: float
    tax_year: Optional[int]
    issues: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Failed:
    reason: str = "processing_error"


ClassificationState = Union[Unclassified, Classified, Failed]


@dataclass
class ClassificationResult:
    """Output of the classification collaborator."""
    document_type: str
    confidence: float
    tax_year: Optional[int]
    issues: List[str] = field(default_factory=list)


def classification_state(doc: DocumentRecord) -> ClassificationState:
    """Return the typed classification state of a persisted document."""
    if doc.processing_status == ProcessingStatus.ERROR or doc.document_type == PROCESSING_ERROR_TYPE:
        return Failed()
    # Records written before processing_status existed only carry classified_at;
    # a manual override also counts as a classification.
    labelled = doc.document_type != PENDING_TYPE and (
        doc.classified_at is not None or doc.override is not None
    )
    if doc.processing_status == ProcessingStatus.CLASSIFIED or labelled:
        return Classified(
            document_type=doc.document_type,
            confidence=doc.confidence,
            tax_year=doc.tax_year,
            issues=list(doc.issues),
        )
    return Unclassified()


def is_stuck(doc: DocumentRecord, now: datetime, stuck_after: timedelta = DEFAULT_STUCK_AFTER) -> bool:
    """True when an in-progress document has been running past the threshold."""
    if doc.processing_status != ProcessingStatus.IN_PROGRESS or doc.processing_started_at is None:
        return False
    return doc.processing_started_at < now - stuck_after


def needs_retry(doc: DocumentRecord, now: datetime, stuck_after: timedelta = DEFAULT_STUCK_AFTER) -> bool:
    """True for stuck or failed documents."""
    if doc.archived:
        return False
    return is_stuck(doc, now, stuck_after) or isinstance(classification_state(doc), Failed)


def start_processing(doc: DocumentRecord, now: datetime) -> DocumentRecord:
    """pending -> in_progress."""
    if doc.processing_status != ProcessingStatus.PENDING:
        raise InvalidTransition(
            f"Cannot start document {doc.id} from {doc.processing_status.value}"
        )
    doc.processing_status = ProcessingStatus.IN_PROGRESS
    doc.processing_started_at = now
    return doc


def mark_classified(
    doc: DocumentRecord,
    result: ClassificationResult,
    now: datetime,
    issue_details: Optional[List[FriendlyIssue]] = None,
) -> DocumentRecord:
    """Record a successful classification."""
    doc.document_type = result.document_type
    doc.confidence = min(max(result.confidence, 0.0), 1.0)
    doc.tax_year = result.tax_year
    doc.issues = list(result.issues)
    doc.issue_details = issue_details if issue_details is not None else render_issue_details(doc.issues)
    doc.classified_at = now
    doc.processing_status = ProcessingStatus.CLASSIFIED
    doc.processing_started_at = None
    return doc


def mark_failed(doc: DocumentRecord) -> DocumentRecord:
    """Record a failed classification; issues are left as they were."""
    doc.document_type = PROCESSING_ERROR_TYPE
    doc.processing_status = ProcessingStatus.ERROR
    doc.processing_started_at = None
    return doc


def reset_for_retry(doc: DocumentRecord) -> DocumentRecord:
    """Send a stuck or failed document back to pending."""
    doc.document_type = PENDING_TYPE
    doc.processing_status = ProcessingStatus.PENDING
    doc.processing_started_at = None
    doc.issues = []
    doc.issue_details = None
    doc.classified_at = None
    return doc
