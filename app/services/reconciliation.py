"""Checklist reconciliation and completion tracking.

Matches classified documents to checklist items, derives each item's
status, computes the priority-weighted completion percentage and decides
whether an engagement is ready for the accountant. The pure functions at the
top of this module have no I/O; :class:`ReconciliationService` wraps them in
one read-modify-write of the engagement record.
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from app.models.db_models import EngagementStatus, utc_now
from app.schemas.engagements import (
    ChecklistItem,
    DocumentRecord,
    EngagementRecord,
    ItemStatus,
    Reconciliation,
)
from app.services.document_state import Classified, classification_state
from app.services.repository import EngagementNotFound, EngagementRepository

logger = logging.getLogger(__name__)

# Weight of each checklist priority in the completion percentage
PRIORITY_WEIGHTS: Dict[str, float] = {"high": 0.5, "medium": 0.35, "low": 0.15}
DEFAULT_WEIGHT = 0.35

# Document types a client may legitimately send several of
REPEATABLE_TYPES = frozenset({"1099-NEC", "1099-MISC", "RECEIPT"})


@dataclass
class Readiness:
    """Readiness decision plus the reasons it was or was not met."""
    is_ready: bool
    completion_percentage: Optional[int]
    high_priority_complete: bool
    unresolved_documents: int
    reasons: List[str] = field(default_factory=list)


@dataclass
class ReconciliationOutcome:
    """Everything one reconciliation pass computes."""
    item_statuses: List[ItemStatus]
    completion_percentage: Optional[int]
    issues: List[str]
    readiness: Readiness
    reconciliation: Optional[Reconciliation]


@dataclass
class ReconciliationResult:
    """What the dispatcher needs back from a reconciliation run."""
    is_ready: bool
    completion_percentage: Optional[int]
    reasons: List[str] = field(default_factory=list)


def _active_classified(documents: Sequence[DocumentRecord]) -> List[DocumentRecord]:
    return [
        doc for doc in documents
        if not doc.archived and isinstance(classification_state(doc), Classified)
    ]


def match_documents(item: ChecklistItem, documents: Sequence[DocumentRecord]) -> List[DocumentRecord]:
    """Return classified documents whose type exactly matches the item's expected type."""
    if item.expected_document_type is None:
        return []
    return [
        doc for doc in _active_classified(documents)
        if doc.document_type == item.expected_document_type
    ]


def derive_item_status(matches: Sequence[DocumentRecord]) -> str:
    """pending with no matches, complete if any match is clean or approved, else received."""
    if not matches:
        return "pending"
    if any(not doc.has_unresolved_issues for doc in matches):
        return "complete"
    return "received"


def item_weight(priority: str) -> float:
    return PRIORITY_WEIGHTS.get(priority, DEFAULT_WEIGHT)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_completion(
    checklist: Sequence[ChecklistItem], item_statuses: Sequence[ItemStatus]
) -> Optional[int]:
    """
    Weighted completion percentage.

    Complete items earn their full priority weight, received items half of
    it. Returns None for an empty checklist.
    """
    if not checklist:
        return None

    status_by_item = {status.item_id: status.status for status in item_statuses}
    total_weight = 0.0
    completed_weight = 0.0
    for item in checklist:
        weight = item_weight(item.priority)
        total_weight += weight
        status = status_by_item.get(item.id, "pending")
        if status == "complete":
            completed_weight += weight
        elif status == "received":
            completed_weight += weight * 0.5

    if total_weight <= 0:
        return None
    return _round_half_up(100 * completed_weight / total_weight)


def assess_readiness(
    checklist: Sequence[ChecklistItem],
    item_statuses: Sequence[ItemStatus],
    documents: Sequence[DocumentRecord],
    completion_percentage: Optional[int],
) -> Readiness:
    """Ready at 100% completion, or when every high-priority item is complete and no issues remain open."""
    status_by_item = {status.item_id: status.status for status in item_statuses}
    unfinished_high = [
        item for item in checklist
        if item.priority == "high" and status_by_item.get(item.id, "pending") != "complete"
    ]
    high_priority_complete = not unfinished_high
    unresolved = [doc for doc in documents if not doc.archived and doc.has_unresolved_issues]

    if not checklist:
        return Readiness(
            is_ready=False,
            completion_percentage=None,
            high_priority_complete=high_priority_complete,
            unresolved_documents=len(unresolved),
            reasons=["Checklist is empty"],
        )

    is_ready = completion_percentage == 100 or (high_priority_complete and not unresolved)

    reasons = []
    if is_ready:
        reasons.append("All requirements met")
    else:
        for item in unfinished_high:
            reasons.append(
                f'High-priority item "{item.title}" is {status_by_item.get(item.id, "pending")}'
            )
        if unresolved:
            reasons.append(f"{len(unresolved)} document(s) have unresolved issues")
        if completion_percentage != 100:
            reasons.append(f"Completion is {completion_percentage or 0}%, not 100%")

    return Readiness(
        is_ready=is_ready,
        completion_percentage=completion_percentage,
        high_priority_complete=high_priority_complete,
        unresolved_documents=len(unresolved),
        reasons=reasons,
    )


def cross_document_issues(documents: Sequence[DocumentRecord]) -> List[str]:
    """Engagement-level consistency problems across classified documents."""
    classified = _active_classified(documents)
    issues = []

    type_counts = Counter(doc.document_type for doc in classified)
    for document_type, count in type_counts.items():
        if count > 1 and document_type not in REPEATABLE_TYPES:
            issues.append(
                f"Multiple {document_type} documents found ({count}). Please verify this is intentional."
            )

    tax_years = sorted({doc.tax_year for doc in classified if doc.tax_year is not None})
    if len(tax_years) > 1:
        issues.append(f"Documents have different tax years: {', '.join(str(y) for y in tax_years)}")

    return issues


def reconcile(
    checklist: Sequence[ChecklistItem],
    documents: Sequence[DocumentRecord],
    now: datetime,
) -> ReconciliationOutcome:
    """Compute a full reconciliation from the current checklist and documents."""
    item_statuses = []
    for item in checklist:
        matches = match_documents(item, documents)
        item_statuses.append(
            ItemStatus(
                item_id=item.id,
                status=derive_item_status(matches),
                document_ids=[doc.id for doc in matches],
            )
        )

    completion = calculate_completion(checklist, item_statuses)
    issues = cross_document_issues(documents)
    readiness = assess_readiness(checklist, item_statuses, documents, completion)

    reconciliation = None
    if completion is not None:
        reconciliation = Reconciliation(
            completion_percentage=completion,
            item_statuses=item_statuses,
            issues=issues,
            ran_at=now,
        )

    return ReconciliationOutcome(
        item_statuses=item_statuses,
        completion_percentage=completion,
        issues=issues,
        readiness=readiness,
        reconciliation=reconciliation,
    )


def build_prep_brief(engagement: EngagementRecord, outcome: ReconciliationOutcome) -> str:
    """Plain-text summary handed to the accountant when an engagement becomes ready."""
    documents_by_id = {doc.id: doc for doc in engagement.documents}
    status_by_item = {status.item_id: status for status in outcome.item_statuses}

    lines = [
        f"Prep brief: {engagement.client_name}, tax year {engagement.tax_year}",
        f"Completion: {outcome.completion_percentage or 0}%",
        "",
        "Checklist:",
    ]
    for item in engagement.checklist:
        computed = status_by_item.get(item.id)
        status = computed.status if computed else "pending"
        files = [documents_by_id[doc_id].file_name for doc_id in (computed.document_ids if computed else [])]
        suffix = f" ({', '.join(files)})" if files else ""
        lines.append(f"- [{status}] {item.title} ({item.priority}){suffix}")

    reviewed = [
        doc for doc in engagement.documents
        if not doc.archived and (doc.override is not None or (doc.approved and doc.issues))
    ]
    if reviewed:
        lines.extend(["", "Accountant review:"])
        for doc in reviewed:
            if doc.override is not None:
                lines.append(f"- {doc.file_name}: {doc.override.reason}")
            else:
                lines.append(f"- {doc.file_name}: approved with {len(doc.issues)} issue(s)")

    if outcome.issues:
        lines.extend(["", "Cross-document issues:"])
        lines.extend(f"- {issue}" for issue in outcome.issues)

    return "\n".join(lines)


class ReconciliationService:
    """Run reconciliation against a stored engagement."""

    def __init__(
        self,
        repository: EngagementRepository,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.clock = clock

    async def run(
        self,
        engagement_id: str,
        trigger: str,
        document_id: Optional[str] = None,
    ) -> ReconciliationResult:
        """
        Recompute and store the reconciliation for an engagement.

        The readiness predicate drives the returned result. The stored status
        only advances to READY, with a prep brief, at 100% completion with no
        unresolved documents. A missing engagement is logged and reported as
        not ready.
        """

        def apply(engagement: EngagementRecord) -> ReconciliationOutcome:
            now = self.clock()
            outcome = reconcile(engagement.checklist, engagement.documents, now)

            status_by_item = {status.item_id: status for status in outcome.item_statuses}
            for item in engagement.checklist:
                computed = status_by_item[item.id]
                item.status = computed.status
                item.document_ids = list(computed.document_ids)

            if outcome.reconciliation is not None:
                engagement.reconciliation = outcome.reconciliation

            # Status only moves at full completion with nothing left to review
            if (
                outcome.completion_percentage == 100
                and outcome.readiness.unresolved_documents == 0
                and engagement.status != EngagementStatus.READY
            ):
                engagement.status = EngagementStatus.READY
                engagement.prep_brief = build_prep_brief(engagement, outcome)
                logger.info(f"Engagement {engagement.id} is ready ({outcome.completion_percentage}% complete)")

            result = "ready" if outcome.readiness.is_ready else f"{outcome.completion_percentage or 0}% complete"
            engagement.log_activity("reconciliation", trigger, result, now, document_id=document_id)
            return outcome

        try:
            outcome = await self.repository.update(engagement_id, apply)
        except EngagementNotFound:
            logger.warning(f"Reconciliation skipped: engagement {engagement_id} not found")
            return ReconciliationResult(
                is_ready=False, completion_percentage=None, reasons=["Engagement not found"]
            )

        logger.info(
            f"Reconciliation {trigger} for {engagement_id}: ready={outcome.readiness.is_ready}, "
            f"completion={outcome.completion_percentage}%"
        )
        return ReconciliationResult(
            is_ready=outcome.readiness.is_ready,
            completion_percentage=outcome.completion_percentage,
            reasons=outcome.readiness.reasons,
        )
