"""Assessment: download, extract and classify one uploaded document."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from app.config import settings
from app.models.db_models import utc_now
from app.schemas.engagements import (
    UNKNOWN_TYPE,
    DocumentRecord,
    EngagementRecord,
    FriendlyIssue,
    ProcessingStatus,
)
from app.services.collaborators import (
    Classifier,
    CollaboratorError,
    DocumentTooLargeError,
    IssueExplainer,
)
from app.services.document_extraction import DocumentExtractor
from app.services.document_state import (
    ClassificationResult,
    mark_classified,
    mark_failed,
    start_processing,
)
from app.services.issues import render_issue_details
from app.services.repository import EngagementNotFound, EngagementRepository
from app.services.storage import StorageRegistry, folder_ref_for

logger = logging.getLogger(__name__)


class NotStarted(Exception):
    """Raised from the start mutator so the record is left unwritten."""

    def __init__(self, document: Optional[DocumentRecord]):
        super().__init__(document.id if document is not None else "missing document")
        self.document = document


@dataclass
class AssessmentResult:
    document_type: str
    has_issues: bool


class AssessmentService:
    """
    Drive one document from ``pending`` to ``classified`` or ``error``.

    Collaborator failures never escape :meth:`run`; they leave the document in
    ``error`` for the recovery sweep. Persistence errors do propagate.
    """

    def __init__(
        self,
        repository: EngagementRepository,
        storage: StorageRegistry,
        extractor: DocumentExtractor,
        classifier: Classifier,
        explainer: Optional[IssueExplainer] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.storage = storage
        self.extractor = extractor
        self.classifier = classifier
        self.explainer = explainer
        self.clock = clock

    async def run(
        self,
        engagement_id: str,
        document_id: str,
        storage_item_id: str,
        file_name: str,
        trigger: str = "document_uploaded",
    ) -> AssessmentResult:
        """Assess a document and report its type and whether it has issues."""

        def start(engagement: EngagementRecord) -> Tuple[EngagementRecord, DocumentRecord]:
            doc = engagement.find_document(document_id)
            if doc is None or doc.processing_status != ProcessingStatus.PENDING:
                raise NotStarted(doc.model_copy(deep=True) if doc is not None else None)
            start_processing(doc, self.clock())
            return engagement.model_copy(deep=True), doc.model_copy(deep=True)

        try:
            engagement, doc = await self.repository.update(engagement_id, start)
        except EngagementNotFound:
            logger.warning(f"Assessment skipped: engagement {engagement_id} not found")
            return AssessmentResult(document_type=UNKNOWN_TYPE, has_issues=False)
        except NotStarted as skipped:
            doc = skipped.document
            if doc is None:
                logger.warning(f"Assessment skipped: document {document_id} not found in engagement {engagement_id}")
                return AssessmentResult(document_type=UNKNOWN_TYPE, has_issues=False)
            # Another worker owns it, or it was already processed
            logger.info(
                f"Document {document_id} is {doc.processing_status.value}, not starting assessment"
            )
            return AssessmentResult(document_type=doc.document_type, has_issues=len(doc.issues) > 0)

        try:
            classification = await self._classify(engagement, storage_item_id, file_name)
        except Exception as e:
            logger.error(f"Assessment failed for document {document_id} ({file_name}): {e}", exc_info=True)
            await self._record_failure(engagement_id, document_id, trigger)
            return AssessmentResult(document_type=UNKNOWN_TYPE, has_issues=False)

        issue_details = await self._explain(engagement, file_name, classification)

        def finish(record: EngagementRecord) -> Optional[DocumentRecord]:
            now = self.clock()
            current = record.find_document(document_id)
            if current is None:
                return None
            mark_classified(current, classification, now, issue_details)
            outcome = "issues_found" if current.issues else "success"
            record.log_activity("assessment", trigger, outcome, now, document_id=document_id)
            return current.model_copy(deep=True)

        classified = await self.repository.update(engagement_id, finish)
        if classified is None:
            logger.warning(f"Document {document_id} disappeared before classification was stored")
            return AssessmentResult(document_type=UNKNOWN_TYPE, has_issues=False)

        logger.info(
            f"Assessment {trigger} for {document_id}: type={classified.document_type}, "
            f"issues={len(classified.issues)}"
        )
        return AssessmentResult(
            document_type=classified.document_type,
            has_issues=len(classified.issues) > 0,
        )

    async def _classify(
        self, engagement: EngagementRecord, storage_item_id: str, file_name: str
    ) -> ClassificationResult:
        folder = folder_ref_for(engagement)
        if folder is None:
            raise CollaboratorError(f"Storage folder not configured for engagement {engagement.id}")

        client = self.storage.get(engagement.storage_provider)
        download = await client.download(storage_item_id, folder)
        if download.size > settings.max_file_size_bytes:
            raise DocumentTooLargeError(
                f"{download.file_name} ({download.size / 1024 / 1024:.1f}MB) exceeds "
                f"{settings.MAX_FILE_SIZE_MB}MB limit"
            )
        logger.info(f"Downloaded {download.file_name} ({download.size} bytes, {download.mime_type})")

        extraction = await self.extractor.extract(download.content, download.mime_type)
        return await self.classifier.classify(extraction.text, file_name, engagement.tax_year)

    async def _explain(
        self,
        engagement: EngagementRecord,
        file_name: str,
        classification: ClassificationResult,
    ) -> Optional[List[FriendlyIssue]]:
        """Friendly issue details, preferring the explainer when one is configured."""
        if not classification.issues:
            return None
        if self.explainer is not None:
            try:
                return await self.explainer.explain(
                    file_name,
                    classification.document_type,
                    engagement.tax_year,
                    list(classification.issues),
                )
            except Exception as e:
                logger.error(f"Failed to generate issue details for {file_name}: {e}")
        return render_issue_details(classification.issues)

    async def _record_failure(self, engagement_id: str, document_id: str, trigger: str):
        def fail(record: EngagementRecord):
            current = record.find_document(document_id)
            if current is None:
                return
            mark_failed(current)
            record.log_activity("assessment", trigger, "error", self.clock(), document_id=document_id)

        await self.repository.update(engagement_id, fail)
        logger.info(f"Marked document {document_id} as error")
