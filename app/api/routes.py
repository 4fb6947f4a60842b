"""API routes for engagements, accountant review actions and cron triggers."""

import logging
from datetime import timedelta
from typing import Callable, List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from app.api.dependencies import Engine, get_engine, verify_cron_secret
from app.config import settings
from app.models.db_models import EngagementStatus, new_id, utc_now
from app.schemas.engagements import (
    ChecklistItem,
    DocumentIssues,
    DocumentRecord,
    EngagementCreate,
    EngagementRecord,
    EngagementSummary,
    IntakeComplete,
    Override,
    ProcessingStatus,
    ReclassifyRequest,
)
from app.schemas.events import CheckCompletion, DocumentUploaded, EngagementCreated, IntakeCompleted
from app.services.document_state import is_stuck, reset_for_retry
from app.services.issues import has_errors, has_warnings, render_issue_details
from app.services.polling import ACTIVE_STATUSES, dispatch_reminders
from app.services.repository import EngagementNotFound
from app.services.storage import detect_provider

logger = logging.getLogger(__name__)

# Create routers
api_router = APIRouter(prefix="/api")
cron_router = APIRouter(prefix="/api/cron", dependencies=[Depends(verify_cron_secret)])


async def _load(engine: Engine, engagement_id: str) -> EngagementRecord:
    engagement = await engine.repository.get(engagement_id)
    if engagement is None:
        raise EngagementNotFound(engagement_id)
    return engagement


async def _update_document(
    engine: Engine,
    engagement_id: str,
    document_id: str,
    change: Callable[[EngagementRecord, DocumentRecord], None],
) -> DocumentRecord:
    """Apply ``change`` to one document and return the stored copy."""

    def apply(engagement: EngagementRecord) -> DocumentRecord:
        doc = engagement.find_document(document_id)
        if doc is None:
            raise HTTPException(status_code=404, detail="Document not found")
        change(engagement, doc)
        return doc.model_copy(deep=True)

    return await engine.repository.update(engagement_id, apply)


# ================== ENGAGEMENTS ==================

@api_router.post("/engagements", response_model=EngagementRecord, status_code=201)
async def create_engagement(
    payload: EngagementCreate,
    background_tasks: BackgroundTasks,
    engine: Engine = Depends(get_engine),
):
    """Create an engagement and send the client a welcome message."""
    provider = detect_provider(payload.storage_folder_url)
    if provider is None:
        raise HTTPException(
            status_code=400,
            detail="Unsupported storage folder URL. Use a Dropbox, SharePoint/OneDrive or Google Drive link",
        )

    engagement = await engine.repository.create(
        EngagementRecord(
            id=new_id(),
            client_name=payload.client_name,
            client_email=payload.client_email,
            tax_year=payload.tax_year,
            storage_provider=provider,
            storage_folder_url=payload.storage_folder_url,
            storage_folder_id=payload.storage_folder_id,
            storage_drive_id=payload.storage_drive_id,
        )
    )
    logger.info(f"Created engagement {engagement.id} for {engagement.client_name} ({provider})")

    background_tasks.add_task(engine.dispatcher.dispatch, EngagementCreated(engagement_id=engagement.id))
    return engagement


@api_router.get("/engagements", response_model=List[EngagementSummary])
async def list_engagements(engine: Engine = Depends(get_engine)):
    """List all engagements, newest first."""
    engagements = await engine.repository.list_all()
    return [EngagementSummary.from_record(engagement) for engagement in engagements]


@api_router.get("/engagements/{engagement_id}", response_model=EngagementRecord)
async def get_engagement(engagement_id: str, engine: Engine = Depends(get_engine)):
    """Get an engagement with its checklist, documents and activity log."""
    return await _load(engine, engagement_id)


@api_router.post("/engagements/{engagement_id}/intake", response_model=EngagementRecord)
async def complete_intake(
    engagement_id: str,
    payload: IntakeComplete,
    background_tasks: BackgroundTasks,
    engine: Engine = Depends(get_engine),
):
    """Store the intake checklist and send upload instructions."""

    def apply(engagement: EngagementRecord) -> EngagementRecord:
        engagement.checklist = [
            ChecklistItem(**item.model_dump(), status="pending", document_ids=[]) for item in payload.checklist
        ]
        if engagement.status == EngagementStatus.PENDING:
            engagement.status = EngagementStatus.INTAKE_DONE
        engagement.log_activity("intake", "intake_complete", f"{len(payload.checklist)} checklist items", utc_now())
        return engagement.model_copy(deep=True)

    engagement = await engine.repository.update(engagement_id, apply)
    background_tasks.add_task(engine.dispatcher.dispatch, IntakeCompleted(engagement_id=engagement_id))
    return engagement


@api_router.post("/engagements/{engagement_id}/reconcile", response_model=EngagementRecord)
async def reconcile_engagement(engagement_id: str, engine: Engine = Depends(get_engine)):
    """Recompute completion now and return the updated engagement."""
    await _load(engine, engagement_id)
    await engine.dispatcher.dispatch(CheckCompletion(engagement_id=engagement_id))
    return await _load(engine, engagement_id)


# ================== DOCUMENT REVIEW ==================

@api_router.post(
    "/engagements/{engagement_id}/documents/{document_id}/approve",
    response_model=DocumentRecord,
)
async def approve_document(
    engagement_id: str,
    document_id: str,
    background_tasks: BackgroundTasks,
    engine: Engine = Depends(get_engine),
):
    """Accept a document as-is, resolving its issues."""

    def change(engagement: EngagementRecord, doc: DocumentRecord):
        now = utc_now()
        doc.approved = True
        doc.approved_at = now
        engagement.log_activity("accountant", "approve", "approved", now, document_id=doc.id)

    doc = await _update_document(engine, engagement_id, document_id, change)
    background_tasks.add_task(engine.dispatcher.dispatch, CheckCompletion(engagement_id=engagement_id))
    return doc


@api_router.post(
    "/engagements/{engagement_id}/documents/{document_id}/reclassify",
    response_model=DocumentRecord,
)
async def reclassify_document(
    engagement_id: str,
    document_id: str,
    payload: ReclassifyRequest,
    background_tasks: BackgroundTasks,
    engine: Engine = Depends(get_engine),
):
    """Override the classifier's document type and approve the document."""
    stuck_after = timedelta(minutes=settings.STUCK_DOCUMENT_MINUTES)

    def change(engagement: EngagementRecord, doc: DocumentRecord):
        now = utc_now()
        if doc.processing_status == ProcessingStatus.IN_PROGRESS and not is_stuck(doc, now, stuck_after):
            raise HTTPException(status_code=409, detail="Document is already being processed")
        original_type = doc.document_type
        doc.override = Override(
            original_type=original_type,
            reason=f"Reclassified from {original_type} to {payload.new_type}",
        )
        doc.document_type = payload.new_type
        doc.processing_status = ProcessingStatus.CLASSIFIED
        doc.processing_started_at = None
        doc.classified_at = doc.classified_at or now
        doc.approved = True
        doc.approved_at = now
        engagement.log_activity(
            "accountant", "reclassify", f"{original_type} -> {payload.new_type}", now, document_id=doc.id
        )

    doc = await _update_document(engine, engagement_id, document_id, change)
    background_tasks.add_task(engine.dispatcher.dispatch, CheckCompletion(engagement_id=engagement_id))
    return doc


@api_router.post(
    "/engagements/{engagement_id}/documents/{document_id}/retry",
    response_model=DocumentRecord,
)
async def retry_document(
    engagement_id: str,
    document_id: str,
    background_tasks: BackgroundTasks,
    engine: Engine = Depends(get_engine),
):
    """Reset a document to pending and assess it again."""
    stuck_after = timedelta(minutes=settings.STUCK_DOCUMENT_MINUTES)

    def change(engagement: EngagementRecord, doc: DocumentRecord):
        now = utc_now()
        if doc.archived:
            raise HTTPException(status_code=409, detail="Document is archived")
        if doc.processing_status == ProcessingStatus.IN_PROGRESS and not is_stuck(doc, now, stuck_after):
            raise HTTPException(status_code=409, detail="Document is already being processed")
        reset_for_retry(doc)
        engagement.log_activity("accountant", "retry", "reset to pending", now, document_id=doc.id)

    doc = await _update_document(engine, engagement_id, document_id, change)
    background_tasks.add_task(
        engine.dispatcher.dispatch,
        DocumentUploaded(
            engagement_id=engagement_id,
            document_id=doc.id,
            storage_item_id=doc.storage_item_id,
            file_name=doc.file_name,
        ),
    )
    return doc


@api_router.get(
    "/engagements/{engagement_id}/documents/{document_id}/issues",
    response_model=DocumentIssues,
)
async def get_document_issues(engagement_id: str, document_id: str, engine: Engine = Depends(get_engine)):
    """Client-friendly rendering of a document's issues."""
    engagement = await _load(engine, engagement_id)
    doc = engagement.find_document(document_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="Document not found")

    return DocumentIssues(
        document_id=doc.id,
        file_name=doc.file_name,
        document_type=doc.document_type,
        approved=doc.approved,
        has_errors=has_errors(doc.issues),
        has_warnings=has_warnings(doc.issues),
        issues=doc.issue_details or render_issue_details(doc.issues) or [],
    )


# ================== CRON ==================

@cron_router.get("/poll-storage")
async def poll_storage(background_tasks: BackgroundTasks, engine: Engine = Depends(get_engine)):
    """Queue a poll of every active engagement's storage folder."""
    engagements = await engine.repository.list_by_status(ACTIVE_STATUSES)
    background_tasks.add_task(engine.polling.poll_all)
    logger.info(f"Queued storage poll for {len(engagements)} active engagements")
    return {"queued": len(engagements)}


@cron_router.get("/check-reminders")
async def check_reminders(engine: Engine = Depends(get_engine)):
    """Send reminders to clients of stale engagements."""
    engagement_ids = await dispatch_reminders(engine.repository, engine.dispatcher, utc_now())
    return {"reminded": len(engagement_ids), "engagement_ids": engagement_ids}
