"""Tests for the per-document processing state machine."""
from datetime import timedelta

import pytest

from app.schemas.engagements import PENDING_TYPE, PROCESSING_ERROR_TYPE, Override, ProcessingStatus
from app.services.document_state import (
    Classified,
    ClassificationResult,
    Failed,
    InvalidTransition,
    Unclassified,
    classification_state,
    is_stuck,
    mark_classified,
    mark_failed,
    needs_retry,
    reset_for_retry,
    start_processing,
)
from tests.conftest import NOW, make_classified, make_document


def test_new_document_is_unclassified():
    assert classification_state(make_document()) == Unclassified()


def test_processing_error_sentinel_is_failed():
    """A legacy record carrying only the sentinel type still reads as failed."""
    doc = make_document(document_type=PROCESSING_ERROR_TYPE)

    assert isinstance(classification_state(doc), Failed)


def test_classified_status():
    state = classification_state(make_classified(document_type="1099-INT", issues=["[WARNING:other::] x"]))

    assert isinstance(state, Classified)
    assert state.document_type == "1099-INT"
    assert state.issues == ["[WARNING:other::] x"]


def test_legacy_record_with_classified_at_is_classified():
    doc = make_document(document_type="W-2", classified_at=NOW)

    assert isinstance(classification_state(doc), Classified)


def test_override_counts_as_classified():
    doc = make_document(
        document_type="K-1",
        override=Override(original_type="OTHER", reason="Reclassified from OTHER to K-1"),
    )

    assert isinstance(classification_state(doc), Classified)


def test_start_processing():
    doc = start_processing(make_document(), NOW)

    assert doc.processing_status == ProcessingStatus.IN_PROGRESS
    assert doc.processing_started_at == NOW


def test_start_processing_rejects_non_pending():
    with pytest.raises(InvalidTransition):
        start_processing(make_classified(), NOW)


def test_mark_classified_records_result_and_renders_issues():
    doc = start_processing(make_document(), NOW)
    result = ClassificationResult(
        document_type="W-2",
        confidence=1.4,
        tax_year=2024,
        issues=["[ERROR:wrong_year:2025:2024] Document is from 2024"],
    )

    mark_classified(doc, result, NOW)

    assert doc.processing_status == ProcessingStatus.CLASSIFIED
    assert doc.confidence == 1.0
    assert doc.classified_at == NOW
    assert doc.processing_started_at is None
    assert doc.issue_details[0].suggested_action == "Request document for tax year 2025"


def test_mark_failed_keeps_issues():
    doc = start_processing(make_document(issues=["[WARNING:other::] note"]), NOW)

    mark_failed(doc)

    assert doc.document_type == PROCESSING_ERROR_TYPE
    assert doc.processing_status == ProcessingStatus.ERROR
    assert doc.issues == ["[WARNING:other::] note"]


def test_stuck_after_threshold():
    stuck = make_document(processing_status=ProcessingStatus.IN_PROGRESS, processing_started_at=NOW - timedelta(minutes=6))
    fresh = make_document(processing_status=ProcessingStatus.IN_PROGRESS, processing_started_at=NOW - timedelta(minutes=4))

    assert is_stuck(stuck, NOW)
    assert not is_stuck(fresh, NOW)


def test_needs_retry_skips_archived():
    doc = make_document(processing_status=ProcessingStatus.ERROR, document_type=PROCESSING_ERROR_TYPE)

    assert needs_retry(doc, NOW)
    doc.archived = True
    assert not needs_retry(doc, NOW)


def test_reset_for_retry_clears_classification():
    doc = make_classified(issues=["[incomplete] page 2"])
    doc.issue_details = []

    reset_for_retry(doc)

    assert doc.document_type == PENDING_TYPE
    assert doc.processing_status == ProcessingStatus.PENDING
    assert doc.issues == []
    assert doc.issue_details is None
    assert doc.classified_at is None
    assert classification_state(doc) == Unclassified()
