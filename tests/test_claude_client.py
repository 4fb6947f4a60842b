"""Tests for the Claude classifier."""
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from anthropic import RateLimitError

from app.services.claude_client import ClaudeClassifier
from app.services.collaborators import ClassificationError
from app.services.issues import parse_issue


def _tool_response(name, payload):
    block = MagicMock(type="tool_use", input=payload)
    block.name = name
    response = MagicMock(content=[block])
    response.usage.input_tokens = 1200
    response.usage.output_tokens = 80
    return response


@pytest.fixture
def anthropic_client():
    client = MagicMock()
    client.messages.create = AsyncMock()
    return client


@pytest.fixture
def classifier(anthropic_client):
    return ClaudeClassifier(model="claude-test", client=anthropic_client)


@pytest.mark.asyncio
async def test_classify_maps_tool_output(classifier, anthropic_client):
    anthropic_client.messages.create.return_value = _tool_response(
        "classify_document",
        {
            "documentType": "W-2",
            "confidence": 0.97,
            "taxYear": 2024,
            "issues": ["[ERROR:wrong_year:2025:2024] Document is from 2024, expected 2025"],
        },
    )

    result = await classifier.classify("Form W-2 2024 Acme Corp", "w2.pdf", 2025)

    assert result.document_type == "W-2"
    assert result.confidence == 0.97
    assert result.tax_year == 2024
    assert parse_issue(result.issues[0]).type == "wrong_year"

    kwargs = anthropic_client.messages.create.await_args.kwargs
    assert kwargs["model"] == "claude-test"
    assert kwargs["tool_choice"] == {"type": "tool", "name": "classify_document"}
    assert "2025" in kwargs["system"]


@pytest.mark.asyncio
async def test_low_confidence_adds_warning(classifier, anthropic_client):
    anthropic_client.messages.create.return_value = _tool_response(
        "classify_document", {"documentType": "RECEIPT", "confidence": 0.4, "taxYear": None, "issues": []}
    )

    result = await classifier.classify("faded text", "scan.jpg")

    assert result.tax_year is None
    [issue] = result.issues
    assert parse_issue(issue).type == "low_confidence"
    assert parse_issue(issue).severity == "warning"


@pytest.mark.asyncio
async def test_unknown_type_becomes_other(classifier, anthropic_client):
    anthropic_client.messages.create.return_value = _tool_response(
        "classify_document", {"documentType": "PAYSLIP", "confidence": 0.9, "taxYear": 2025, "issues": []}
    )

    result = await classifier.classify("text", "payslip.pdf", 2025)

    assert result.document_type == "OTHER"


@pytest.mark.asyncio
async def test_missing_tool_use_raises(classifier, anthropic_client):
    text_block = MagicMock(type="text")
    anthropic_client.messages.create.return_value = MagicMock(content=[text_block])

    with pytest.raises(ClassificationError):
        await classifier.classify("text", "doc.pdf", 2025)


@pytest.mark.asyncio
async def test_rate_limit_is_retried(classifier, anthropic_client, monkeypatch):
    sleep = AsyncMock()
    monkeypatch.setattr("app.services.claude_client.asyncio.sleep", sleep)
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    rate_limited = RateLimitError("rate limited", response=httpx.Response(429, request=request), body=None)
    anthropic_client.messages.create.side_effect = [
        rate_limited,
        _tool_response("classify_document", {"documentType": "K-1", "confidence": 0.9, "taxYear": 2025, "issues": []}),
    ]

    result = await classifier.classify("Schedule K-1", "k1.pdf", 2025)

    assert result.document_type == "K-1"
    assert anthropic_client.messages.create.await_count == 2
    sleep.assert_awaited_once()


@pytest.mark.asyncio
async def test_explain_returns_friendly_issues(classifier, anthropic_client):
    issue = "[ERROR:illegible::] Text is blurry"
    anthropic_client.messages.create.return_value = _tool_response(
        "explain_issues",
        {"issues": [{"friendlyMessage": "We can't read this scan.", "suggestedAction": "Upload a sharper photo."}]},
    )

    [friendly] = await classifier.explain("scan.jpg", "W-2", 2025, [issue])

    assert friendly.original == "[ERROR:illegible::] Text is blurry"
    assert friendly.friendly_message == "We can't read this scan."
    assert friendly.severity == "error"


@pytest.mark.asyncio
async def test_explain_count_mismatch_raises(classifier, anthropic_client):
    anthropic_client.messages.create.return_value = _tool_response("explain_issues", {"issues": []})

    with pytest.raises(ClassificationError):
        await classifier.explain("scan.jpg", "W-2", 2025, ["[illegible] blurry"])


@pytest.mark.asyncio
async def test_explain_keeps_legacy_issue_strings_verbatim(classifier, anthropic_client):
    legacy = "[illegible] blurry"
    anthropic_client.messages.create.return_value = _tool_response(
        "explain_issues",
        {"issues": [{"friendlyMessage": "We can't read this.", "suggestedAction": "Rescan it."}]},
    )

    [friendly] = await classifier.explain("scan.jpg", "W-2", 2025, [legacy])

    assert friendly.original == legacy
    assert friendly.severity == "error"
    assert "illegible" in anthropic_client.messages.create.await_args.kwargs["system"]
