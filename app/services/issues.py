"""Encoding and decoding of document issue strings.

Issues are stored on documents as compact strings:

    [ERROR:wrong_year:2025:2024] Document is from 2024, expected 2025
    [WARNING:low_confidence::] Classification confidence below 70%

Older records use a single bracketed type (``[wrong_year] ...``) or plain text;
both still decode.
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from app.schemas.engagements import FriendlyIssue

# Types that block processing when seen in the legacy format
ERROR_TYPES = frozenset({"wrong_year", "wrong_type", "incomplete", "illegible"})

DEFAULT_ACTION = "Review and take appropriate action"

_CANONICAL_RE = re.compile(r"^\[(ERROR|WARNING):([^:\]]*):([^:\]]*):([^:\]]*)\]\s*(.*)$", re.IGNORECASE | re.DOTALL)
_LEGACY_RE = re.compile(r"^\[([^\]:]+)\]\s*(.*)$", re.DOTALL)


@dataclass(frozen=True)
class ParsedIssue:
    """Structured form of one issue string."""
    severity: str  # 'error' or 'warning'
    type: str
    expected: Optional[str]
    detected: Optional[str]
    description: str


def format_issue(
    severity: str,
    issue_type: str,
    expected: Optional[str] = None,
    detected: Optional[str] = None,
    description: str = "",
) -> str:
    """Encode an issue in canonical form."""
    return f"[{severity.upper()}:{issue_type}:{expected or ''}:{detected or ''}] {description}"


def is_error_type(issue_type: str) -> bool:
    """Return True for issue types that are errors in the legacy format."""
    return issue_type in ERROR_TYPES


def parse_issue(text: str) -> ParsedIssue:
    """Decode an issue string, falling back through the legacy formats."""
    match = _CANONICAL_RE.match(text)
    if match:
        severity, issue_type, expected, detected, description = match.groups()
        return ParsedIssue(
            severity=severity.lower(),
            type=issue_type,
            expected=expected or None,
            detected=detected or None,
            description=description.strip(),
        )

    match = _LEGACY_RE.match(text)
    if match:
        issue_type, description = match.groups()
        return ParsedIssue(
            severity="error" if is_error_type(issue_type) else "warning",
            type=issue_type,
            expected=None,
            detected=None,
            description=description.strip(),
        )

    return ParsedIssue(
        severity="warning",
        type="other",
        expected=None,
        detected=None,
        description=text,
    )


def has_errors(issues: Iterable[str]) -> bool:
    return any(parse_issue(issue).severity == "error" for issue in issues)


def has_warnings(issues: Iterable[str]) -> bool:
    return any(parse_issue(issue).severity == "warning" for issue in issues)


def get_suggested_action(issue: ParsedIssue) -> str:
    """Map an issue to the action an accountant should take."""
    if issue.type == "wrong_year":
        if issue.expected:
            return f"Request document for tax year {issue.expected}"
        return "Request document for the correct tax year"
    if issue.type == "wrong_type":
        if issue.expected and issue.detected:
            return f"Request {issue.expected} instead of {issue.detected}"
        return "Request the correct document type"
    if issue.type == "missing_field":
        if issue.expected:
            return f"Request document showing {issue.expected}"
        return "Request complete document with all required fields"
    if issue.type == "incomplete":
        return "Request complete document with all pages"
    if issue.type == "illegible":
        return "Request clearer scan or photo"
    if issue.type == "duplicate":
        return "Verify if duplicate is intentional"
    if issue.type == "low_confidence":
        return "Manually verify document classification"
    return DEFAULT_ACTION


def render_issue_details(issues: List[str]) -> Optional[List[FriendlyIssue]]:
    """Build the cached friendly rendering for a list of issue strings."""
    if not issues:
        return None

    details = []
    for original in issues:
        parsed = parse_issue(original)
        details.append(
            FriendlyIssue(
                original=original,
                friendly_message=parsed.description or parsed.type.replace("_", " ").capitalize(),
                suggested_action=get_suggested_action(parsed),
                severity=parsed.severity,
            )
        )
    return details
