"""Prompts and tool schemas for Claude document classification."""

from app.schemas.engagements import DOCUMENT_TYPES

DOCUMENT_CLASSIFICATION_PROMPT = """You are a tax document classifier and validator. Analyze the document and report:

1. documentType: One of: {document_types}

2. confidence: 0-1 score. Use < 0.7 if the document is unclear, partially visible, or you're uncertain.

3. taxYear: The tax year shown on the document (e.g., 2024, 2025). Use null if not visible.

4. issues: Problems found. Check for:
{year_check}   - Missing critical fields:
     * W-2: employer name, wages/compensation, SSN (can be masked)
     * 1099 forms: payer name, recipient info, and relevant amounts
     * K-1: partnership/S-corp info and partner's share amounts
   - Quality issues: illegible text, cut-off edges, blurry scan, partial document
   - Incomplete document: missing pages, form appears truncated

Format each issue as "[SEVERITY:type:expected:detected] Description"
- SEVERITY: ERROR (blocks processing) or WARNING (needs review)
- type: wrong_year, wrong_type, missing_field, illegible, incomplete, low_confidence, other
- expected/detected: relevant values, or empty if not applicable

Examples:
- "[ERROR:wrong_year:2025:2024] Document is from 2024, expected 2025"
- "[WARNING:low_confidence::] Classification confidence below 70%"
- "[ERROR:missing_field:box_1_wages:] Box 1 wages are not visible"

Record the result with the classify_document tool."""

YEAR_CHECK = "   - Wrong tax year: if the document year doesn't match {expected_tax_year}, flag it\n"

DOCUMENT_CLASSIFICATION_TOOL = {
    "name": "classify_document",
    "description": "Record the document type, tax year and any issues found",
    "input_schema": {
        "type": "object",
        "properties": {
            "documentType": {"type": "string", "enum": list(DOCUMENT_TYPES)},
            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
            "taxYear": {"type": ["integer", "null"]},
            "issues": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["documentType", "confidence", "taxYear", "issues"],
    },
}

FRIENDLY_ISSUES_PROMPT = """You explain tax document problems to clients in plain language.

Document: {file_name} ({document_type}), expected tax year {tax_year}.

For each issue below write one short, friendly sentence the client will understand
and one concrete action they can take. Keep the issues in the same order.

Issues:
{issues}

Record the result with the explain_issues tool."""

FRIENDLY_ISSUES_TOOL = {
    "name": "explain_issues",
    "description": "Record client-friendly explanations, one per issue, in order",
    "input_schema": {
        "type": "object",
        "properties": {
            "issues": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "friendlyMessage": {"type": "string"},
                        "suggestedAction": {"type": "string"},
                    },
                    "required": ["friendlyMessage", "suggestedAction"],
                },
            }
        },
        "required": ["issues"],
    },
}
