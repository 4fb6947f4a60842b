"""Claude AI client for document classification."""

import asyncio
import logging
import random
from typing import Any, Dict, List, Optional

import httpx
from anthropic import APIError, AsyncAnthropic, RateLimitError

from app.config import settings
from app.schemas.engagements import DOCUMENT_TYPES, FriendlyIssue
from app.services.collaborators import ClassificationError
from app.services.document_state import ClassificationResult
from app.services.issues import format_issue, parse_issue
from app.services.prompts import (
    DOCUMENT_CLASSIFICATION_PROMPT,
    DOCUMENT_CLASSIFICATION_TOOL,
    FRIENDLY_ISSUES_PROMPT,
    FRIENDLY_ISSUES_TOOL,
    YEAR_CHECK,
)

logger = logging.getLogger(__name__)

# Below this confidence a low_confidence warning is added if Claude didn't
LOW_CONFIDENCE_THRESHOLD = 0.7


class ClaudeClassifier:
    """Classify documents and explain issues with Claude Tool Use."""

    def __init__(self, api_key: str = None, model: str = None, client: Optional[AsyncAnthropic] = None):
        self.client = client or AsyncAnthropic(
            api_key=api_key or settings.ANTHROPIC_API_KEY,
            timeout=httpx.Timeout(120.0, connect=30.0),
        )
        self.model = model or settings.CLAUDE_MODEL
        self.max_retries = settings.MAX_API_RETRIES
        self.retry_base_delay = settings.RETRY_BASE_DELAY
        self.retry_max_delay = settings.RETRY_MAX_DELAY
        self.retry_jitter = settings.RETRY_JITTER

    async def _call_with_retry(self, create_func):
        """Call Claude API with exponential backoff on rate limits and API errors."""
        last_error = None

        for attempt in range(self.max_retries):
            try:
                response = await create_func()

                if hasattr(response, "usage"):
                    logger.info(
                        f"Claude API call: {response.usage.input_tokens} input, "
                        f"{response.usage.output_tokens} output tokens"
                    )
                return response

            except RateLimitError as e:
                last_error = e
                base_wait = min(self.retry_base_delay * (2 ** attempt), self.retry_max_delay)
                wait_time = base_wait + random.uniform(0, self.retry_jitter)
                logger.warning(
                    f"Rate limited, waiting {wait_time:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                )
                await asyncio.sleep(wait_time)

            except APIError as e:
                last_error = e
                if attempt < self.max_retries - 1:
                    wait_time = self.retry_base_delay * (attempt + 1)
                    logger.warning(
                        f"API error, retrying in {wait_time}s (attempt {attempt + 1}/{self.max_retries}): {e}"
                    )
                    await asyncio.sleep(wait_time)
                else:
                    raise

        raise last_error

    async def _call_tool(self, system_prompt: str, user_content: str, tool: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._call_with_retry(
            lambda: self.client.messages.create(
                model=self.model,
                max_tokens=4096,
                temperature=0.1,
                system=system_prompt,
                tools=[tool],
                tool_choice={"type": "tool", "name": tool["name"]},
                messages=[{"role": "user", "content": user_content}],
            )
        )

        for block in response.content:
            if getattr(block, "type", None) == "tool_use" and block.name == tool["name"]:
                return block.input

        raise ClassificationError(f"No tool use response received for {tool['name']}")

    async def classify(
        self, text: str, file_name: str, expected_tax_year: Optional[int] = None
    ) -> ClassificationResult:
        """
        Classify extracted document text.

        Args:
            text: Extracted document text
            file_name: Original file name, a useful hint for the model
            expected_tax_year: Engagement tax year used for the wrong-year check

        Returns:
            ClassificationResult with encoded issue strings
        """
        system_prompt = DOCUMENT_CLASSIFICATION_PROMPT.format(
            document_types=", ".join(DOCUMENT_TYPES),
            year_check=YEAR_CHECK.format(expected_tax_year=expected_tax_year) if expected_tax_year else "",
        )
        data = await self._call_tool(
            system_prompt,
            f"File name: {file_name}\n\nDocument content:\n{text}",
            DOCUMENT_CLASSIFICATION_TOOL,
        )

        try:
            document_type = str(data["documentType"])
            confidence = min(max(float(data["confidence"]), 0.0), 1.0)
            tax_year = data.get("taxYear")
            issues = [str(issue) for issue in data.get("issues") or []]
        except (KeyError, TypeError, ValueError) as e:
            raise ClassificationError(f"Malformed classification for {file_name}: {e}") from e

        if document_type not in DOCUMENT_TYPES:
            logger.warning(f"Classifier returned unknown type {document_type!r} for {file_name}")
            document_type = "OTHER"

        if confidence < LOW_CONFIDENCE_THRESHOLD and not any("low_confidence" in issue for issue in issues):
            issues.append(
                format_issue(
                    "warning",
                    "low_confidence",
                    description=f"Classification confidence {round(confidence * 100)}% is below 70%",
                )
            )

        return ClassificationResult(
            document_type=document_type,
            confidence=confidence,
            tax_year=int(tax_year) if tax_year is not None else None,
            issues=issues,
        )

    async def explain(
        self,
        file_name: str,
        document_type: str,
        tax_year: int,
        issues: List[str],
    ) -> List[FriendlyIssue]:
        """Rewrite encoded issues as client-friendly messages, keeping each original string."""
        parsed = [parse_issue(issue) for issue in issues]
        listing = "\n".join(
            f"{i + 1}. [{issue.severity}] {issue.type}: {issue.description}" for i, issue in enumerate(parsed)
        )
        data = await self._call_tool(
            FRIENDLY_ISSUES_PROMPT.format(
                file_name=file_name,
                document_type=document_type,
                tax_year=tax_year,
                issues=listing,
            ),
            "Explain these issues.",
            FRIENDLY_ISSUES_TOOL,
        )

        explained = data.get("issues") or []
        if len(explained) != len(issues):
            raise ClassificationError(
                f"Expected {len(issues)} explanations, got {len(explained)}"
            )

        return [
            FriendlyIssue(
                original=original,
                friendly_message=item["friendlyMessage"],
                suggested_action=item["suggestedAction"],
                severity=issue.severity,
            )
            for original, issue, item in zip(issues, parsed, explained)
        ]
