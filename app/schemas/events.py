"""Event vocabulary routed by the dispatcher."""
import logging
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)


class EngagementCreated(BaseModel):
    type: Literal["engagement_created"] = "engagement_created"
    engagement_id: str


class IntakeCompleted(BaseModel):
    type: Literal["intake_complete"] = "intake_complete"
    engagement_id: str


class DocumentUploaded(BaseModel):
    type: Literal["document_uploaded"] = "document_uploaded"
    engagement_id: str
    document_id: str
    storage_item_id: str
    file_name: str


class DocumentAssessed(BaseModel):
    type: Literal["document_assessed"] = "document_assessed"
    engagement_id: str
    document_id: str
    document_type: str
    has_issues: bool


class StaleEngagement(BaseModel):
    type: Literal["stale_engagement"] = "stale_engagement"
    engagement_id: str


class CheckCompletion(BaseModel):
    type: Literal["check_completion"] = "check_completion"
    engagement_id: str


AgentEvent = Annotated[
    Union[
        EngagementCreated,
        IntakeCompleted,
        DocumentUploaded,
        DocumentAssessed,
        StaleEngagement,
        CheckCompletion,
    ],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter = TypeAdapter(AgentEvent)


def parse_event(payload: Dict[str, Any]) -> Optional[BaseModel]:
    """
    Validate a raw event payload.

    Returns None for unknown event types and malformed payloads so callers
    can log and move on.
    """
    try:
        return _event_adapter.validate_python(payload)
    except ValidationError as e:
        logger.warning(f"Ignoring invalid event {payload.get('type')!r}: {e.error_count()} error(s)")
        return None
