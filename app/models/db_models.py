"""SQLAlchemy database models."""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from app.database import Base

# JSONB on PostgreSQL, plain JSON on other dialects (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utc_now():
    """Return current time in UTC."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Return a new string identifier."""
    return str(uuid.uuid4())


class EngagementStatus(str, enum.Enum):
    """Engagement status enumeration."""

    PENDING = "PENDING"
    INTAKE_DONE = "INTAKE_DONE"
    COLLECTING = "COLLECTING"
    READY = "READY"


class Engagement(Base):
    """One client's document-collection job.

    The checklist, documents, reconciliation and activity log are stored as
    nested JSON on the row and always read and written together.
    """

    __tablename__ = "engagements"

    id = Column(String(36), primary_key=True, default=new_id)
    client_name = Column(String(255), nullable=False)
    client_email = Column(String(255), nullable=False)
    tax_year = Column(Integer, nullable=False)
    status = Column(
        Enum(EngagementStatus, name="engagementstatus"),
        default=EngagementStatus.PENDING,
        nullable=False,
    )

    # Storage provider
    storage_provider = Column(String(20), nullable=True)  # 'dropbox', 'sharepoint', 'google-drive'
    storage_folder_id = Column(Text, nullable=True)
    storage_folder_url = Column(Text, nullable=True)
    storage_drive_id = Column(Text, nullable=True)
    storage_page_token = Column(Text, nullable=True)

    # Aggregate state
    checklist = Column(JSONType, nullable=True)
    documents = Column(JSONType, nullable=True)
    reconciliation = Column(JSONType, nullable=True)
    agent_log = Column(JSONType, nullable=True)
    prep_brief = Column(Text, nullable=True)

    # Reminder tracking
    last_activity_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    reminder_count = Column(Integer, default=0, nullable=False)

    # Optimistic concurrency
    version = Column(Integer, default=1, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


Index("ix_engagements_status", Engagement.status)
Index("ix_engagements_last_activity_at", Engagement.last_activity_at)
Index("ix_engagements_created_at", Engagement.created_at.desc())
