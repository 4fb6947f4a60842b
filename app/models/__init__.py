"""Database models package."""
from app.models.db_models import (
    Engagement,
    EngagementStatus,
    new_id,
    utc_now,
)

__all__ = [
    "Engagement",
    "EngagementStatus",
    "new_id",
    "utc_now",
]
