"""Outreach: client and accountant notifications raised by the dispatcher."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from app.models.db_models import utc_now
from app.schemas.engagements import EngagementRecord
from app.services.collaborators import Notification, Notifier
from app.services.issues import get_suggested_action, parse_issue
from app.services.repository import EngagementNotFound, EngagementRepository

logger = logging.getLogger(__name__)

OUTREACH_TRIGGERS = (
    "engagement_created",
    "intake_complete",
    "stale_engagement",
    "document_issues",
    "engagement_complete",
)


def _pending_titles(engagement: EngagementRecord) -> List[str]:
    return [item.title for item in engagement.checklist if item.status != "complete"]


def build_notifications(
    trigger: str,
    engagement: EngagementRecord,
    context: Dict[str, Any],
    accountant_email: Optional[str] = None,
) -> List[Notification]:
    """Compose the messages for one outreach trigger."""
    tags = {"engagement_id": engagement.id, "trigger": trigger}
    greeting = f"Hi {engagement.client_name},"

    if trigger == "engagement_created":
        return [
            Notification(
                to=engagement.client_email,
                subject=f"Welcome - {engagement.tax_year} tax document collection",
                body=(
                    f"{greeting}\n\nWe're starting to collect your {engagement.tax_year} tax documents. "
                    "You'll receive a short questionnaire followed by a personalised checklist."
                ),
                tags=tags,
            )
        ]

    if trigger == "intake_complete":
        lines = [f"- {item.title}" for item in engagement.checklist]
        return [
            Notification(
                to=engagement.client_email,
                subject=f"Your {engagement.tax_year} document checklist",
                body=(
                    f"{greeting}\n\nPlease upload the following documents"
                    f"{' to ' + engagement.storage_folder_url if engagement.storage_folder_url else ''}:\n"
                    + "\n".join(lines)
                ),
                tags=tags,
            )
        ]

    if trigger == "stale_engagement":
        lines = [f"- {title}" for title in _pending_titles(engagement)]
        return [
            Notification(
                to=engagement.client_email,
                subject=f"Reminder: {engagement.tax_year} tax documents still needed",
                body=f"{greeting}\n\nWe're still waiting on:\n" + "\n".join(lines),
                tags=tags,
            )
        ]

    if trigger == "document_issues":
        document = engagement.find_document(str(context.get("document_id", "")))
        if document is None:
            logger.warning(f"Issue notification skipped: document {context.get('document_id')} not found")
            return []
        lines = []
        for issue in document.issues:
            parsed = parse_issue(issue)
            lines.append(f"- {parsed.description} ({get_suggested_action(parsed)})")
        return [
            Notification(
                to=engagement.client_email,
                subject=f"Action needed: {document.file_name}",
                body=f"{greeting}\n\nWe found a problem with {document.file_name}:\n" + "\n".join(lines),
                tags=tags,
            )
        ]

    if trigger == "engagement_complete":
        notifications = [
            Notification(
                to=engagement.client_email,
                subject=f"All {engagement.tax_year} documents received",
                body=f"{greeting}\n\nThanks - we have everything we need for your {engagement.tax_year} return.",
                tags=tags,
            )
        ]
        if accountant_email:
            notifications.append(
                Notification(
                    to=accountant_email,
                    subject=f"{engagement.client_name} is ready for preparation",
                    body=(
                        f"Engagement {engagement.id} ({engagement.client_name}, {engagement.tax_year}) "
                        "has all required documents."
                    ),
                    tags=tags,
                )
            )
        return notifications

    logger.warning(f"Unknown outreach trigger: {trigger}")
    return []


class OutreachService:
    """Send notifications for dispatcher triggers and record them on the engagement."""

    def __init__(
        self,
        repository: EngagementRepository,
        notifier: Notifier,
        accountant_email: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.notifier = notifier
        self.accountant_email = accountant_email
        self.clock = clock

    async def run(
        self,
        trigger: str,
        engagement_id: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Handle one outreach trigger.

        Returns:
            Number of notifications delivered. Delivery failures are logged
            and not retried.
        """
        engagement = await self.repository.get(engagement_id)
        if engagement is None:
            logger.warning(f"Outreach {trigger} skipped: engagement {engagement_id} not found")
            return 0

        notifications = build_notifications(trigger, engagement, context or {}, self.accountant_email)
        sent = 0
        for notification in notifications:
            try:
                await self.notifier.send(notification)
                sent += 1
            except Exception as e:
                logger.error(f"Failed to send {trigger} notification to {notification.to}: {e}")

        def record(current: EngagementRecord):
            if trigger == "stale_engagement" and sent:
                current.reminder_count += 1
            current.log_activity("outreach", trigger, f"{sent}/{len(notifications)} sent", self.clock())

        try:
            await self.repository.update(engagement_id, record)
        except EngagementNotFound:
            logger.warning(f"Engagement {engagement_id} removed during outreach {trigger}")

        logger.info(f"Outreach {trigger} for {engagement_id}: {sent}/{len(notifications)} sent")
        return sent
