"""Notification dispatcher backed by the notification table.

Delivery (e-mail, push) is handled by another subsystem that consumes pending
rows. This adapter only records one notification per company, trigger event,
and assessment, so a retried job never notifies twice.
"""

import uuid

from psychosocial_automation.core.errors import NotificationError, TransientStoreError
from psychosocial_automation.core.interfaces import INotificationRepository
from psychosocial_automation.observability import get_logger

logger = get_logger(__name__)


class DatabaseNotificationDispatcher:
    """Implements INotificationDispatcher on top of INotificationRepository."""

    def __init__(self, repository: INotificationRepository) -> None:
        """Initialise with the notification repository.

        Args:
            repository: Notification persistence bound to the current session.
        """
        self._repository = repository

    async def send(
        self,
        company_id: uuid.UUID,
        trigger_event: str,
        assessment_response_id: uuid.UUID,
        title: str,
        message: str,
        priority: str = "medium",
        recipients: list[str] | None = None,
    ) -> bool:
        """Record a notification unless the same trigger already produced one.

        Args:
            company_id: Company to notify.
            trigger_event: Event name, e.g. high_risk_detected.
            assessment_response_id: Assessment that triggered the event.
            title: Notification title.
            message: Notification body.
            priority: low, medium, high, or critical.
            recipients: Explicit recipients; empty means the company defaults.

        Returns:
            True if a notification was created, False if it already existed.

        Raises:
            NotificationError: If the store rejected the notification.
        """
        try:
            if await self._repository.exists(company_id, trigger_event, assessment_response_id):
                logger.debug(
                    "Notification already recorded",
                    company_id=str(company_id),
                    trigger_event=trigger_event,
                    assessment_response_id=str(assessment_response_id),
                )
                return False
            await self._repository.create(
                company_id,
                assessment_response_id,
                trigger_event,
                title,
                message,
                priority,
                list(recipients or []),
            )
        except TransientStoreError as exc:
            raise NotificationError(f"Could not record {trigger_event} notification: {exc.message}") from exc

        logger.info(
            "Notification recorded",
            company_id=str(company_id),
            trigger_event=trigger_event,
            assessment_response_id=str(assessment_response_id),
            priority=priority,
        )
        return True
