"""Reminder webhook client with exponential backoff retry logic"""

import httpx
import asyncio
import logging
from typing import Any, Dict
from lifeadmin_gateway.config import settings
from lifeadmin_gateway.domain.models import RenewalReminder
from lifeadmin_gateway.infrastructure.observability.metrics import webhook_latency_histogram, webhook_failure_counter

logger = logging.getLogger(__name__)


def reminder_payload(reminder: RenewalReminder) -> Dict[str, Any]:
    return {
        "event": "renewal.reminder",
        "record_id": reminder.record_id,
        "owner_id": reminder.owner_id,
        "title": reminder.title,
        "subject": reminder.subject,
        "reminder_type": reminder.reminder_type,
        "urgency_level": reminder.urgency_level.value,
        "days_until_expiry": reminder.days_until_expiry,
        "warnings": reminder.warnings,
        "actions": reminder.actions,
    }


class ReminderNotifier:
    """Client for delivering renewal reminders to the notification webhook"""

    def __init__(self, webhook_url: str | None = None):
        self.webhook_url = webhook_url if webhook_url is not None else settings.reminder_webhook_url
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base
        self.timeout = settings.http_timeout_seconds

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def send_reminder(self, reminder: RenewalReminder) -> None:
        """
        Send one reminder with retry logic.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s (base * 2^(attempt-1))
        - Retries on HTTP errors and network failures
        - Tracks latency histogram and failure counter

        Raises the last httpx error once retries are exhausted.
        """
        if not self.enabled:
            logger.info("Reminder webhook disabled", extra={"record_id": reminder.record_id})
            return

        attempt = 0
        async with httpx.AsyncClient() as client:
            while attempt < self.max_retries:
                try:
                    with webhook_latency_histogram.time():
                        response = await client.post(
                            self.webhook_url,
                            json=reminder_payload(reminder),
                            timeout=self.timeout,
                        )
                        response.raise_for_status()
                        return

                except (httpx.HTTPStatusError, httpx.RequestError):
                    attempt += 1
                    webhook_failure_counter.inc()

                    if attempt >= self.max_retries:
                        raise

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)

    async def send_all(self, reminders: list[RenewalReminder]) -> int:
        """Deliver reminders one by one; a failed delivery is logged and does not stop the batch"""
        delivered = 0
        for reminder in reminders:
            try:
                await self.send_reminder(reminder)
                delivered += 1
            except (httpx.HTTPStatusError, httpx.RequestError) as e:
                logger.error(
                    "Reminder delivery failed",
                    extra={"record_id": reminder.record_id, "owner_id": reminder.owner_id, "error": str(e)},
                )
        return delivered
