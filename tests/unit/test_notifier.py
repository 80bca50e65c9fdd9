"""Unit tests for reminder webhook delivery"""

import httpx
import pytest
from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock, patch

from lifeadmin_gateway.domain.models import RenewalInfo
from lifeadmin_gateway.domain.renewals import evaluate_reminder
from lifeadmin_gateway.infrastructure.clients.notifier import ReminderNotifier, reminder_payload

WEBHOOK = "https://hooks.example.test/reminders"


def response(status_code: int) -> httpx.Response:
    return httpx.Response(status_code, request=httpx.Request("POST", WEBHOOK))


@pytest.fixture
def reminder():
    today = date(2024, 7, 1)
    renewal = RenewalInfo(end_date=today + timedelta(days=30))
    return evaluate_reminder("rec-1", "user_alice", "Car Insurance", renewal, today, datetime(2024, 7, 1, 9))


def test_notifier_disabled_without_url():
    assert ReminderNotifier(webhook_url="").enabled is False
    assert ReminderNotifier(webhook_url=WEBHOOK).enabled is True


def test_payload_shape(reminder):
    payload = reminder_payload(reminder)

    assert payload["event"] == "renewal.reminder"
    assert payload["subject"] == "REMINDER: Car Insurance expires in 30 days"
    assert payload["urgency_level"] == "important"


async def test_delivers_reminder(reminder):
    with patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=response(200)) as mock_post:
        delivered = await ReminderNotifier(webhook_url=WEBHOOK).send_all([reminder])

    assert delivered == 1
    assert mock_post.call_args.kwargs["json"]["record_id"] == "rec-1"


@patch("lifeadmin_gateway.infrastructure.clients.notifier.asyncio.sleep", new_callable=AsyncMock)
async def test_retries_with_backoff(mock_sleep, reminder):
    side_effect = [httpx.ConnectError("connection refused"), response(503), response(200)]
    with patch("httpx.AsyncClient.post", new_callable=AsyncMock, side_effect=side_effect) as mock_post:
        await ReminderNotifier(webhook_url=WEBHOOK).send_reminder(reminder)

    assert mock_post.call_count == 3
    assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]


@patch("lifeadmin_gateway.infrastructure.clients.notifier.asyncio.sleep", new_callable=AsyncMock)
async def test_failed_delivery_does_not_stop_batch(mock_sleep, reminder):
    notifier = ReminderNotifier(webhook_url=WEBHOOK)
    notifier.max_retries = 2
    side_effect = [response(500), response(500), response(200)]

    with patch("httpx.AsyncClient.post", new_callable=AsyncMock, side_effect=side_effect) as mock_post:
        delivered = await notifier.send_all([reminder, reminder])

    assert delivered == 1
    assert mock_post.call_count == 3
