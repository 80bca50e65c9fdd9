"""Unit tests for renewal urgency and reminder content"""

import pytest
from datetime import date, datetime, timedelta

from lifeadmin_gateway.domain.models import RenewalInfo, UrgencyLevel
from lifeadmin_gateway.domain.renewals import (
    action_items,
    classify_urgency,
    compliance_warnings,
    evaluate_reminder,
    group_by_month,
    overdue_severity,
    reminder_subject,
    should_send_reminder,
)

TODAY = date(2024, 7, 1)
NOW = datetime(2024, 7, 1, 9, 0)


def renewal_ending_in(days: int, **overrides) -> RenewalInfo:
    return RenewalInfo(end_date=TODAY + timedelta(days=days), **overrides)


@pytest.mark.parametrize(
    "days,stored,expected",
    [
        (-5, UrgencyLevel.STRATEGIC, UrgencyLevel.CRITICAL),
        (0, UrgencyLevel.IMPORTANT, UrgencyLevel.CRITICAL),
        (3, UrgencyLevel.STRATEGIC, UrgencyLevel.CRITICAL),
        (6, UrgencyLevel.CRITICAL, UrgencyLevel.CRITICAL),
        (6, UrgencyLevel.IMPORTANT, UrgencyLevel.IMPORTANT),
        (12, UrgencyLevel.CRITICAL, UrgencyLevel.IMPORTANT),
        (12, UrgencyLevel.STRATEGIC, UrgencyLevel.STRATEGIC),
        (60, UrgencyLevel.CRITICAL, UrgencyLevel.CRITICAL),
        (60, None, UrgencyLevel.IMPORTANT),
    ],
)
def test_classify_urgency(days, stored, expected):
    assert classify_urgency(days, stored) == expected


def test_reminders_on_configured_lead_days():
    renewal = renewal_ending_in(30, reminder_days=[30, 7])

    assert should_send_reminder(renewal, 30) is True
    assert should_send_reminder(renewal, 7) is True
    assert should_send_reminder(renewal, 29) is False


def test_critical_records_remind_daily_near_expiry():
    renewal = renewal_ending_in(2, urgency_level=UrgencyLevel.CRITICAL, reminder_days=[30])

    assert should_send_reminder(renewal, 2) is True
    assert should_send_reminder(renewal, 5) is False


def test_overdue_records_remind_weekly():
    renewal = renewal_ending_in(-7)

    assert should_send_reminder(renewal, 0) is True
    assert should_send_reminder(renewal, -7) is True
    assert should_send_reminder(renewal, -14) is True
    assert should_send_reminder(renewal, -8) is False


def test_evaluate_reminder_builds_content():
    renewal = renewal_ending_in(7, is_auto_renewal=True, requires_action=True, notice_period_days=14)

    reminder = evaluate_reminder("rec-1", "user_alice", "Car Insurance", renewal, TODAY, NOW)

    assert reminder.reminder_type == "urgent"
    assert reminder.subject == "URGENT: Car Insurance expires in 7 days"
    assert reminder.urgency_level == UrgencyLevel.IMPORTANT
    assert {w["type"] for w in reminder.warnings} == {"notice_period", "auto_renewal"}
    assert "Take immediate action to renew or cancel" in reminder.actions
    assert "Give 14 days notice if cancelling" in reminder.actions


def test_snoozed_or_inactive_records_get_no_reminder():
    snoozed = renewal_ending_in(30, next_reminder_due=NOW + timedelta(days=3))
    inactive = renewal_ending_in(30, is_active=False)

    assert evaluate_reminder("rec-1", "u", "Gas", snoozed, TODAY, NOW) is None
    assert evaluate_reminder("rec-2", "u", "Gas", inactive, TODAY, NOW) is None


def test_expired_snooze_no_longer_suppresses():
    renewal = renewal_ending_in(30, next_reminder_due=NOW - timedelta(days=1))

    assert evaluate_reminder("rec-1", "u", "Gas", renewal, TODAY, NOW) is not None


def test_evaluate_reminder_is_repeatable():
    """Test the same day and stored fields give the same reminder"""
    renewal = renewal_ending_in(-14, regulatory_type="government_required")

    first = evaluate_reminder("rec-1", "u", "Road Tax", renewal, TODAY, NOW)
    second = evaluate_reminder("rec-1", "u", "Road Tax", renewal, TODAY, NOW)

    assert first == second
    assert first.subject == "OVERDUE: Road Tax expired 14 days ago"
    assert [w["type"] for w in first.warnings] == ["expired", "legal"]


def test_fca_warning_within_two_weeks():
    assert [w["type"] for w in compliance_warnings(renewal_ending_in(10, regulatory_type="fca_regulated"), 10)] == [
        "regulatory"
    ]
    assert compliance_warnings(renewal_ending_in(20, regulatory_type="fca_regulated"), 20) == []


def test_action_items_by_distance():
    renewal = renewal_ending_in(60, requires_action=True)

    assert action_items(renewal, 60) == ["Review product and prepare for renewal decision"]
    assert action_items(renewal, 20) == ["Start renewal process or research alternatives"]


def test_overdue_severity():
    assert overdue_severity(3) == "medium"
    assert overdue_severity(10) == "high"
    assert overdue_severity(45) == "critical"


def test_reminder_subject_prefixes():
    assert reminder_subject("MOT", "early_warning", 60) == "UPCOMING: MOT expires in 60 days"
    assert reminder_subject("MOT", "upcoming", 30) == "REMINDER: MOT expires in 30 days"


def test_group_by_month_counts_urgency():
    items = [
        (date(2024, 8, 20), UrgencyLevel.STRATEGIC),
        (date(2024, 7, 2), UrgencyLevel.CRITICAL),
        (date(2024, 7, 20), UrgencyLevel.IMPORTANT),
    ]

    months = group_by_month(items)

    assert list(months) == ["2024-07", "2024-08"]
    assert months["2024-07"] == {"total": 2, "critical": 1, "important": 1, "strategic": 0}
    assert months["2024-08"]["strategic"] == 1
