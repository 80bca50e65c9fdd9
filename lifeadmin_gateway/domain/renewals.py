"""Renewal reminder rules - urgency classification and reminder content"""

from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from lifeadmin_gateway.domain.models import RenewalInfo, RenewalReminder, UrgencyLevel
from lifeadmin_gateway.utils.date_utils import month_key

CRITICAL_WINDOW_DAYS = 3
CRITICAL_ESCALATION_DAYS = 7
IMPORTANT_ESCALATION_DAYS = 14
OVERDUE_REMINDER_CADENCE_DAYS = 7

GOVERNMENT_REQUIRED = "government_required"
FCA_REGULATED = "fca_regulated"

SUBJECT_PREFIXES = {
    "overdue": "OVERDUE",
    "urgent": "URGENT",
    "upcoming": "REMINDER",
    "early_warning": "UPCOMING",
}


def days_until_expiry(end_date: date, today: date) -> int:
    return (end_date - today).days


def classify_urgency(days: int, stored_level: Optional[UrgencyLevel] = None) -> UrgencyLevel:
    """
    Escalate a record's stored urgency as its end date approaches.

    Overdue or within three days is always critical; a critical record stays
    critical inside a week; anything not strategic becomes important inside
    two weeks; otherwise the stored level stands.
    """
    base = UrgencyLevel(stored_level) if stored_level else UrgencyLevel.IMPORTANT

    if days <= 0:
        return UrgencyLevel.CRITICAL
    if days <= CRITICAL_WINDOW_DAYS:
        return UrgencyLevel.CRITICAL
    if days <= CRITICAL_ESCALATION_DAYS and base == UrgencyLevel.CRITICAL:
        return UrgencyLevel.CRITICAL
    if days <= IMPORTANT_ESCALATION_DAYS and base != UrgencyLevel.STRATEGIC:
        return UrgencyLevel.IMPORTANT
    return base


def overdue_severity(days_overdue: int) -> str:
    if days_overdue > 30:
        return "critical"
    if days_overdue > 7:
        return "high"
    return "medium"


def reminder_type(days: int) -> str:
    if days <= 0:
        return "overdue"
    if days <= 7:
        return "urgent"
    if days <= 30:
        return "upcoming"
    return "early_warning"


def is_snoozed(renewal: RenewalInfo, now: datetime) -> bool:
    return renewal.next_reminder_due is not None and renewal.next_reminder_due > now


def should_send_reminder(renewal: RenewalInfo, days: int) -> bool:
    """Reminder is due on a configured lead day, daily when critical and close, weekly once overdue"""
    if days <= 0:
        return (-days) % OVERDUE_REMINDER_CADENCE_DAYS == 0

    reminder_days = renewal.reminder_days or [30, 7]
    if days in reminder_days:
        return True
    return renewal.urgency_level == UrgencyLevel.CRITICAL and days <= CRITICAL_WINDOW_DAYS


def compliance_warnings(renewal: RenewalInfo, days: int) -> List[dict]:
    warnings = []

    if days < 0:
        warnings.append({
            "type": "expired",
            "severity": "critical",
            "message": f"This item expired {-days} days ago and requires immediate attention",
        })

    if renewal.regulatory_type == GOVERNMENT_REQUIRED and days <= 7:
        warnings.append({
            "type": "legal",
            "severity": "high",
            "message": "Legal requirement - action needed to avoid penalties",
        })

    if renewal.regulatory_type == FCA_REGULATED and days <= 14:
        warnings.append({
            "type": "regulatory",
            "severity": "medium",
            "message": "FCA regulated product - review terms before renewal",
        })

    if renewal.notice_period_days and days <= renewal.notice_period_days:
        warnings.append({
            "type": "notice_period",
            "severity": "high",
            "message": f"{renewal.notice_period_days} days notice required - deadline approaching",
        })

    if renewal.is_auto_renewal and days <= 30:
        warnings.append({
            "type": "auto_renewal",
            "severity": "medium",
            "message": "Auto-renewal product - compare alternatives before deadline",
        })

    return warnings


def action_items(renewal: RenewalInfo, days: int) -> List[str]:
    actions = []

    if renewal.requires_action:
        if days <= 7:
            actions.append("Take immediate action to renew or cancel")
        elif days <= 30:
            actions.append("Start renewal process or research alternatives")
        else:
            actions.append("Review product and prepare for renewal decision")

    if renewal.is_auto_renewal:
        actions.append("Compare alternatives before auto-renewal")

    if renewal.notice_period_days and days <= renewal.notice_period_days:
        actions.append(f"Give {renewal.notice_period_days} days notice if cancelling")

    return actions


def reminder_subject(title: str, kind: str, days: int) -> str:
    prefix = SUBJECT_PREFIXES.get(kind, "REMINDER")
    if days <= 0:
        return f"{prefix}: {title} expired {-days} days ago"
    return f"{prefix}: {title} expires in {days} days"


def evaluate_reminder(
    record_id: str,
    owner_id: str,
    title: str,
    renewal: RenewalInfo,
    today: date,
    now: datetime,
) -> Optional[RenewalReminder]:
    """
    Decide whether one record is owed a reminder today.

    Pure over (today, now, stored renewal fields), so repeated sweeps on
    the same day produce the same reminders.
    """
    if not renewal.is_active or renewal.end_date is None or is_snoozed(renewal, now):
        return None

    days = days_until_expiry(renewal.end_date, today)
    if not should_send_reminder(renewal, days):
        return None

    kind = reminder_type(days)
    return RenewalReminder(
        record_id=record_id,
        owner_id=owner_id,
        title=title,
        days_until_expiry=days,
        urgency_level=classify_urgency(days, renewal.urgency_level),
        reminder_type=kind,
        subject=reminder_subject(title, kind, days),
        warnings=compliance_warnings(renewal, days),
        actions=action_items(renewal, days),
    )


def group_by_month(items: Iterable[Tuple[date, UrgencyLevel]]) -> Dict[str, Dict[str, int]]:
    """
    Bucket (end_date, urgency) pairs by calendar month.

    Returns:
        {"YYYY-MM": {"total": n, "critical": n, "important": n, "strategic": n}}
        in chronological order
    """
    buckets: Dict[str, Dict[str, int]] = {}
    for end_date, urgency in sorted(items, key=lambda item: item[0]):
        key = month_key(end_date)
        if key not in buckets:
            buckets[key] = {"total": 0, **{level.value: 0 for level in UrgencyLevel}}
        buckets[key]["total"] += 1
        buckets[key][UrgencyLevel(urgency).value] += 1
    return buckets
