"""Renewal reminder sweep and per-owner renewal views"""

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from lifeadmin_gateway.config import settings
from lifeadmin_gateway.domain.exceptions import ForbiddenError, NotFoundError, ValidationError
from lifeadmin_gateway.domain.models import Principal, RenewalReminder, UrgencyLevel
from lifeadmin_gateway.domain.renewals import (
    classify_urgency,
    days_until_expiry,
    evaluate_reminder,
    group_by_month,
    is_snoozed,
    overdue_severity,
)
from lifeadmin_gateway.infrastructure.database.models import DomainRecord
from lifeadmin_gateway.infrastructure.database.repositories import DomainRecordRepository, to_renewal_info
from lifeadmin_gateway.infrastructure.observability.logging import log_renewal_sweep
from lifeadmin_gateway.infrastructure.observability.metrics import reminder_counter
from lifeadmin_gateway.utils.date_utils import utcnow
from lifeadmin_gateway.utils.ids import parse_uuid

logger = logging.getLogger(__name__)

TIMELINE_LOOKBACK_DAYS = 30


@dataclass
class SweepResult:
    processed_count: int = 0
    reminders: List[RenewalReminder] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)
    by_urgency: Dict[str, int] = field(default_factory=lambda: {level.value: 0 for level in UrgencyLevel})

    @property
    def reminders_sent(self) -> int:
        return len(self.reminders)


def renewal_view(record: DomainRecord, today: date) -> Dict[str, Any]:
    renewal = to_renewal_info(record)
    days = days_until_expiry(renewal.end_date, today)
    return {
        "record_id": str(record.id),
        "title": record.title,
        "provider": record.provider,
        "domain": record.domain,
        "end_date": renewal.end_date,
        "days_until_expiry": days,
        "urgency_level": classify_urgency(days, renewal.urgency_level).value,
        "stored_urgency_level": renewal.urgency_level.value,
        "reminder_days": renewal.reminder_days,
        "next_reminder_due": renewal.next_reminder_due,
        "is_auto_renewal": renewal.is_auto_renewal,
    }


class RenewalService:
    """Reads domain records; only explicit user actions change snooze or schedule fields"""

    def __init__(self, db: Session):
        self.db = db
        self.records = DomainRecordRepository(db)

    def _owned_record(self, record_id: Any, principal: Principal) -> DomainRecord:
        record = self.records.find_by_id(parse_uuid(record_id, "Domain record"))
        if record is None:
            raise NotFoundError(f"Domain record {record_id} not found")
        if record.owner_id != principal.id:
            raise ForbiddenError("Domain record belongs to another user")
        return record

    def sweep(self, principal: Principal, today: Optional[date] = None, now: Optional[datetime] = None) -> SweepResult:
        """
        Evaluate every active renewal and collect the reminders due today.

        Classification depends only on `today` and stored fields, so a second
        sweep on the same day yields the same reminders. The only write is
        `last_processed_date`.
        """
        if not principal.is_admin:
            raise ForbiddenError("Renewal sweep requires the admin role")

        now = now or utcnow()
        today = today or now.date()
        start_time = time.time()
        result = SweepResult()

        for record in self.records.active_renewals():
            try:
                reminder = evaluate_reminder(
                    record_id=str(record.id),
                    owner_id=record.owner_id,
                    title=record.title,
                    renewal=to_renewal_info(record),
                    today=today,
                    now=now,
                )
            except ValueError as e:
                logger.error("Renewal evaluation failed", extra={"record_id": str(record.id), "error": str(e)})
                result.errors.append({"record_id": str(record.id), "error": str(e)})
                continue

            result.processed_count += 1
            record.last_processed_date = now
            if reminder is not None:
                result.reminders.append(reminder)
                result.by_urgency[reminder.urgency_level.value] += 1
                reminder_counter.labels(urgency=reminder.urgency_level.value).inc()

        self.db.commit()
        log_renewal_sweep(
            processed_count=result.processed_count,
            reminders_sent=result.reminders_sent,
            errors=len(result.errors),
            duration_ms=(time.time() - start_time) * 1000,
        )
        return result

    def get_upcoming(self, principal: Principal, days_ahead: int = 30, today: Optional[date] = None) -> List[Dict[str, Any]]:
        if days_ahead < 0:
            raise ValidationError("days_ahead must not be negative")
        today = today or utcnow().date()
        views = [renewal_view(r, today) for r in self.records.active_renewals(principal.id)]
        return [v for v in views if 0 <= v["days_until_expiry"] <= days_ahead]

    def get_overdue(self, principal: Principal, today: Optional[date] = None) -> List[Dict[str, Any]]:
        today = today or utcnow().date()
        overdue = []
        for record in self.records.active_renewals(principal.id):
            view = renewal_view(record, today)
            if view["days_until_expiry"] < 0:
                days_overdue = -view["days_until_expiry"]
                view["days_overdue"] = days_overdue
                view["severity"] = overdue_severity(days_overdue)
                overdue.append(view)
        return sorted(overdue, key=lambda v: v["days_overdue"], reverse=True)

    def get_timeline(self, principal: Principal, days_ahead: int = 90, today: Optional[date] = None) -> Dict[str, Any]:
        """Month buckets of end dates from a month ago to `days_ahead` out"""
        today = today or utcnow().date()
        window_start = today - timedelta(days=TIMELINE_LOOKBACK_DAYS)
        window_end = today + timedelta(days=days_ahead)

        items = []
        for record in self.records.active_renewals(principal.id):
            renewal = to_renewal_info(record)
            if window_start <= renewal.end_date <= window_end:
                days = days_until_expiry(renewal.end_date, today)
                items.append((renewal.end_date, classify_urgency(days, renewal.urgency_level)))

        return {
            "start_date": window_start,
            "end_date": window_end,
            "months": group_by_month(items),
        }

    def snooze(self, record_id: Any, principal: Principal, days: Optional[int] = None, now: Optional[datetime] = None) -> DomainRecord:
        """Push the next reminder out; `renewal_end_date` is never touched"""
        record = self._owned_record(record_id, principal)
        if not record.renewal_is_active:
            raise ValidationError("Renewal tracking is not active for this record")

        days = settings.default_snooze_days if days is None else days
        if days < 1:
            raise ValidationError("Snooze days must be at least 1")

        now = now or utcnow()
        self.records.update(record, next_reminder_due=now + timedelta(days=days), last_processed_date=now)
        self.db.commit()
        logger.info("Renewal snoozed", extra={"record_id": str(record.id), "owner_id": principal.id, "days": days})
        return record

    def update_schedule(
        self,
        record_id: Any,
        principal: Principal,
        reminder_days: Optional[Sequence[int]] = None,
        urgency_level: Optional[str] = None,
        end_date: Optional[date] = None,
        is_active: Optional[bool] = None,
    ) -> DomainRecord:
        record = self._owned_record(record_id, principal)
        changes: Dict[str, Any] = {}

        if reminder_days is not None:
            if not reminder_days or any(int(d) < 0 for d in reminder_days):
                raise ValidationError("reminder_days must be a non-empty list of non-negative integers")
            changes["reminder_days"] = sorted({int(d) for d in reminder_days}, reverse=True)
        if urgency_level is not None:
            try:
                changes["urgency_level"] = UrgencyLevel(urgency_level).value
            except ValueError:
                raise ValidationError(f"Unknown urgency level: {urgency_level}") from None
        if end_date is not None:
            changes["renewal_end_date"] = end_date
        if is_active is not None:
            changes["renewal_is_active"] = is_active

        if not changes:
            raise ValidationError("Nothing to update")
        if (changes.get("renewal_is_active", record.renewal_is_active)
                and changes.get("renewal_end_date", record.renewal_end_date) is None):
            raise ValidationError("An end date is required to track renewals")

        self.records.update(record, **changes)
        self.db.commit()
        return record

    def get_stats(self, principal: Principal, today: Optional[date] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        today = today or now.date()
        records = self.records.active_renewals(principal.id)

        by_urgency = {level.value: 0 for level in UrgencyLevel}
        overdue = due_30 = snoozed = 0
        for record in records:
            renewal = to_renewal_info(record)
            days = days_until_expiry(renewal.end_date, today)
            by_urgency[classify_urgency(days, renewal.urgency_level).value] += 1
            if days < 0:
                overdue += 1
            elif days <= 30:
                due_30 += 1
            if is_snoozed(renewal, now):
                snoozed += 1

        return {
            "total_tracked": len(records),
            "overdue": overdue,
            "due_within_30_days": due_30,
            "snoozed": snoozed,
            "by_urgency": by_urgency,
        }
