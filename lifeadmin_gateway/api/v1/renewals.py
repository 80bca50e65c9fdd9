"""/v1/renewals - reminder sweep, upcoming/overdue views and schedule changes"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from lifeadmin_gateway.api.dependencies import get_notifier, get_principal
from lifeadmin_gateway.api.v1.schemas import (
    ReminderSchema,
    RenewalItem,
    RenewalListResponse,
    RenewalRecordResponse,
    ScheduleRequest,
    SnoozeRequest,
    SweepResponse,
    TimelineResponse,
)
from lifeadmin_gateway.domain.models import Principal
from lifeadmin_gateway.infrastructure.clients.notifier import ReminderNotifier
from lifeadmin_gateway.infrastructure.database.models import DomainRecord
from lifeadmin_gateway.infrastructure.database.session import get_db
from lifeadmin_gateway.services.renewals import RenewalService

router = APIRouter()


def _record_response(record: DomainRecord) -> RenewalRecordResponse:
    return RenewalRecordResponse(
        record_id=str(record.id),
        title=record.title,
        end_date=record.renewal_end_date,
        is_active=record.renewal_is_active,
        urgency_level=record.urgency_level,
        reminder_days=list(record.reminder_days or []),
        next_reminder_due=record.next_reminder_due,
        last_processed_date=record.last_processed_date,
    )


@router.post("/renewals/sweep", response_model=SweepResponse)
def run_sweep(
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    notifier: ReminderNotifier = Depends(get_notifier),
):
    """
    Evaluate all active renewals (admin only).

    Reminders are returned in the response; delivery to the webhook, when
    one is configured, happens after the response is sent.
    """
    result = RenewalService(db).sweep(principal)

    if notifier.enabled and result.reminders:
        background_tasks.add_task(notifier.send_all, result.reminders)

    return SweepResponse(
        processed_count=result.processed_count,
        reminders_sent=result.reminders_sent,
        by_urgency=result.by_urgency,
        errors=result.errors,
        reminders=[
            ReminderSchema(
                record_id=r.record_id,
                owner_id=r.owner_id,
                title=r.title,
                subject=r.subject,
                reminder_type=r.reminder_type,
                urgency_level=r.urgency_level.value,
                days_until_expiry=r.days_until_expiry,
                warnings=r.warnings,
                actions=r.actions,
            )
            for r in result.reminders
        ],
    )


@router.get("/renewals/upcoming", response_model=RenewalListResponse)
def get_upcoming(
    days_ahead: int = Query(30, ge=0, le=365),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    views = RenewalService(db).get_upcoming(principal, days_ahead=days_ahead)
    return RenewalListResponse(renewals=[RenewalItem(**v) for v in views])


@router.get("/renewals/overdue", response_model=RenewalListResponse)
def get_overdue(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    views = RenewalService(db).get_overdue(principal)
    return RenewalListResponse(renewals=[RenewalItem(**v) for v in views])


@router.get("/renewals/timeline", response_model=TimelineResponse)
def get_timeline(
    days_ahead: int = Query(90, ge=0, le=730),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return TimelineResponse(**RenewalService(db).get_timeline(principal, days_ahead=days_ahead))


@router.get("/renewals/stats")
def get_stats(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return RenewalService(db).get_stats(principal)


@router.post("/renewals/{record_id}/snooze", response_model=RenewalRecordResponse)
def snooze_renewal(
    record_id: str,
    request_body: Optional[SnoozeRequest] = None,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    days = request_body.days if request_body else None
    return _record_response(RenewalService(db).snooze(record_id, principal, days=days))


@router.put("/renewals/{record_id}/schedule", response_model=RenewalRecordResponse)
def update_schedule(
    record_id: str,
    request_body: ScheduleRequest,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    record = RenewalService(db).update_schedule(
        record_id,
        principal,
        reminder_days=request_body.reminder_days,
        urgency_level=request_body.urgency_level,
        end_date=request_body.end_date,
        is_active=request_body.is_active,
    )
    return _record_response(record)
