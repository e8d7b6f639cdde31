from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional

from pydantic import BaseModel

from config import logger
from core.reminders import UrgencyLevel, advance, is_due, plan_reminder, urgency_message


class ReminderNotification(BaseModel):
    recipient_email: str
    recipient_name: str
    student_name: str
    request_title: str
    deadline: datetime
    days_until_deadline: int
    urgency_level: UrgencyLevel
    urgency_message: str
    reminder_number: int
    portal_url: str


class ReminderDetail(BaseModel):
    request_id: str
    outcome: str  # sent, skipped or error
    recipient_email: Optional[str] = None
    days_until_deadline: Optional[int] = None
    reminder_number: Optional[int] = None
    urgency_level: Optional[UrgencyLevel] = None
    error: Optional[str] = None


class ReminderRunResult(BaseModel):
    checked: int = 0
    sent: int = 0
    skipped: int = 0
    errors: int = 0
    overdue: int = 0
    details: List[ReminderDetail] = []


@dataclass
class ReminderTarget:
    """A request plus the contact details needed to remind its recipient."""
    request: Any
    recipient_email: Optional[str]
    recipient_name: str
    student_name: str
    portal_url: str


def build_notification(target: ReminderTarget, plan) -> ReminderNotification:
    return ReminderNotification(
        recipient_email=target.recipient_email,
        recipient_name=target.recipient_name,
        student_name=target.student_name,
        request_title=target.request.title,
        deadline=target.request.deadline,
        days_until_deadline=plan.days_until_deadline,
        urgency_level=plan.urgency_level,
        urgency_message=urgency_message(plan.days_until_deadline, plan.urgency_level),
        reminder_number=plan.reminder_number,
        portal_url=target.portal_url,
    )


def run_reminder_batch(targets: Iterable[ReminderTarget],
                       notifier,
                       now: datetime,
                       on_update: Optional[Callable[[Any], None]] = None) -> ReminderRunResult:
    """
    Send at most one reminder per due request, sequentially.

    A failure on one request is logged and counted, leaves that request's
    schedule untouched so the next run picks it up again, and does not stop
    the rest of the batch.
    """
    result = ReminderRunResult()

    for target in targets:
        request = target.request
        result.checked += 1

        if not is_due(request, now):
            result.skipped += 1
            continue

        if not target.recipient_email:
            logger.warning(f"Recommendation request {request.id} has no recipient email")
            result.errors += 1
            result.details.append(ReminderDetail(
                request_id=request.id,
                outcome="error",
                error="No recipient or recipient email found"
            ))
            continue

        try:
            plan = plan_reminder(request, now)
            if plan is not None:
                notifier.send_reminder(build_notification(target, plan))
            # Without a plan this only moves next_reminder_date to the first interval
            advance(request, now)
            if on_update:
                on_update(request)
        except Exception as e:
            logger.error(f"Error processing reminder for request {request.id}: {e}", exc_info=True)
            result.errors += 1
            result.details.append(ReminderDetail(request_id=request.id, outcome="error", error=str(e)))
            continue

        if plan is None:
            result.skipped += 1
            result.details.append(ReminderDetail(request_id=request.id, outcome="skipped"))
            continue

        result.sent += 1
        result.details.append(ReminderDetail(
            request_id=request.id,
            outcome="sent",
            recipient_email=target.recipient_email,
            days_until_deadline=plan.days_until_deadline,
            reminder_number=plan.reminder_number,
            urgency_level=plan.urgency_level,
        ))

    logger.info(f"Reminder batch completed: {result.checked} checked, {result.sent} sent, {result.errors} errors")
    return result
