from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional

from time_utils import days_before, days_between

DEFAULT_REMINDER_INTERVALS = [7, 3, 1]


class RequestStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    RECEIVED = "received"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class UrgencyLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


OPEN_STATUSES = {RequestStatus.PENDING, RequestStatus.SENT}

ALLOWED_TRANSITIONS = {
    RequestStatus.PENDING: {
        RequestStatus.SENT,
        RequestStatus.OVERDUE,
        RequestStatus.CANCELLED,
        RequestStatus.RECEIVED,
    },
    RequestStatus.SENT: {
        RequestStatus.SENT,
        RequestStatus.OVERDUE,
        RequestStatus.CANCELLED,
        RequestStatus.RECEIVED,
    },
    RequestStatus.RECEIVED: set(),
    RequestStatus.CANCELLED: set(),
    RequestStatus.OVERDUE: set(),
}


class InvalidStatusTransition(ValueError):
    def __init__(self, current: RequestStatus, requested: RequestStatus):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move a {current.value} request to {requested.value}")


@dataclass
class ReminderPlan:
    reminder_index: int
    interval_days: int
    days_until_deadline: int
    urgency_level: UrgencyLevel

    @property
    def reminder_number(self) -> int:
        return self.reminder_index + 1


def can_transition(current, new_status) -> bool:
    return RequestStatus(new_status) in ALLOWED_TRANSITIONS[RequestStatus(current)]


def transition(request, new_status) -> None:
    """The only place a request's status changes."""
    current = RequestStatus(request.status)
    new_status = RequestStatus(new_status)
    if not can_transition(current, new_status):
        raise InvalidStatusTransition(current, new_status)
    request.status = new_status


def is_open(request) -> bool:
    return RequestStatus(request.status) in OPEN_STATUSES


def days_until_deadline(deadline: datetime, now: datetime) -> int:
    return days_between(now, deadline)


def urgency_level(days: int) -> UrgencyLevel:
    if days <= 1:
        return UrgencyLevel.CRITICAL
    if days <= 3:
        return UrgencyLevel.HIGH
    if days <= 7:
        return UrgencyLevel.MEDIUM
    return UrgencyLevel.LOW


def urgency_message(days: int, level: UrgencyLevel) -> str:
    if level == UrgencyLevel.CRITICAL:
        return "URGENT: This recommendation is due TOMORROW! Please submit as soon as possible to avoid missing the deadline."
    if level == UrgencyLevel.HIGH:
        return f"IMPORTANT: This recommendation is due in {days} days. Please prioritize this request to ensure timely submission."
    if level == UrgencyLevel.MEDIUM:
        return f"REMINDER: This recommendation is due in {days} days. Please plan to submit soon."
    return f"Friendly reminder: This recommendation is due in {days} days."


def schedule_first_reminder(request) -> None:
    """Point next_reminder_date at the earliest configured reminder."""
    if request.reminder_intervals:
        request.next_reminder_date = days_before(request.deadline, request.reminder_intervals[0])
    else:
        request.next_reminder_date = None


def is_due(request, now: datetime) -> bool:
    """
    Whether a reminder should go out for this request at ``now``.

    A missing next_reminder_date means "never scheduled" only while no reminder
    has been sent; after that it means every interval has been used.
    """
    if not is_open(request) or request.deadline <= now or not request.reminder_intervals:
        return False
    if request.next_reminder_date is None:
        return request.last_reminder_sent is None
    return request.next_reminder_date <= now


def plan_reminder(request, now: datetime) -> Optional[ReminderPlan]:
    """
    Pick the tightest interval that still covers the time left, e.g. with
    intervals [7, 3, 1] and two days left this is the 3-day reminder.
    """
    days = days_until_deadline(request.deadline, now)
    candidates = [(interval, index) for index, interval in enumerate(request.reminder_intervals or []) if days <= interval]
    if not candidates:
        return None
    interval, index = min(candidates)
    return ReminderPlan(
        reminder_index=index,
        interval_days=interval,
        days_until_deadline=days,
        urgency_level=urgency_level(days),
    )


def advance(request, now: datetime) -> Optional[ReminderPlan]:
    """
    Record that the reminder planned for ``now`` went out and schedule the next one.

    With no applicable interval the deadline is still further away than every
    interval: nothing is recorded and the request waits for its first reminder.
    """
    plan = plan_reminder(request, now)
    if plan is None:
        schedule_first_reminder(request)
        return None

    request.last_reminder_sent = now
    next_index = plan.reminder_index + 1
    if next_index < len(request.reminder_intervals):
        request.next_reminder_date = days_before(request.deadline, request.reminder_intervals[next_index])
    else:
        request.next_reminder_date = None

    transition(request, RequestStatus.SENT)
    return plan


def sweep_overdue(requests: Iterable, now: datetime) -> List:
    flipped = []
    for request in requests:
        if is_open(request) and request.deadline < now:
            transition(request, RequestStatus.OVERDUE)
            flipped.append(request)
    return flipped
