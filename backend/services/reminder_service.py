from datetime import datetime

from sqlmodel import Session, select, or_, and_

from config import logger
from core.dispatch import ReminderTarget, ReminderRunResult, run_reminder_batch
from core.reminders import OPEN_STATUSES, sweep_overdue
from models import RecommendationRequest, Recipient, User
from services.email_service import portal_url
from time_utils import utc_now


def find_reminder_candidates(session: Session, now: datetime):
    """Open requests before their deadline whose reminder time has come, or that were never reminded."""
    return session.exec(
        select(RecommendationRequest)
        .where(RecommendationRequest.status.in_(list(OPEN_STATUSES)))  # type:ignore
        .where(RecommendationRequest.deadline > now)
        .where(or_(
            RecommendationRequest.next_reminder_date <= now,  # type:ignore
            and_(
                RecommendationRequest.next_reminder_date.is_(None),  # type:ignore
                RecommendationRequest.last_reminder_sent.is_(None),  # type:ignore
            ),
        ))
        .order_by(RecommendationRequest.deadline)
    ).all()


def build_target(session: Session, request: RecommendationRequest) -> ReminderTarget:
    recipient = session.get(Recipient, request.recipient_id)
    student = session.get(User, request.student_id)
    return ReminderTarget(
        request=request,
        recipient_email=recipient.primary_email if recipient else None,
        recipient_name=recipient.name if recipient else "",
        student_name=(student.name or student.email) if student else "Student",
        portal_url=portal_url(request.secure_token),
    )


def run_reminders(engine, notifier, now: datetime = None) -> ReminderRunResult:
    """
    One scheduler tick: remind every due request, then mark passed deadlines overdue.
    Each reminded request is committed on its own so a crash mid-batch keeps earlier progress.
    """
    now = now or utc_now()

    with Session(engine) as session:
        candidates = find_reminder_candidates(session, now)
        logger.info(f"Found {len(candidates)} recommendation requests needing reminders")
        targets = [build_target(session, request) for request in candidates]

        def persist(request: RecommendationRequest):
            request.updated_at = now
            session.add(request)
            try:
                session.commit()
            except Exception:
                session.rollback()
                raise

        result = run_reminder_batch(targets, notifier, now, on_update=persist)

        open_requests = session.exec(
            select(RecommendationRequest)
            .where(RecommendationRequest.status.in_(list(OPEN_STATUSES)))  # type:ignore
            .where(RecommendationRequest.deadline < now)
        ).all()
        flipped = sweep_overdue(open_requests, now)
        for request in flipped:
            request.updated_at = now
            session.add(request)
        session.commit()
        result.overdue = len(flipped)

    if result.overdue:
        logger.info(f"Marked {result.overdue} recommendation requests as overdue")
    return result
