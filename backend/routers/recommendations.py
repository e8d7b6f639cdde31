from typing import List
from fastapi import APIRouter, HTTPException, Body, Path, Depends
from sqlmodel import Session, select, desc

from models import (User, Recipient, RecipientCreate, RecipientUpdate, RecommendationRequest, RecommendationRequestCreate,
                    RecommendationRequestRead, RecommendationLetter, LetterSubmit, LetterRead, RecipientPortalRead)
from core.reminders import RequestStatus, InvalidStatusTransition, transition, schedule_first_reminder
from config import get_current_user_dep, logger
from services.email_service import EmailNotifier, NotificationError, get_notifier
from time_utils import utc_now, to_naive_utc

router = APIRouter(prefix="/recommendations", tags=["Recommendations"])

def get_database_engine():
    """Get the database engine from the main app context"""
    from fastapi_app import database_engine
    return database_engine


def get_own_request_or_404(session: Session, request_id: str, user: User) -> RecommendationRequest:
    request = session.get(RecommendationRequest, request_id)
    if not request:
        raise HTTPException(status_code=404, detail="Recommendation request not found")
    if request.student_id != user.id:
        raise HTTPException(status_code=403, detail="Not authorized to access this recommendation request")
    return request


def change_status(session: Session, request: RecommendationRequest, new_status: RequestStatus) -> RecommendationRequest:
    now = utc_now()
    try:
        transition(request, new_status)
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=str(e))

    if new_status == RequestStatus.RECEIVED:
        request.received_at = now
    # Closed requests get no more reminders
    request.next_reminder_date = None
    request.updated_at = now
    session.add(request)
    session.commit()
    session.refresh(request)
    return request


def get_own_recipient_or_404(session: Session, recipient_id: str, user: User) -> Recipient:
    recipient = session.get(Recipient, recipient_id)
    if not recipient or recipient.created_by != user.id:
        raise HTTPException(status_code=404, detail="Recipient not found")
    return recipient


def get_request_by_token_or_404(session: Session, token: str) -> RecommendationRequest:
    """Resolve a recipient portal link. Expired links behave like unknown ones."""
    request = session.exec(
        select(RecommendationRequest).where(RecommendationRequest.secure_token == token)
    ).first()
    if not request or (request.token_expires_at is not None and request.token_expires_at <= utc_now()):
        raise HTTPException(status_code=404, detail="Invalid or expired token")
    if request.status == RequestStatus.CANCELLED:
        raise HTTPException(status_code=400, detail="Request has been cancelled")
    return request


def get_latest_letter(session: Session, request_id: str):
    return session.exec(
        select(RecommendationLetter)
        .where(RecommendationLetter.request_id == request_id)
        .order_by(desc(RecommendationLetter.version))
    ).first()


####################
#    Recipients    #
####################

@router.get("/recipients",
         summary="List recipients",
         description="Retrieves the recommenders saved by the authenticated user.",
         response_model=List[Recipient])
def list_recipients(current_user: User = Depends(get_current_user_dep)):
    with Session(get_database_engine()) as session:
        return session.exec(
            select(Recipient).where(Recipient.created_by == current_user.id).order_by(Recipient.name)
        ).all()


@router.post("/recipients",
          status_code=201,
          summary="Add a recipient",
          description="Saves a recommender the authenticated user can request letters from.",
          response_model=Recipient)
def create_recipient(recipient_data: RecipientCreate = Body(..., description="Recipient to add"),
                     current_user: User = Depends(get_current_user_dep)):
    with Session(get_database_engine()) as session:
        recipient = Recipient(**recipient_data.model_dump(), created_by=current_user.id)
        session.add(recipient)
        session.commit()
        session.refresh(recipient)
        return recipient


@router.get("/recipients/{recipient_id}",
         summary="Get a recipient",
         description="Retrieves one of the authenticated user's recommenders.",
         response_model=Recipient)
def get_recipient(recipient_id: str = Path(..., description="Unique identifier of the recipient"),
                  current_user: User = Depends(get_current_user_dep)):
    with Session(get_database_engine()) as session:
        return get_own_recipient_or_404(session, recipient_id, current_user)


@router.put("/recipients/{recipient_id}",
         summary="Update a recipient",
         description="Updates the provided fields of one of the authenticated user's recommenders.",
         response_model=Recipient)
def update_recipient(recipient_id: str = Path(..., description="Unique identifier of the recipient"),
                     recipient_update: RecipientUpdate = Body(..., description="Fields to update"),
                     current_user: User = Depends(get_current_user_dep)):
    with Session(get_database_engine()) as session:
        recipient = get_own_recipient_or_404(session, recipient_id, current_user)

        if recipient_update.name is not None:
            recipient.name = recipient_update.name
        if recipient_update.primary_email is not None:
            recipient.primary_email = recipient_update.primary_email
        if recipient_update.title is not None:
            recipient.title = recipient_update.title
        if recipient_update.institution is not None:
            recipient.institution = recipient_update.institution

        session.add(recipient)
        session.commit()
        session.refresh(recipient)
        return recipient


@router.delete("/recipients/{recipient_id}",
            summary="Delete a recipient",
            description="Deletes a recommender that no recommendation request refers to.")
def delete_recipient(recipient_id: str = Path(..., description="Unique identifier of the recipient"),
                     current_user: User = Depends(get_current_user_dep)):
    with Session(get_database_engine()) as session:
        recipient = get_own_recipient_or_404(session, recipient_id, current_user)

        in_use = session.exec(
            select(RecommendationRequest).where(RecommendationRequest.recipient_id == recipient.id)
        ).first()
        if in_use:
            raise HTTPException(status_code=409, detail="Recipient has recommendation requests")

        session.delete(recipient)
        session.commit()
        return {"message": "Recipient deleted successfully"}


####################
# Recipient portal #
####################

@router.get("/recipient/{token}",
         summary="Open a recommendation request",
         description="Recipient-facing view of a request, reached through the link in the request and reminder emails. No login required.",
         response_model=RecipientPortalRead)
def get_request_for_recipient(token: str = Path(..., description="Secure token from the email link")):
    with Session(get_database_engine()) as session:
        request = get_request_by_token_or_404(session, token)
        student = session.get(User, request.student_id)
        recipient = session.get(Recipient, request.recipient_id)
        letter = get_latest_letter(session, request.id)

        return RecipientPortalRead(
            request_id=request.id,
            title=request.title,
            description=request.description,
            deadline=request.deadline,
            status=request.status,
            student_name=(student.name or student.email) if student else "Student",
            recipient_name=recipient.name if recipient else "",
            draft_content=request.draft_content if request.include_draft else None,
            existing_letter=LetterRead.model_validate(letter) if letter else None
        )


@router.post("/recipient/{token}",
          status_code=201,
          summary="Submit a recommendation letter",
          description="Stores the recipient's letter and marks the request as received, which stops its reminders.",
          response_model=LetterRead)
def submit_letter(token: str = Path(..., description="Secure token from the email link"),
                  letter_data: LetterSubmit = Body(..., description="Letter text or uploaded file details")):
    if not letter_data.content and not letter_data.file_url:
        raise HTTPException(status_code=400, detail="Either letter content or file upload is required")

    with Session(get_database_engine()) as session:
        request = get_request_by_token_or_404(session, token)

        letter = RecommendationLetter(
            request_id=request.id,
            recipient_id=request.recipient_id,
            **letter_data.model_dump()
        )
        session.add(letter)
        change_status(session, request, RequestStatus.RECEIVED)
        session.refresh(letter)

        logger.info(f"Recommendation letter received for request {request.id}")
        return letter


####################
#     Requests     #
####################

@router.get("/",
         summary="List recommendation requests",
         description="Retrieves the authenticated user's recommendation requests, nearest deadline first.",
         response_model=List[RecommendationRequestRead])
def list_requests(current_user: User = Depends(get_current_user_dep)):
    with Session(get_database_engine()) as session:
        return session.exec(
            select(RecommendationRequest)
            .where(RecommendationRequest.student_id == current_user.id)
            .order_by(RecommendationRequest.deadline, desc(RecommendationRequest.created_at))
        ).all()


@router.post("/",
          status_code=201,
          summary="Request a recommendation",
          description="Creates a recommendation request, schedules its reminders and emails the recipient when email is configured.",
          response_model=RecommendationRequestRead)
def create_request(request_data: RecommendationRequestCreate = Body(..., description="Recommendation request to create"),
                   current_user: User = Depends(get_current_user_dep),
                   notifier: EmailNotifier = Depends(get_notifier)):
    now = utc_now()
    deadline = to_naive_utc(request_data.deadline)
    if deadline <= now:
        raise HTTPException(status_code=400, detail="Deadline must be in the future")

    intervals = request_data.reminder_intervals
    if intervals is not None:
        if any(days < 1 for days in intervals):
            raise HTTPException(status_code=400, detail="Reminder intervals must be positive numbers of days")
        # Reminders fire from the widest interval down
        intervals = sorted(set(intervals), reverse=True)

    with Session(get_database_engine()) as session:
        recipient = session.get(Recipient, request_data.recipient_id)
        if not recipient or recipient.created_by != current_user.id:
            raise HTTPException(status_code=404, detail="Recipient not found")

        request = RecommendationRequest(
            student_id=current_user.id,
            recipient_id=recipient.id,
            title=request_data.title,
            description=request_data.description,
            deadline=deadline,
            priority=request_data.priority,
            include_draft=request_data.include_draft,
            draft_content=request_data.draft_content,
            token_expires_at=deadline
        )
        if intervals is not None:
            request.reminder_intervals = intervals
        schedule_first_reminder(request)

        if notifier.is_configured() and recipient.primary_email:
            try:
                notifier.send_request(
                    recipient.primary_email,
                    recipient.name,
                    current_user.name or current_user.email,
                    request.title,
                    request.deadline,
                    request.secure_token,
                    request.draft_content if request.include_draft else None
                )
                transition(request, RequestStatus.SENT)
                request.sent_at = now
            except NotificationError as e:
                logger.error(f"Failed to send recommendation request email for {request.id}: {e}")
        else:
            logger.info(f"Email not configured, recommendation request {request.id} left pending")

        session.add(request)
        session.commit()
        session.refresh(request)
        return request


@router.get("/{request_id}",
         summary="Get a recommendation request",
         description="Retrieves one of the authenticated user's recommendation requests.",
         response_model=RecommendationRequestRead)
def get_request(request_id: str = Path(..., description="Unique identifier of the request"),
                current_user: User = Depends(get_current_user_dep)):
    with Session(get_database_engine()) as session:
        return get_own_request_or_404(session, request_id, current_user)


@router.post("/{request_id}/cancel",
          summary="Cancel a recommendation request",
          description="Cancels an open request; no further reminders are sent.",
          response_model=RecommendationRequestRead)
def cancel_request(request_id: str = Path(..., description="Unique identifier of the request"),
                   current_user: User = Depends(get_current_user_dep)):
    with Session(get_database_engine()) as session:
        request = get_own_request_or_404(session, request_id, current_user)
        return change_status(session, request, RequestStatus.CANCELLED)


@router.post("/{request_id}/received",
          summary="Mark a letter as received",
          description="Marks an open request as fulfilled; no further reminders are sent.",
          response_model=RecommendationRequestRead)
def mark_received(request_id: str = Path(..., description="Unique identifier of the request"),
                  current_user: User = Depends(get_current_user_dep)):
    with Session(get_database_engine()) as session:
        request = get_own_request_or_404(session, request_id, current_user)
        return change_status(session, request, RequestStatus.RECEIVED)
