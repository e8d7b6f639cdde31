from fastapi import APIRouter, Depends

from config import verify_cron_secret, logger
from services.email_service import EmailNotifier, get_notifier
from services.reminder_service import run_reminders
from time_utils import utc_now

router = APIRouter(prefix="/cron", tags=["Cron"])

def get_database_engine():
    """Get the database engine from the main app context"""
    from fastapi_app import database_engine
    return database_engine


@router.get("/recommendation-reminders",
         summary="Send recommendation reminders",
         description="Scheduled job: emails recipients whose reminder is due and marks passed deadlines overdue. Requires the cron bearer secret.")
def recommendation_reminders(_: str = Depends(verify_cron_secret),
                             notifier: EmailNotifier = Depends(get_notifier)):
    now = utc_now()

    if not notifier.is_configured():
        logger.info("Skipping recommendation reminders - email is not configured")
        return {
            "success": True,
            "message": "Skipped - email is not configured",
            "timestamp": now.isoformat(),
            "summary": None
        }

    result = run_reminders(get_database_engine(), notifier, now)
    logger.info(f"Cron job completed: {result.sent} reminders sent, {result.errors} errors")
    return {
        "success": True,
        "message": "Recommendation reminders processed",
        "timestamp": now.isoformat(),
        "summary": result
    }
