# Standard library imports
from contextlib import asynccontextmanager
import asyncio

# Third-party imports
from fastapi import FastAPI
from sqlmodel import create_engine
import uvicorn

# Local application imports
from config import settings, logger
from models import create_db_and_tables
from routers import auth, squads, recommendations, cron, health
from services.email_service import EmailNotifier
from services.reminder_service import run_reminders

database_engine = None


async def send_reminders_periodically():
    """
    Background task that runs the recommendation reminder batch on a fixed interval,
    for deployments that have no external scheduler calling /cron/recommendation-reminders.
    The batch does blocking database and SMTP work, so it runs in a worker thread.
    """
    logger.info("Starting recommendation reminder background task")
    while True:
        try:
            notifier = EmailNotifier()
            if notifier.is_configured():
                result = await asyncio.to_thread(run_reminders, database_engine, notifier)
                logger.info(f"Reminder loop: {result.sent} sent, {result.errors} errors, {result.overdue} overdue")
            else:
                logger.warning("Reminder loop skipped - email is not configured")
            await asyncio.sleep(settings.REMINDER_LOOP_INTERVAL_SECONDS)
        except asyncio.CancelledError:
            logger.info("Reminder task cancelled")
            break
        except Exception as e:
            logger.error(f"Unexpected error in reminder task: {e}", exc_info=True)
            await asyncio.sleep(settings.REMINDER_LOOP_INTERVAL_SECONDS)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """
    Manage application lifespan events.
    Connects the database and, when enabled, starts the reminder loop; cleanly shuts them down on exit.
    """
    # Startup
    global database_engine
    if database_engine is None:
        connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
        database_engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)
    create_db_and_tables(database_engine)
    logger.info("Application started with connection to the database")

    reminder_task = None
    if settings.REMINDER_LOOP_ENABLED:
        reminder_task = asyncio.create_task(send_reminders_periodically())
        logger.info("Application started with recommendation reminder task")

    yield

    # Shutdown
    if reminder_task:
        logger.info("Shutting down, cancelling reminder task")
        reminder_task.cancel()
        try:
            await reminder_task
        except asyncio.CancelledError:
            pass

    logger.info("Shutting down, closing connection to database")
    database_engine.dispose()

app = FastAPI(lifespan=lifespan)
app.title = "Squads & Recommendations - Backend"
app.version = "0.1.0"

# Include routers
app.include_router(auth.router)
app.include_router(squads.router)
app.include_router(recommendations.router)
app.include_router(cron.router)
app.include_router(health.router)


@app.get("/",
         tags=["Root"],
         summary="Welcome Endpoint",
         description="Returns a welcome message including the application title and version.")
def root():
    return {"message": f"Welcome to {app.title} v{app.version}"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8080)
