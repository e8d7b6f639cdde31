from fastapi import APIRouter, HTTPException
from sqlmodel import Session, select

from services.email_service import EmailNotifier

router = APIRouter(tags=["Health"])

def get_database_engine():
    """Get the database engine from the main app context"""
    from fastapi_app import database_engine
    return database_engine

@router.get("/health",
         summary="Health check",
         description="Checks the database connection and reports whether reminder emails can be sent.")
def health_check():
    try:
        with Session(get_database_engine()) as session:
            session.exec(select(1))
    except Exception:
        raise HTTPException(status_code=503, detail="Database connection failed")
    return {"status": "healthy", "email_configured": EmailNotifier().is_configured()}
