import os
import logging
from dotenv import load_dotenv
from datetime import timedelta
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlmodel import Session, select

from time_utils import utc_now

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("squads")

# Load environment variables from .env file
if os.path.exists(".env"):
    load_dotenv()


# Settings
class Settings:
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///squads.db")
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "your-secret-key-change-this-in-production")
    CRON_SECRET: str = os.getenv("CRON_SECRET", "")

    # Email
    SMTP_SERVER: str = os.getenv("SMTP_SERVER", "smtp.gmail.com")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "465"))
    SENDER_EMAIL: str = os.getenv("SENDER_EMAIL", "")
    SENDER_PASSWORD: str = os.getenv("SENDER_PASSWORD", "")
    APP_URL: str = os.getenv("APP_URL", "http://localhost:3000")

    # In-process reminder loop, for deployments without an external cron
    REMINDER_LOOP_ENABLED: bool = os.getenv("REMINDER_LOOP_ENABLED", "false").lower() == "true"
    REMINDER_LOOP_INTERVAL_SECONDS: int = int(os.getenv("REMINDER_LOOP_INTERVAL_SECONDS", "3600"))


# Global settings
settings = Settings()

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# JWT settings
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 30

# HTTP Bearer token dependency (returns 401 instead of 403)
security = HTTPBearer(auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plaintext password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Generate password hash."""
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """Create JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = utc_now() + expires_delta
    else:
        expire = utc_now() + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=ALGORITHM)


def authenticate_user(email: str, password: str, session: Session):
    """Authenticate user with email and password."""
    from models import User

    user = session.exec(select(User).where(User.email == email)).first()
    if not user:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def verify_token(token: str, session: Session):
    """Verify JWT token and return user."""
    from models import User

    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[ALGORITHM])
        email: str = payload.get("sub")
        if email is None:
            return None
    except JWTError:
        return None

    return session.exec(select(User).where(User.email == email)).first()


def get_current_user_dep(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
    """Get current user dependency with database session access."""
    from fastapi_app import database_engine

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    # Check if credentials are provided
    if credentials is None:
        raise credentials_exception

    with Session(database_engine) as session:
        user = verify_token(credentials.credentials, session)
        if user is None:
            raise credentials_exception
        return user


def verify_cron_secret(credentials: Optional[HTTPAuthorizationCredentials] = Security(security)):
    """
    Validate the bearer secret sent by the scheduler.

    Raises:
        HTTPException: 401 if the secret is missing, not configured or wrong
    """
    if credentials is None or not settings.CRON_SECRET or credentials.credentials != settings.CRON_SECRET:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return credentials.credentials
