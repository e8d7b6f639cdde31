import pytest
from datetime import datetime
from unittest.mock import patch, MagicMock
from fastapi.testclient import TestClient
from sqlmodel import Session, create_engine, SQLModel

from fastapi_app import app
from models import User
from config import get_password_hash, create_access_token
from services.email_service import get_notifier

NOW = datetime(2026, 3, 10, 12, 0, 0)


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("db") / "test.db"
    return create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})


@pytest.fixture(scope="function")
def session(test_engine):
    SQLModel.metadata.create_all(test_engine)
    with Session(test_engine) as session:
        yield session
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def notifier():
    mock_notifier = MagicMock()
    mock_notifier.is_configured.return_value = True
    return mock_notifier


@pytest.fixture(scope="function")
def client(session, test_engine, notifier):
    app.dependency_overrides[get_notifier] = lambda: notifier
    # Mock the database_engine globally
    with patch('fastapi_app.database_engine', test_engine):
        with TestClient(app) as c:
            yield c
    app.dependency_overrides.clear()


def make_user(session, user_id, name, email):
    user = User(
        id=user_id,
        name=name,
        email=email,
        password_hash=get_password_hash("testpassword")
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def test_user(session):
    return make_user(session, "user_test_123", "Test User", "test@example.com")


@pytest.fixture
def other_user(session):
    return make_user(session, "user_test_456", "Other User", "other@example.com")


@pytest.fixture
def auth_headers(test_user):
    token = create_access_token(data={"sub": test_user.email})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_headers(other_user):
    token = create_access_token(data={"sub": other_user.email})
    return {"Authorization": f"Bearer {token}"}
