"""
Test fixtures for agencyops tests.

Provides database session fixtures, seeded users and mailbox links, and a fake
Microsoft Graph provider for the sync worker.
"""

import pytest
from datetime import timedelta
from typing import Any, Callable, Dict, Generator, List, Optional
from sqlmodel import Session, SQLModel, create_engine
from sqlalchemy.pool import StaticPool

import agencyops.models  # noqa: F401  (register tables on SQLModel.metadata)
from agencyops.core.circuit_breaker import CircuitBreakerRegistry, set_notification_callback
from agencyops.core.typing import utc_now
from agencyops.models.email_account import EmailAccount
from agencyops.models.user import User, UserRole
from agencyops.services.microsoft_graph import TokenSet
from agencyops.services.storage import Storage


# Use in-memory SQLite for unit tests (fast, isolated)
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Breakers are process-wide; start every test with none registered."""
    CircuitBreakerRegistry.clear()
    set_notification_callback(None)
    yield
    CircuitBreakerRegistry.clear()
    set_notification_callback(None)


@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def test_session(test_engine) -> Generator[Session, None, None]:
    """Provide a test database session."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def storage(test_engine) -> Storage:
    return Storage(test_engine)


@pytest.fixture
def make_user(test_session: Session) -> Callable[..., User]:
    """Factory for users; role defaults to staff."""
    counter = {"n": 0}

    def _make(role: str = UserRole.STAFF.value, is_active: bool = True, **kwargs) -> User:
        counter["n"] += 1
        user = User(
            email=kwargs.pop("email", f"user{counter['n']}@agency.test"),
            name=kwargs.pop("name", f"User {counter['n']}"),
            role=role,
            is_active=is_active,
            **kwargs,
        )
        test_session.add(user)
        test_session.commit()
        test_session.refresh(user)
        return user

    return _make


@pytest.fixture
def make_email_account(test_session: Session) -> Callable[..., EmailAccount]:
    """Factory for mailbox links; tokens are valid for an hour unless overridden."""

    def _make(user: User, **kwargs) -> EmailAccount:
        fields: Dict[str, Any] = {
            "user_id": user.id,
            "email": user.email,
            "provider": "microsoft",
            "access_token": "access-token",
            "refresh_token": "refresh-token",
            "token_expires_at": utc_now() + timedelta(hours=1),
            "is_active": True,
        }
        fields.update(kwargs)
        account = EmailAccount(**fields)
        test_session.add(account)
        test_session.commit()
        test_session.refresh(account)
        return account

    return _make


class FakeGraph:
    """In-memory stand-in for MicrosoftGraphClient."""

    def __init__(self):
        self.messages: Dict[str, List[Dict[str, Any]]] = {}
        self.folder_errors: Dict[str, Exception] = {}
        self.refresh_error: Optional[Exception] = None
        self.refresh_calls: List[Optional[str]] = []
        self.fetch_calls: List[tuple] = []

    async def refresh_access_token(self, refresh_token: Optional[str]) -> TokenSet:
        self.refresh_calls.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        return TokenSet(
            access_token="fresh-access-token",
            refresh_token="fresh-refresh-token",
            expires_on=utc_now() + timedelta(hours=1),
        )

    async def get_emails(self, access_token: str, folder: str = "inbox", top: int = 50) -> List[Dict[str, Any]]:
        self.fetch_calls.append((access_token, folder, top))
        if folder in self.folder_errors:
            raise self.folder_errors[folder]
        return list(self.messages.get(folder, []))


@pytest.fixture
def fake_graph() -> FakeGraph:
    return FakeGraph()
