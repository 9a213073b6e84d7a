import datetime as dt
import os
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from tortoise import Tortoise

from app.core import db as db_module
from app.core.accounts import AccountDirectory
from app.core.chat import ChatCoordinator
from app.core.chat_store import ChatStore
from app.core.recovery import RecoveryService
from app.core.security import create_access_token, hash_password
from app.main import app
from app.models.user import Admin, Faculty, Student


TEST_DB_URL = "sqlite://:memory:"
os.environ["DATABASE_URL"] = TEST_DB_URL
db_module.DB_URL = TEST_DB_URL
db_module.TORTOISE_ORM["connections"]["default"] = TEST_DB_URL


class FakeClock:
    """Controllable UTC clock for expiry tests."""

    def __init__(self, start: dt.datetime | None = None):
        self.now = start or dt.datetime(2024, 1, 1, 12, 0, tzinfo=dt.timezone.utc)

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += dt.timedelta(**kwargs)


class OutboxNotifier:
    """Records OTP deliveries instead of sending email."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    async def __call__(self, email: str, code: str, name: str = "User", minutes: int = 10) -> None:
        self.sent.append((email, code))

    @property
    def last_code(self) -> str:
        return self.sent[-1][1]


async def _init_test_db() -> None:
    """
    Initialize a clean in-memory SQLite database for every test.
    Ensures tables are recreated from scratch.
    """
    if Tortoise._inited:
        await Tortoise.close_connections()
    await Tortoise.init(config=db_module.TORTOISE_ORM)
    await Tortoise.generate_schemas()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def outbox():
    return OutboxNotifier()


@pytest_asyncio.fixture
async def db():
    """Fresh database without an HTTP client (for service-level tests)."""
    await _init_test_db()
    yield
    await Tortoise.close_connections()


@pytest_asyncio.fixture
async def client(outbox):
    """
    Provide an HTTPX AsyncClient bound to the FastAPI app with a fresh DB
    and fresh in-memory services (OTP ledger, chat registry).
    """
    await _init_test_db()
    directory = AccountDirectory()
    app.state.directory = directory
    app.state.recovery = RecoveryService(directory, outbox)
    app.state.chat = ChatCoordinator(ChatStore(), directory)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        yield async_client
    await Tortoise.close_connections()


@pytest_asyncio.fixture
async def create_student():
    """
    Factory fixture to create students directly via ORM.
    """

    async def _create_student(password: str = "StudentPass!23", name: str = "Sam Student") -> tuple[Student, str]:
        student = await Student.create(
            name=name,
            email=f"s_{uuid.uuid4().hex[:6]}@example.com",
            password_hash=hash_password(password),
            branch="CSE",
        )
        return student, password

    return _create_student


@pytest_asyncio.fixture
async def create_faculty():
    """
    Factory fixture to create faculty directly via ORM.
    """

    async def _create_faculty(password: str = "FacultyPass!23", name: str = "Dr. Faye") -> tuple[Faculty, str]:
        faculty = await Faculty.create(
            name=name,
            email=f"f_{uuid.uuid4().hex[:6]}@example.com",
            password_hash=hash_password(password),
            branch="Physics",
        )
        return faculty, password

    return _create_faculty


@pytest_asyncio.fixture
async def create_admin():
    async def _create_admin(password: str = "AdminPass!23") -> tuple[Admin, str]:
        admin = await Admin.create(
            name="Admin",
            email=f"a_{uuid.uuid4().hex[:6]}@example.com",
            password_hash=hash_password(password),
        )
        return admin, password

    return _create_admin


@pytest.fixture
def auth_header():
    """Build an Authorization header for an (id, role) pair."""

    def _auth_header(user_id: int, role: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}

    return _auth_header
