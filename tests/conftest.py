"""Shared fixtures: a throwaway SQLite database, sessions, users and an HTTP client."""

import os
import tempfile

_db_dir = tempfile.mkdtemp(prefix="danceschool-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_db_dir}/test.db"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ.pop("SMTP_HOST", None)

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from danceschool.core.auth import create_access_token, get_password_hash  # noqa: E402
from danceschool.core.database import AsyncSessionLocal, Base, engine  # noqa: E402
from danceschool.main import app  # noqa: E402
from danceschool.models import Group, Student, User  # noqa: E402
from danceschool.services import roster  # noqa: E402


@pytest_asyncio.fixture(autouse=True)
async def database():
    """Fresh schema for every test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db():
    async with AsyncSessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


async def create_user(db, role="admin", email=None, groups=()):
    user = User(
        name=f"{role.title()} User",
        email=email or f"{role}@example.com",
        hashed_password=get_password_hash("secret123"),
        role=role,
    )
    user.assigned_groups = list(groups)
    db.add(user)
    await db.commit()
    return user


def auth_headers(user):
    token = create_access_token(data={"sub": user.id, "type": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def admin(db):
    return await create_user(db, role="admin")


@pytest_asyncio.fixture
async def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def make_group(db):
    async def _make_group(name="Group", location="Tallinn"):
        group = Group(name=name, location=location)
        db.add(group)
        await db.flush()
        return group

    return _make_group


@pytest.fixture
def make_student(db):
    """Enroll a student the way the API does: parent first, then group."""

    async def _make_student(first_name="Student", group=None, parent_email=None, parent_name=None, age=7):
        student = Student(first_name=first_name, last_name="Test", age=age,
                          parent_email=roster.normalize_email(parent_email))
        db.add(student)
        await db.flush()
        if parent_email:
            await roster.assign_parent_to_student(db, student, parent_email, parent_name)
        if group is not None:
            await roster.attach_student_to_group(db, student, group.id)
        await db.flush()
        return student

    return _make_student
