"""
Pytest configuration and shared fixtures.
"""
from datetime import datetime
from types import SimpleNamespace

import pytest
import pytest_asyncio
from alchemical.aio import Alchemical
from jose import jwt
from sqlalchemy.pool import NullPool

from servicehub.config import settings
from servicehub.directory import ServiceDirectory
from servicehub.errors import SideEffectFailure
from servicehub.lifecycle import ReservationLifecycle
from servicehub.models import Category, Service, TimeWindow, User
from servicehub.notifications import NotificationSink


class RecordingEmailDispatcher:
    """Keeps sent emails in memory, or fails every send."""

    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send(self, to_email, template_name, template_args):
        if self.fail:
            raise SideEffectFailure("smtp unavailable")
        self.sent.append((to_email, template_name, list(template_args)))


class FailingNotificationSink:
    def __init__(self):
        self.attempts = 0

    async def create(self, recipient_id, message, reservation_id, type):
        self.attempts += 1
        raise SideEffectFailure("notification store unavailable")


def make_token(user_id, role="client"):
    return jwt.encode({"sub": str(user_id), "role": role}, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def auth_header(user_id, role="client"):
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


@pytest.fixture(autouse=True)
def display_in_paris(monkeypatch):
    """Pin the user-facing timezone so rendered times are predictable."""
    monkeypatch.setattr(settings, "display_timezone", "Europe/Paris")


@pytest.fixture
def window():
    """The 2025-06-01 10:00-11:00 slot."""
    return TimeWindow(start=datetime(2025, 6, 1, 10, 0), end=datetime(2025, 6, 1, 11, 0))


@pytest_asyncio.fixture
async def database(tmp_path):
    """A fresh sqlite database per test."""
    database = Alchemical(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", engine_options={"poolclass": NullPool})
    await database.create_all()
    yield database


@pytest_asyncio.fixture
async def session(database):
    async with database.Session() as session:
        yield session


@pytest_asyncio.fixture
async def seed(session):
    """
    Two providers, two clients and the services they offer.
    """
    provider = User(name="Paula Provider", email="paula@example.com", password_hash="x", role="provider")
    other_provider = User(name="Oscar Other", email="oscar@example.com", password_hash="x", role="provider")
    client = User(name="Carla Client", email="carla@example.com", password_hash="secret-hash", role="client")
    client2 = User(name="Chris Client", email="chris@example.com", password_hash="secret-hash", role="client")
    category = Category(name="Home")
    session.add_all([provider, other_provider, client, client2, category])
    await session.flush()

    s1 = Service(title="Plumbing repair", description="Leaks and pipes", price=100, is_available=True,
                 condition="Weekdays only", category_id=category.id, provider_id=provider.id)
    s2 = Service(title="Garden care", price=40, is_available=False,
                 category_id=category.id, provider_id=other_provider.id)
    session.add_all([s1, s2])
    await session.flush()

    ids = SimpleNamespace(
        provider=provider.id,
        other_provider=other_provider.id,
        client=client.id,
        client2=client2.id,
        s1=s1.id,
        s2=s2.id,
        category=category.id,
    )
    await session.commit()
    return ids


@pytest.fixture
def emails():
    return RecordingEmailDispatcher()


@pytest.fixture
def lifecycle(session, emails, seed):
    return ReservationLifecycle(session, ServiceDirectory(session), NotificationSink(session), emails)


@pytest.fixture
def failing_emails():
    return RecordingEmailDispatcher(fail=True)


@pytest.fixture
def failing_sink():
    return FailingNotificationSink()


@pytest.fixture
def auth():
    """Builds Authorization headers for a user id."""
    return auth_header
