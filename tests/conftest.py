"""
Shared pytest fixtures for the SiteMaster test suite.

Provides:
    - app: Flask application (session-scoped, in-memory SQLite, stub AI)
    - db_session: tables created for one test and dropped afterwards
    - clock / now: fixed "current time" for delay and audit tests
    - actors: worker, supervisor, manager, admin
    - memory_store / service: SiteService over an InMemoryStore seeded with defaults
    - sql_store / sql_service: the same over the database
"""

from datetime import datetime

import pytest

from sitemaster import create_app
from sitemaster.ai import StubAssistant
from sitemaster.extensions import db as _db
from sitemaster.models import Party, PartyType, Role
from sitemaster.repositories import InMemoryStore, SqlStore
from sitemaster.security import Actor
from sitemaster.seed import default_collection, seed_defaults
from sitemaster.services import SiteService

FIXED_NOW = datetime(2024, 6, 15, 10, 0, 0)


def karnataka_party():
    """Recipient in another GST state (29) than the seed parties (27)."""
    return Party(
        id="pt3",
        name="Bengaluru Metro Builders",
        gstin="29AABCM4321K1Z5",
        address="Whitefield, Bengaluru",
        state_code="29",
        type=PartyType.CLIENT,
    )


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture()
def db_session(app):
    """Per-test: open app context with fresh tables, drop them afterwards."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


# ── Time & actors ────────────────────────────────────────────────────────


@pytest.fixture()
def now():
    return FIXED_NOW


@pytest.fixture()
def clock(now):
    return lambda: now


@pytest.fixture()
def worker():
    return Actor(id="w1", name="Ramesh Kumar", role=Role.WORKER)


@pytest.fixture()
def supervisor():
    return Actor(id="s1", name="Vikram Mehta", role=Role.SUPERVISOR)


@pytest.fixture()
def manager():
    return Actor(id="m1", name="Anita Rao", role=Role.MANAGER)


@pytest.fixture()
def admin():
    return Actor(id="a1", name="Admin User", role=Role.ADMIN)


# ── Stores & services ────────────────────────────────────────────────────


@pytest.fixture()
def memory_store(clock):
    return InMemoryStore(
        clock=clock,
        projects=default_collection("projects"),
        tasks=default_collection("tasks"),
        parties=default_collection("parties") + [karnataka_party()],
    )


@pytest.fixture()
def assistant():
    return StubAssistant()


@pytest.fixture()
def service(memory_store, assistant):
    return SiteService(memory_store, assistant=assistant)


@pytest.fixture()
def sql_store(db_session, clock):
    seed_defaults()
    _db.session.add(karnataka_party())
    _db.session.commit()
    return SqlStore(clock=clock)


@pytest.fixture()
def sql_service(sql_store, assistant):
    return SiteService(sql_store, assistant=assistant)
