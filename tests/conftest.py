"""
Shared pytest fixtures for the Module Access Request Service test suite.

Provides:
    - app: Flask application (session-scoped), built with a controllable clock
    - clock: the frozen clock driving every decision (reset per test)
    - session: Per-test DB cleanup w/ rollback + recreate + catalog seed (autouse)
    - client: Flask test client (function-scoped)
    - service: the app's AccessRequestService
    - modules: module name -> id for the seeded catalog
    - threaded_app: a separate app on a file-backed SQLite database, so that
      worker threads get their own connections
    - threaded_clock: the frozen clock driving threaded_app
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, text

from app import create_app
from app.config import TestingConfig, config as _configs
from app.models import db as _db
from app.models.catalog import Module
from app.services.catalog_seed import seed_catalog

START = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)

FINANCE_JUSTIFICATION = "Need this to process month-end vendor payments"


class FrozenClock:
    """Callable clock that only moves when a test moves it."""

    def __init__(self, start: datetime) -> None:
        self.start = start
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value

    def reset(self) -> None:
        self.current = self.start


_CLOCK = FrozenClock(START)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing", clock=_CLOCK)


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: seed catalog, rollback after test, recreate tables."""
    _CLOCK.reset()
    app.extensions["access_requests"].sequencer.reset()
    with app.app_context():
        seed_catalog()
        _db.session.commit()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def clock():
    return _CLOCK


@pytest.fixture()
def service(app):
    return app.extensions["access_requests"]


@pytest.fixture()
def modules():
    """Seeded module ids keyed by module name."""
    rows = _db.session.execute(select(Module)).scalars().all()
    return {m.name: m.id for m in rows}


# ── Multi-threaded fixtures ──────────────────────────────────────────────


@pytest.fixture()
def threaded_clock():
    return FrozenClock(START)


@pytest.fixture()
def threaded_app(tmp_path, monkeypatch, threaded_clock):
    """App on its own SQLite file (WAL) with a seeded catalog.

    The session app uses an in-memory database behind one shared connection,
    which cannot hold independent transactions for several threads.
    """
    db_path = tmp_path / "access_requests_threads.db"
    threads_config = type("ThreadedTestingConfig", (TestingConfig,), {
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
    })
    monkeypatch.setitem(_configs, "testing-threads", threads_config)

    threaded = create_app("testing-threads", clock=threaded_clock)
    with threaded.app_context():
        _db.session.execute(text("PRAGMA journal_mode=WAL"))
        seed_catalog()
        _db.session.commit()
    yield threaded
    with threaded.app_context():
        _db.session.remove()
        _db.engine.dispose()
