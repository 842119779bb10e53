"""
Pytest fixtures for the royalty engine test suite.

Provides:
- A fresh database per test (SQLite file under tmp_path, or DATABASE_URL)
- In-memory upstream collaborators (licenses, ownership, usage events)
- Orchestrator factories wired to a deterministic clock
- Structured log capture

Environment Variables:
- DATABASE_URL: optional PostgreSQL connection URL.  When set, tables are
  dropped and recreated around every test instead of using a SQLite file.
"""

import json
import logging
import os
from collections import defaultdict
from datetime import date, datetime, timezone
from io import StringIO

import pytest

from royalty_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from royalty_kernel.db.immutability import register_immutability_listeners
from royalty_kernel.domain.clock import DeterministicClock
from royalty_kernel.domain.dtos import License, LicenseScope, OwnershipShare, UsageEvent
from royalty_kernel.domain.policy import RoyaltyPolicy
from royalty_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from royalty_services.run_orchestrator import RoyaltyRunOrchestrator

# Actor used for admin operations throughout the suite
TEST_ACTOR = "admin-1"

JAN_START = date(2024, 1, 1)
JAN_END = date(2024, 1, 31)
FEB_START = date(2024, 2, 1)
FEB_END = date(2024, 2, 29)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture royalty_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.create_run(...)
            logs = captured_logs()
            assert any(r["message"] == "calculation_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("royalty_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    register_immutability_listeners()
    yield


@pytest.fixture
def db_engine(tmp_path):
    """Initialise the engine for one test and create every table."""
    url = os.environ.get("DATABASE_URL")
    if url:
        engine = init_engine_from_url(url)
        drop_tables()
    else:
        engine = init_engine_from_url(f"sqlite:///{tmp_path / 'royalty.db'}")
    create_tables()
    yield engine
    if url:
        drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(db_engine):
    """A session on the per-test database.  Commits are real."""
    sess = get_session()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc))


# =============================================================================
# Upstream collaborators
# =============================================================================


class FakeProvider:
    """In-memory license and ownership provider."""

    def __init__(self):
        self.licenses: list[License] = []
        self.owners: dict[str, list[OwnershipShare]] = {}

    def add_license(
        self,
        license_id: str,
        asset_id: str,
        fee_cents: int = 0,
        start_date: date = JAN_START,
        end_date: date | None = None,
        rev_share_bps: int = 10000,
        scope: LicenseScope | None = None,
        owners: dict[str, int] | None = None,
    ) -> License:
        lic = License(
            license_id=license_id,
            asset_id=asset_id,
            fee_cents=fee_cents,
            rev_share_bps=rev_share_bps,
            start_date=start_date,
            end_date=end_date,
            scope=scope or LicenseScope(),
        )
        self.licenses.append(lic)
        if owners is not None:
            self.set_owners(asset_id, owners)
        return lic

    def set_owners(self, asset_id: str, owners: dict[str, int]) -> None:
        self.owners[asset_id] = [OwnershipShare(cid, bps) for cid, bps in owners.items()]

    def list_active_licenses(self, period_start, period_end):
        return [
            lic
            for lic in self.licenses
            if lic.start_date <= period_end
            and (lic.end_date is None or lic.end_date >= period_start)
        ]

    def get_ownership_shares(self, asset_id):
        return list(self.owners.get(asset_id, []))


class FakeUsageSource:
    def __init__(self):
        self.events: dict[str, list[UsageEvent]] = defaultdict(list)

    def add_event(self, license_id: str, amount_cents: int, occurred_at, **dimensions):
        if isinstance(occurred_at, date) and not isinstance(occurred_at, datetime):
            occurred_at = datetime(
                occurred_at.year, occurred_at.month, occurred_at.day, 12,
                tzinfo=timezone.utc,
            )
        event = UsageEvent(amount_cents=amount_cents, occurred_at=occurred_at, **dimensions)
        self.events[license_id].append(event)
        return event

    def list_usage_events(self, license_id, period_start, period_end):
        return list(self.events.get(license_id, []))


class RecordingNotifier:
    def __init__(self):
        self.sent: list[tuple[str, object, str]] = []

    def notify(self, creator_id, statement_id, event):
        self.sent.append((creator_id, statement_id, event))


class FailingNotifier:
    def notify(self, creator_id, statement_id, event):
        raise RuntimeError("mail relay unavailable")


class FakeRenderer:
    def __init__(self):
        self.calls: list[tuple[object, str]] = []

    def render_statement_document(self, statement_id, fmt):
        self.calls.append((statement_id, fmt))
        return f"{fmt}:{statement_id}".encode()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def usage_source():
    return FakeUsageSource()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return FailingNotifier()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def policy():
    return RoyaltyPolicy()


# =============================================================================
# Orchestrator fixtures
# =============================================================================


@pytest.fixture
def make_orchestrator(session, provider, usage_source, notifier, deterministic_clock, policy):
    """Build an orchestrator; keyword arguments override the defaults."""

    def _make(**overrides) -> RoyaltyRunOrchestrator:
        kwargs = {
            "session": session,
            "provider": provider,
            "usage_source": usage_source,
            "notifier": notifier,
            "policy": policy,
            "clock": deterministic_clock,
        }
        kwargs.update(overrides)
        return RoyaltyRunOrchestrator(**kwargs)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


@pytest.fixture
def single_creator_catalog(provider):
    """One open-ended license paying creator-a $50.00 per period."""
    provider.add_license("lic-001", "asset-001", fee_cents=5000, owners={"creator-a": 10000})
    return provider


@pytest.fixture
def two_creator_catalog(provider):
    """Two assets: a 6667/3333 co-owned one and a sole-owned one."""
    provider.add_license(
        "lic-001", "asset-001", fee_cents=3000,
        owners={"creator-a": 6667, "creator-b": 3333},
    )
    provider.add_license("lic-002", "asset-002", fee_cents=4000, owners={"creator-b": 10000})
    return provider


@pytest.fixture
def calculated_run(orchestrator, two_creator_catalog):
    """A CALCULATED January run over ``two_creator_catalog``."""
    return orchestrator.create_run(JAN_START, JAN_END, TEST_ACTOR)


@pytest.fixture
def statements_by_creator(orchestrator, calculated_run):
    from royalty_kernel.domain.dtos import StatementFilters

    return {
        s.creator_id: s
        for s in orchestrator.list_statements(StatementFilters(run_id=calculated_run.id))
    }
