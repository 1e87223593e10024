"""
Pytest configuration and fixtures

Every test gets its own SQLite database file, so background threads can open
their own connections against the same data.
"""
import threading
import time
from datetime import datetime

import pytest

from ritual import crud
from ritual.background import BackgroundRunner
from ritual.config import Settings
from ritual.context import SessionContext
from ritual.coordinator import current_cycle, submit_input
from ritual.database import build_engine, build_session_factory, init_db
from ritual.notifications import CycleChannel
from ritual.schemas import PreferencePayload, RitualProposal

# Wednesday noon UTC; week starts Monday 2026-10-12 in every supported city
WEDNESDAY = datetime(2026, 10, 14, 12, 0)

SAMPLE_RITUALS = [
    {
        "title": "Candlelit Question Jar",
        "description": "Phones in a drawer. Take turns drawing questions. Afterwards, share one surprise.",
        "time_estimate": "30min",
        "budget_band": "free",
        "category": "conversation",
        "why": "Emotional vulnerability for a cozy week",
    },
    {
        "title": "Sunrise Walk",
        "description": "Walk to the nearest hill before breakfast, phones off.",
        "time_estimate": "1hr",
        "budget_band": "free",
        "category": "outdoors",
        "why": "Shared experience and fresh air",
    },
    {
        "title": "Blanket Fort Stargazing",
        "description": "Build a fort by the window and name constellations together.",
        "time_estimate": "1-2hrs",
        "budget_band": "$",
        "category": "adventure",
        "why": "Adventure meets cozy",
    },
    {
        "title": "Three Good Things",
        "description": "Each list three things you appreciated about the other this week.",
        "time_estimate": "15min",
        "budget_band": "free",
        "category": "appreciation",
        "why": "Appreciation, quick micro-ritual",
    },
    {
        "title": "Mystery Market Dinner",
        "description": "Each pick one ingredient you have never cooked and make dinner together.",
        "time_estimate": "2-3hrs",
        "budget_band": "$$",
        "category": "food",
        "why": "Novelty and playfulness",
    },
]

REPLACEMENT = {
    "title": "Slow Dance Playlist",
    "description": "Each add three songs, dance through all of them, phones face down.",
    "time_estimate": "30min",
    "budget_band": "free",
    "category": "touch",
    "why": "Touch and playfulness",
}


class ScriptedGenerator:
    """Stands in for the generation function, counting calls"""

    def __init__(self, rituals=None, error=None, gate=None, replacement=None):
        self.rituals = rituals if rituals is not None else SAMPLE_RITUALS
        self.error = error
        self.gate = gate
        self.replacement = replacement or REPLACEMENT
        self.calls = 0
        self.swap_calls = []
        self.last_history = None
        self.last_location = None
        self._lock = threading.Lock()

    def generate_rituals(self, partner_one_input, partner_two_input, location, history):
        with self._lock:
            self.calls += 1
        self.last_history = history
        self.last_location = location
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        return [RitualProposal(**r) for r in self.rituals]

    def swap_ritual(self, current_title, partner_one_input, partner_two_input, location, history, exclude_titles):
        self.swap_calls.append(list(exclude_titles))
        return RitualProposal(**self.replacement)


class ProviderError(Exception):
    """Looks like an HTTP error raised by a chat model client"""

    def __init__(self, status_code, message="provider error"):
        super().__init__(message)
        self.status_code = status_code


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'ritual-test.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        poll_interval_seconds=0.05,
        retry_backoff_seconds=0.01,
        generation_timeout_seconds=5,
        generation_ceiling_seconds=90,
    )


@pytest.fixture
def channel():
    return CycleChannel()


@pytest.fixture
def runner():
    bg = BackgroundRunner(max_workers=4)
    yield bg
    bg.shutdown()


@pytest.fixture
def couple(db_session):
    created = crud.create_couple(db_session, "alice", "London")
    crud.join_couple(db_session, created.id, "bob")
    return crud.get_couple(db_session, created.id)


@pytest.fixture
def generator():
    return ScriptedGenerator()


@pytest.fixture
def make_context(couple, session_factory, channel, runner, test_settings, generator):
    def _make(user_id="alice", gen=None, settings=None):
        chosen = gen or generator
        return SessionContext(
            user_id,
            couple.id,
            session_factory=session_factory,
            channel=channel,
            background=runner,
            settings=settings or test_settings,
            generator_factory=lambda: chosen,
        )
    return _make


@pytest.fixture
def alice(make_context):
    return make_context("alice")


@pytest.fixture
def bob(make_context):
    return make_context("bob")


@pytest.fixture
def cycle_id(alice):
    return current_cycle(alice, now=WEDNESDAY).id


@pytest.fixture
def cozy():
    return PreferencePayload(mood_tags=["cozy", "deep-talk"], desire="quiet night")


@pytest.fixture
def adventurous():
    return PreferencePayload(mood_tags=["adventure"], desire="")


@pytest.fixture
def proposals_ready(alice, bob, runner, cycle_id, cozy, adventurous):
    """Both partners submitted and generation finished"""
    submit_input(alice, cycle_id, cozy)
    submit_input(bob, cycle_id, adventurous)
    assert runner.drain(5)
    return cycle_id


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()
