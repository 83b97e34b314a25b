from datetime import datetime, timedelta

import pytest

from pats import create_app, db
from pats.services.grading import GradingEngine
from pats.services.ledger_service import LedgerService
from pats.services.ledger_store import LedgerStore
from pats.services.session_manager import SessionManager
from pats.services.standings import StandingsService

# Fixed clock for pick and standings checks
NOW = datetime(2025, 10, 5, 12, 0, 0)
KICKOFF = NOW + timedelta(hours=5)
AFTER_KICKOFF = KICKOFF + timedelta(hours=1)


def make_game(game_id, home_spread=-3.5, commence_time=None, **overrides):
    data = {
        "id": game_id,
        "home_team": f"Home {game_id}",
        "away_team": f"Away {game_id}",
        "commence_time": (commence_time or KICKOFF).isoformat() + "Z",
        "home_spread": home_spread,
        "away_spread": -home_spread,
    }
    data.update(overrides)
    return data


def make_feed(count=3, home_spread=-3.5, commence_time=None):
    """Ingestion feed of ``count`` games named g1..gN"""
    return [
        make_game(f"g{i}", home_spread=home_spread, commence_time=commence_time)
        for i in range(1, count + 1)
    ]


@pytest.fixture
def app():
    app = create_app("testing")

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    return LedgerStore()


@pytest.fixture
def engine(store):
    return GradingEngine(store)


@pytest.fixture
def manager(store, engine):
    return SessionManager(store, engine)


@pytest.fixture
def ledger(store):
    return LedgerService(store)


@pytest.fixture
def standings(app):
    return StandingsService()


@pytest.fixture
def session_factory(manager):
    """Create a global session dated 2025-10-05 with three games"""

    def factory(participants=("alice", "bob"), games=None, **kwargs):
        kwargs.setdefault("session_date", "2025-10-05")
        return manager.create_session(
            games if games is not None else make_feed(), list(participants), **kwargs
        )

    return factory
