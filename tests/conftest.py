"""
Pytest configuration and fixtures for tests
"""
from datetime import datetime, timezone

import pytest

from app import create_app
from coordinator import StatEngine
from persistence import MemoryBlobGateway
from timeutil import FixedClock

T0 = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return FixedClock(T0)


@pytest.fixture
def gateway():
    return MemoryBlobGateway()


@pytest.fixture
def engine(gateway, clock):
    eng = StatEngine(gateway, clock=clock)
    eng.start()
    yield eng
    eng.close()


@pytest.fixture
def fitness(engine):
    """Category 'Fitness' with a single stat Strength=10."""
    return engine.add_category({
        "name": "Fitness",
        "description": "Training",
        "icon": "barbell",
        "stats": [{"name": "Strength", "value": 10}],
        "score": 10,
    })


@pytest.fixture
def app(clock):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "STATE_BACKEND": "sql",
        "DECAY_TICKER_ENABLED": False,
        "RATELIMIT_ENABLED": False,
        "CLOCK": clock,
    })
    yield app
    app.extensions["stat_engine_shutdown"]()


@pytest.fixture
def client(app):
    """Create Flask test client"""
    with app.test_client() as client:
        yield client
