"""
Shared fixtures for the Habit Monster test suite.

- `store`: a fresh SqliteStore in a temporary directory per test
- `now`: fixed UTC clock used by every time-dependent operation
- `make_user`: registers a user and optionally seeds XP/level
- `client`: FastAPI TestClient wired to `store` and `now`
"""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from habit_monster import auth
from habit_monster.data_manager import create_habit, register_user
from habit_monster.database import save_user
from habit_monster.db_sqlite import SqliteStore
from habit_monster.schemas import HabitCreate


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """Minimum bcrypt cost keeps hashing fast in tests."""
    monkeypatch.setattr(auth, "BCRYPT_ROUNDS", 4)


@pytest.fixture
def store(tmp_path):
    return SqliteStore(tmp_path / "habits.db")


@pytest.fixture
def now():
    return datetime(2025, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_user(store):
    def _make(email="player@example.com", password="secret", xp=0, level=None):
        user = register_user(store, email, password)
        if xp or level:
            user.platform_xp = xp
            user.level = level or user.level
            save_user(store, user)
        return user

    return _make


@pytest.fixture
def make_battle(store):
    """Create a battle invite from `creator` to `partner`; returns the creator's habit."""

    def _make(creator, partner, name="Morning run", duration=None):
        return create_habit(
            store,
            HabitCreate(user_id=creator.id, name=name, partner_id=partner.id, battle_duration=duration),
        )

    return _make


@pytest.fixture
def client(store, now):
    import app as api

    api.app.dependency_overrides[api.get_db] = lambda: store
    api.app.dependency_overrides[api.get_now] = lambda: now
    yield TestClient(api.app)
    api.app.dependency_overrides.clear()
