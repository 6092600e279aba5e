import importlib
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from viewing_rec.database import MovieRecord  # noqa: E402


@pytest.fixture
def fresh_config(monkeypatch, tmp_path):
    """
    Reload config with a temporary database path to keep tests isolated.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("VIEWING_REC_DB", str(db_path))
    import viewing_rec.config as config

    importlib.reload(config)
    return config


@pytest.fixture
def fresh_db(monkeypatch, tmp_path):
    """
    Reload config/database modules with a temp DB and cleanly close the pool after use.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("VIEWING_REC_DB", str(db_path))

    import viewing_rec.config as config
    import viewing_rec.database as database

    importlib.reload(config)
    importlib.reload(database)
    database.init_db()

    yield database
    database.close_pool()


def make_record(title, user_id="other", genre=None, cast=None, director=None, duration=None, poster_url=None):
    return MovieRecord(
        user_id=user_id,
        title=title,
        genre=genre,
        cast=cast,
        director=director,
        duration=duration,
        poster_url=poster_url,
    )


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def fake_store():
    """
    In-memory stand-in for the database module's read functions.

    `records` holds every stored record; the fallback pools are returned
    as-is (no sampling) so tests can assert on their order.
    """
    state = SimpleNamespace(records=[], popular=[], by_genre=[], calls=[])

    def list_titles_for_user(user_id):
        state.calls.append(("titles", user_id))
        return [r.title for r in state.records if r.user_id == user_id]

    def list_records_excluding_user(user_id):
        state.calls.append(("catalog", user_id))
        return [r for r in state.records if r.user_id != user_id]

    def list_popular(limit, rng=None):
        state.calls.append(("popular", limit))
        return list(state.popular[:limit])

    def list_by_genres(genres, limit, rng=None):
        state.calls.append(("by_genres", tuple(genres), limit))
        return list(state.by_genre[:limit])

    state.list_titles_for_user = list_titles_for_user
    state.list_records_excluding_user = list_records_excluding_user
    state.list_popular = list_popular
    state.list_by_genres = list_by_genres
    return state
