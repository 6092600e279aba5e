import sqlite3
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from datetime import datetime

import numpy as np

from .config import DB_PATH, NOT_AVAILABLE
from .utils import clean_field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MovieRecord:
    """
    One title a user has watched, with resolved metadata.

    Name fields are comma-joined lists; None means the provider had nothing.
    (user_id, title) is the natural key.
    """
    user_id: str
    title: str
    genre: str | None = None
    cast: str | None = None
    director: str | None = None
    duration: str | None = None
    poster_url: str | None = None
    id: int | None = None
    created_at: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict, user_id: str | None = None) -> "MovieRecord":
        """Build a record from loose JSON, normalizing "N/A" and blanks to None."""
        return cls(
            user_id=user_id or payload['user_id'],
            title=str(payload['title']).strip(),
            genre=clean_field(payload.get('genre')),
            cast=clean_field(payload.get('cast')),
            director=clean_field(payload.get('director')),
            duration=clean_field(payload.get('duration')),
            poster_url=clean_field(payload.get('poster_url')),
        )


class ConnectionPool:
    """
    SQLite connections keyed by thread.

    sqlite3 connections must not be shared between threads, and enrichment
    runs store calls on worker threads, so each thread gets its own
    connection. Transaction depth is tracked per thread so nested get_db()
    blocks commit once.
    """

    def __init__(self, db_path):
        self._db_path = db_path
        self._lock = threading.Lock()
        self._connections: dict[int, sqlite3.Connection] = {}
        self._transaction_depth: dict[int, int] = {}

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute("PRAGMA journal_mode = WAL")  # Concurrent readers during enrichment
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def _cleanup_dead_threads(self) -> None:
        """Close connections owned by threads that have exited. Caller holds the lock."""
        alive_threads = {t.ident for t in threading.enumerate()}
        dead_threads = set(self._connections) - alive_threads

        for thread_id in dead_threads:
            conn = self._connections.pop(thread_id)
            self._transaction_depth.pop(thread_id, None)
            try:
                conn.close()
                logger.debug(f"Cleaned up connection for dead thread {thread_id}")
            except sqlite3.Error as e:
                logger.warning(f"Error closing connection for thread {thread_id}: {e}")

        if dead_threads:
            logger.debug(f"Connection pool cleanup: removed {len(dead_threads)}, {len(self._connections)} remaining")

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._connections)

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection for the current thread, creating if necessary."""
        thread_id = threading.get_ident()
        with self._lock:
            self._cleanup_dead_threads()
            conn = self._connections.get(thread_id)
            if conn is None:
                conn = self._create_connection()
                self._connections[thread_id] = conn
                self._transaction_depth[thread_id] = 0
                logger.debug(f"Created connection for thread {thread_id} (pool size: {len(self._connections)})")
            return conn

    def enter(self) -> bool:
        """Register a get_db() entry; returns True for the outermost block."""
        thread_id = threading.get_ident()
        with self._lock:
            depth = self._transaction_depth.get(thread_id, 0)
            self._transaction_depth[thread_id] = depth + 1
            return depth == 0

    def exit(self) -> None:
        thread_id = threading.get_ident()
        with self._lock:
            self._transaction_depth[thread_id] = max(0, self._transaction_depth.get(thread_id, 1) - 1)

    def close_all(self) -> None:
        """Close all connections (call on application shutdown)."""
        with self._lock:
            for thread_id, conn in list(self._connections.items()):
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection for thread {thread_id}: {e}")
            self._connections.clear()
            self._transaction_depth.clear()
            logger.debug("Connection pool closed")


# Global pool instance
_pool: ConnectionPool | None = None
_pool_lock = threading.Lock()


def _get_pool() -> ConnectionPool:
    """Get or create the global connection pool."""
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                DB_PATH.parent.mkdir(exist_ok=True, parents=True)
                _pool = ConnectionPool(DB_PATH)
    return _pool


@contextmanager
def get_db(read_only: bool = False):
    """
    Get database connection with proper transaction handling.

    Only the outermost context commits or rolls back.
    """
    pool = _get_pool()
    conn = pool.get_connection()
    is_outermost = pool.enter()

    try:
        yield conn
        if is_outermost and not read_only:
            conn.commit()
    except Exception:
        if is_outermost:
            conn.rollback()
        raise
    finally:
        pool.exit()


def close_pool():
    """Close the connection pool. Call on application shutdown."""
    global _pool
    if _pool is not None:
        _pool.close_all()
        _pool = None


def init_db() -> None:
    DB_PATH.parent.mkdir(exist_ok=True, parents=True)
    with get_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS movie_metadata (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                genre TEXT,         -- comma-joined, NULL when unknown
                "cast" TEXT,        -- comma-joined, billing order; quoted, CAST is a keyword
                director TEXT,      -- comma-joined
                duration TEXT,      -- free text, e.g. "142 min"
                poster_url TEXT,
                created_at TEXT NOT NULL,
                UNIQUE (user_id, title)
            );

            CREATE INDEX IF NOT EXISTS idx_movie_user ON movie_metadata(user_id);
        """)


_COLUMNS = 'id, user_id, title, genre, "cast", director, duration, poster_url, created_at'


def _known(column: str) -> str:
    """SQL predicate: column holds real data (legacy rows may carry the sentinel)."""
    return f"({column} IS NOT NULL AND {column} != '{NOT_AVAILABLE}')"


def _row_to_record(row: sqlite3.Row) -> MovieRecord:
    return MovieRecord(**dict(row))


def _sample(records: list[MovieRecord], limit: int, rng: np.random.Generator | None) -> list[MovieRecord]:
    """Random subset of at most `limit` records."""
    if rng is None:
        rng = np.random.default_rng()
    order = rng.permutation(len(records))
    return [records[i] for i in order[:limit]]


def find_record(user_id: str, title: str) -> MovieRecord | None:
    with get_db(read_only=True) as conn:
        row = conn.execute(
            f"SELECT {_COLUMNS} FROM movie_metadata WHERE user_id = ? AND title = ?",
            (user_id, title),
        ).fetchone()
    return _row_to_record(row) if row else None


def insert_record(record: MovieRecord) -> MovieRecord:
    """
    Persist a record and return the stored row.

    If (user_id, title) already exists the existing row wins and is
    returned unchanged.
    """
    with get_db() as conn:
        conn.execute("""
            INSERT OR IGNORE INTO movie_metadata
            (user_id, title, genre, "cast", director, duration, poster_url, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            record.user_id, record.title, record.genre, record.cast,
            record.director, record.duration, record.poster_url,
            record.created_at or datetime.now().isoformat(),
        ))
        row = conn.execute(
            f"SELECT {_COLUMNS} FROM movie_metadata WHERE user_id = ? AND title = ?",
            (record.user_id, record.title),
        ).fetchone()
    return _row_to_record(row)


def insert_records_batch(records: list[MovieRecord]) -> int:
    """Insert many records, skipping existing (user_id, title) pairs. Returns rows added."""
    if not records:
        return 0
    now = datetime.now().isoformat()
    with get_db() as conn:
        before = conn.total_changes
        conn.executemany("""
            INSERT OR IGNORE INTO movie_metadata
            (user_id, title, genre, "cast", director, duration, poster_url, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, [(
            r.user_id, r.title, r.genre, r.cast, r.director, r.duration,
            r.poster_url, r.created_at or now,
        ) for r in records])
        return conn.total_changes - before


def list_records_for_user(user_id: str) -> list[MovieRecord]:
    with get_db(read_only=True) as conn:
        rows = conn.execute(
            f"SELECT {_COLUMNS} FROM movie_metadata WHERE user_id = ? ORDER BY id",
            (user_id,),
        ).fetchall()
    return [_row_to_record(r) for r in rows]


def list_titles_for_user(user_id: str) -> list[str]:
    with get_db(read_only=True) as conn:
        rows = conn.execute(
            "SELECT title FROM movie_metadata WHERE user_id = ?", (user_id,)
        ).fetchall()
    return [r['title'] for r in rows]


def list_records_excluding_user(user_id: str) -> list[MovieRecord]:
    """Every record not owned by user_id, in catalog (insertion) order."""
    with get_db(read_only=True) as conn:
        rows = conn.execute(
            f"SELECT {_COLUMNS} FROM movie_metadata WHERE user_id != ? ORDER BY id",
            (user_id,),
        ).fetchall()
    return [_row_to_record(r) for r in rows]


def list_popular(limit: int, rng: np.random.Generator | None = None) -> list[MovieRecord]:
    """
    Fallback pool for new users: records with complete cast/director/genre.

    Twice the limit is read so the random sample has room to vary.
    """
    if limit <= 0:
        return []
    with get_db(read_only=True) as conn:
        rows = conn.execute(f"""
            SELECT {_COLUMNS} FROM movie_metadata
            WHERE {_known('"cast"')} AND {_known('director')} AND {_known('genre')}
            ORDER BY id
            LIMIT ?
        """, (limit * 2,)).fetchall()
    return _sample([_row_to_record(r) for r in rows], limit, rng)


def list_by_genres(
    genres: list[str],
    limit: int,
    rng: np.random.Generator | None = None,
) -> list[MovieRecord]:
    """Records whose genre text contains any of `genres` (case-insensitive) and that list a cast."""
    if not genres or limit <= 0:
        return []
    genre_clause = " OR ".join("genre LIKE ?" for _ in genres)
    with get_db(read_only=True) as conn:
        rows = conn.execute(f"""
            SELECT {_COLUMNS} FROM movie_metadata
            WHERE ({genre_clause}) AND {_known('"cast"')}
            ORDER BY id
            LIMIT ?
        """, [*(f"%{g}%" for g in genres), limit * 2]).fetchall()
    return _sample([_row_to_record(r) for r in rows], limit, rng)


def update_poster(user_id: str, title: str, poster_url: str) -> bool:
    """Backfill a poster on an existing record; the only mutation records allow."""
    with get_db() as conn:
        cursor = conn.execute(
            "UPDATE movie_metadata SET poster_url = ? WHERE user_id = ? AND title = ? AND poster_url IS NULL",
            (poster_url, user_id, title),
        )
        return cursor.rowcount > 0


def get_catalog_stats() -> dict:
    """Record counts and metadata completeness across the whole store."""
    with get_db(read_only=True) as conn:
        row = conn.execute(f"""
            SELECT
                COUNT(*) AS total,
                COUNT(DISTINCT user_id) AS users,
                SUM(CASE WHEN {_known('genre')} THEN 1 ELSE 0 END) AS with_genre,
                SUM(CASE WHEN {_known('"cast"')} THEN 1 ELSE 0 END) AS with_cast,
                SUM(CASE WHEN {_known('director')} THEN 1 ELSE 0 END) AS with_director,
                SUM(CASE WHEN {_known('duration')} THEN 1 ELSE 0 END) AS with_duration,
                SUM(CASE WHEN poster_url IS NOT NULL THEN 1 ELSE 0 END) AS with_poster
            FROM movie_metadata
        """).fetchone()
    return {k: (row[k] or 0) for k in row.keys()}
