import threading

import numpy as np


def test_init_db_creates_table(fresh_db):
    with fresh_db.get_db(read_only=True) as conn:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        columns = {row[1] for row in conn.execute("PRAGMA table_info(movie_metadata)")}

    assert "movie_metadata" in tables
    assert {"user_id", "title", "genre", "cast", "director", "duration", "poster_url", "created_at"} <= columns


def test_insert_and_find_record(fresh_db):
    record = fresh_db.MovieRecord(user_id="alice", title="Heat", genre="Crime", cast="Al Pacino", duration="170 min")

    stored = fresh_db.insert_record(record)

    assert stored.id is not None
    assert stored.created_at
    found = fresh_db.find_record("alice", "Heat")
    assert found == stored
    assert fresh_db.find_record("bob", "Heat") is None


def test_insert_record_keeps_first_row_for_duplicate_key(fresh_db):
    first = fresh_db.insert_record(fresh_db.MovieRecord(user_id="alice", title="Heat", genre="Crime"))
    second = fresh_db.insert_record(fresh_db.MovieRecord(user_id="alice", title="Heat", genre="Drama"))

    assert second.id == first.id
    assert second.genre == "Crime"
    assert len(fresh_db.list_records_for_user("alice")) == 1


def test_concurrent_duplicate_inserts_store_one_row(fresh_db):
    record = fresh_db.MovieRecord(user_id="alice", title="Race", genre="Drama")
    results = []

    def worker():
        results.append(fresh_db.insert_record(record))

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len({r.id for r in results}) == 1
    assert len(fresh_db.list_records_for_user("alice")) == 1


def test_batch_insert_counts_new_rows(fresh_db):
    records = [
        fresh_db.MovieRecord(user_id="system", title="A", genre="Drama"),
        fresh_db.MovieRecord(user_id="system", title="B", genre="Comedy"),
    ]

    assert fresh_db.insert_records_batch(records) == 2
    assert fresh_db.insert_records_batch(records) == 0
    assert fresh_db.insert_records_batch([]) == 0


def test_list_queries_partition_by_user(fresh_db):
    fresh_db.insert_records_batch([
        fresh_db.MovieRecord(user_id="alice", title="Mine"),
        fresh_db.MovieRecord(user_id="bob", title="Theirs 1"),
        fresh_db.MovieRecord(user_id="system", title="Theirs 2"),
    ])

    assert fresh_db.list_titles_for_user("alice") == ["Mine"]
    assert [r.title for r in fresh_db.list_records_excluding_user("alice")] == ["Theirs 1", "Theirs 2"]
    assert [r.title for r in fresh_db.list_records_for_user("bob")] == ["Theirs 1"]


def test_list_popular_requires_complete_metadata(fresh_db):
    fresh_db.insert_records_batch([
        fresh_db.MovieRecord(user_id="system", title="Full", genre="Drama", cast="X", director="Y"),
        fresh_db.MovieRecord(user_id="system", title="No Cast", genre="Drama", director="Y"),
        fresh_db.MovieRecord(user_id="system", title="Legacy", genre="Drama", cast="N/A", director="Y"),
    ])

    popular = fresh_db.list_popular(5, rng=np.random.default_rng(0))

    assert [r.title for r in popular] == ["Full"]
    assert fresh_db.list_popular(0) == []


def test_list_popular_sampling_is_seeded(fresh_db):
    fresh_db.insert_records_batch([
        fresh_db.MovieRecord(user_id="system", title=f"Film {i}", genre="Drama", cast="X", director="Y")
        for i in range(10)
    ])

    first = [r.title for r in fresh_db.list_popular(3, rng=np.random.default_rng(42))]
    second = [r.title for r in fresh_db.list_popular(3, rng=np.random.default_rng(42))]

    assert first == second
    assert len(first) == 3
    # Only the first limit * 2 rows are eligible
    assert all(int(t.split()[1]) < 6 for t in first)


def test_list_by_genres_matches_any_genre(fresh_db):
    fresh_db.insert_records_batch([
        fresh_db.MovieRecord(user_id="system", title="Thriller", genre="Crime, Thriller", cast="X"),
        fresh_db.MovieRecord(user_id="system", title="Comedy", genre="Comedy", cast="X"),
        fresh_db.MovieRecord(user_id="system", title="Uncast Drama", genre="Drama"),
        fresh_db.MovieRecord(user_id="system", title="Drama", genre="drama", cast="X"),
    ])

    titles = {r.title for r in fresh_db.list_by_genres(["Drama", "Thriller"], 10)}

    assert titles == {"Thriller", "Drama"}
    assert fresh_db.list_by_genres([], 10) == []


def test_update_poster_only_fills_missing(fresh_db):
    fresh_db.insert_records_batch([
        fresh_db.MovieRecord(user_id="alice", title="No Poster"),
        fresh_db.MovieRecord(user_id="alice", title="Has Poster", poster_url="https://img/a.jpg"),
    ])

    assert fresh_db.update_poster("alice", "No Poster", "https://img/new.jpg") is True
    assert fresh_db.update_poster("alice", "Has Poster", "https://img/new.jpg") is False
    assert fresh_db.find_record("alice", "No Poster").poster_url == "https://img/new.jpg"
    assert fresh_db.find_record("alice", "Has Poster").poster_url == "https://img/a.jpg"


def test_catalog_stats(fresh_db):
    assert fresh_db.get_catalog_stats()['total'] == 0

    fresh_db.insert_records_batch([
        fresh_db.MovieRecord(user_id="alice", title="A", genre="Drama", duration="100 min"),
        fresh_db.MovieRecord(user_id="system", title="B", cast="X", poster_url="https://img/b.jpg"),
    ])

    stats = fresh_db.get_catalog_stats()

    assert stats['total'] == 2
    assert stats['users'] == 2
    assert stats['with_genre'] == 1
    assert stats['with_cast'] == 1
    assert stats['with_director'] == 0
    assert stats['with_duration'] == 1
    assert stats['with_poster'] == 1


def test_nested_get_db_commits_once(fresh_db):
    with fresh_db.get_db() as outer:
        outer.execute(
            "INSERT INTO movie_metadata (user_id, title, created_at) VALUES ('alice', 'Outer', 'now')"
        )
        with fresh_db.get_db() as inner:
            assert inner is outer
            inner.execute(
                "INSERT INTO movie_metadata (user_id, title, created_at) VALUES ('alice', 'Inner', 'now')"
            )

    assert sorted(fresh_db.list_titles_for_user("alice")) == ["Inner", "Outer"]


def test_record_from_dict_normalizes_sentinel(fresh_db):
    record = fresh_db.MovieRecord.from_dict(
        {"title": " Heat ", "genre": "N/A", "cast": "Al Pacino", "duration": ""},
        user_id="system",
    )

    assert record.title == "Heat"
    assert record.genre is None
    assert record.cast == "Al Pacino"
    assert record.duration is None
    assert record.user_id == "system"


def test_pool_closes_connections_of_finished_threads(fresh_db):
    def worker():
        fresh_db.find_record("alice", "Anything")

    threads = [threading.Thread(target=worker) for _ in range(3)]
    for t in threads:
        t.start()
        t.join()

    # The next checkout sweeps every connection whose thread has exited
    fresh_db.find_record("alice", "Anything")

    assert fresh_db._get_pool().size == 1


def test_quoted_cast_column_round_trips(fresh_db):
    fresh_db.insert_record(fresh_db.MovieRecord(user_id="alice", title="Heat", cast="Al Pacino, Robert De Niro"))

    assert fresh_db.find_record("alice", "Heat").cast == "Al Pacino, Robert De Niro"
    assert [r.cast for r in fresh_db.list_records_for_user("alice")] == ["Al Pacino, Robert De Niro"]
