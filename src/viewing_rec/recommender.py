from dataclasses import dataclass
import logging
from types import ModuleType
from typing import Any, Callable

import numpy as np

from . import database
from .database import MovieRecord
from .errors import MissingUserError, RecordStoreError
from .features import profile_to_vector, record_to_vector
from .profile import UserPreferences, top_genres
from .similarity import calculate_similarity
from .utils import split_names, parse_duration_minutes, title_key
from .config import (
    DEFAULT_RECOMMENDATION_LIMIT,
    MIN_SIMILARITY,
    COLD_START_MIN_MOVIES,
    COLD_START_SIMILARITY,
    COLD_START_REASON,
    GENRE_BACKFILL_TOP_N,
    GENRE_BACKFILL_SIMILARITY,
    DURATION_REASON_WINDOW,
    REASON_SEPARATOR,
    DEFAULT_REASON,
)

logger = logging.getLogger(__name__)


@dataclass
class Recommendation:
    record: MovieRecord
    similarity: float
    reason: str = ""
    poster_url: str | None = None

    @property
    def title(self) -> str:
        return self.record.title

    def to_dict(self) -> dict:
        return {
            'title': self.record.title,
            'similarity': round(self.similarity, 4),
            'reason': self.reason,
            'genre': self.record.genre,
            'cast': self.record.cast,
            'director': self.record.director,
            'duration': self.record.duration,
            'poster_url': self.poster_url or self.record.poster_url,
        }


def _record_key(record: MovieRecord) -> tuple[str, str]:
    return (record.user_id, record.title)


class MovieRecommender:
    """
    Rank catalog titles against a user's aggregated preferences.

    `store` is anything exposing the record-store reads used here; the
    sqlite-backed `viewing_rec.database` module is the default. `rng`
    drives the random sampling of fallback pools.
    """

    def __init__(
        self,
        store: ModuleType | Any = database,
        rng: np.random.Generator | None = None,
        min_similarity: float = MIN_SIMILARITY,
        cold_start_min_movies: int = COLD_START_MIN_MOVIES,
    ):
        self.store = store
        self.rng = rng if rng is not None else np.random.default_rng()
        self.min_similarity = min_similarity
        self.cold_start_min_movies = cold_start_min_movies

    def _read(self, description: str, fetch: Callable, *args, **kwargs) -> list:
        """Run a whole-collection store read; any failure aborts the ranking call."""
        try:
            return list(fetch(*args, **kwargs))
        except Exception as e:
            logger.error(f"Failed to fetch {description}: {type(e).__name__}: {e}")
            raise RecordStoreError(f"Failed to fetch {description}") from e

    def recommend(
        self,
        user_id: str,
        preferences: UserPreferences,
        limit: int = DEFAULT_RECOMMENDATION_LIMIT,
    ) -> list[Recommendation]:
        """Generate up to `limit` reasoned recommendations, best first."""
        if not user_id:
            raise MissingUserError("ranking")
        if limit <= 0:
            return []

        watched = {
            title_key(t)
            for t in self._read("user's viewing history", self.store.list_titles_for_user, user_id)
        }
        catalog = self._read("movies for recommendations", self.store.list_records_excluding_user, user_id)
        unwatched = [r for r in catalog if title_key(r.title) not in watched]
        logger.info(f"Found {len(unwatched)}/{len(catalog)} unwatched candidates for {user_id}")

        if preferences.total_movies < self.cold_start_min_movies:
            return self._cold_start(watched, limit)

        profile_vector = profile_to_vector(preferences)
        scored = []
        for record in unwatched:
            similarity = calculate_similarity(profile_vector, record_to_vector(record))
            if similarity > self.min_similarity:
                scored.append(Recommendation(record=record, similarity=similarity))

        # Stable: equal scores keep catalog order
        scored.sort(key=lambda rec: rec.similarity, reverse=True)
        logger.info(f"Scored {len(scored)} candidates above similarity {self.min_similarity}")

        if len(scored) < limit:
            scored.extend(self._genre_backfill(preferences, scored, watched, limit))

        if len(scored) > limit:
            scored = self._diversify(scored, limit)

        for rec in scored:
            rec.reason = self.explain(rec.record, preferences)

        logger.info(f"Returning {len(scored)} recommendations for {user_id}")
        return scored

    def _cold_start(self, watched: set[str], limit: int) -> list[Recommendation]:
        """Too little history to score: sample well-described titles instead."""
        popular = self._read("popular movies", self.store.list_popular, limit, rng=self.rng)
        results = [
            Recommendation(record=r, similarity=COLD_START_SIMILARITY, reason=COLD_START_REASON)
            for r in popular
            if title_key(r.title) not in watched
        ]
        logger.info(f"Cold start: returning {len(results[:limit])} popular titles")
        return results[:limit]

    def _genre_backfill(
        self,
        preferences: UserPreferences,
        selected: list[Recommendation],
        watched: set[str],
        limit: int,
    ) -> list[Recommendation]:
        """Top up a short list with titles from the user's favourite genres."""
        genres = top_genres(preferences, GENRE_BACKFILL_TOP_N)
        if not genres:
            return []

        extra = self._read(
            "genre-based recommendations",
            self.store.list_by_genres, genres, limit - len(selected), rng=self.rng,
        )
        seen = {_record_key(rec.record) for rec in selected}
        backfill = []
        for record in extra:
            key = _record_key(record)
            if key in seen or title_key(record.title) in watched:
                continue
            seen.add(key)
            backfill.append(Recommendation(record=record, similarity=GENRE_BACKFILL_SIMILARITY))

        logger.debug(f"Genre backfill ({', '.join(genres)}) added {len(backfill)} titles")
        return backfill

    def _diversify(self, candidates: list[Recommendation], limit: int) -> list[Recommendation]:
        """
        Greedy re-rank that favours titles bringing a new genre or director.

        The top candidate always leads. Until half the list is filled any
        candidate is accepted, so heavy overlap cannot starve the result.
        """
        top = candidates[0]
        results = [top]
        used_genres = set(split_names(top.record.genre))
        used_directors = set(split_names(top.record.director))

        for rec in candidates[1:]:
            if len(results) >= limit:
                break
            genres = split_names(rec.record.genre)
            directors = split_names(rec.record.director)
            adds_variety = (
                any(g not in used_genres for g in genres)
                or any(d not in used_directors for d in directors)
            )
            if adds_variety or len(results) < limit / 2:
                results.append(rec)
                used_genres.update(genres)
                used_directors.update(directors)

        return results

    def explain(self, record: MovieRecord, preferences: UserPreferences) -> str:
        """Human-readable reason a title matches the user's preferences."""
        reasons = []

        genres = [g for g in split_names(record.genre) if preferences.genre_counts.get(g)]
        if genres:
            reasons.append(f"Similar genres: {', '.join(genres)}")

        actors = [a for a in split_names(record.cast) if preferences.actor_counts.get(a)]
        if actors:
            reasons.append(f"Featuring: {', '.join(actors)}")

        directors = [d for d in split_names(record.director) if preferences.director_counts.get(d)]
        if directors:
            reasons.append(f"Directed by: {', '.join(directors)}")

        minutes = parse_duration_minutes(record.duration)
        if preferences.average_duration > 0 and minutes is not None:
            if abs(preferences.average_duration - minutes) < DURATION_REASON_WINDOW:
                reasons.append("Similar duration to your preferences")

        return REASON_SEPARATOR.join(reasons) if reasons else DEFAULT_REASON
