import logging
from collections import Counter
from dataclasses import dataclass, field, asdict
from statistics import mean
from typing import Iterable

from .database import MovieRecord
from .utils import split_names, parse_duration_minutes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserPreferences:
    """Aggregated taste profile over one user's enriched records."""
    genre_counts: dict[str, int] = field(default_factory=dict)
    actor_counts: dict[str, int] = field(default_factory=dict)
    director_counts: dict[str, int] = field(default_factory=dict)
    average_duration: float = 0.0
    total_movies: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict) -> "UserPreferences":
        return cls(
            genre_counts={str(k): int(v) for k, v in payload.get('genre_counts', {}).items()},
            actor_counts={str(k): int(v) for k, v in payload.get('actor_counts', {}).items()},
            director_counts={str(k): int(v) for k, v in payload.get('director_counts', {}).items()},
            average_duration=float(payload.get('average_duration', 0.0)),
            total_movies=int(payload.get('total_movies', 0)),
        )


def _count_names(values: Iterable[str | None]) -> dict[str, int]:
    """Occurrence count of every name across comma-joined fields."""
    return dict(Counter(name for value in values for name in split_names(value)))


def aggregate_preferences(records: Iterable[MovieRecord]) -> UserPreferences:
    """
    Reduce enriched records into a preference profile.

    Pure and order-independent: each record adds one to every distinct
    genre/actor/director it lists, and the average runtime is an exact mean
    over the records whose duration contains a number.
    """
    records = list(records)

    minutes = [m for m in (parse_duration_minutes(r.duration) for r in records) if m is not None]

    preferences = UserPreferences(
        genre_counts=_count_names(r.genre for r in records),
        actor_counts=_count_names(r.cast for r in records),
        director_counts=_count_names(r.director for r in records),
        average_duration=float(mean(minutes)) if minutes else 0.0,
        total_movies=len(records),
    )
    logger.debug(
        f"Aggregated {preferences.total_movies} records: {len(preferences.genre_counts)} genres, "
        f"{len(preferences.actor_counts)} actors, {len(preferences.director_counts)} directors"
    )
    return preferences


def top_genres(preferences: UserPreferences, n: int = 3) -> list[str]:
    """Most-watched genres, ties broken alphabetically."""
    ranked = sorted(preferences.genre_counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [genre for genre, _ in ranked[:n]]
