"""
Feature vectors: a common weighted-map shape for profiles and candidates.

Profiles weight each name by its share of the dimension's total count.
Candidates split genre and director weight evenly and weight cast by
billing position.
"""

from dataclasses import dataclass, field

from .config import ACTOR_RANK_WEIGHTS, ACTOR_TAIL_WEIGHT
from .database import MovieRecord
from .profile import UserPreferences
from .utils import split_names, parse_duration_minutes


@dataclass
class FeatureVector:
    genres: dict[str, float] = field(default_factory=dict)
    actors: dict[str, float] = field(default_factory=dict)
    directors: dict[str, float] = field(default_factory=dict)
    duration: float = 0.0  # Minutes; 0 means unknown


def _normalize_counts(counts: dict[str, int]) -> dict[str, float]:
    total = sum(counts.values())
    if total <= 0:
        return {}
    return {name: count / total for name, count in counts.items()}


def _uniform_weights(names: list[str]) -> dict[str, float]:
    if not names:
        return {}
    weight = 1.0 / len(names)
    return {name: weight for name in names}


def _rank_weights(names: list[str]) -> dict[str, float]:
    return {
        name: ACTOR_RANK_WEIGHTS[i] if i < len(ACTOR_RANK_WEIGHTS) else ACTOR_TAIL_WEIGHT
        for i, name in enumerate(names)
    }


def profile_to_vector(preferences: UserPreferences) -> FeatureVector:
    return FeatureVector(
        genres=_normalize_counts(preferences.genre_counts),
        actors=_normalize_counts(preferences.actor_counts),
        directors=_normalize_counts(preferences.director_counts),
        duration=preferences.average_duration,
    )


def record_to_vector(record: MovieRecord) -> FeatureVector:
    return FeatureVector(
        genres=_uniform_weights(split_names(record.genre)),
        actors=_rank_weights(split_names(record.cast)),
        directors=_uniform_weights(split_names(record.director)),
        duration=float(parse_duration_minutes(record.duration) or 0),
    )
