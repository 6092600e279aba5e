import logging
from dataclasses import dataclass

from .config import (
    SIMILARITY_WEIGHTS,
    GENRE_OVERLAP_CAP,
    ACTOR_OVERLAP_CAP,
    ACTOR_MULTI_MATCH_BONUS,
    ACTOR_MULTI_MATCH_MIN,
    DIRECTOR_MATCH_BONUS,
    DURATION_BANDS,
)
from .features import FeatureVector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DimensionConfig:
    """How one name dimension (genre/actor/director) is scored."""
    name: str                       # key in SIMILARITY_WEIGHTS
    vector_attr: str                # attribute on FeatureVector
    weight: float
    overlap_cap: float | None       # cap on |shared| / max(|profile|, |candidate|); None disables
    multi_match_bonus: float = 0.0  # flat bonus once enough names are shared
    multi_match_min: int = 0
    match_bonus: float = 0.0        # flat bonus for any shared name


DIMENSIONS = [
    DimensionConfig(
        name='genre',
        vector_attr='genres',
        weight=SIMILARITY_WEIGHTS['genre'],
        overlap_cap=GENRE_OVERLAP_CAP,
    ),
    DimensionConfig(
        name='actor',
        vector_attr='actors',
        weight=SIMILARITY_WEIGHTS['actor'],
        overlap_cap=ACTOR_OVERLAP_CAP,
        multi_match_bonus=ACTOR_MULTI_MATCH_BONUS,
        multi_match_min=ACTOR_MULTI_MATCH_MIN,
    ),
    DimensionConfig(
        name='director',
        vector_attr='directors',
        weight=SIMILARITY_WEIGHTS['director'],
        overlap_cap=None,
        match_bonus=DIRECTOR_MATCH_BONUS,
    ),
]

_WEIGHTS = {config.name: config.weight for config in DIMENSIONS}
_WEIGHTS['duration'] = SIMILARITY_WEIGHTS['duration']


def dimension_similarity(
    profile_weights: dict[str, float],
    candidate_weights: dict[str, float],
    config: DimensionConfig,
) -> float:
    """
    Share of the profile's weight the candidate matches, plus match bonuses.

    Not capped at 1.0; the bonuses are meant to lift strong matches.
    """
    if not profile_weights or not candidate_weights:
        return 0.0

    shared = profile_weights.keys() & candidate_weights.keys()
    if not shared:
        return 0.0

    total_weight = sum(profile_weights.values())
    if total_weight <= 0:
        return 0.0
    score = sum(profile_weights[k] for k in shared) / total_weight

    if config.overlap_cap is not None:
        overlap = len(shared) / max(len(profile_weights), len(candidate_weights))
        score += min(overlap, config.overlap_cap)
    if config.multi_match_bonus and len(shared) >= config.multi_match_min:
        score += config.multi_match_bonus
    score += config.match_bonus

    return score


def duration_similarity(profile_minutes: float, candidate_minutes: float) -> float:
    """Banded closeness of runtimes; 0 when either side is unknown."""
    if not profile_minutes or not candidate_minutes:
        return 0.0
    difference = abs(profile_minutes - candidate_minutes)
    for max_diff, score in DURATION_BANDS:
        if difference <= max_diff:
            return score
    return 0.0


def score_breakdown(profile: FeatureVector, candidate: FeatureVector) -> dict[str, float | None]:
    """
    Per-dimension sub-scores.

    None marks a dimension with no data on one side; it is left out of the
    final average instead of counting as a zero.
    """
    breakdown: dict[str, float | None] = {}
    for config in DIMENSIONS:
        profile_weights = getattr(profile, config.vector_attr)
        candidate_weights = getattr(candidate, config.vector_attr)
        if profile_weights and candidate_weights:
            breakdown[config.name] = dimension_similarity(profile_weights, candidate_weights, config)
        else:
            breakdown[config.name] = None

    if profile.duration and candidate.duration:
        breakdown['duration'] = duration_similarity(profile.duration, candidate.duration)
    else:
        breakdown['duration'] = None
    return breakdown


def calculate_similarity(profile: FeatureVector, candidate: FeatureVector) -> float:
    """Weighted similarity in [0, 1] between a profile vector and a candidate vector."""
    total_score = 0.0
    max_possible = 0.0

    for name, sub_score in score_breakdown(profile, candidate).items():
        if sub_score is None:
            continue
        weight = _WEIGHTS[name]
        total_score += sub_score * weight
        max_possible += weight

    if max_possible <= 0:
        return 0.0

    # Stacked bonuses can push the ratio past 1.0
    return max(0.0, min(1.0, total_score / max_possible))
