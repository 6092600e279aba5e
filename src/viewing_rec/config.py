"""
Configuration constants for the viewing-history recommender.

This module centralizes all magic numbers and configurable parameters.
Values can be overridden via environment variables.
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


# Database Configuration
DB_PATH = Path(os.environ.get("VIEWING_REC_DB", "data/viewing_rec.db"))
SYSTEM_USER_ID = "system"  # Owner of catalog-seed records

# Metadata provider (OMDb)
OMDB_API_KEY = os.environ.get("OMDB_API_KEY", "")
OMDB_BASE_URL = os.environ.get("OMDB_BASE_URL", "https://www.omdbapi.com")
HTTP_TIMEOUT = _get_float_env("VIEWING_REC_HTTP_TIMEOUT", 15.0, min_val=1.0)
MAX_HTTP_RETRIES = 3
DEFAULT_RETRY_AFTER = 5  # Seconds to wait on 429 without a Retry-After header
NOT_AVAILABLE = "N/A"  # Provider sentinel for empty fields

# Enrichment batch scheduler
ENRICH_BATCH_SIZE = _get_int_env("VIEWING_REC_BATCH_SIZE", 25, min_val=1)
ENRICH_BATCH_DELAY = _get_float_env("VIEWING_REC_BATCH_DELAY", 1.5, min_val=0.0)

# Feature vectors
ACTOR_RANK_WEIGHTS = (1.0, 0.8, 0.6)  # Top-billed cast
ACTOR_TAIL_WEIGHT = 0.3               # Everyone after the top three

# Similarity weights (sum to 1.0)
SIMILARITY_WEIGHTS = {
    'genre': 0.35,
    'actor': 0.35,
    'director': 0.20,
    'duration': 0.10,
}

# Match bonuses
GENRE_OVERLAP_CAP = 0.3
ACTOR_OVERLAP_CAP = 0.2
ACTOR_MULTI_MATCH_BONUS = 0.2   # Two or more shared actors
ACTOR_MULTI_MATCH_MIN = 2
DIRECTOR_MATCH_BONUS = 0.3

# Duration bands: (max absolute difference in minutes, score)
DURATION_BANDS = (
    (15, 1.0),
    (30, 0.8),
    (45, 0.6),
    (60, 0.4),
    (90, 0.2),
)

# Ranking
DEFAULT_RECOMMENDATION_LIMIT = _get_int_env("VIEWING_REC_DEFAULT_LIMIT", 10, min_val=1)
MIN_SIMILARITY = 0.05

# Cold start: profiles smaller than this skip scoring entirely
COLD_START_MIN_MOVIES = 3
COLD_START_SIMILARITY = 0.5
COLD_START_REASON = "Popular movies for new users"

# Genre backfill when too few candidates pass the threshold
GENRE_BACKFILL_TOP_N = 3
GENRE_BACKFILL_SIMILARITY = 0.3

# Reasons
DURATION_REASON_WINDOW = 30  # Minutes; strictly below counts as similar
REASON_SEPARATOR = " • "
DEFAULT_REASON = "Based on your viewing patterns"
