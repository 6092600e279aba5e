"""Title and field parsing helpers shared across viewing_rec."""

import re

from .config import NOT_AVAILABLE

_DIGITS = re.compile(r"(\d+)")
_MAX_DURATION_DIGITS = 6  # Longer digit runs are garbage, not runtimes


def clean_title(title: str) -> str:
    """
    Clean a raw viewing-history title into a metadata lookup key.

    Streaming exports look like ``"Show Name: Season 1: Episode Title"``;
    only the part before the first colon identifies the title.
    """
    cleaned = title.strip()
    previous = None
    # Repeat until stable so cleaning an already-clean key is a no-op
    while cleaned != previous:
        previous = cleaned
        if len(cleaned) >= 2 and cleaned.startswith('"') and cleaned.endswith('"'):
            cleaned = cleaned[1:-1].strip()
        if ':' in cleaned:
            cleaned = cleaned.split(':', 1)[0].strip()
    return cleaned


def title_key(title: str) -> str:
    """Case-insensitive key used to match titles the user has already watched."""
    return title.strip().lower()


def split_names(value: str | None) -> list[str]:
    """
    Split a comma-joined name field into clean tokens.

    Empty tokens and the provider's "N/A" sentinel are dropped; duplicates
    keep their first position.
    """
    if not value:
        return []
    names = (part.strip() for part in value.split(','))
    return list(dict.fromkeys(n for n in names if n and n != NOT_AVAILABLE))


def parse_duration_minutes(value: str | None) -> int | None:
    """Extract the first integer from free-text runtime ("142 min"), or None."""
    if not value:
        return None
    match = _DIGITS.search(value)
    if not match or len(match.group(1)) > _MAX_DURATION_DIGITS:
        return None
    return int(match.group(1))


def clean_field(value) -> str | None:
    """Map blank values and the "N/A" sentinel to None at the data boundary."""
    if value is None:
        return None
    text = str(value).strip()
    if not text or text == NOT_AVAILABLE:
        return None
    return text
