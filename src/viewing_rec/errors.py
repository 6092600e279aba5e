"""Exceptions raised by the enrichment and ranking entry points."""


class ViewingRecError(Exception):
    """Base class for viewing_rec failures."""


class MissingUserError(ViewingRecError, ValueError):
    """No user id was supplied; nothing can be enriched or ranked."""

    def __init__(self, operation: str = "this operation"):
        super().__init__(f"A user id is required for {operation}")


class RecordStoreError(ViewingRecError):
    """A whole-collection read from the record store failed."""
