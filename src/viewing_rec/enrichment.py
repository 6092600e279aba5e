"""
Metadata enrichment: turn raw viewing-history titles into stored records.

Titles are cleaned and de-duplicated, then looked up in fixed-size batches.
Every lookup in a batch runs concurrently and settles independently, so a
failing title never takes its siblings down. Batches are separated by a
pacing delay to stay under the provider's rate limit.
"""

import asyncio
import logging
import math
import sqlite3
from dataclasses import dataclass
from types import ModuleType
from typing import Any, Callable, Iterable, Protocol

import httpx

from . import database
from .config import ENRICH_BATCH_SIZE, ENRICH_BATCH_DELAY
from .database import MovieRecord
from .errors import MissingUserError
from .metadata import MovieMetadata
from .utils import clean_title

logger = logging.getLogger(__name__)


class MetadataProvider(Protocol):
    async def lookup(self, title: str) -> MovieMetadata | None: ...


@dataclass
class EnrichmentProgress:
    processed: int = 0
    total: int = 0
    batch: int = 0
    total_batches: int = 0


def dedupe_titles(titles: Iterable[str]) -> dict[str, str]:
    """
    Map each cleaned lookup key to the first original title that produced it.

    "Show: Season 1" and "Show: Season 2" collapse to one lookup for "Show".
    """
    unique: dict[str, str] = {}
    for original in titles:
        key = clean_title(original)
        if not key:
            continue
        unique.setdefault(key, original)
    return unique


def _build_record(user_id: str, original_title: str, meta: MovieMetadata) -> MovieRecord:
    return MovieRecord(
        user_id=user_id,
        title=original_title,
        genre=meta.genre,
        cast=meta.cast,
        director=meta.director,
        duration=meta.runtime,
        poster_url=meta.poster_url,
    )


class MetadataEnricher:
    """
    Batch scheduler for metadata lookups.

    `progress` is updated after every batch and, if given, `on_progress`
    is called with it. Store calls run in worker threads.
    """

    def __init__(
        self,
        provider: MetadataProvider,
        store: ModuleType | Any = database,
        batch_size: int = ENRICH_BATCH_SIZE,
        batch_delay: float = ENRICH_BATCH_DELAY,
        on_progress: Callable[[EnrichmentProgress], None] | None = None,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self.provider = provider
        self.store = store
        self.batch_size = batch_size
        self.batch_delay = max(0.0, batch_delay)
        self.on_progress = on_progress
        self.progress = EnrichmentProgress()

    async def enrich(self, titles: Iterable[str], user_id: str) -> list[MovieRecord]:
        """
        Resolve metadata for every distinct title and return the records.

        Titles already stored for this user are reused without a lookup,
        which makes re-running an interrupted enrichment safe. Titles the
        provider cannot resolve are left out of the result.
        """
        if not user_id:
            raise MissingUserError("enrichment")

        unique = list(dedupe_titles(titles).items())
        total_batches = math.ceil(len(unique) / self.batch_size)
        self.progress = EnrichmentProgress(total=len(unique), total_batches=total_batches)
        logger.info(f"Enriching {len(unique)} unique titles in {total_batches} batches")

        records: list[MovieRecord] = []
        for index in range(total_batches):
            start = index * self.batch_size
            batch = unique[start:start + self.batch_size]

            records.extend(await self._run_batch(batch, user_id))

            self.progress = EnrichmentProgress(
                processed=min(start + self.batch_size, len(unique)),
                total=len(unique),
                batch=index + 1,
                total_batches=total_batches,
            )
            if self.on_progress:
                self.on_progress(self.progress)

            if index + 1 < total_batches and self.batch_delay:
                await asyncio.sleep(self.batch_delay)

        logger.info(f"Enrichment complete: {len(records)}/{len(unique)} titles resolved")
        return records

    async def _run_batch(self, batch: list[tuple[str, str]], user_id: str) -> list[MovieRecord]:
        tasks = [self._process_title(key, original, user_id) for key, original in batch]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        successful = []
        error_summary: dict[str, int] = {}
        for (_, original), result in zip(batch, results):
            if isinstance(result, Exception):
                error_type = type(result).__name__
                logger.error(f"Failed to enrich '{original}': {error_type}: {result}")
                error_summary[error_type] = error_summary.get(error_type, 0) + 1
            elif result is not None:
                successful.append(result)

        failed = len(batch) - len(successful)
        if failed:
            logger.warning(f"Batch complete: {len(successful)}/{len(batch)} successful, {failed} failed")
            if error_summary:
                logger.info(f"Error breakdown: {error_summary}")
        else:
            logger.debug(f"Batch complete: {len(successful)}/{len(batch)} successful")
        return successful

    async def _process_title(self, key: str, original: str, user_id: str) -> MovieRecord | None:
        existing = await asyncio.to_thread(self.store.find_record, user_id, original)
        if existing:
            return existing

        try:
            meta = await self.provider.lookup(key)
        except httpx.HTTPError as e:
            logger.warning(f"Lookup failed for '{key}': {type(e).__name__}: {e}")
            return None
        if meta is None:
            logger.debug(f"No metadata for '{key}' (from '{original}')")
            return None

        record = _build_record(user_id, original, meta)
        try:
            return await asyncio.to_thread(self.store.insert_record, record)
        except sqlite3.Error as e:
            logger.error(f"Error storing metadata for '{original}': {e}")
            return None


async def attach_posters(
    recommendations: list,
    provider: MetadataProvider,
    store: ModuleType | Any = database,
) -> list:
    """
    Fill in posters for recommendations whose record has none.

    Found posters are backfilled onto the stored record. A failed lookup
    leaves that recommendation without a poster.
    """
    missing = [rec for rec in recommendations if not (rec.poster_url or rec.record.poster_url)]
    if not missing:
        return recommendations

    async def _fetch(rec):
        meta = await provider.lookup(clean_title(rec.record.title))
        if meta is None or not meta.poster_url:
            return
        rec.poster_url = meta.poster_url
        await asyncio.to_thread(store.update_poster, rec.record.user_id, rec.record.title, meta.poster_url)

    results = await asyncio.gather(*(_fetch(rec) for rec in missing), return_exceptions=True)
    for rec, result in zip(missing, results):
        if isinstance(result, Exception):
            logger.warning(f"Failed to fetch poster for '{rec.record.title}': {type(result).__name__}: {result}")

    return recommendations
