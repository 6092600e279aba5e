"""OMDb metadata provider: title lookups over httpx."""

import asyncio
import logging
import random
from dataclasses import dataclass

import httpx

from .config import (
    OMDB_API_KEY,
    OMDB_BASE_URL,
    HTTP_TIMEOUT,
    MAX_HTTP_RETRIES,
    DEFAULT_RETRY_AFTER,
)
from .utils import clean_field

logger = logging.getLogger(__name__)


@dataclass
class MovieMetadata:
    title: str
    genre: str | None
    cast: str | None
    director: str | None
    runtime: str | None
    poster_url: str | None


def parse_omdb_payload(payload: dict) -> MovieMetadata:
    """
    Map an OMDb title response onto MovieMetadata.

    OMDb fills unknown fields with "N/A"; those become None here so the
    sentinel never travels past the provider boundary.
    """
    return MovieMetadata(
        title=clean_field(payload.get('Title')) or '',
        genre=clean_field(payload.get('Genre')),
        cast=clean_field(payload.get('Actors')),
        director=clean_field(payload.get('Director')),
        runtime=clean_field(payload.get('Runtime')),
        poster_url=clean_field(payload.get('Poster')),
    )


class OMDbClient:
    """
    Async OMDb client.

    Use as an async context manager, or pass an existing httpx.AsyncClient.
    `lookup` returns None for titles OMDb does not know and for requests
    that keep failing; it only raises when used without a client.
    """

    def __init__(
        self,
        api_key: str = OMDB_API_KEY,
        base_url: str = OMDB_BASE_URL,
        timeout: float = HTTP_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.client = client
        self._owns_client = client is None

    async def __aenter__(self):
        if self.client is None:
            self.client = httpx.AsyncClient(
                headers={"User-Agent": "viewing-rec/1.0"},
                follow_redirects=True,
                timeout=self.timeout,
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.client and self._owns_client:
            await self.client.aclose()
            self.client = None
        return False

    async def lookup(self, title: str) -> MovieMetadata | None:
        """Fetch metadata for one title (exact-title search)."""
        if not self.client:
            raise RuntimeError("OMDbClient must be used as an async context manager or given a client")

        params = {"t": title, "apikey": self.api_key}

        for attempt in range(MAX_HTTP_RETRIES):
            try:
                resp = await self.client.get(f"{self.base_url}/", params=params)

                if resp.status_code == 404:
                    logger.debug(f"Not found on OMDb: {title}")
                    return None

                if resp.status_code == 429:
                    retry_after = int(resp.headers.get("Retry-After", DEFAULT_RETRY_AFTER))
                    logger.warning(
                        f"Rate limited on '{title}', waiting {retry_after}s "
                        f"(attempt {attempt + 1}/{MAX_HTTP_RETRIES})"
                    )
                    await asyncio.sleep(retry_after + random.uniform(0, 0.5))
                    continue

                resp.raise_for_status()
                data = resp.json()

                if data.get('Response') == 'False':
                    logger.debug(f"No OMDb data for '{title}': {data.get('Error', 'unknown error')}")
                    return None

                return parse_omdb_payload(data)

            except httpx.TimeoutException:
                wait_time = 2 ** attempt
                logger.warning(
                    f"Timeout on '{title}', retrying in {wait_time}s (attempt {attempt + 1}/{MAX_HTTP_RETRIES})"
                )
                await asyncio.sleep(wait_time)

            except httpx.HTTPStatusError as e:
                logger.error(f"HTTP {e.response.status_code} on '{title}': {e}")
                return None

            except httpx.HTTPError as e:
                logger.error(f"Request error on '{title}': {type(e).__name__}: {e}")
                return None

            except ValueError as e:
                logger.error(f"Malformed OMDb response for '{title}': {e}")
                return None

        logger.error(f"Max retries exceeded for '{title}'")
        return None
