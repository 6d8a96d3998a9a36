# ImageCache: a single time-bounded background image slot fed by the Pexels search API
import asyncio
import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

import httpx

logger = logging.getLogger(__name__)

DEFAULT_QUERIES = (
    "music", "concert", "vinyl", "guitar", "headphones",
    "dj", "piano", "festival", "studio", "microphone",
)


class ImageSearchError(Exception):
    pass


class CacheUnavailableError(Exception):
    """A refresh failed and there is no earlier image to fall back on."""


@dataclass(frozen=True)
class CachedImage:
    url: Optional[str]
    source_query: str
    fetched_at_ms: int

    @property
    def is_empty(self) -> bool:
        return self.url is None

    @property
    def last_updated(self) -> str:
        ts = datetime.fromtimestamp(self.fetched_at_ms / 1000, tz=timezone.utc)
        return ts.isoformat(timespec="milliseconds").replace("+00:00", "Z")


EMPTY_IMAGE = CachedImage(url=None, source_query="", fetched_at_ms=0)


@dataclass(frozen=True)
class ImageLookup:
    image: CachedImage
    cached: bool


class PexelsClient:
    def __init__(self, client: httpx.AsyncClient, api_key: str, base_url: str = "https://api.pexels.com/v1"):
        self.client = client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    async def search_one(self, query: str, orientation: str = "landscape",
                         size: Optional[str] = None, color: Optional[str] = None) -> str:
        """Return the URL of the first photo matching the query."""
        params = {"query": query, "per_page": 1, "orientation": orientation}
        if size:
            params["size"] = size
        if color:
            params["color"] = color
        try:
            response = await self.client.get(
                f"{self.base_url}/search",
                params=params,
                headers={"Authorization": self.api_key},
            )
        except httpx.HTTPError as e:
            raise ImageSearchError(f"Pexels request failed: {e}") from e

        if not response.is_success:
            raise ImageSearchError(f"Pexels returned {response.status_code} {response.reason_phrase}")
        if "application/json" not in response.headers.get("content-type", ""):
            raise ImageSearchError("Expected JSON from Pexels, but got something else")

        try:
            body = response.json()
        except ValueError as e:
            raise ImageSearchError(f"Invalid JSON from Pexels: {e}") from e
        if not isinstance(body, dict):
            raise ImageSearchError("Unexpected response shape from Pexels")

        photos = body.get("photos") or []
        if not isinstance(photos, list) or not photos:
            raise ImageSearchError(f"No images found for '{query}'")
        photo = photos[0]
        src = photo.get("src") if isinstance(photo, dict) else None
        if not isinstance(src, dict):
            raise ImageSearchError(f"Image for '{query}' has no source URLs")
        url = src.get("large2x") or src.get("original")
        if not url:
            raise ImageSearchError(f"Image for '{query}' has no usable source URL")
        return url


class ImageCache:
    """Holds the last good background image and decides when to fetch a new one.

    The slot is only ever replaced as a whole, so a timer refresh and a request refresh
    interleaving on the event loop never expose a half-written record.
    """

    def __init__(self, search: PexelsClient, queries: Sequence[str] = DEFAULT_QUERIES,
                 cache_seconds: float = 60, clock: Callable[[], float] = time.time,
                 choose: Callable[[Sequence[str]], str] = random.choice):
        if not queries:
            raise ValueError("At least one fallback query is required")
        self.search = search
        self.queries = list(queries)
        self.cache_ms = int(cache_seconds * 1000)
        self._clock = clock
        self._choose = choose
        self._slot = EMPTY_IMAGE

    @property
    def current(self) -> CachedImage:
        return self._slot

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def is_stale(self) -> bool:
        slot = self._slot
        return slot.is_empty or self._now_ms() - slot.fetched_at_ms > self.cache_ms

    async def refresh(self, query: Optional[str] = None, orientation: str = "landscape",
                      size: Optional[str] = None, color: Optional[str] = None) -> CachedImage:
        """Fetch a new image and replace the slot. Raises ImageSearchError, leaving the slot as it was."""
        query = query or self._choose(self.queries)
        url = await self.search.search_one(query, orientation=orientation, size=size, color=color)
        self._slot = CachedImage(url=url, source_query=query, fetched_at_ms=self._now_ms())
        logger.info(f"Background image refreshed for query '{query}'")
        return self._slot

    async def refresh_quietly(self) -> None:
        try:
            await self.refresh()
        except ImageSearchError as e:
            logger.warning(f"Scheduled background image refresh failed: {e}")

    async def run_periodic(self, interval: float) -> None:
        """Refresh now, then every ``interval`` seconds until cancelled."""
        while True:
            await self.refresh_quietly()
            await asyncio.sleep(interval)

    async def lookup(self, force_refresh: bool = False, query: Optional[str] = None,
                     orientation: str = "landscape", size: Optional[str] = None,
                     color: Optional[str] = None) -> ImageLookup:
        if not force_refresh and not self.is_stale():
            return ImageLookup(self._slot, cached=True)
        try:
            image = await self.refresh(query=query, orientation=orientation, size=size, color=color)
        except ImageSearchError as e:
            # Read again: the timer may have filled the slot while we were waiting
            fallback = self._slot
            if fallback.is_empty:
                raise CacheUnavailableError(str(e)) from e
            logger.warning(f"Image refresh failed, serving cached image: {e}")
            return ImageLookup(fallback, cached=True)
        return ImageLookup(image, cached=False)
