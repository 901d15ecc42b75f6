"""
Infrastructure layer: Overpass geodata client with caching, retry and endpoint rotation.
"""
import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Dict, Iterable, Optional, Sequence

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from app.config import settings
from app.domain.models import BoundingBox, GeodataFeature
from app.infrastructure.api_constants import APIConstants, OverpassQueries
from app.infrastructure.osm_geometry import parse_overpass_json

logger = logging.getLogger(__name__)

GeometryCollection = tuple[GeodataFeature, ...]

# Rotation needs at least this many equivalent mirrors
MIN_ENDPOINTS = 3


class GeodataRequestError(Exception):
    """A single fetch attempt failed (non-success status or transport error)."""

    def __init__(self, message: str, endpoint: str, status_code: Optional[int] = None):
        self.message = message
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(message)


class GeodataUnavailableError(Exception):
    """All fetch attempts were exhausted."""

    def __init__(self, message: str, attempts: int):
        self.message = message
        self.attempts = attempts
        super().__init__(message)


class FetchCancelledError(Exception):
    """The fetch was cancelled through its token; not a failure."""
    pass


class CancellationToken:
    """
    Cooperative cancellation signal shared between a scheduler and a fetch.
    """

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise FetchCancelledError("fetch cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def run(self, awaitable: Awaitable[Any]) -> Any:
        """
        Await ``awaitable`` unless the token fires first.

        The pending operation is cancelled when the token wins.

        Raises:
            FetchCancelledError: If cancelled before completion
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise FetchCancelledError("fetch cancelled")

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if not work.done():
            work.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await work
            raise FetchCancelledError("fetch cancelled")
        return work.result()


class GeodataCache:
    """
    Parsed geodata keyed by (bbox, tags, AOI signature).

    Lives as long as its owner (the process, for the shared client);
    entries are never evicted.
    """

    def __init__(self):
        self._entries: Dict[str, GeometryCollection] = {}

    @staticmethod
    def make_key(
        bbox: BoundingBox,
        tags: Iterable[str],
        aoi_signature: str,
        precision: int = 6,
    ) -> str:
        return f"{bbox.rounded(precision)}|{OverpassQueries.tag_alternation(tags)}|{aoi_signature}"

    def get(self, key: str) -> Optional[GeometryCollection]:
        return self._entries.get(key)

    def set(self, key: str, value: GeometryCollection) -> None:
        self._entries[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class OverpassClient:
    """
    Client for the Overpass API.

    Implements caching, retry with exponential backoff and jitter, and
    round-robin rotation over equivalent endpoints.
    """

    def __init__(
        self,
        endpoints: Optional[Sequence[str]] = None,
        cache: Optional[GeodataCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        jitter: Optional[float] = None,
        sleep=asyncio.sleep,
    ):
        """
        Initialize the client.

        Args:
            endpoints: Overpass interpreter URLs (defaults from settings)
            cache: Geodata cache (a private one is created if omitted)
            http_client: Pre-built httpx client
            max_attempts: Maximum attempts per resolve call
            base_delay: Base backoff in seconds
            max_delay: Cap for the exponential part of the backoff
            jitter: Maximum uniform jitter added to each backoff
            sleep: Coroutine used for backoff waits
        """
        self.endpoints = list(settings.overpass_endpoints if endpoints is None else endpoints)
        if len(self.endpoints) < MIN_ENDPOINTS:
            raise ValueError(f"At least {MIN_ENDPOINTS} Overpass endpoints are required")
        self.cache = cache if cache is not None else GeodataCache()
        self.max_attempts = max_attempts or settings.max_retry_attempts
        self.base_delay = settings.retry_base_delay if base_delay is None else base_delay
        self.max_delay = settings.retry_max_delay if max_delay is None else max_delay
        self.jitter = settings.retry_jitter if jitter is None else jitter
        self._sleep = sleep
        self._endpoint_index = 0
        self.client = http_client or httpx.AsyncClient(
            headers={
                "accept": APIConstants.CONTENT_TYPE_JSON,
                "User-Agent": APIConstants.USER_AGENT,
            },
            timeout=settings.http_timeout,
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "OverpassClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def current_endpoint(self) -> str:
        return self.endpoints[self._endpoint_index % len(self.endpoints)]

    def _advance_endpoint(self) -> None:
        self._endpoint_index = (self._endpoint_index + 1) % len(self.endpoints)

    async def resolve(
        self,
        bbox: BoundingBox,
        tags: Iterable[str],
        aoi_signature: str,
        token: Optional[CancellationToken] = None,
    ) -> GeometryCollection:
        """
        Fetch land-use features intersecting a bounding box.

        Args:
            bbox: Query extent
            tags: landuse values to query
            aoi_signature: Signature of the AOI the bbox was derived from
            token: Cancellation token

        Returns:
            Tuple of GeodataFeature (the cached object on a cache hit)

        Raises:
            GeodataUnavailableError: After exhausting every attempt
            FetchCancelledError: If the token fired
        """
        tags = sorted(set(tags))
        token = token or CancellationToken()
        key = GeodataCache.make_key(bbox, tags, aoi_signature, settings.cache_precision)

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Geodata cache hit for {key}")
            return cached

        query = OverpassQueries.landuse_query(bbox, tags, timeout=settings.overpass_query_timeout)
        payload = await self._fetch_with_retry(query, token)

        token.raise_if_cancelled()
        features = parse_overpass_json(payload)
        self.cache.set(key, features)
        logger.info(f"Fetched {len(features)} geodata features for bbox {bbox.rounded(4)}")
        return features

    async def _fetch_with_retry(self, query: str, token: CancellationToken) -> Dict[str, Any]:
        async def cancellable_sleep(seconds: float) -> None:
            await token.run(self._sleep(seconds))

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay)
            + wait_random(0, self.jitter),
            retry=retry_if_exception_type(GeodataRequestError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=cancellable_sleep,
            reraise=True,
        )
        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts += 1
                    endpoint = self.current_endpoint
                    try:
                        return await self._request(endpoint, query, token)
                    except GeodataRequestError:
                        self._advance_endpoint()
                        raise
        except GeodataRequestError as e:
            raise GeodataUnavailableError(
                f"Overpass failed after {attempts} attempts: {e.message}",
                attempts=attempts,
            ) from e

    async def _request(
        self,
        endpoint: str,
        query: str,
        token: CancellationToken,
    ) -> Dict[str, Any]:
        """
        Make a single GET request against one endpoint.

        Raises:
            GeodataRequestError: On non-success status, transport error, bad JSON
                or a JSON document that is not an object
            FetchCancelledError: If the token fired during the request
        """
        try:
            response = await token.run(
                self.client.get(endpoint, params={APIConstants.QUERY_PARAM: query})
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise GeodataRequestError(
                f"Overpass HTTP {e.response.status_code}",
                endpoint=endpoint,
                status_code=e.response.status_code,
            )
        except httpx.RequestError as e:
            raise GeodataRequestError(f"Overpass request error: {str(e)}", endpoint=endpoint)
        except ValueError as e:
            raise GeodataRequestError(f"Overpass returned invalid JSON: {str(e)}", endpoint=endpoint)

        if not isinstance(payload, dict):
            raise GeodataRequestError(
                f"Overpass returned {type(payload).__name__} instead of an object",
                endpoint=endpoint,
            )
        return payload


# Singleton instance
_overpass_client: Optional[OverpassClient] = None


def get_overpass_client() -> OverpassClient:
    """
    Get or create the process-wide Overpass client (and with it, the cache).

    Returns:
        OverpassClient instance
    """
    global _overpass_client
    if _overpass_client is None:
        _overpass_client = OverpassClient()
    return _overpass_client
