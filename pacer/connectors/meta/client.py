"""PACER — Meta API Client.

The single HTTP entry point to the Marketing API: every call goes through
one rate limiter and one retry policy. Handles pagination over `after`
cursors with a hard page ceiling.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel

from pacer.config import Settings, settings
from pacer.connectors.meta.transformer import safe_int
from pacer.core.errors import PermanentFetchFailure, TransientFetchFailure
from pacer.core.logging import get_logger
from pacer.models.sync_models import FetchPage

logger = get_logger("meta.client")

# Meta reports some throttling as HTTP 400 with one of these error codes.
THROTTLE_ERROR_CODES = {4, 17, 32, 613, 80004}

SleepFn = Callable[[float], Awaitable[None]]


class RetryPolicy(BaseModel):
    """Exponential backoff: base_delay * multiplier ** (retry - 1)."""

    base_delay: float = 1.0
    multiplier: float = 2.0
    max_retries: int = 3

    def delay_for(self, retry: int) -> float:
        return self.base_delay * (self.multiplier ** (retry - 1))

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "RetryPolicy":
        return cls(
            base_delay=s.retry_base_delay,
            multiplier=s.retry_multiplier,
            max_retries=s.max_retries,
        )


class FetcherConfig(BaseModel):
    """Everything the client needs; no hidden globals."""

    access_token: str = ""
    base_url: str = "https://graph.facebook.com"
    api_version: str = "v21.0"
    min_interval: float = 0.5
    max_pages: int = 50
    timeout: float = 30.0
    retry: RetryPolicy = RetryPolicy()

    @property
    def api_root(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.api_version}"

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "FetcherConfig":
        return cls(
            access_token=s.meta_access_token,
            base_url=s.meta_base_url,
            api_version=s.meta_api_version,
            min_interval=s.request_min_interval,
            max_pages=s.max_pages,
            timeout=s.http_timeout,
            retry=RetryPolicy.from_settings(s),
        )


class RateLimiter:
    """Enforces a minimum spacing between consecutive requests."""

    def __init__(
        self,
        min_interval: float,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_interval = min_interval
        self._sleep = sleep
        self._clock = clock
        self._last: Optional[float] = None

    async def acquire(self) -> None:
        if self._last is not None and self.min_interval > 0:
            wait = self._last + self.min_interval - self._clock()
            if wait > 0:
                await self._sleep(wait)
        self._last = self._clock()


def _response_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


def _error_detail(body: Any) -> tuple[str, int]:
    """Pull (message, error_code) out of a Graph API error body."""
    if isinstance(body, dict):
        error = body.get("error") or {}
        if isinstance(error, dict):
            return str(error.get("message", "")), safe_int(error.get("code"))
    return str(body)[:500], 0


def next_cursor(payload: Dict[str, Any]) -> Optional[str]:
    """The `after` cursor, only when `paging.next` says there is more.

    Meta keeps returning cursors on the last page.
    """
    paging = payload.get("paging")
    if not isinstance(paging, dict) or not paging.get("next"):
        return None
    cursors = paging.get("cursors")
    if not isinstance(cursors, dict) or not cursors.get("after"):
        return None
    return str(cursors["after"])


class MetaClient:
    """Async HTTP client for the Meta Marketing API."""

    def __init__(
        self,
        config: FetcherConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self._transport = transport
        self._sleep = sleep
        self._limiter = RateLimiter(config.min_interval, sleep=sleep, clock=clock)
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.config.timeout, transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "MetaClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Core Request Method ──

    async def request(
        self, endpoint: str, params: Dict[str, Any] | None = None
    ) -> Dict[str, Any]:
        """GET one endpoint with rate limiting and bounded retries.

        Retries 429, 5xx, throttling error codes and connection errors up
        to `max_retries` times. Any other 4xx fails at once.
        """
        url = f"{self.config.api_root}/{endpoint.lstrip('/')}"
        query = dict(params or {})
        query["access_token"] = self.config.access_token
        policy = self.config.retry

        client = await self._get_client()
        last_status = 0
        last_body: Any = None
        attempt = 0

        for attempt in range(1, policy.max_retries + 2):
            await self._limiter.acquire()
            retryable = False
            try:
                resp = await client.get(url, params=query)
            except httpx.RequestError as e:
                last_status, last_body = 0, str(e)
                retryable = True
            else:
                body = _response_body(resp)
                message, error_code = _error_detail(body)
                if (
                    resp.status_code == 429
                    or resp.status_code >= 500
                    or (resp.status_code >= 400 and error_code in THROTTLE_ERROR_CODES)
                ):
                    last_status, last_body = resp.status_code, body
                    retryable = True
                elif resp.status_code >= 400:
                    logger.error(
                        f"Permanent error {resp.status_code} from {endpoint}: {message}",
                        extra={
                            "endpoint": endpoint,
                            "status_code": resp.status_code,
                            "attempt": attempt,
                        },
                    )
                    raise PermanentFetchFailure(
                        message or f"HTTP {resp.status_code}",
                        endpoint=endpoint,
                        status_code=resp.status_code,
                        payload=body,
                    )
                elif not isinstance(body, dict):
                    raise PermanentFetchFailure(
                        "Malformed payload: expected a JSON object",
                        endpoint=endpoint,
                        status_code=resp.status_code,
                        payload=body,
                    )
                else:
                    return body

            if retryable and attempt <= policy.max_retries:
                wait = policy.delay_for(attempt)
                logger.warning(
                    f"Transient failure ({last_status or 'connection'}) on {endpoint}. "
                    f"Retrying in {wait}s (retry {attempt}/{policy.max_retries})",
                    extra={
                        "endpoint": endpoint,
                        "status_code": last_status,
                        "attempt": attempt,
                    },
                )
                await self._sleep(wait)

        raise TransientFetchFailure(
            f"Gave up on {endpoint} after {attempt} attempts",
            endpoint=endpoint,
            status_code=last_status,
            attempts=attempt,
            last_body=last_body,
        )

    # ── Pagination ──

    async def fetch_page(
        self,
        endpoint: str,
        params: Dict[str, Any] | None = None,
        cursor: str | None = None,
    ) -> FetchPage:
        """Fetch one page of a list endpoint."""
        query = dict(params or {})
        if cursor:
            query["after"] = cursor
        result = await self.request(endpoint, query)

        data = result.get("data", [])
        if not isinstance(data, list):
            raise PermanentFetchFailure(
                "Malformed payload: 'data' is not a list",
                endpoint=endpoint,
                payload=result,
            )

        records = [item for item in data if isinstance(item, dict)]
        if len(records) < len(data):
            logger.warning(
                f"Dropped {len(data) - len(records)} non-object records from {endpoint}",
                extra={"endpoint": endpoint},
            )

        return FetchPage(records=records, next_cursor=next_cursor(result))

    async def paginate(
        self,
        endpoint: str,
        params: Dict[str, Any] | None = None,
        max_pages: int | None = None,
    ) -> List[Dict[str, Any]]:
        """Follow `after` cursors until exhausted or the page ceiling is hit."""
        max_pages = max_pages or self.config.max_pages
        all_data: List[Dict[str, Any]] = []
        seen_cursors: set[str] = set()
        cursor: str | None = None

        for page in range(1, max_pages + 1):
            result = await self.fetch_page(endpoint, params, cursor)
            all_data.extend(result.records)

            if not result.next_cursor:
                break
            if result.next_cursor in seen_cursors:
                logger.warning(
                    f"Repeated cursor on {endpoint} at page {page}; stopping",
                    extra={"endpoint": endpoint},
                )
                break
            seen_cursors.add(result.next_cursor)
            cursor = result.next_cursor
        else:
            logger.warning(
                f"Page ceiling ({max_pages}) reached on {endpoint}; results truncated",
                extra={"endpoint": endpoint},
            )

        logger.info(f"Fetched {len(all_data)} records from {endpoint}")
        return all_data
