"""
APICAR history API client.

Copart and IAAI sale history are served by the same endpoint and selected
with the `site` parameter (1 = Copart, 2 = IAAI). Each provider gets its
own client instance so that rate limiting and retries are independent.
"""

import asyncio
import logging

import httpx

from auction_collector.core.config import APICAR_BASE_URL
from auction_collector.core.errors import (
    MalformedResponse,
    ProviderRateLimited,
    ProviderUnavailable,
)
from auction_collector.core.resilience import ExponentialBackoff, RateLimiter
from auction_collector.models.sale import SaleRecord
from auction_collector.providers.base import PageResult, SaleQuery

logger = logging.getLogger(__name__)

RETRYABLE_EXCEPTIONS = (httpx.TimeoutException, httpx.TransportError)


def _extract_rows(payload) -> tuple[list, dict]:
    """Find the list of sale rows and the dict carrying pagination hints."""
    if isinstance(payload, list):
        return payload, {}
    if not isinstance(payload, dict):
        raise ValueError(f"unexpected payload type {type(payload).__name__}")

    data = payload.get("data")
    if isinstance(data, list):
        return data, payload
    # Paginator envelope: {"data": {"data": [...], "current_page": 1, "last_page": 7}}
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        return data["data"], data
    raise ValueError("payload has no 'data' list")


def _has_more(meta: dict, page: int, rows: list) -> bool:
    """Decide whether another page exists, preferring explicit hints."""
    if "has_more" in meta:
        return bool(meta["has_more"])
    for key in ("last_page", "total_pages", "pages"):
        if meta.get(key) is not None:
            try:
                return page < int(meta[key])
            except (TypeError, ValueError):
                raise ValueError(f"{key} is not a page number: {meta[key]!r}") from None
    if "next_page_url" in meta:
        return meta["next_page_url"] is not None
    return len(rows) > 0


class ApiCarClient:
    """
    Rate-limited client for one APICAR site.

    Features:
    - Minimum spacing between consecutive requests
    - Exponential backoff on transport errors and 5xx
    - Extended backoff on 429 (Retry-After honored)
    """

    def __init__(
        self,
        name: str,
        site: int,
        api_key: str = "",
        base_url: str = APICAR_BASE_URL,
        rate_limiter: RateLimiter | None = None,
        backoff: ExponentialBackoff | None = None,
        rate_limit_factor: float = 4.0,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.name = name
        self.site = site
        self.api_key = api_key
        self.base_url = base_url
        self.rate_limiter = rate_limiter or RateLimiter(min_interval=1.0, name=name)
        self.backoff = backoff or ExponentialBackoff()
        self.rate_limit_factor = rate_limit_factor
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=timeout), follow_redirects=True
        )

        # Statistics
        self.stats: dict = {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "rate_limited": 0,
            "records": 0,
        }

        if not api_key:
            logger.warning(f"[{name}] No APICAR_API_KEY configured. Requests will likely be rejected.")

    def _params(self, query: SaleQuery, page: int) -> dict:
        params = {
            "make": query.make,
            "site": self.site,
            "page": page,
            "size": query.page_size,
        }
        if query.year_from:
            params["year_from"] = query.year_from
        if query.year_to:
            params["year_to"] = query.year_to
        if query.model:
            params["model"] = query.model
        return params

    # ──────────────────────────────────────────────
    # HTTP Layer
    # ──────────────────────────────────────────────

    async def _request(self, params: dict, attempt: int = 0) -> httpx.Response:
        """Make HTTP request with rate limiting, exponential backoff and retry."""
        await self.rate_limiter.acquire()
        self.stats["total_requests"] += 1

        try:
            resp = await self._client.get(
                self.base_url,
                params=params,
                headers={"api-key": self.api_key, "Accept": "application/json"},
            )
        except RETRYABLE_EXCEPTIONS as e:
            self.stats["failed_requests"] += 1
            if self.backoff.should_retry(attempt):
                delay = self.backoff.delay(attempt)
                logger.debug(
                    f"[{self.name}] Request failed ({type(e).__name__}), "
                    f"retry {attempt + 1} after {delay:.1f}s"
                )
                await asyncio.sleep(delay)
                return await self._request(params, attempt + 1)
            raise ProviderUnavailable(
                self.name, f"{type(e).__name__} after {attempt + 1} attempts: {e}"
            ) from e

        if resp.status_code == 429:
            self.stats["rate_limited"] += 1
            retry_after = self._retry_after(resp)
            if self.backoff.should_retry(attempt):
                delay = self.backoff.throttled_delay(attempt, self.rate_limit_factor, retry_after)
                logger.warning(f"[{self.name}] Rate limited. Waiting {delay:.1f}s...")
                await asyncio.sleep(delay)
                return await self._request(params, attempt + 1)
            self.stats["failed_requests"] += 1
            raise ProviderRateLimited(
                self.name, f"rate limited after {attempt + 1} attempts", retry_after=retry_after
            )

        if resp.status_code >= 500:
            self.stats["failed_requests"] += 1
            if self.backoff.should_retry(attempt):
                delay = self.backoff.delay(attempt)
                logger.debug(
                    f"[{self.name}] HTTP {resp.status_code}, retry {attempt + 1} after {delay:.1f}s"
                )
                await asyncio.sleep(delay)
                return await self._request(params, attempt + 1)
            raise ProviderUnavailable(
                self.name, f"HTTP {resp.status_code} after {attempt + 1} attempts"
            )

        if resp.status_code != 200:
            self.stats["failed_requests"] += 1
            raise ProviderUnavailable(self.name, f"HTTP {resp.status_code}: {resp.text[:200]}")

        self.stats["successful_requests"] += 1
        return resp

    @staticmethod
    def _retry_after(resp: httpx.Response) -> float | None:
        value = resp.headers.get("Retry-After")
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    # ──────────────────────────────────────────────
    # Pages
    # ──────────────────────────────────────────────

    async def fetch_page(self, query: SaleQuery, page: int) -> PageResult:
        """Fetch and normalize one page of sale history."""
        resp = await self._request(self._params(query, page))

        try:
            rows, meta = _extract_rows(resp.json())
            has_more = _has_more(meta, page, rows)
        except ValueError as e:
            raise MalformedResponse(self.name, f"page {page} of {query.make}: {e}") from e

        records = []
        skipped = 0
        for row in rows:
            try:
                records.append(SaleRecord.from_api(self.name, self.site, row))
            except ValueError as e:
                skipped += 1
                logger.debug(f"[{self.name}] Skipping malformed row on page {page}: {e}")

        if rows and not records:
            raise MalformedResponse(
                self.name, f"page {page} of {query.make}: all {len(rows)} rows malformed"
            )
        if skipped:
            logger.warning(f"[{self.name}] Skipped {skipped} malformed rows on page {page}")

        self.stats["records"] += len(records)
        return PageResult(
            records=records,
            has_more=has_more,
            next_page=page + 1,
            skipped=skipped,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
