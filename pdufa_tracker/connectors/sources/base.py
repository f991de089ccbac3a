"""PDUFA Tracker — Base Source Client.

Handles the shared HTTP session, retry logic and rate limiting for every
upstream PDUFA calendar. Subclasses only implement ``_fetch``.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from pdufa_tracker.config import settings
from pdufa_tracker.core.errors import FetchError
from pdufa_tracker.core.logging import get_logger
from pdufa_tracker.core.retry import RetryPolicy
from pdufa_tracker.models.raw_models import RawRecord

logger = get_logger("sources")

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


class BaseSource(ABC):
    """Async fetcher for one upstream data provider."""

    name: str = ""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        retry: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
    ):
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout or settings.http_timeout
        self.retry = retry or RetryPolicy(max_attempts=settings.fetch_max_retries)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=DEFAULT_HEADERS,
                follow_redirects=True,
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    # ── Core Request Method ──

    async def _request(
        self,
        url: str,
        params: Dict[str, Any] | None = None,
    ) -> httpx.Response:
        """GET with retry + rate-limit handling. Raises FetchError."""
        client = await self._get_client()

        attempt = 0
        while True:
            attempt += 1
            try:
                resp = await client.get(url, params=params)
            except httpx.RequestError as e:
                if self.retry.can_retry(attempt):
                    wait = self.retry.delay_for(attempt)
                    logger.warning(
                        f"Request error from {self.name}: {e}. Retrying in {wait}s",
                        extra={"source": self.name, "attempt": attempt},
                    )
                    await self.retry.wait(attempt)
                    continue
                raise FetchError(
                    self.name,
                    f"connection failed after {attempt} attempts: {e}",
                ) from e

            if RetryPolicy.is_retryable_status(resp.status_code):
                retry_after = (
                    RetryPolicy.parse_retry_after(resp.headers.get("Retry-After"))
                    if resp.status_code == 429
                    else None
                )
                if self.retry.can_retry(attempt):
                    wait = self.retry.delay_for(attempt, retry_after)
                    logger.warning(
                        f"{self.name} returned {resp.status_code}. Retrying in {wait}s "
                        f"(attempt {attempt}/{self.retry.max_attempts})",
                        extra={"source": self.name, "status_code": resp.status_code},
                    )
                    await self.retry.wait(attempt, retry_after)
                    continue
                raise FetchError(
                    self.name,
                    f"HTTP {resp.status_code} after {attempt} attempts",
                    resp.status_code,
                )

            if resp.status_code >= 400:
                raise FetchError(
                    self.name, f"HTTP {resp.status_code}", resp.status_code
                )
            return resp

    async def get_text(self, url: str, params: Dict[str, Any] | None = None) -> str:
        resp = await self._request(url, params)
        return resp.text

    # ── Public API ──

    async def fetch(self) -> List[RawRecord]:
        """Return raw candidate records or raise FetchError."""
        try:
            records = await self._fetch()
        except FetchError:
            raise
        except Exception as e:
            # Parser bugs on unexpected markup are still a per-source failure
            raise FetchError(self.name, f"unusable response: {e}") from e
        logger.info(
            f"Fetched {len(records)} raw records from {self.name}",
            extra={"source": self.name, "record_count": len(records)},
        )
        return records

    @abstractmethod
    async def _fetch(self) -> List[RawRecord]:
        ...
