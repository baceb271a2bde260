"""Rate-limited HTTP fetcher shared by every Gelbooru call.

All callers sharing one fetcher share one concurrency cap and one pacing
clock: no two request starts are closer than ``min_interval`` seconds.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from favmirror.core.async_utils import raise_if_stopped
from favmirror.core.backoff import linear_delay
from favmirror.core.logging_utils import truncate_log_content
from favmirror.domain.exceptions import PageUnavailableError, SourceError, SourceHTTPError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

logger = logging.getLogger(__name__)

T = TypeVar("T")

THROTTLED_STATUS = 429
DEFAULT_MAX_CONCURRENT = 5
DEFAULT_MIN_INTERVAL = 0.1  # seconds between request starts
DEFAULT_MAX_ATTEMPTS = 3
THROTTLE_BACKOFF_STEP = 1.0  # seconds per attempt after a 429
ERROR_BACKOFF_STEP = 0.5  # seconds per attempt after a transport failure
DOWNLOAD_CHUNK_SIZE = 64 * 1024


class RateLimitedFetcher:
    """Bounded-concurrency, paced GET/POST with linear retry on throttling."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        throttle_step: float = THROTTLE_BACKOFF_STEP,
        error_step: float = ERROR_BACKOFF_STEP,
        stop_event: asyncio.Event | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent))
        self._min_interval = max(0.0, min_interval)
        self._max_attempts = max(1, max_attempts)
        self._throttle_step = throttle_step
        self._error_step = error_step
        self._stop_event = stop_event
        self._sleep = sleep
        self._pace_lock = asyncio.Lock()
        self._last_start: float | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def _pace(self) -> None:
        async with self._pace_lock:
            loop = asyncio.get_running_loop()
            if self._last_start is not None:
                wait = self._last_start + self._min_interval - loop.time()
                if wait > 0:
                    await self._sleep(wait)
            self._last_start = loop.time()

    async def _request(
        self,
        method: str,
        url: str,
        consume: Callable[[httpx.Response], Awaitable[T]],
        *,
        params: Mapping[str, Any] | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> T:
        """Send one request, retrying throttling and transport failures.

        Raises:
            SourceHTTPError: Non-2xx status other than 429 (not retried)
            PageUnavailableError: Attempts exhausted
            SyncCancelledError: Stop signal observed between attempts
        """
        last_reason = ""
        for attempt in range(1, self._max_attempts + 1):
            raise_if_stopped(self._stop_event, where="fetch")
            async with self._semaphore:
                await self._pace()
                try:
                    async with self._client.stream(method, url, params=params, data=data) as response:
                        if response.status_code == THROTTLED_STATUS:
                            delay = linear_delay(attempt, self._throttle_step)
                            last_reason = "throttled"
                            logger.warning(
                                "source_throttled",
                                extra={"url": url, "attempt": attempt, "delay_seconds": delay},
                            )
                        elif response.is_success:
                            return await consume(response)
                        else:
                            body = truncate_log_content((await response.aread()).decode(errors="replace"))
                            logger.warning(
                                "source_http_error",
                                extra={"url": url, "status": response.status_code, "body": body},
                            )
                            raise SourceHTTPError(
                                f"HTTP {response.status_code} for {url}",
                                status_code=response.status_code,
                                url=url,
                            )
                except httpx.TransportError as exc:
                    delay = linear_delay(attempt, self._error_step)
                    last_reason = f"{type(exc).__name__}: {exc}"
                    logger.warning(
                        "source_transport_error",
                        extra={
                            "url": url,
                            "attempt": attempt,
                            "delay_seconds": delay,
                            "error": str(exc),
                        },
                    )
            if attempt < self._max_attempts:
                await self._sleep(delay)

        logger.warning(
            "source_page_unavailable",
            extra={"url": url, "attempts": self._max_attempts, "reason": last_reason},
        )
        raise PageUnavailableError(
            f"Gave up on {url} after {self._max_attempts} attempts ({last_reason})",
            attempts=self._max_attempts,
            url=url,
        )

    async def fetch_text(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        method: str = "GET",
        data: Mapping[str, Any] | None = None,
    ) -> str:
        async def _consume(response: httpx.Response) -> str:
            await response.aread()
            return response.text

        return await self._request(method, url, _consume, params=params, data=data)

    async def fetch_json(self, url: str, *, params: Mapping[str, Any] | None = None) -> Any:
        """GET ``url`` and decode the body as JSON.

        An empty body decodes to ``{}``; Gelbooru answers that way for some
        empty result sets.
        """
        text = await self.fetch_text(url, params=params)
        if not text.strip():
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise SourceError(
                f"Invalid JSON from {url}",
                details={"url": url, "body": truncate_log_content(text, 200)},
            ) from exc

    async def download(self, url: str, dest: Path) -> Path:
        """Stream ``url`` into ``dest``.

        The body goes to a sibling ``.part`` file that is renamed into place
        once complete, so ``dest`` is either whole or absent.
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        partial = dest.with_name(dest.name + ".part")

        async def _consume(response: httpx.Response) -> Path:
            try:
                with partial.open("wb") as handle:
                    async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                        handle.write(chunk)
                partial.replace(dest)
            except BaseException:
                with contextlib.suppress(OSError):
                    partial.unlink()
                raise
            return dest

        return await self._request("GET", url, _consume)
