"""Resilient shared HTTP client with retry/backoff and per-source limits."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections import deque
from dataclasses import dataclass
from typing import Any

import aiohttp

import config

logger = logging.getLogger(__name__)

E_HTTP_STATUS = "E_HTTP_STATUS"
E_HTTP_EXHAUSTED = "E_HTTP_EXHAUSTED"
E_DECODE = "E_DECODE"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient failures (network, 429, 5xx)."""

    max_retries: int = 15
    backoff_min_seconds: float = 1.0
    backoff_max_seconds: float = 1800.0
    backoff_base: float = 2.0
    jitter_seconds: float = 0.25
    rate_limit_delay_seconds: float = 2.0
    cooldown_429_seconds: float = 10.0

    @classmethod
    def from_config(cls) -> "RetryPolicy":
        return cls(
            max_retries=int(config.HTTP_MAX_RETRIES),
            backoff_min_seconds=float(config.HTTP_BACKOFF_MIN_SECONDS),
            backoff_max_seconds=float(config.HTTP_BACKOFF_MAX_SECONDS),
            backoff_base=float(config.HTTP_BACKOFF_BASE),
            jitter_seconds=float(config.HTTP_JITTER_SECONDS),
            rate_limit_delay_seconds=float(config.HTTP_RATE_LIMIT_DELAY_SECONDS),
            cooldown_429_seconds=float(config.HTTP_429_COOLDOWN_SECONDS),
        )

    @property
    def max_attempts(self) -> int:
        return max(0, int(self.max_retries)) + 1

    def compute_delay(self, retry: int, status: int) -> float:
        """Delay before the given 1-based retry."""
        base = max(0.0, float(self.backoff_min_seconds))
        cap = max(base, float(self.backoff_max_seconds))
        exp = min(cap, base * (float(self.backoff_base) ** max(0, retry - 1)))
        if status == 429:
            exp = min(cap, exp + max(0.0, float(self.rate_limit_delay_seconds)))
        jitter = max(0.0, float(self.jitter_seconds))
        return max(0.0, exp + (random.uniform(0.0, jitter) if jitter > 0 else 0.0))


@dataclass
class HttpResult:
    ok: bool
    status: int
    data: Any | None
    error: str = ""
    code: str = ""
    attempts: int = 0


@dataclass
class HttpSourceStats:
    ok: int = 0
    fail: int = 0
    rate_limited: int = 0
    limiter_waits: int = 0
    cooldown_waits: int = 0
    retries: int = 0
    latency_total_ms: float = 0.0
    latency_max_ms: float = 0.0
    latency_count: int = 0

    def observe_latency(self, started: float) -> None:
        elapsed_ms = max(0.0, (time.perf_counter() - started) * 1000.0)
        self.latency_total_ms += elapsed_ms
        self.latency_count += 1
        self.latency_max_ms = max(self.latency_max_ms, elapsed_ms)


def is_retryable_status(status: int) -> bool:
    return status == 429 or (500 <= status <= 599)


class ResilientHttpClient:
    def __init__(
        self,
        timeout_seconds: float,
        retry_policy: RetryPolicy | None = None,
        headers: dict[str, str] | None = None,
        source_limits: dict[str, int] | None = None,
        source_rate_limits: dict[str, tuple[int, float]] | None = None,
    ) -> None:
        self._timeout = aiohttp.ClientTimeout(total=max(1.0, float(timeout_seconds)))
        self._policy = retry_policy or RetryPolicy.from_config()
        self._headers = dict(headers or {})
        self._source_limits = dict(source_limits or {})
        self._source_rate_limits = dict(source_rate_limits or {})
        self._session: aiohttp.ClientSession | None = None
        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._stats: dict[str, HttpSourceStats] = {}
        self._rate_windows: dict[str, deque[float]] = {}
        self._rate_locks: dict[str, asyncio.Lock] = {}
        self._cooldown_until: dict[str, float] = {}

    async def close(self) -> None:
        session = self._session
        self._session = None
        if session is not None and not session.closed:
            await session.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=max(1, int(config.HTTP_CONNECTOR_LIMIT)))
            self._session = aiohttp.ClientSession(timeout=self._timeout, connector=connector)
        return self._session

    @staticmethod
    def _source_key(source: str) -> str:
        return str(source or "default").strip().lower() or "default"

    def _get_semaphore(self, source_key: str) -> asyncio.Semaphore:
        sem = self._semaphores.get(source_key)
        if sem is None:
            limit = max(1, int(self._source_limits.get(source_key, config.HTTP_CONNECTOR_LIMIT)))
            sem = asyncio.Semaphore(limit)
            self._semaphores[source_key] = sem
        return sem

    def _stats_row(self, source_key: str) -> HttpSourceStats:
        row = self._stats.get(source_key)
        if row is None:
            row = HttpSourceStats()
            self._stats[source_key] = row
        return row

    def _get_rate_lock(self, source_key: str) -> asyncio.Lock:
        lock = self._rate_locks.get(source_key)
        if lock is None:
            lock = asyncio.Lock()
            self._rate_locks[source_key] = lock
        return lock

    async def _wait_rate_slot(self, source_key: str, stats: HttpSourceStats, url: str) -> None:
        limit = self._source_rate_limits.get(source_key)
        if not limit:
            return
        max_calls, window_seconds = int(limit[0]), float(limit[1])
        lock = self._get_rate_lock(source_key)
        while True:
            async with lock:
                now = time.monotonic()
                window = self._rate_windows.setdefault(source_key, deque())
                cutoff = now - window_seconds
                while window and window[0] <= cutoff:
                    window.popleft()
                if len(window) < max_calls:
                    window.append(now)
                    return
                wait_for = max(0.01, (window[0] + window_seconds) - now)
            stats.limiter_waits += 1
            logger.debug(
                "HTTP_RATE_WAIT source=%s wait=%.2fs window=%ss max_calls=%s url=%s",
                source_key,
                wait_for,
                window_seconds,
                max_calls,
                url,
            )
            await asyncio.sleep(wait_for)

    async def _wait_cooldown(self, source_key: str, stats: HttpSourceStats, url: str) -> None:
        while True:
            now = time.monotonic()
            until = float(self._cooldown_until.get(source_key, 0.0) or 0.0)
            if until <= now:
                return
            wait_for = max(0.01, until - now)
            stats.cooldown_waits += 1
            logger.debug("HTTP_COOLDOWN_WAIT source=%s wait=%.2fs url=%s", source_key, wait_for, url)
            await asyncio.sleep(wait_for)

    def _apply_source_cooldown(self, source_key: str, response: aiohttp.ClientResponse) -> None:
        retry_after_raw = (response.headers or {}).get("Retry-After", "")
        retry_after = 0.0
        if retry_after_raw:
            try:
                retry_after = max(0.0, float(retry_after_raw))
            except ValueError:
                retry_after = 0.0
        cooldown_seconds = max(float(self._policy.cooldown_429_seconds), retry_after)
        if cooldown_seconds <= 0:
            return
        until = time.monotonic() + cooldown_seconds
        prev = float(self._cooldown_until.get(source_key, 0.0) or 0.0)
        self._cooldown_until[source_key] = max(prev, until)

    def snapshot_stats(self, reset: bool = False) -> dict[str, dict[str, int | float]]:
        out: dict[str, dict[str, int | float]] = {}
        for source, row in self._stats.items():
            total = int(row.ok + row.fail)
            err_pct = (float(row.fail) / total * 100.0) if total > 0 else 0.0
            out[source] = {
                "ok": int(row.ok),
                "fail": int(row.fail),
                "total": total,
                "rate_limited": int(row.rate_limited),
                "limiter_waits": int(row.limiter_waits),
                "cooldown_waits": int(row.cooldown_waits),
                "retries": int(row.retries),
                "error_percent": round(err_pct, 2),
                "latency_avg_ms": round((row.latency_total_ms / row.latency_count), 2) if row.latency_count > 0 else 0.0,
                "latency_max_ms": round(float(row.latency_max_ms), 2),
            }
        if reset:
            self._stats = {}
        return out

    async def get_json(
        self,
        url: str,
        *,
        source: str = "default",
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        max_retries: int | None = None,
    ) -> HttpResult:
        attempts = self._policy.max_attempts if max_retries is None else max(0, int(max_retries)) + 1
        req_headers = dict(self._headers)
        if headers:
            req_headers.update(headers)

        source_key = self._source_key(source)
        sem = self._get_semaphore(source_key)
        stats = self._stats_row(source_key)
        last_error = ""
        last_status = 0
        for attempt in range(1, attempts + 1):
            status = 0
            await self._wait_cooldown(source_key, stats, url)
            await self._wait_rate_slot(source_key, stats, url)
            async with sem:
                started = time.perf_counter()
                try:
                    session = await self._get_session()
                    async with session.get(url, params=params, headers=req_headers) as response:
                        stats.observe_latency(started)
                        status = int(response.status or 0)
                        last_status = status
                        if status == 200:
                            try:
                                payload = await response.json(content_type=None)
                            except ValueError as exc:
                                # Malformed body is not transient; retrying returns the same bytes.
                                stats.fail += 1
                                return HttpResult(
                                    ok=False,
                                    status=status,
                                    data=None,
                                    error=f"invalid_json:{exc}",
                                    code=E_DECODE,
                                    attempts=attempt,
                                )
                            stats.ok += 1
                            return HttpResult(ok=True, status=status, data=payload, attempts=attempt)

                        if status == 429:
                            stats.rate_limited += 1
                            self._apply_source_cooldown(source_key, response)
                        last_error = f"http_status_{status}"
                        if not is_retryable_status(status):
                            stats.fail += 1
                            return HttpResult(
                                ok=False,
                                status=status,
                                data=None,
                                error=last_error,
                                code=E_HTTP_STATUS,
                                attempts=attempt,
                            )
                except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                    stats.observe_latency(started)
                    last_error = f"http_error:{exc.__class__.__name__}:{exc}"

            if attempt >= attempts:
                break
            stats.retries += 1
            delay = self._policy.compute_delay(retry=attempt, status=status)
            logger.debug(
                "HTTP_RETRY source=%s attempt=%s/%s status=%s delay=%.2fs url=%s error=%s",
                source_key,
                attempt,
                attempts,
                status,
                delay,
                url,
                last_error,
            )
            await asyncio.sleep(delay)

        stats.fail += 1
        logger.warning("HTTP_EXHAUSTED source=%s attempts=%s url=%s error=%s", source_key, attempts, url, last_error)
        return HttpResult(
            ok=False,
            status=last_status,
            data=None,
            error=last_error or "http_exhausted",
            code=E_HTTP_EXHAUSTED,
            attempts=attempts,
        )
