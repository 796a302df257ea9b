from __future__ import annotations

import unittest

from aiohttp import web
from aiohttp.test_utils import TestServer as HttpTestServer

from utils.http_client import (
    E_DECODE,
    E_HTTP_EXHAUSTED,
    E_HTTP_STATUS,
    ResilientHttpClient,
    RetryPolicy,
    is_retryable_status,
)

FAST_POLICY = RetryPolicy(
    max_retries=3,
    backoff_min_seconds=0.0,
    backoff_max_seconds=0.0,
    jitter_seconds=0.0,
    rate_limit_delay_seconds=0.0,
    cooldown_429_seconds=0.0,
)


class RetryPolicyTests(unittest.TestCase):
    def test_delay_grows_exponentially_and_is_capped(self) -> None:
        policy = RetryPolicy(backoff_min_seconds=1.0, backoff_max_seconds=5.0, backoff_base=2.0, jitter_seconds=0.0)
        delays = [policy.compute_delay(retry=n, status=503) for n in range(1, 6)]
        self.assertEqual(delays, [1.0, 2.0, 4.0, 5.0, 5.0])

    def test_rate_limit_adds_bias(self) -> None:
        policy = RetryPolicy(
            backoff_min_seconds=1.0,
            backoff_max_seconds=60.0,
            jitter_seconds=0.0,
            rate_limit_delay_seconds=2.0,
        )
        self.assertEqual(policy.compute_delay(retry=1, status=429), 3.0)

    def test_jitter_stays_within_bounds(self) -> None:
        policy = RetryPolicy(backoff_min_seconds=1.0, backoff_max_seconds=60.0, jitter_seconds=0.5)
        for _ in range(50):
            delay = policy.compute_delay(retry=1, status=0)
            self.assertGreaterEqual(delay, 1.0)
            self.assertLessEqual(delay, 1.5)

    def test_max_attempts_counts_first_try(self) -> None:
        self.assertEqual(RetryPolicy(max_retries=15).max_attempts, 16)
        self.assertEqual(RetryPolicy(max_retries=0).max_attempts, 1)

    def test_retryable_statuses(self) -> None:
        self.assertTrue(is_retryable_status(429))
        self.assertTrue(is_retryable_status(500))
        self.assertTrue(is_retryable_status(503))
        self.assertFalse(is_retryable_status(404))
        self.assertFalse(is_retryable_status(400))


class ResilientHttpClientTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.calls: dict[str, int] = {}
        app = web.Application()
        app.router.add_get("/flaky", self._flaky)
        app.router.add_get("/always-down", self._always_down)
        app.router.add_get("/missing", self._missing)
        app.router.add_get("/garbage", self._garbage)
        app.router.add_get("/limited", self._limited)
        self.server = HttpTestServer(app)
        await self.server.start_server()
        self.client = ResilientHttpClient(timeout_seconds=5.0, retry_policy=FAST_POLICY)

    async def asyncTearDown(self) -> None:
        await self.client.close()
        await self.server.close()

    def _count(self, name: str) -> int:
        self.calls[name] = self.calls.get(name, 0) + 1
        return self.calls[name]

    async def _flaky(self, request: web.Request) -> web.Response:
        if self._count("flaky") < 3:
            return web.json_response({"error": "busy"}, status=503)
        return web.json_response({"transactions": ["0x01"]})

    async def _always_down(self, request: web.Request) -> web.Response:
        self._count("always-down")
        return web.json_response({"error": "down"}, status=502)

    async def _missing(self, request: web.Request) -> web.Response:
        self._count("missing")
        return web.json_response({"error": "not_found"}, status=404)

    async def _garbage(self, request: web.Request) -> web.Response:
        self._count("garbage")
        return web.Response(text="{not json", content_type="application/json")

    async def _limited(self, request: web.Request) -> web.Response:
        if self._count("limited") == 1:
            return web.json_response({"error": "slow down"}, status=429)
        return web.json_response({"ok": True})

    def _url(self, path: str) -> str:
        return str(self.server.make_url(path))

    async def test_transient_failures_are_retried_until_success(self) -> None:
        result = await self.client.get_json(self._url("/flaky"), source="archive")
        self.assertTrue(result.ok)
        self.assertEqual(result.data, {"transactions": ["0x01"]})
        self.assertEqual(result.attempts, 3)
        stats = self.client.snapshot_stats()["archive"]
        self.assertEqual(stats["retries"], 2)
        self.assertEqual(stats["ok"], 1)

    async def test_exhausted_retries_report_last_status(self) -> None:
        result = await self.client.get_json(self._url("/always-down"))
        self.assertFalse(result.ok)
        self.assertEqual(result.code, E_HTTP_EXHAUSTED)
        self.assertEqual(result.status, 502)
        self.assertEqual(result.attempts, FAST_POLICY.max_attempts)
        self.assertEqual(self.calls["always-down"], FAST_POLICY.max_attempts)

    async def test_client_error_status_is_not_retried(self) -> None:
        result = await self.client.get_json(self._url("/missing"))
        self.assertFalse(result.ok)
        self.assertEqual(result.code, E_HTTP_STATUS)
        self.assertEqual(result.status, 404)
        self.assertEqual(self.calls["missing"], 1)

    async def test_malformed_json_is_not_retried(self) -> None:
        result = await self.client.get_json(self._url("/garbage"))
        self.assertFalse(result.ok)
        self.assertEqual(result.code, E_DECODE)
        self.assertEqual(self.calls["garbage"], 1)

    async def test_rate_limit_is_retried_and_counted(self) -> None:
        result = await self.client.get_json(self._url("/limited"), source="decoder")
        self.assertTrue(result.ok)
        self.assertEqual(self.client.snapshot_stats()["decoder"]["rate_limited"], 1)

    async def test_connection_errors_are_retried_then_exhausted(self) -> None:
        unused = HttpTestServer(web.Application())
        await unused.start_server()
        dead_url = str(unused.make_url("/gone"))
        await unused.close()

        result = await self.client.get_json(dead_url, max_retries=1)
        self.assertFalse(result.ok)
        self.assertEqual(result.code, E_HTTP_EXHAUSTED)
        self.assertEqual(result.attempts, 2)
        self.assertTrue(result.error.startswith("http_error:"))


if __name__ == "__main__":
    unittest.main()
