"""Local stand-in for ronin.rest, for --localhost runs and tests.

Fixture layout (JSON):

    {
      "sent": {"0xabc...": ["0xh1", ...]},
      "received": {"0xabc...": ["0xh2", ...]},
      "transactions": {"0xh1": {"from": "...", "to": "...", "hash": "0xh1", "blockNumber": 1}},
      "decoded": {"0xh1": {...}},
      "receipts": {"0xh1": {...}}
    }

Addresses are matched case-insensitively. Unknown hashes answer 404.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from collections import Counter
from typing import Any

from aiohttp import web

logger = logging.getLogger(__name__)


class MockRoninRest:
    def __init__(self, fixture: dict[str, Any] | None = None, *, host: str = "127.0.0.1", port: int = 3000) -> None:
        fixture = fixture or {}
        self.host = host
        self.port = port
        self.sent = {str(k).lower(): list(v) for k, v in (fixture.get("sent") or {}).items()}
        self.received = {str(k).lower(): list(v) for k, v in (fixture.get("received") or {}).items()}
        self.transactions: dict[str, Any] = dict(fixture.get("transactions") or {})
        self.decoded: dict[str, Any] = dict(fixture.get("decoded") or {})
        self.receipts: dict[str, Any] = dict(fixture.get("receipts") or {})
        # path -> number of 503 answers to give before serving normally
        self.failures: dict[str, int] = {}
        # path -> raw body served verbatim with status 200
        self.raw_bodies: dict[str, str] = {}
        self.hits: Counter[str] = Counter()
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/archive/listSentTransactions/{address}", self._handle_sent)
        app.router.add_get("/archive/listReceivedTransactions/{address}", self._handle_received)
        app.router.add_get("/ronin/getTransaction/{hash}", self._handle_transaction)
        app.router.add_get("/ronin/decodeTransaction/{hash}", self._handle_decoded)
        app.router.add_get("/ronin/decodeTransactionReceipt/{hash}", self._handle_receipt)
        return app

    async def start(self) -> None:
        self.runner = web.AppRunner(self.build_app())
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()
        logger.info("Mock ronin.rest listening on %s", self.base_url)

    async def stop(self) -> None:
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
            self.site = None

    def _intercept(self, request: web.Request) -> web.Response | None:
        path = request.path
        self.hits[path] += 1
        remaining = self.failures.get(path, 0)
        if remaining > 0:
            self.failures[path] = remaining - 1
            return web.json_response({"error": "unavailable"}, status=503)
        raw = self.raw_bodies.get(path)
        if raw is not None:
            return web.Response(text=raw, status=200, content_type="application/json")
        return None

    async def _handle_sent(self, request: web.Request) -> web.Response:
        early = self._intercept(request)
        if early is not None:
            return early
        address = request.match_info["address"].lower()
        return web.json_response({"transactions": self.sent.get(address, [])})

    async def _handle_received(self, request: web.Request) -> web.Response:
        early = self._intercept(request)
        if early is not None:
            return early
        address = request.match_info["address"].lower()
        return web.json_response({"transactions": self.received.get(address, [])})

    def _lookup(self, request: web.Request, table: dict[str, Any]) -> web.Response:
        early = self._intercept(request)
        if early is not None:
            return early
        tx_hash = request.match_info["hash"]
        if tx_hash not in table:
            return web.json_response({"error": "not_found", "hash": tx_hash}, status=404)
        return web.json_response(table[tx_hash])

    async def _handle_transaction(self, request: web.Request) -> web.Response:
        return self._lookup(request, self.transactions)

    async def _handle_decoded(self, request: web.Request) -> web.Response:
        return self._lookup(request, self.decoded)

    async def _handle_receipt(self, request: web.Request) -> web.Response:
        return self._lookup(request, self.receipts)


async def _serve(fixture: dict[str, Any], host: str, port: int) -> None:
    server = MockRoninRest(fixture, host=host, port=port)
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()


def main() -> int:
    parser = argparse.ArgumentParser(description="Serve a ronin.rest fixture on localhost.")
    parser.add_argument("--fixture", required=True, help="JSON fixture file")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=3000)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    with open(args.fixture, "r", encoding="utf-8-sig") as f:
        fixture = json.load(f)
    try:
        asyncio.run(_serve(fixture, args.host, args.port))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
