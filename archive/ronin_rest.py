"""ronin.rest archive/decoder endpoints used to rebuild an address history."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from archive.models import TransactionHash, TransactionSummary, parse_transaction_list
from utils.http_client import E_DECODE, HttpResult, ResilientHttpClient, RetryPolicy

logger = logging.getLogger(__name__)

SOURCE_ARCHIVE = "ronin_archive"
SOURCE_DECODER = "ronin_decoder"

LIST_SENT_PATH = "/archive/listSentTransactions/{address}"
LIST_RECEIVED_PATH = "/archive/listReceivedTransactions/{address}"
GET_TRANSACTION_PATH = "/ronin/getTransaction/{hash}"
DECODE_TRANSACTION_PATH = "/ronin/decodeTransaction/{hash}"
DECODE_RECEIPT_PATH = "/ronin/decodeTransactionReceipt/{hash}"


class RoninRestError(RuntimeError):
    """Raised when a ronin.rest call fails for good (exhausted, rejected or undecodable)."""

    def __init__(self, message: str, *, code: str, url: str = "", status: int = 0) -> None:
        super().__init__(message)
        self.code = code
        self.url = url
        self.status = status


class RoninRestClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float,
        retry_policy: RetryPolicy | None = None,
        source_rate_limits: dict[str, tuple[int, float]] | None = None,
        http: ResilientHttpClient | None = None,
    ) -> None:
        self.base_url = str(base_url).rstrip("/")
        self._http = http or ResilientHttpClient(
            timeout_seconds=timeout_seconds,
            retry_policy=retry_policy,
            headers={"Accept": "application/json"},
            source_rate_limits=source_rate_limits,
        )

    async def close(self) -> None:
        await self._http.close()

    def runtime_stats(self, reset: bool = False) -> dict[str, dict[str, int | float]]:
        return self._http.snapshot_stats(reset=reset)

    def _url(self, template: str, **parts: str) -> str:
        return self.base_url + template.format(**{k: quote(str(v), safe="") for k, v in parts.items()})

    async def _fetch_json(self, url: str, source: str) -> Any:
        result: HttpResult = await self._http.get_json(url, source=source)
        if result.ok:
            return result.data
        raise RoninRestError(
            f"GET {url} failed after {result.attempts} attempt(s): {result.error}",
            code=result.code,
            url=url,
            status=result.status,
        )

    async def _fetch_hash_list(self, template: str, address: str) -> list[TransactionHash]:
        url = self._url(template, address=address)
        payload = await self._fetch_json(url, SOURCE_ARCHIVE)
        try:
            return parse_transaction_list(payload)
        except ValueError as exc:
            raise RoninRestError(f"GET {url} returned an unexpected listing: {exc}", code=E_DECODE, url=url) from exc

    async def sent_transactions(self, address: str) -> list[TransactionHash]:
        return await self._fetch_hash_list(LIST_SENT_PATH, address)

    async def received_transactions(self, address: str) -> list[TransactionHash]:
        return await self._fetch_hash_list(LIST_RECEIVED_PATH, address)

    async def transaction(self, tx_hash: TransactionHash) -> TransactionSummary:
        url = self._url(GET_TRANSACTION_PATH, hash=tx_hash)
        payload = await self._fetch_json(url, SOURCE_ARCHIVE)
        try:
            return TransactionSummary.from_payload(payload)
        except ValueError as exc:
            raise RoninRestError(f"GET {url} returned an unexpected transaction: {exc}", code=E_DECODE, url=url) from exc

    async def decode_method(self, tx_hash: TransactionHash) -> Any:
        return await self._fetch_json(self._url(DECODE_TRANSACTION_PATH, hash=tx_hash), SOURCE_DECODER)

    async def decode_receipt(self, tx_hash: TransactionHash) -> Any:
        return await self._fetch_json(self._url(DECODE_RECEIPT_PATH, hash=tx_hash), SOURCE_DECODER)
