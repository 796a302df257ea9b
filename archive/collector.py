"""Rebuild the full transaction history of one Ronin address into `<address>.json`."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any

import config
from archive.models import EnrichedTransaction, TransactionHash, sort_by_block
from archive.ronin_rest import RoninRestClient
from utils.http_client import RetryPolicy
from utils.state_file import atomic_write_json, read_json_locked, remove_locked, write_json_locked

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1


@dataclass(frozen=True)
class CollectorSettings:
    """Everything a run needs, fixed once at startup."""

    address: str
    base_url: str
    output_dir: str = "."
    concurrency: int = 1
    timeout_seconds: float = 30.0
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    source_rate_limits: dict[str, tuple[int, float]] = field(default_factory=dict)
    checkpoint_enabled: bool = False
    checkpoint_every: int = 25

    @classmethod
    def from_config(cls, address: str, *, localhost: bool = False, output_dir: str | None = None) -> "CollectorSettings":
        return cls(
            address=address,
            base_url=config.RONIN_REST_LOCALHOST_URL if localhost else config.RONIN_REST_URL,
            output_dir=output_dir or config.COLLECTOR_OUTPUT_DIR,
            concurrency=int(config.COLLECTOR_CONCURRENCY),
            timeout_seconds=float(config.HTTP_TIMEOUT_SECONDS),
            retry_policy=RetryPolicy.from_config(),
            source_rate_limits=dict(config.HTTP_SOURCE_RATE_LIMITS),
            checkpoint_enabled=bool(config.COLLECTOR_CHECKPOINT_ENABLED),
            checkpoint_every=int(config.COLLECTOR_CHECKPOINT_EVERY),
        )

    @property
    def output_path(self) -> str:
        return os.path.join(self.output_dir, f"{self.address}.json")

    @property
    def checkpoint_path(self) -> str:
        return os.path.join(self.output_dir, f"{self.address}.checkpoint.json")


@dataclass
class CollectionReport:
    address: str
    sent: int = 0
    received: int = 0
    unique: int = 0
    skipped_self: int = 0
    resumed: int = 0
    written: int = 0
    output_path: str = ""


def merge_hashes(sent: list[TransactionHash], received: list[TransactionHash]) -> list[TransactionHash]:
    """Concatenate sent then received, dropping every repeat (not only adjacent ones)."""
    return list(dict.fromkeys([*sent, *received]))


class ProgressTracker:
    def __init__(self, total: int) -> None:
        self.total = max(0, int(total))
        self.done = 0
        self._started = time.monotonic()

    def advance(self, tx_hash: TransactionHash) -> None:
        self.done += 1
        elapsed = time.monotonic() - self._started
        pct = (self.done / self.total * 100.0) if self.total else 100.0
        eta = (elapsed / self.done) * (self.total - self.done) if self.done else 0.0
        logger.info(
            "COLLECT_PROGRESS %s/%s (%.1f%%) elapsed=%.1fs eta=%.1fs hash=%s",
            self.done,
            self.total,
            pct,
            elapsed,
            eta,
            tx_hash,
        )


class TransactionCollector:
    def __init__(self, settings: CollectorSettings, client: RoninRestClient | None = None) -> None:
        self.settings = settings
        self._client = client or RoninRestClient(
            settings.base_url,
            timeout_seconds=settings.timeout_seconds,
            retry_policy=settings.retry_policy,
            source_rate_limits=settings.source_rate_limits,
        )
        self._records: dict[TransactionHash, EnrichedTransaction] = {}
        self._skipped: set[TransactionHash] = set()
        self._since_checkpoint = 0

    async def close(self) -> None:
        await self._client.close()

    def runtime_stats(self) -> dict[str, dict[str, int | float]]:
        return self._client.runtime_stats()

    async def run(self) -> CollectionReport:
        """Collect, sort and persist. Nothing is written if any call fails."""
        report = CollectionReport(address=self.settings.address, output_path=self.settings.output_path)
        rows = await self.collect(report)
        atomic_write_json(self.settings.output_path, [row.to_dict() for row in rows])
        report.written = len(rows)
        if self.settings.checkpoint_enabled:
            remove_locked(self.settings.checkpoint_path)
        logger.info("COLLECT_DONE address=%s written=%s path=%s", report.address, report.written, report.output_path)
        return report

    async def collect(self, report: CollectionReport | None = None) -> list[EnrichedTransaction]:
        report = report or CollectionReport(address=self.settings.address)
        address = self.settings.address

        sent = await self._client.sent_transactions(address)
        received = await self._client.received_transactions(address)
        report.sent = len(sent)
        report.received = len(received)
        logger.info("Sent Transactions: %s Received Transactions: %s", report.sent, report.received)

        hashes = merge_hashes(sent, received)
        report.unique = len(hashes)
        logger.info("Processing: %s unique transactions", report.unique)

        if self.settings.checkpoint_enabled:
            report.resumed = self._load_checkpoint(hashes)

        results = await self._enrich_all(hashes, ProgressTracker(len(hashes)))
        if self.settings.checkpoint_enabled:
            self._save_checkpoint()

        report.skipped_self = sum(1 for h in hashes if h in self._skipped)
        return sort_by_block([row for row in results if row is not None])

    async def _enrich_all(
        self,
        hashes: list[TransactionHash],
        progress: ProgressTracker,
    ) -> list[EnrichedTransaction | None]:
        # Results are slotted by position so completion order never leaks into the output.
        results: list[EnrichedTransaction | None] = [None] * len(hashes)
        pending = iter(enumerate(hashes))

        async def worker() -> None:
            for idx, tx_hash in pending:
                results[idx] = await self._process_hash(tx_hash)
                progress.advance(tx_hash)
                self._maybe_checkpoint()

        workers = [asyncio.create_task(worker()) for _ in range(max(1, min(self.settings.concurrency, len(hashes))))]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        return results

    async def _process_hash(self, tx_hash: TransactionHash) -> EnrichedTransaction | None:
        if tx_hash in self._skipped:
            return None
        cached = self._records.get(tx_hash)
        if cached is not None:
            return cached

        summary = await self._client.transaction(tx_hash)
        if summary.is_self_transfer:
            logger.debug("COLLECT_SKIP_SELF hash=%s address=%s", tx_hash, summary.from_address)
            self._skipped.add(tx_hash)
            return None

        decoded_input = await self._client.decode_method(tx_hash)
        decoded_output = await self._client.decode_receipt(tx_hash)
        row = EnrichedTransaction.from_summary(
            summary,
            hash=tx_hash,
            decoded_input=decoded_input,
            decoded_output=decoded_output,
        )
        self._records[tx_hash] = row
        return row

    def _maybe_checkpoint(self) -> None:
        if not self.settings.checkpoint_enabled:
            return
        self._since_checkpoint += 1
        if self._since_checkpoint >= max(1, self.settings.checkpoint_every):
            self._save_checkpoint()

    def _save_checkpoint(self) -> None:
        payload: dict[str, Any] = {
            "version": CHECKPOINT_VERSION,
            "address": self.settings.address,
            "records": [row.to_dict() for row in self._records.values()],
            "skipped": sorted(self._skipped),
        }
        write_json_locked(self.settings.checkpoint_path, payload)
        self._since_checkpoint = 0
        logger.debug(
            "CHECKPOINT_SAVED path=%s records=%s skipped=%s",
            self.settings.checkpoint_path,
            len(self._records),
            len(self._skipped),
        )

    def _load_checkpoint(self, hashes: list[TransactionHash]) -> int:
        path = self.settings.checkpoint_path
        try:
            payload = read_json_locked(path)
        except ValueError as exc:
            logger.warning("CHECKPOINT_IGNORED path=%s reason=invalid_json error=%s", path, exc)
            return 0
        if payload is None:
            return 0
        if not isinstance(payload, dict) or payload.get("version") != CHECKPOINT_VERSION:
            logger.warning("CHECKPOINT_IGNORED path=%s reason=unknown_format", path)
            return 0
        if payload.get("address") != self.settings.address:
            logger.warning("CHECKPOINT_IGNORED path=%s reason=address_mismatch", path)
            return 0

        wanted = set(hashes)
        try:
            rows = [EnrichedTransaction.from_dict(row) for row in payload.get("records") or []]
            skipped = {h for h in payload.get("skipped") or [] if isinstance(h, str) and h in wanted}
        except (ValueError, TypeError) as exc:
            logger.warning("CHECKPOINT_IGNORED path=%s reason=bad_entry error=%s", path, exc)
            return 0
        self._records = {row.hash: row for row in rows if row.hash in wanted}
        self._skipped = skipped
        resumed = len(self._records) + len(self._skipped)
        logger.info("CHECKPOINT_RESUMED path=%s records=%s skipped=%s", path, len(self._records), len(self._skipped))
        return resumed
