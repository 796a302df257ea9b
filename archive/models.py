"""Records returned by ronin.rest and written to the archive file."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

TransactionHash = str


def _require_text(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise ValueError(f"missing or non-string field '{key}'")
    return value


def _require_block_number(payload: dict[str, Any]) -> int:
    value = payload.get("blockNumber")
    # bool is an int subclass; reject it explicitly.
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError("missing or invalid field 'blockNumber'")
    return value


def parse_transaction_list(payload: Any) -> list[TransactionHash]:
    """Extract hashes from a `{"transactions": [...]}` listing."""
    if not isinstance(payload, dict):
        raise ValueError("transaction list payload is not an object")
    rows = payload.get("transactions")
    if not isinstance(rows, list):
        raise ValueError("missing or non-list field 'transactions'")
    for row in rows:
        if not isinstance(row, str):
            raise ValueError("transaction hash is not a string")
    return list(rows)


@dataclass(frozen=True)
class TransactionSummary:
    from_address: str
    to_address: str
    hash: TransactionHash
    block_number: int

    @classmethod
    def from_payload(cls, payload: Any) -> "TransactionSummary":
        if not isinstance(payload, dict):
            raise ValueError("transaction payload is not an object")
        return cls(
            from_address=_require_text(payload, "from"),
            to_address=_require_text(payload, "to"),
            hash=_require_text(payload, "hash"),
            block_number=_require_block_number(payload),
        )

    @property
    def is_self_transfer(self) -> bool:
        return self.from_address == self.to_address


@dataclass(frozen=True)
class EnrichedTransaction:
    from_address: str
    to_address: str
    hash: TransactionHash
    block_number: int
    decoded_input: Any | None = None
    decoded_output: Any | None = None

    @classmethod
    def from_summary(
        cls,
        summary: TransactionSummary,
        *,
        hash: TransactionHash,
        decoded_input: Any | None,
        decoded_output: Any | None,
    ) -> "EnrichedTransaction":
        return cls(
            from_address=summary.from_address,
            to_address=summary.to_address,
            hash=hash,
            block_number=summary.block_number,
            decoded_input=decoded_input,
            decoded_output=decoded_output,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_address,
            "to": self.to_address,
            "hash": self.hash,
            "blockNumber": self.block_number,
            "input": self.decoded_input,
            "output": self.decoded_output,
        }

    @classmethod
    def from_dict(cls, row: Any) -> "EnrichedTransaction":
        if not isinstance(row, dict):
            raise ValueError("archived transaction is not an object")
        return cls(
            from_address=_require_text(row, "from"),
            to_address=_require_text(row, "to"),
            hash=_require_text(row, "hash"),
            block_number=_require_block_number(row),
            decoded_input=row.get("input"),
            decoded_output=row.get("output"),
        )


def sort_by_block(rows: list[EnrichedTransaction]) -> list[EnrichedTransaction]:
    """Stable ascending sort; equal block numbers keep accumulation order."""
    return sorted(rows, key=lambda row: row.block_number)
