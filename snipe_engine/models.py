from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from snipe_engine.errors import ReceiptFailed, SnipeError


def normalize_hash(value: Any) -> str:
    """Render a transaction hash as lowercase 0x-prefixed hex."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value).lower()
    return text if text.startswith("0x") else "0x" + text


@dataclass(frozen=True)
class Identity:
    address: str
    chain_id: int
    private_key: bytes = field(repr=False)


@dataclass(frozen=True, order=True)
class PairCreatedEvent:
    block_number: int
    log_index: int
    token0: str = field(compare=False)
    token1: str = field(compare=False)
    pair: str = field(compare=False)
    tx_hash: str = field(compare=False, default="")

    @property
    def position(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)

    def involves(self, token: str) -> bool:
        token = token.lower()
        return token in (self.token0.lower(), self.token1.lower())


@dataclass(frozen=True)
class Quote:
    path: tuple[str, ...]
    amounts: tuple[int, ...]

    @property
    def amount_out(self) -> int:
        return self.amounts[-1]


@dataclass(frozen=True)
class PendingTransaction:
    nonce: int
    gas_price: int
    gas_limit: int
    value: int
    raw_transaction: bytes = field(repr=False)
    tx_hash: str


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    status: int
    block_number: int | None = None
    gas_used: int | None = None
    logs: tuple[Any, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_rpc(cls, tx_hash: str, raw: Any) -> Receipt:
        return cls(
            tx_hash=normalize_hash(tx_hash),
            status=int(raw.get("status") or 0),
            block_number=raw.get("blockNumber"),
            gas_used=raw.get("gasUsed"),
            logs=tuple(raw.get("logs") or ()),
        )


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    REVERTED = "reverted"


@dataclass
class BuyOutcome:
    status: OutcomeStatus
    token: str
    tx_hash: str
    spent_wei: int
    receipt: Receipt
    token_name: str | None = None
    token_balance: int | None = None
    token_decimals: int = 18
    reporting_error: SnipeError | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED

    def raise_for_status(self) -> None:
        if not self.succeeded:
            raise ReceiptFailed(self.tx_hash, self.receipt)
