"""Failures raised by the snipe pipeline.

Every RPC-facing failure carries the name of the operation that failed and the
underlying cause, so one log line is enough to tell which step broke.
"""

from __future__ import annotations

from typing import Any


class SnipeError(Exception):
    """Base exception for the snipe pipeline."""

    def __init__(self, operation: str, cause: Exception | str | None = None) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation}: {cause}" if cause is not None else operation)


class ChainConnectionError(SnipeError):
    """Raised when the session to the chain node cannot be established."""


class ChainQueryFailed(ChainConnectionError):
    """Raised when the chain id lookup fails during connect."""


class InvalidKey(SnipeError):
    """Raised for a malformed or out-of-curve private key."""


class RpcCallFailed(SnipeError):
    """Raised when a plain read call (nonce, receipt, token metadata) fails."""


class QuoteFailed(SnipeError):
    """Raised when the router cannot quote the swap path."""


class SubmissionFailed(SnipeError):
    """Raised when the swap transaction is rejected before inclusion."""


class SubscriptionFailed(SnipeError):
    """Raised by a log subscription whose server-side stream died."""


class SettlementAbort(SnipeError):
    """Raised when the settlement subscription dies before a matching log."""


class SettlementTimeout(SnipeError):
    """Raised when no matching log arrives within the settlement bound."""

    def __init__(self, operation: str, tx_hash: str, timeout: float) -> None:
        super().__init__(operation, f"no log for {tx_hash} within {timeout:g}s")
        self.tx_hash = tx_hash
        self.timeout = timeout


class ReceiptFailed(SnipeError):
    """The swap settled but reverted. The budget is spent."""

    def __init__(self, tx_hash: str, receipt: Any = None) -> None:
        super().__init__("swap", f"transaction {tx_hash} reverted")
        self.tx_hash = tx_hash
        self.receipt = receipt


class ReportingFailed(SnipeError):
    """Raised when post-swap reporting (token name, balance) fails."""
