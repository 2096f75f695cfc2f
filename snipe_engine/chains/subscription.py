from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from loguru import logger

from snipe_engine.errors import SubscriptionFailed

_CLOSED = object()


class LogSubscription:
    """One server-side ``eth_subscribe("logs", ...)`` stream.

    Delivered logs and subscription errors arrive on separate queues. Reads
    always drain the error queue first, so a dead stream is never mistaken for
    a quiet one. An error is terminal: every later read raises it again.
    """

    def __init__(
        self,
        subscription_id: str,
        log_filter: dict[str, Any],
        unsubscribe: Callable[[str], Awaitable[Any]] | None = None,
    ):
        self.id = subscription_id
        self.filter = log_filter
        self.consumed = 0
        self._unsubscribe = unsubscribe
        self._logs: asyncio.Queue = asyncio.Queue()
        self._errors: asyncio.Queue = asyncio.Queue()
        self._error: Exception | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def deliver(self, log: Any) -> None:
        if not self._cancelled:
            self._logs.put_nowait(log)

    def fail(self, exc: Exception) -> None:
        self._errors.put_nowait(exc)

    def _raise_error(self) -> None:
        if self._error is None:
            self._error = self._errors.get_nowait()
        raise SubscriptionFailed(f"logs subscription {self.id}", self._error) from self._error

    async def next_log(self) -> Any:
        """Wait for the next log; returns the closed sentinel once cancelled."""
        if self._error is not None or not self._errors.empty():
            self._raise_error()
        if self._cancelled:
            return _CLOSED
        if not self._logs.empty():
            log = self._logs.get_nowait()
            if log is not _CLOSED:
                self.consumed += 1
            return log

        log_get = asyncio.ensure_future(self._logs.get())
        error_get = asyncio.ensure_future(self._errors.get())
        try:
            done, _ = await asyncio.wait({log_get, error_get}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (log_get, error_get):
                if not task.done():
                    task.cancel()

        if error_get in done:
            self._error = error_get.result()
            self._raise_error()
        log = log_get.result()
        if log is not _CLOSED:
            self.consumed += 1
        return log

    def __aiter__(self):
        return self

    async def __anext__(self) -> Any:
        log = await self.next_log()
        if log is _CLOSED:
            raise StopAsyncIteration
        return log

    async def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._logs.put_nowait(_CLOSED)
        if self._unsubscribe is None:
            return
        try:
            await self._unsubscribe(self.id)
        except Exception as e:
            # The stream is already gone on our side; the node drops it with the session
            logger.warning("eth_unsubscribe {} failed: {}", self.id, e)
