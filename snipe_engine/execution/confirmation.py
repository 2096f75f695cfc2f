from __future__ import annotations

import asyncio
from dataclasses import dataclass

from loguru import logger
from web3 import Web3

from snipe_engine.chains.client import ChainClient
from snipe_engine.chains.subscription import LogSubscription
from snipe_engine.errors import SettlementAbort, SettlementTimeout, SubscriptionFailed
from snipe_engine.models import Receipt, normalize_hash


@dataclass
class ConfirmationTracker:
    """Waits for a submitted transaction to show up in the token's log stream.

    The first log whose transaction hash equals ``tx_hash`` ends the wait; the
    receipt is then fetched directly for its authoritative status.
    """

    client: ChainClient
    timeout: float | None = None

    async def await_settlement(self, token_address: str, tx_hash: str) -> Receipt:
        wanted = normalize_hash(tx_hash)
        token = Web3.to_checksum_address(token_address)
        try:
            sub = await self.client.subscribe_logs({"address": token})
        except SubscriptionFailed as e:
            raise SettlementAbort("subscribe", e) from e

        try:
            if self.timeout:
                await asyncio.wait_for(self._wait_for_match(sub, wanted), self.timeout)
            else:
                await self._wait_for_match(sub, wanted)
        except asyncio.TimeoutError as e:
            raise SettlementTimeout("await_settlement", wanted, self.timeout) from e
        finally:
            await sub.cancel()

        receipt = await self.client.get_receipt(wanted)
        logger.info("Receipt: status={} block={} gas_used={}", receipt.status, receipt.block_number, receipt.gas_used)
        return receipt

    async def _wait_for_match(self, sub: LogSubscription, wanted: str) -> int:
        try:
            async for log in sub:
                if normalize_hash(log.get("transactionHash") or b"") == wanted:
                    logger.debug("Matched {} after {} log(s)", wanted, sub.consumed)
                    return sub.consumed
        except SubscriptionFailed as e:
            raise SettlementAbort("await_settlement", e) from e
        raise SettlementAbort("await_settlement", "subscription cancelled before a match")
