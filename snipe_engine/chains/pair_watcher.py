from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator

from eth_abi import decode as abi_decode
from loguru import logger
from web3 import Web3

from snipe_engine.chains.client import ChainClient
from snipe_engine.chains.subscription import LogSubscription
from snipe_engine.models import PairCreatedEvent, normalize_hash

PAIR_CREATED_TOPIC = normalize_hash(Web3.keccak(text="PairCreated(address,address,address,uint256)"))

# Blocks behind the newest seen log that a redelivery can still come from
REORG_WINDOW = 64


def _topic_address(topic: Any) -> str:
    raw = _as_bytes(topic)
    return Web3.to_checksum_address("0x" + raw[-20:].hex())


def _as_bytes(data: Any) -> bytes:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    text = str(data)
    return bytes.fromhex(text[2:] if text.startswith("0x") else text)


def decode_pair_created(log: Any) -> PairCreatedEvent:
    topics = log["topics"]
    if len(topics) < 3 or normalize_hash(topics[0]) != PAIR_CREATED_TOPIC:
        raise ValueError("not a PairCreated log")
    pair, _ = abi_decode(["address", "uint256"], _as_bytes(log["data"]))
    return PairCreatedEvent(
        block_number=int(log.get("blockNumber") or 0),
        log_index=int(log.get("logIndex") or 0),
        token0=_topic_address(topics[1]),
        token1=_topic_address(topics[2]),
        pair=Web3.to_checksum_address(pair),
        tx_hash=normalize_hash(log.get("transactionHash") or b""),
    )


class RecentLogKeys:
    """(tx hash, log index) keys seen within the last `window` blocks."""

    def __init__(self, window: int = REORG_WINDOW):
        self.window = window
        self._blocks: dict[tuple[str, int], int] = {}
        self._head = 0

    def __len__(self) -> int:
        return len(self._blocks)

    def add(self, event: PairCreatedEvent) -> bool:
        """Record the event; False if it was already seen."""
        key = (event.tx_hash, event.log_index)
        if key in self._blocks:
            return False
        self._blocks[key] = event.block_number
        if event.block_number > self._head:
            self._head = event.block_number
            floor = self._head - self.window
            self._blocks = {k: b for k, b in self._blocks.items() if b >= floor}
        return True


@dataclass
class PairCreatedWatcher:
    client: ChainClient
    factory_address: str
    reorg_window: int = REORG_WINDOW

    async def watch(self) -> tuple[LogSubscription, AsyncIterator[PairCreatedEvent]]:
        """Subscribe to every PairCreated emitted by the factory.

        The feed is live and only ends when the subscription is cancelled. A
        dead subscription raises ``SubscriptionFailed`` out of the feed; there
        is no automatic re-subscribe.
        """
        factory = Web3.to_checksum_address(self.factory_address)
        # Event signature only; token0/token1 stay unfiltered
        sub = await self.client.subscribe_logs({"address": factory, "topics": [PAIR_CREATED_TOPIC]})
        logger.info("Watching PairCreated on factory {}", factory)
        return sub, self._feed(sub)

    async def _feed(self, sub: LogSubscription) -> AsyncIterator[PairCreatedEvent]:
        seen = RecentLogKeys(self.reorg_window)
        async for log in sub:
            if log.get("removed"):
                continue
            try:
                event = decode_pair_created(log)
            except Exception as e:
                logger.debug("decode error: {}", e)
                continue
            if not seen.add(event):
                continue
            yield event
