from __future__ import annotations

import asyncio
import json
import re
from pathlib import Path
from typing import Any

from eth_account import Account
from loguru import logger
from web3 import AsyncWeb3, Web3, WebSocketProvider

from snipe_engine.chains.subscription import LogSubscription
from snipe_engine.errors import (
    ChainConnectionError,
    ChainQueryFailed,
    InvalidKey,
    RpcCallFailed,
    SubmissionFailed,
    SubscriptionFailed,
)
from snipe_engine.models import Identity, PendingTransaction, Receipt, normalize_hash


def _load_abi(rel_path: str):
    path = Path(__file__).resolve().parent.parent / "abi" / rel_path
    return json.loads(path.read_text())


ERC20_ABI = _load_abi("erc20.json")
UNI_V2_ABI = _load_abi("uniswap_v2_router.json")

_HEX_KEY = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")

MAX_EARLY_SUBSCRIPTIONS = 16
MAX_EARLY_MESSAGES = 256


def load_identity_key(private_key: str) -> tuple[bytes, str]:
    """Validate a hex private key and derive its address."""
    if not isinstance(private_key, str) or not _HEX_KEY.match(private_key.strip()):
        raise InvalidKey("private key", "expected 32 bytes of hex")
    try:
        account = Account.from_key(private_key.strip())
    except Exception as e:
        # Zero or above the curve order
        raise InvalidKey("private key", e) from e
    return bytes(account.key), account.address


class ChainClient:
    """The one live session to the chain node, plus the caller's identity.

    Built by :meth:`connect` and passed explicitly to the watcher, executor and
    tracker. ``async with`` scopes the session to a single command.
    """

    def __init__(self, w3: AsyncWeb3, identity: Identity | None = None):
        self.w3 = w3
        self.identity = identity
        self._subscriptions: dict[str, LogSubscription] = {}
        self._dispatcher: asyncio.Task | None = None
        self._nonce_lock = asyncio.Lock()
        self._last_nonce: int | None = None
        self._reserved_nonces: set[int] = set()
        # Notifications that beat their subscription's registration
        self._early: dict[str, list[Any]] = {}
        self._closed = False

    @classmethod
    async def connect(cls, endpoint: str, private_key: str) -> ChainClient:
        w3 = AsyncWeb3(WebSocketProvider(endpoint))
        client = cls(w3)
        try:
            try:
                await w3.provider.connect()
            except Exception as e:
                raise ChainConnectionError(f"connect {endpoint}", e) from e

            key, address = load_identity_key(private_key)

            try:
                chain_id = int(await w3.eth.chain_id)
            except Exception as e:
                raise ChainQueryFailed("eth_chainId", e) from e
        except Exception:
            await client.close()
            raise

        client.identity = Identity(address=address, chain_id=chain_id, private_key=key)
        logger.info("Connected to {} (chain id {})", endpoint, chain_id)
        logger.info("Wallet address: {}", address)
        return client

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for sub in list(self._subscriptions.values()):
            await sub.cancel()
        self._subscriptions.clear()
        if self._dispatcher is not None and not self._dispatcher.done():
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
        try:
            await self.w3.provider.disconnect()
        except Exception as e:
            logger.debug("disconnect error: {}", e)
        # Drop key material with the session
        self.identity = None

    async def __aenter__(self) -> ChainClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def address(self) -> str:
        if self.identity is None:
            raise ChainConnectionError("identity", "client is not connected")
        return self.identity.address

    # --- contracts ---

    def erc20(self, token_addr: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(token_addr), abi=ERC20_ABI)

    def router_v2(self, router_addr: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(router_addr), abi=UNI_V2_ABI)

    # --- reads ---

    async def next_nonce(self) -> int:
        """Reserve the next usable nonce.

        The reservation holds until :meth:`send_transaction` submits a
        transaction with it, or :meth:`release_nonce` hands it back. Only
        submitted nonces move the floor, so an abandoned buy leaves no gap.
        """
        async with self._nonce_lock:
            try:
                pending = int(await self.w3.eth.get_transaction_count(self.address, "pending"))
            except Exception as e:
                raise RpcCallFailed("eth_getTransactionCount", e) from e
            nonce = pending if self._last_nonce is None else max(pending, self._last_nonce + 1)
            while nonce in self._reserved_nonces:
                nonce += 1
            self._reserved_nonces.add(nonce)
            return nonce

    def release_nonce(self, nonce: int) -> None:
        self._reserved_nonces.discard(nonce)

    def _commit_nonce(self, nonce: int) -> None:
        self._reserved_nonces.discard(nonce)
        if self._last_nonce is None or nonce > self._last_nonce:
            self._last_nonce = nonce

    async def suggest_gas_price(self) -> int:
        try:
            return int(await self.w3.eth.gas_price)
        except Exception as e:
            raise RpcCallFailed("eth_gasPrice", e) from e

    async def get_receipt(self, tx_hash: str) -> Receipt:
        try:
            raw = await self.w3.eth.get_transaction_receipt(tx_hash)
        except Exception as e:
            raise RpcCallFailed("eth_getTransactionReceipt", e) from e
        return Receipt.from_rpc(tx_hash, raw)

    async def token_name(self, token_addr: str) -> str:
        try:
            return await self.erc20(token_addr).functions.name().call()
        except Exception as e:
            raise RpcCallFailed("name", e) from e

    async def token_decimals(self, token_addr: str) -> int:
        try:
            return int(await self.erc20(token_addr).functions.decimals().call())
        except Exception as e:
            raise RpcCallFailed("decimals", e) from e

    async def token_balance(self, token_addr: str, owner: str | None = None) -> int:
        owner = Web3.to_checksum_address(owner or self.address)
        try:
            return int(await self.erc20(token_addr).functions.balanceOf(owner).call())
        except Exception as e:
            raise RpcCallFailed("balanceOf", e) from e

    # --- writes ---

    async def send_transaction(self, tx: dict) -> PendingTransaction:
        if self.identity is None:
            raise SubmissionFailed("sign", "client is not connected")
        try:
            signed = Account.sign_transaction(tx, self.identity.private_key)
        except Exception as e:
            raise SubmissionFailed("sign_transaction", e) from e
        try:
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            raise SubmissionFailed("eth_sendRawTransaction", e) from e
        self._commit_nonce(int(tx["nonce"]))
        return PendingTransaction(
            nonce=int(tx["nonce"]),
            gas_price=int(tx["gasPrice"]),
            gas_limit=int(tx["gas"]),
            value=int(tx.get("value", 0)),
            raw_transaction=bytes(signed.raw_transaction),
            tx_hash=normalize_hash(tx_hash),
        )

    # --- subscriptions ---

    async def subscribe_logs(self, log_filter: dict[str, Any]) -> LogSubscription:
        if self._closed:
            raise SubscriptionFailed("eth_subscribe", "client is closed")
        try:
            sub_id = await self.w3.eth.subscribe("logs", log_filter)
        except Exception as e:
            raise SubscriptionFailed("eth_subscribe", e) from e
        sub_id = normalize_hash(sub_id)
        sub = LogSubscription(sub_id, log_filter, unsubscribe=self._unsubscribe)
        self._subscriptions[sub_id] = sub
        for result in self._early.pop(sub_id, []):
            sub.deliver(result)
        logger.debug("Subscribed to logs {} ({})", log_filter, sub_id)
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.create_task(self._dispatch())
        return sub

    async def _unsubscribe(self, sub_id: str) -> None:
        self._subscriptions.pop(sub_id, None)
        if not self._closed:
            await self.w3.eth.unsubscribe(sub_id)

    def _hold_early(self, sub_id: str, result: Any) -> None:
        # eth_subscribe can be answered after the node already pushed its
        # first notification; keep those until subscribe_logs registers the id.
        # Ids that never register (already unsubscribed) age out oldest first.
        held = self._early.setdefault(sub_id, [])
        if len(held) < MAX_EARLY_MESSAGES:
            held.append(result)
        while len(self._early) > MAX_EARLY_SUBSCRIPTIONS:
            self._early.pop(next(iter(self._early)))

    async def _dispatch(self) -> None:
        # Single reader of the socket; routes each message to its subscription
        try:
            async for message in self.w3.socket.process_subscriptions():
                sub_id = normalize_hash(message.get("subscription", ""))
                sub = self._subscriptions.get(sub_id)
                if sub is not None:
                    sub.deliver(message.get("result"))
                else:
                    self._hold_early(sub_id, message.get("result"))
            error: Exception = ConnectionError("subscription stream ended")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e
        logger.warning("Subscription stream failed: {}", error)
        for sub in list(self._subscriptions.values()):
            sub.fail(error)
