from __future__ import annotations

import asyncio
from typing import Any

import pytest
from eth_account import Account
from web3 import Web3

from snipe_engine.chains.client import ChainClient
from snipe_engine.config import AppSettings
from snipe_engine.models import Identity

TEST_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TEST_ACCOUNT = Account.from_key(TEST_KEY)
TOKEN = Web3.to_checksum_address("0x00000000000000000000000000000000000c0de1")
TX_HASH = "0x" + "ab" * 32


class FakeCall:
    def __init__(self, contract: FakeContract, name: str, args: tuple):
        self.contract = contract
        self.name = name
        self.args = args

    async def call(self):
        result = self.contract.responses.get(self.name)
        if isinstance(result, Exception):
            raise result
        return result

    async def build_transaction(self, tx: dict) -> dict:
        result = self.contract.responses.get(self.name)
        if isinstance(result, Exception):
            raise result
        built = {"to": self.contract.address, "data": "0x7ff36ab5", **tx}
        self.contract.built.append(built)
        return built


class FakeFunctions:
    def __init__(self, contract: FakeContract):
        self._contract = contract

    def __getattr__(self, name: str):
        def fn(*args):
            self._contract.calls.append((name, args))
            return FakeCall(self._contract, name, args)

        return fn


class FakeContract:
    def __init__(self, address: str):
        self.address = address
        self.responses: dict[str, Any] = {}
        self.calls: list[tuple[str, tuple]] = []
        self.built: list[dict] = []
        self.functions = FakeFunctions(self)

    def called(self, name: str) -> list[tuple]:
        return [args for n, args in self.calls if n == name]


class FakeEth:
    def __init__(self):
        self.chain_id_value = 56
        self.gas_price_value = 5_000_000_000
        self.pending_nonce = 7
        self.errors: dict[str, Exception] = {}
        self.receipts: dict[str, dict] = {}
        self.receipt_calls: list[str] = []
        self.sent: list[bytes] = []
        self.tx_hash = TX_HASH
        self.contracts: dict[str, FakeContract] = {}
        self.subscriptions: list[tuple[str, dict]] = []
        self.unsubscribed: list[str] = []

    def _check(self, name: str) -> None:
        if name in self.errors:
            raise self.errors[name]

    async def _value(self, name: str, value):
        self._check(name)
        return value

    @property
    def chain_id(self):
        return self._value("chain_id", self.chain_id_value)

    @property
    def gas_price(self):
        return self._value("gas_price", self.gas_price_value)

    async def get_transaction_count(self, address, block_identifier="latest"):
        self._check("get_transaction_count")
        return self.pending_nonce

    async def get_transaction_receipt(self, tx_hash):
        self.receipt_calls.append(tx_hash)
        self._check("get_transaction_receipt")
        return self.receipts[tx_hash]

    async def send_raw_transaction(self, raw):
        self._check("send_raw_transaction")
        self.sent.append(bytes(raw))
        return bytes.fromhex(self.tx_hash[2:])

    async def subscribe(self, kind, log_filter):
        self._check("subscribe")
        sub_id = hex(len(self.subscriptions) + 1)
        self.subscriptions.append((sub_id, log_filter))
        return sub_id

    async def unsubscribe(self, sub_id):
        self.unsubscribed.append(sub_id)
        return True

    def contract(self, address, abi):
        return self.contract_at(address)

    def contract_at(self, address: str) -> FakeContract:
        address = Web3.to_checksum_address(address)
        return self.contracts.setdefault(address, FakeContract(address))


class FakeSocket:
    """Replays scripted subscription messages, then stays open.

    Each item is ``(subscription_id, result)`` or an exception to raise. A
    message is held back until its subscription has been issued.
    """

    def __init__(self, eth: FakeEth):
        self.eth = eth
        self.messages: list[Any] = []

    async def process_subscriptions(self):
        i = 0
        while i < len(self.messages):
            item = self.messages[i]
            i += 1
            if isinstance(item, Exception):
                await asyncio.sleep(0)
                raise item
            sub_id, result = item
            while sub_id not in {s for s, _ in self.eth.subscriptions}:
                await asyncio.sleep(0)
            await asyncio.sleep(0)
            yield {"subscription": sub_id, "result": result}
        await asyncio.Event().wait()


class FakeProvider:
    def __init__(self, endpoint: str = "ws://fake"):
        self.endpoint = endpoint
        self.connect_error: Exception | None = None
        self.connected = False
        self.disconnects = 0

    async def connect(self):
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def disconnect(self):
        self.disconnects += 1
        self.connected = False


class FakeW3:
    def __init__(self, provider: FakeProvider | None = None):
        self.provider = provider or FakeProvider()
        self.eth = FakeEth()
        self.socket = FakeSocket(self.eth)


def make_log(tx_hash: str, address: str = TOKEN, **extra) -> dict:
    return {"address": address, "transactionHash": bytes.fromhex(tx_hash[2:]), "topics": [], "data": b"", **extra}


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(_env_file=None, settlement_timeout_sec=2)


@pytest.fixture
def fake_w3() -> FakeW3:
    return FakeW3()


@pytest.fixture
def client(fake_w3: FakeW3) -> ChainClient:
    identity = Identity(
        address=TEST_ACCOUNT.address,
        chain_id=fake_w3.eth.chain_id_value,
        private_key=bytes(TEST_ACCOUNT.key),
    )
    return ChainClient(fake_w3, identity)
