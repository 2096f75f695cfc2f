from __future__ import annotations

import time

from loguru import logger
from web3 import Web3

from snipe_engine.chains.client import ChainClient
from snipe_engine.config import AppSettings
from snipe_engine.errors import ReportingFailed, RpcCallFailed, SnipeError
from snipe_engine.execution.confirmation import ConfirmationTracker
from snipe_engine.execution.uniswap_v2 import (
    V2SwapPlan,
    build_swap_exact_eth_for_tokens,
    compute_min_out,
    fetch_quote,
)
from snipe_engine.models import BuyOutcome, OutcomeStatus, PendingTransaction
from snipe_engine.units import wei_to_ether


class SwapExecutor:
    def __init__(
        self,
        settings: AppSettings,
        client: ChainClient,
        tracker: ConfirmationTracker | None = None,
    ):
        self.settings = settings
        self.client = client
        self.tracker = tracker or ConfirmationTracker(client, timeout=settings.settlement_timeout)

    async def gas_price(self) -> int:
        try:
            return await self.client.suggest_gas_price()
        except RpcCallFailed as e:
            logger.warning("{}; using fallback gas price {} wei", e, self.settings.fallback_gas_price_wei)
            return self.settings.fallback_gas_price_wei

    async def buy(self, token_address: str, amount_in_wei: int) -> BuyOutcome:
        """Swap ``amount_in_wei`` of the native coin for ``token_address``.

        Runs to settlement. Once the transaction is submitted the budget is
        spent whatever the outcome; a reverted swap comes back as a
        ``REVERTED`` outcome rather than an exception.
        """
        symbol = self.settings.native_symbol
        token = Web3.to_checksum_address(token_address)
        logger.info("Buying for {} {}, contract: {}", wei_to_ether(amount_in_wei), symbol, token)

        nonce = await self.client.next_nonce()
        try:
            pending = await self._submit(token, amount_in_wei, nonce)
        except BaseException:
            self.client.release_nonce(nonce)
            raise
        logger.info("Pending TX: {} (nonce {})", pending.tx_hash, pending.nonce)

        receipt = await self.tracker.await_settlement(token, pending.tx_hash)
        if not receipt.succeeded:
            logger.error("Swap {} failed: reverted, {} {} spent", pending.tx_hash, wei_to_ether(amount_in_wei), symbol)
            return BuyOutcome(
                status=OutcomeStatus.REVERTED,
                token=token,
                tx_hash=pending.tx_hash,
                spent_wei=amount_in_wei,
                receipt=receipt,
                token_balance=0,
            )

        logger.info("Swap {} succeeded", pending.tx_hash)
        outcome = BuyOutcome(
            status=OutcomeStatus.SUCCEEDED,
            token=token,
            tx_hash=pending.tx_hash,
            spent_wei=amount_in_wei,
            receipt=receipt,
        )
        await self._report(outcome)
        return outcome

    async def _submit(self, token: str, amount_in_wei: int, nonce: int) -> PendingTransaction:
        symbol = self.settings.native_symbol
        router_addr = self.settings.router_address
        gas_price = await self.gas_price()
        logger.info("Gas price: {} {}", wei_to_ether(gas_price), symbol)

        router = self.client.router_v2(router_addr)
        path = [self.settings.wrapped_native_address, token]
        quote = await fetch_quote(router, amount_in_wei, path)
        for amount in quote.amounts:
            logger.info("\tamount out: {}", wei_to_ether(amount))

        min_out = compute_min_out(quote, self.settings.slippage_bps)
        plan = V2SwapPlan(
            router=router_addr,
            path=path,
            min_out=min_out,
            recipient=self.client.address,
            deadline=int(time.time()) + int(self.settings.tx_deadline_seconds),
            value=amount_in_wei,
        )
        tx = await build_swap_exact_eth_for_tokens(
            router,
            plan,
            {
                "chainId": self.client.identity.chain_id,
                "from": self.client.address,
                "nonce": nonce,
                "gas": self.settings.gas_limit,
                "gasPrice": gas_price,
            },
        )
        logger.info("Min out: {}", min_out)
        return await self.client.send_transaction(tx)

    async def _report(self, outcome: BuyOutcome) -> None:
        try:
            outcome.token_name = await self.client.token_name(outcome.token)
            outcome.token_balance = await self.client.token_balance(outcome.token)
        except SnipeError as e:
            outcome.reporting_error = ReportingFailed("report balance", e)
            logger.warning("Swap succeeded but reporting failed: {}", e)
            return
        try:
            outcome.token_decimals = await self.client.token_decimals(outcome.token)
        except SnipeError as e:
            logger.debug("decimals() unavailable, assuming 18: {}", e)
        logger.info(
            "Balance: {} {}",
            wei_to_ether(outcome.token_balance, outcome.token_decimals),
            outcome.token_name,
        )
