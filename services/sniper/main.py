from __future__ import annotations

import argparse
import asyncio
import sys
from decimal import Decimal, InvalidOperation

from loguru import logger
from web3 import Web3

from snipe_engine.chains.client import ChainClient
from snipe_engine.chains.pair_watcher import PairCreatedWatcher
from snipe_engine.config import AppSettings
from snipe_engine.errors import ReceiptFailed, SnipeError
from snipe_engine.execution.executor import SwapExecutor
from snipe_engine.units import ether_to_wei

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_REVERTED = 2
EXIT_INTERRUPTED = 130


def _address(value: str) -> str:
    if not Web3.is_address(value):
        raise argparse.ArgumentTypeError(f"not an address: {value}")
    return Web3.to_checksum_address(value)


def _amount(value: str) -> Decimal:
    try:
        amount = Decimal(value)
    except InvalidOperation as e:
        raise argparse.ArgumentTypeError(f"not a number: {value}") from e
    if not amount.is_finite() or amount <= 0:
        raise argparse.ArgumentTypeError(f"amount must be positive: {value}")
    return amount


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="snipe", description="buy tokens right after creating liquidity pair")
    ap.add_argument("--private-key", "-pk", dest="private_key", help="wallet's private key (or SNIPE_PRIVATE_KEY)")
    sub = ap.add_subparsers(dest="command", required=True)

    buy = sub.add_parser("buy", aliases=["b"], help="buy token for the native coin")
    buy.add_argument("--contract", "-c", required=True, type=_address, help="token contract address")
    buy.add_argument("--amount", required=True, type=_amount, help="native coin to spend")

    watch = sub.add_parser("watch", aliases=["w"], help="watch the factory for new pairs")
    watch.add_argument("--token", "-t", type=_address, help="only report pairs with this token")
    watch.add_argument("--amount", type=_amount, help="buy --token with this amount once its pair appears")
    return ap


def _report_outcome(outcome) -> int:
    try:
        outcome.raise_for_status()
    except ReceiptFailed as e:
        logger.error("{}", e)
        return EXIT_REVERTED
    return EXIT_OK


async def run_buy(settings: AppSettings, client: ChainClient, contract: str, amount: Decimal) -> int:
    executor = SwapExecutor(settings, client)
    outcome = await executor.buy(contract, ether_to_wei(amount))
    return _report_outcome(outcome)


async def run_watch(settings: AppSettings, client: ChainClient, token: str | None, amount: Decimal | None) -> int:
    watcher = PairCreatedWatcher(client, settings.factory_address)
    sub, feed = await watcher.watch()
    try:
        async for event in feed:
            if token and not event.involves(token):
                continue
            logger.info(
                "PairCreated: {} / {} -> pair {} (block {}, log {})",
                event.token0,
                event.token1,
                event.pair,
                event.block_number,
                event.log_index,
            )
            if token and amount is not None:
                await sub.cancel()
                return await run_buy(settings, client, token, amount)
    finally:
        await sub.cancel()
    return EXIT_OK


async def run(args: argparse.Namespace, settings: AppSettings) -> int:
    private_key = args.private_key or settings.private_key
    if not private_key:
        logger.error("A private key is required (--private-key or SNIPE_PRIVATE_KEY)")
        return EXIT_FATAL

    client = await ChainClient.connect(settings.rpc_ws_url, private_key)
    async with client:
        if args.command in ("buy", "b"):
            return await run_buy(settings, client, args.contract, args.amount)
        return await run_watch(settings, client, args.token, args.amount)


def main(argv: list[str] | None = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    if args.command in ("watch", "w") and args.amount is not None and args.token is None:
        ap.error("--amount requires --token")

    settings = AppSettings()
    logger.remove()
    logger.add(lambda msg: print(msg, end=""), level=settings.log_level)

    try:
        return asyncio.run(run(args, settings))
    except SnipeError as e:
        logger.error("{}", e)
        return EXIT_FATAL
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down.")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
