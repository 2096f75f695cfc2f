from __future__ import annotations

from dataclasses import dataclass

from snipe_engine.errors import QuoteFailed, SubmissionFailed
from snipe_engine.models import Quote


@dataclass
class V2SwapPlan:
    router: str
    path: list[str]
    min_out: int
    recipient: str
    deadline: int
    value: int  # native value to send


async def fetch_quote(router_contract, amount_in: int, path: list[str]) -> Quote:
    try:
        amounts = await router_contract.functions.getAmountsOut(amount_in, path).call()
    except Exception as e:
        raise QuoteFailed("getAmountsOut", e) from e
    if len(amounts) < 2:
        raise QuoteFailed("getAmountsOut", f"expected {len(path)} amounts, got {len(amounts)}")
    return Quote(path=tuple(path), amounts=tuple(int(a) for a in amounts))


def compute_min_out(quote: Quote, slippage_bps: int) -> int:
    # Floor division: 5000 bps gives exactly quoted // 2
    return quote.amount_out * (10_000 - slippage_bps) // 10_000


async def build_swap_exact_eth_for_tokens(router_contract, plan: V2SwapPlan, tx: dict) -> dict:
    """Build the fee-on-transfer tolerant ETH -> token swap."""
    try:
        return await router_contract.functions.swapExactETHForTokensSupportingFeeOnTransferTokens(
            plan.min_out, plan.path, plan.recipient, plan.deadline
        ).build_transaction({**tx, "value": plan.value})
    except Exception as e:
        raise SubmissionFailed("build_transaction", e) from e
