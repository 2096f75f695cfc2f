from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, localcontext

ETHER_DECIMALS = 18
WEI_PER_ETHER = 10**ETHER_DECIMALS

# uint256 needs 78 digits; keep headroom so no step rounds
_PRECISION = 100


def ether_to_wei(amount: Decimal | int | str) -> int:
    """Convert a display amount of the base currency to wei.

    Digits below one wei are dropped (truncated toward zero), never rounded.
    """
    value = Decimal(amount)
    if not value.is_finite():
        raise ValueError(f"amount must be finite: {amount!r}")
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return int((value * WEI_PER_ETHER).to_integral_value(rounding=ROUND_DOWN))


def wei_to_ether(value: int, decimals: int = ETHER_DECIMALS) -> Decimal:
    """Inverse of :func:`ether_to_wei`; ``decimals`` lets ERC-20 balances reuse it."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(int(value)) / (Decimal(10) ** decimals)
