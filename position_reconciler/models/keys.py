"""Canonical key derivation for spread orders and persisted positions.

Both functions are pure and independent of leg order: strikes are sorted
before joining and the type tag depends only on the multiset of legs. A
position built from an order always produces the same key as the order.

Key formats:
    CASH                                  cash balance
    TSLA|STOCK                            stock
    TSLA|2028-12-15|350/440|Call          vertical or naked leg
    SPY|2026-03-20|200/250/400/450|IC     iron condor
    SPY|2026-03-20|400/400|LS             long straddle (SS, LSg, SSg likewise)
"""

from datetime import date
from typing import NamedTuple, Optional, Sequence

from .position import PositionLeg
from .spread_order import SpreadOrder

CASH_KEY = "CASH"

KIND_TAGS = {
    "iron-condor": "IC",
    "long-straddle": "LS",
    "short-straddle": "SS",
    "long-strangle": "LSg",
    "short-strangle": "SSg",
}


class LegKey(NamedTuple):
    """Identity of a single traded option leg."""

    ticker: str
    expiration: date
    strike: float
    option_type: str

    def __str__(self) -> str:
        return "|".join([
            self.ticker,
            format_expiration(self.expiration),
            format_strike(self.strike),
            self.option_type,
        ])


def format_strike(strike: float) -> str:
    """Render a strike without a trailing .0 (350.0 -> '350', 402.5 -> '402.5')."""
    value = float(strike)
    if value.is_integer():
        return str(int(value))
    return f"{round(value, 4):g}"


def format_expiration(expiration: Optional[date]) -> str:
    """Normalize an expiration to ISO YYYY-MM-DD ('' when missing)."""
    if expiration is None:
        return ""
    return expiration.isoformat()


def stock_key(ticker: str) -> str:
    return f"{ticker}|STOCK"


def _join_key(ticker: str, expiration: Optional[date], strikes: Sequence[float], tag: str) -> str:
    strike_part = "/".join(format_strike(s) for s in sorted(strikes))
    return f"{ticker}|{format_expiration(expiration)}|{strike_part}|{tag}"


def spread_key_from_order(order: SpreadOrder) -> str:
    """Canonical key of a spread order.

    Args:
        order: SpreadOrder of any kind

    Returns:
        Canonical key string
    """
    if order.kind == "cash":
        return CASH_KEY
    if order.kind == "stock":
        return stock_key(order.ticker)

    if order.is_multi_leg:
        tag = KIND_TAGS.get(order.kind, order.kind)
        return _join_key(order.ticker, order.expiration, [leg.strike for leg in order.legs], tag)

    strikes = [s for s in (order.lower_strike, order.upper_strike) if s is not None]
    return _join_key(order.ticker, order.expiration, strikes, order.option_type or "Call")


def spread_key_from_legs(legs: Sequence[PositionLeg]) -> Optional[str]:
    """Canonical key of a persisted position, derived from its legs.

    Args:
        legs: Position legs in any order

    Returns:
        Canonical key string, or None for an empty leg list
    """
    if not legs:
        return None

    first = legs[0]
    if len(legs) == 1 and (first.is_cash or first.symbol == CASH_KEY):
        return CASH_KEY
    if len(legs) == 1 and first.is_stock:
        return stock_key(first.symbol)

    strikes = [leg.strike for leg in legs if leg.strike is not None]
    return _join_key(first.symbol, first.expiration, strikes, _type_tag(legs))


def _type_tag(legs: Sequence[PositionLeg]) -> str:
    """Type tag for an option position."""
    types = {leg.option_type for leg in legs}

    if len(legs) == 4 and types == {"Call", "Put"}:
        return "IC"

    if len(legs) == 2 and types == {"Call", "Put"}:
        sides = {leg.qty >= 0 for leg in legs}
        if len(sides) == 1:
            is_long = sides.pop()
            is_straddle = legs[0].strike == legs[1].strike
            if is_long:
                return "LS" if is_straddle else "LSg"
            return "SS" if is_straddle else "SSg"

    if len(types) == 1:
        return next(iter(types))

    return "/".join(sorted(types))
