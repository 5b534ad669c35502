"""Spread orders: the intermediate shape between raw transactions and positions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Literal, Optional, Tuple

SpreadKind = Literal[
    "vertical",
    "iron-condor",
    "long-straddle",
    "short-straddle",
    "long-strangle",
    "short-strangle",
    "naked-long",
    "naked-short",
    "stock",
    "cash",
]

MULTI_LEG_KINDS = frozenset({
    "iron-condor",
    "long-straddle",
    "short-straddle",
    "long-strangle",
    "short-strangle",
})
FLAT_KINDS = frozenset({"vertical", "naked-long", "naked-short"})
SPREAD_KINDS = MULTI_LEG_KINDS | FLAT_KINDS | {"stock", "cash"}


@dataclass(frozen=True)
class Leg:
    """One option leg of a multi-leg order. Quantity is signed."""

    strike: float
    option_type: str
    qty: float
    price: float

    @property
    def is_long(self) -> bool:
        return self.qty > 0


@dataclass(frozen=True)
class SpreadOrder:
    """A paired order derived from one or more opening transactions.

    Two shapes share this record:
        - flat (vertical / naked): lower_strike, upper_strike, option_type,
          qty, lower_price, upper_price. The long strike is lower_strike,
          the short strike is upper_strike; a naked leg leaves the other
          side as None.
        - multi-leg (condor / straddle / strangle): an ordered tuple of Leg.

    Stock and cash orders use qty and price only.

    Sign convention: the long side carries the reported magnitude and
    opposite legs are negative. A naked-short order has a negative qty;
    multi-leg orders keep qty as the unit count and sign each leg.
    """

    kind: SpreadKind
    ticker: str
    date: Optional[date] = None
    expiration: Optional[date] = None
    qty: float = 0
    option_type: Optional[str] = None

    # Flat shape
    lower_strike: Optional[float] = None
    upper_strike: Optional[float] = None
    lower_price: Optional[float] = None
    upper_price: Optional[float] = None

    # Multi-leg shape
    legs: Tuple[Leg, ...] = ()

    # Stock / cash
    price: Optional[float] = None

    def __post_init__(self) -> None:
        """Validate the order shape against its kind."""
        if self.kind not in SPREAD_KINDS:
            raise ValueError(f"Unknown spread kind: {self.kind}")
        if self.kind in MULTI_LEG_KINDS and not self.legs:
            raise ValueError(f"{self.kind} order requires legs")
        if self.kind == "vertical" and (self.lower_strike is None or self.upper_strike is None):
            raise ValueError("Vertical order requires both strikes")

    @property
    def is_multi_leg(self) -> bool:
        return bool(self.legs)

    @property
    def is_option(self) -> bool:
        return self.kind not in ("stock", "cash")

    @property
    def option_legs(self) -> Tuple[Leg, ...]:
        """All option legs this order represents, with signed quantities."""
        if self.legs:
            return self.legs
        if not self.is_option:
            return ()

        legs = []
        if self.lower_strike is not None:
            legs.append(Leg(
                strike=self.lower_strike,
                option_type=self.option_type or "Call",
                qty=abs(self.qty),
                price=self.lower_price or 0.0,
            ))
        if self.upper_strike is not None:
            legs.append(Leg(
                strike=self.upper_strike,
                option_type=self.option_type or "Call",
                qty=-abs(self.qty),
                price=self.upper_price or 0.0,
            ))
        return tuple(legs)

    @property
    def net_quantity(self) -> float:
        """Sum of signed leg quantities (a balanced vertical nets to zero)."""
        if not self.is_option:
            return self.qty
        return sum(leg.qty for leg in self.option_legs)

    def __repr__(self) -> str:
        """Compact string representation."""
        if self.kind in ("stock", "cash"):
            return f"SpreadOrder({self.kind} {self.ticker} qty={self.qty:g} price={self.price})"
        exp = self.expiration.isoformat() if self.expiration else "?"
        strikes = "/".join(f"{leg.strike:g}" for leg in self.option_legs)
        return f"SpreadOrder({self.kind} {self.ticker} {exp} {strikes} qty={self.qty:g})"
