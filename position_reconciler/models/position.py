"""Persisted position model."""

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

STOCK_TYPE = "Stock"
CASH_TYPE = "Cash"


@dataclass
class PositionLeg:
    """One row of a persisted position.

    Mutable: the merger updates qty and avg_price in place. source_row
    points back at the store row the leg was read from (None for legs that
    have not been saved yet).
    """

    symbol: str
    strike: Optional[float]
    option_type: str
    qty: float
    avg_price: float
    expiration: Optional[date] = None
    source_row: Optional[int] = None
    closing_price: Optional[float] = None

    @property
    def is_stock(self) -> bool:
        return self.option_type == STOCK_TYPE or (self.strike is None and self.option_type != CASH_TYPE)

    @property
    def is_cash(self) -> bool:
        return self.option_type == CASH_TYPE

    @property
    def is_option(self) -> bool:
        return not self.is_stock and not self.is_cash and self.expiration is not None


@dataclass
class Position:
    """A reconciled position: one or more legs sharing a canonical key.

    Attributes:
        canonical_key: Order-independent identifier derived from the legs
        legs: Position legs in store order
        last_txn_date: Date through which transactions have been applied
        group_label: Store group identifier (e.g. "7")
    """

    canonical_key: str
    legs: List[PositionLeg] = field(default_factory=list)
    last_txn_date: Optional[date] = None
    group_label: str = ""

    @property
    def ticker(self) -> str:
        return self.legs[0].symbol if self.legs else ""

    def long_leg(self) -> Optional[PositionLeg]:
        """First leg with a positive quantity."""
        return next((leg for leg in self.legs if leg.qty > 0), None)

    def short_leg(self) -> Optional[PositionLeg]:
        """First leg with a negative quantity."""
        return next((leg for leg in self.legs if leg.qty < 0), None)

    def find_leg(self, strike: float, option_type: str, is_long: bool) -> Optional[PositionLeg]:
        """Find the leg at a strike/type on the given side."""
        for leg in self.legs:
            if leg.strike != strike or leg.option_type != option_type:
                continue
            if (leg.qty > 0) == is_long:
                return leg
        return None

    def __repr__(self) -> str:
        last = self.last_txn_date.isoformat() if self.last_txn_date else "-"
        return f"Position({self.canonical_key} legs={len(self.legs)} last={last} group={self.group_label})"
