"""Broker portfolio snapshot (stocks, cash, option lots)."""

from dataclasses import dataclass, field
from typing import Dict

from .keys import LegKey


@dataclass(frozen=True)
class SnapshotLot:
    """Quantity held and average price paid for one holding."""

    qty: float
    price_paid: float = 0.0


@dataclass
class PortfolioSnapshot:
    """Holdings as reported by the broker at download time.

    Taken as absolute truth for stock quantities in fresh and rebuild runs.
    Option lots are keyed by LegKey with signed quantities (short < 0).
    """

    stocks: Dict[str, SnapshotLot] = field(default_factory=dict)
    cash: float = 0.0
    options: Dict[LegKey, SnapshotLot] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.stocks and not self.options and self.cash == 0
