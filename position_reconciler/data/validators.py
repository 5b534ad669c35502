"""Consistency checks between derived spread orders and a broker snapshot.

The snapshot is the broker's own view of option holdings. Derived orders
that disagree with it usually mean missing transaction history; snapshot lots
that no order explains are turned into single-leg orders so they are not lost.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional

from ..models.keys import LegKey
from ..models.position import Position
from ..models.snapshot import SnapshotLot
from ..models.spread_order import SpreadOrder

logger = logging.getLogger("position_reconciler.validators")


@dataclass(frozen=True)
class QuantityMismatch:
    """A leg whose derived quantity differs from the snapshot."""

    key: LegKey
    expected: float
    actual: float


@dataclass
class QuantityCheck:
    """Result of comparing derived option quantities to a snapshot.

    Attributes:
        mismatches: Legs present in both with different quantities
        extra: Snapshot legs no derived order accounts for
    """

    mismatches: List[QuantityMismatch] = field(default_factory=list)
    extra: List[LegKey] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.mismatches and not self.extra


def expected_option_quantities(spreads: Iterable[SpreadOrder]) -> Dict[LegKey, float]:
    """Signed quantity per option leg implied by a set of spread orders."""
    expected: Dict[LegKey, float] = defaultdict(float)
    for spread in spreads:
        if not spread.is_option or spread.expiration is None:
            continue
        for leg in spread.option_legs:
            expected[LegKey(spread.ticker, spread.expiration, leg.strike, leg.option_type)] += leg.qty
    return dict(expected)


def held_option_quantities(positions: Iterable[Position]) -> Dict[LegKey, float]:
    """Signed quantity per option leg already held by stored positions."""
    held: Dict[LegKey, float] = defaultdict(float)
    for position in positions:
        for leg in position.legs:
            if leg.is_option:
                held[LegKey(leg.symbol, leg.expiration, leg.strike, leg.option_type)] += leg.qty
    return dict(held)


def validate_option_quantities(
    spreads: Iterable[SpreadOrder],
    snapshot_options: Mapping[LegKey, SnapshotLot],
    held: Optional[Mapping[LegKey, float]] = None,
) -> QuantityCheck:
    """Compare quantities implied by spread orders against snapshot lots.

    Args:
        spreads: Pre-merged spread orders not yet applied to the store
        snapshot_options: Option lots from the portfolio snapshot
        held: Option quantities the store already holds

    Returns:
        QuantityCheck listing mismatched and unexplained legs
    """
    expected: Dict[LegKey, float] = defaultdict(float, held or {})
    for key, qty in expected_option_quantities(spreads).items():
        expected[key] += qty
    check = QuantityCheck()

    for key, expected_qty in expected.items():
        lot = snapshot_options.get(key)
        actual_qty = lot.qty if lot is not None else 0
        if actual_qty != expected_qty:
            logger.warning("Quantity mismatch for %s: derived %g, snapshot %g", key, expected_qty, actual_qty)
            check.mismatches.append(QuantityMismatch(key=key, expected=expected_qty, actual=actual_qty))

    for key in snapshot_options:
        if key not in expected:
            logger.warning("Snapshot holds %s with no matching transactions", key)
            check.extra.append(key)

    return check


def orders_for_unexplained_lots(
    keys: Iterable[LegKey],
    snapshot_options: Mapping[LegKey, SnapshotLot],
    as_of: date,
) -> List[SpreadOrder]:
    """Single-leg naked orders for snapshot lots with no transaction history."""
    orders = []
    for key in keys:
        lot = snapshot_options[key]
        if lot.qty == 0:
            continue
        if lot.qty > 0:
            orders.append(SpreadOrder(
                kind="naked-long",
                ticker=key.ticker,
                date=as_of,
                expiration=key.expiration,
                option_type=key.option_type,
                qty=lot.qty,
                lower_strike=key.strike,
                lower_price=abs(lot.price_paid),
            ))
        else:
            orders.append(SpreadOrder(
                kind="naked-short",
                ticker=key.ticker,
                date=as_of,
                expiration=key.expiration,
                option_type=key.option_type,
                qty=-abs(lot.qty),
                upper_strike=key.strike,
                upper_price=abs(lot.price_paid),
            ))
    return orders
