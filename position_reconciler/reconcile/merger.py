"""Position merger.

Applies pre-merged spread orders to the persisted positions. Existing option
positions are guarded by a date gate: an order dated on or before the
position's last_txn_date was already applied by an earlier run and is
skipped, which makes re-importing overlapping exports safe.
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from ..models.keys import spread_key_from_order
from ..models.position import CASH_TYPE, STOCK_TYPE, Position, PositionLeg
from ..models.spread_order import SpreadOrder
from ..utils.error_handling import weighted_average

logger = logging.getLogger("position_reconciler.merger")


@dataclass
class MergeResult:
    """Outcome of merging spread orders into a position store.

    Attributes:
        updated_positions: Existing positions changed by this run (each once)
        new_positions: Positions created from orders with no stored match
        skipped_count: Orders not applied (already imported, or empty deltas)
    """

    updated_positions: List[Position] = field(default_factory=list)
    new_positions: List[Position] = field(default_factory=list)
    skipped_count: int = 0


def merge_spreads(
    existing_positions: Mapping[str, Position],
    spreads: Iterable[SpreadOrder],
) -> MergeResult:
    """Merge spread orders into existing positions.

    Existing positions are mutated in place.

    Args:
        existing_positions: Stored positions keyed by canonical key
        spreads: Pre-merged spread orders

    Returns:
        MergeResult with updated and new positions and the skip count
    """
    result = MergeResult()
    updated_keys = set()
    created: Dict[str, Position] = {}
    labels = _next_group_labels(existing_positions.values())

    for spread in spreads:
        key = spread_key_from_order(spread)
        position = existing_positions.get(key)

        if position is None:
            if key in created:
                _apply_order(created[key], spread)
                continue
            new_position = position_from_order(spread, key, next(labels))
            created[key] = new_position
            result.new_positions.append(new_position)
            logger.debug("New position %s", key)
            continue

        if not _apply_order(position, spread):
            result.skipped_count += 1
            continue

        if key not in updated_keys:
            updated_keys.add(key)
            result.updated_positions.append(position)

    logger.info(
        "Merge complete: %d updated, %d new, %d skipped",
        len(result.updated_positions), len(result.new_positions), result.skipped_count,
    )
    return result


def position_from_order(order: SpreadOrder, key: str, group_label: str = "") -> Position:
    """Build a new Position carrying every leg of an order.

    Args:
        order: Spread order with no stored counterpart
        key: Canonical key of the order
        group_label: Store group label to assign

    Returns:
        Position whose last_txn_date is the order's date
    """
    if order.kind == "stock":
        legs = [PositionLeg(
            symbol=order.ticker,
            strike=None,
            option_type=STOCK_TYPE,
            qty=order.qty,
            avg_price=order.price or 0.0,
        )]
    elif order.kind == "cash":
        legs = [PositionLeg(
            symbol=order.ticker,
            strike=None,
            option_type=CASH_TYPE,
            qty=order.qty or 1,
            avg_price=order.price or 0.0,
        )]
    else:
        legs = [
            PositionLeg(
                symbol=order.ticker,
                strike=leg.strike,
                option_type=leg.option_type,
                qty=leg.qty,
                avg_price=leg.price,
                expiration=order.expiration,
            )
            for leg in order.option_legs
        ]

    return Position(
        canonical_key=key,
        legs=legs,
        last_txn_date=order.date,
        group_label=group_label,
    )


def _apply_order(position: Position, spread: SpreadOrder) -> bool:
    """Apply one order to a stored position. Returns False when skipped."""
    if spread.kind == "stock":
        return _apply_stock_delta(position, spread)
    if spread.kind == "cash":
        return _apply_cash(position, spread)
    return _apply_option_order(position, spread)


def _apply_stock_delta(position: Position, spread: SpreadOrder) -> bool:
    """Treat the order's qty as a signed change to the held shares."""
    if spread.qty == 0 and spread.date is None:
        logger.debug("Skipping empty stock delta for %s", spread.ticker)
        return False

    stock_leg = position.legs[0] if position.legs else None
    if stock_leg is not None:
        stock_leg.qty += spread.qty
        if spread.price is not None:
            stock_leg.avg_price = spread.price

    if spread.date is not None:
        position.last_txn_date = spread.date
    return True


def _apply_cash(position: Position, spread: SpreadOrder) -> bool:
    """Cash has no cost basis: the balance is replaced outright."""
    if not position.legs:
        return False
    position.legs[0].avg_price = spread.price or 0.0
    return True


def _apply_option_order(position: Position, spread: SpreadOrder) -> bool:
    """Date-gated weighted-average merge of an option order."""
    last = position.last_txn_date
    if spread.date is not None and last is not None and spread.date <= last:
        logger.debug(
            "Skipping %s dated %s: already applied through %s",
            position.canonical_key, spread.date, last,
        )
        return False

    # All leg values are computed before any is written
    updates = list(_leg_updates(position, spread))
    for leg, qty, avg_price in updates:
        leg.qty = qty
        leg.avg_price = avg_price

    if spread.date is not None and (last is None or spread.date > last):
        position.last_txn_date = spread.date
    return True


def _leg_updates(position: Position, spread: SpreadOrder) -> Iterator[Tuple[PositionLeg, float, float]]:
    """New (qty, avg_price) for each position leg the order adds to."""
    if spread.is_multi_leg:
        for leg in spread.legs:
            target = position.find_leg(leg.strike, leg.option_type, leg.is_long)
            if target is None:
                logger.warning("No %s %s leg in %s to merge into", leg.strike, leg.option_type,
                               position.canonical_key)
                continue
            yield _merged_leg(target, abs(leg.qty), leg.price, leg.is_long)
        return

    added = abs(spread.qty)
    option_type = spread.option_type or "Call"

    if spread.lower_strike is not None:
        target = position.find_leg(spread.lower_strike, option_type, True) or position.long_leg()
        if target is not None:
            yield _merged_leg(target, added, spread.lower_price or 0.0, True)

    if spread.upper_strike is not None:
        target = position.find_leg(spread.upper_strike, option_type, False) or position.short_leg()
        if target is not None:
            yield _merged_leg(target, added, spread.upper_price or 0.0, False)


def _merged_leg(
    leg: PositionLeg,
    added_qty: float,
    added_price: float,
    is_long: bool,
) -> Tuple[PositionLeg, float, float]:
    old_qty = abs(leg.qty)
    total = old_qty + added_qty
    avg_price = weighted_average(old_qty, leg.avg_price, added_qty, added_price)
    return leg, (total if is_long else -total), avg_price


def _next_group_labels(positions: Iterable[Position]) -> Iterator[str]:
    """Group labels continuing the store's numeric sequence."""
    numbers = [int(p.group_label) for p in positions if str(p.group_label).isdigit()]
    start = max(numbers, default=0) + 1
    return (str(n) for n in itertools.count(start))


def find_position(positions: Mapping[str, Position], spread: SpreadOrder) -> Optional[Position]:
    """Stored position an order would merge into, if any."""
    return positions.get(spread_key_from_order(spread))
