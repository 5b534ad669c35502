"""Spread pre-merger.

Overlapping exports and repeated fills produce several orders for the same
position. They are collapsed here, one order per canonical key, before the
merge into the position store.
"""

import logging
from dataclasses import replace
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from ..models.keys import spread_key_from_order
from ..models.spread_order import Leg, SpreadOrder
from ..utils.error_handling import weighted_average

logger = logging.getLogger("position_reconciler.premerge")


def pre_merge_spreads(
    spreads: Iterable[SpreadOrder],
    average_multi_leg_prices: bool = False,
) -> List[SpreadOrder]:
    """Collapse spread orders that share a canonical key.

    Args:
        spreads: Stock/cash orders and pairing output, in any order
        average_multi_leg_prices: Also quantity-weight the leg prices of
            condors, straddles and strangles (off by default: the first
            occurrence's leg prices are kept)

    Returns:
        One SpreadOrder per distinct canonical key, in first-occurrence order
    """
    merged: Dict[str, SpreadOrder] = {}
    count = 0

    for spread in spreads:
        count += 1
        key = spread_key_from_order(spread)
        existing = merged.get(key)
        if existing is None:
            merged[key] = spread
        else:
            merged[key] = merge_spread_pair(existing, spread, average_multi_leg_prices)

    logger.debug("Pre-merged %d orders into %d", count, len(merged))
    return list(merged.values())


def merge_spread_pair(
    existing: SpreadOrder,
    incoming: SpreadOrder,
    average_multi_leg_prices: bool = False,
) -> SpreadOrder:
    """Merge two orders with the same canonical key.

    Args:
        existing: Order accumulated so far
        incoming: Later occurrence with the same key

    Returns:
        New SpreadOrder with the later date, summed quantity and
        quantity-weighted prices (see pre_merge_spreads for multi-leg orders)
    """
    merged_date = _later(existing.date, incoming.date)
    old_qty = existing.qty or 0
    new_qty = incoming.qty or 0
    total_qty = old_qty + new_qty

    if existing.kind == "stock":
        price = existing.price
        if total_qty != 0:
            price = weighted_average(old_qty, existing.price or 0, new_qty, incoming.price or 0)
        return replace(existing, date=merged_date, qty=total_qty, price=price)

    if existing.kind == "cash":
        price = incoming.price if incoming.price is not None else existing.price
        return replace(existing, date=merged_date, price=price)

    if existing.is_multi_leg:
        legs = _merge_legs(existing.legs, incoming.legs, total_qty, average_multi_leg_prices)
        return replace(existing, date=merged_date, qty=total_qty, legs=legs)

    lower_price = existing.lower_price
    if total_qty != 0 and existing.lower_price is not None and incoming.lower_price is not None:
        lower_price = weighted_average(old_qty, existing.lower_price, new_qty, incoming.lower_price)

    upper_price = existing.upper_price
    if total_qty != 0 and existing.upper_price is not None and incoming.upper_price is not None:
        upper_price = weighted_average(old_qty, existing.upper_price, new_qty, incoming.upper_price)

    return replace(
        existing,
        date=merged_date,
        qty=total_qty,
        lower_price=lower_price,
        upper_price=upper_price,
    )


def _merge_legs(
    existing_legs: Tuple[Leg, ...],
    incoming_legs: Tuple[Leg, ...],
    total_qty: float,
    average_prices: bool,
) -> Tuple[Leg, ...]:
    """Rescale each leg to the merged unit count, keeping its sign."""
    merged = []
    for leg in existing_legs:
        sign = 1 if leg.qty > 0 else -1
        price = leg.price
        if average_prices:
            match = _matching_leg(incoming_legs, leg)
            if match is not None:
                price = weighted_average(abs(leg.qty), leg.price, abs(match.qty), match.price)
        merged.append(replace(leg, qty=sign * abs(total_qty), price=price))
    return tuple(merged)


def _matching_leg(legs: Tuple[Leg, ...], target: Leg) -> Optional[Leg]:
    for leg in legs:
        if leg.strike == target.strike and leg.option_type == target.option_type \
                and leg.is_long == target.is_long:
            return leg
    return None


def _later(first: Optional[date], second: Optional[date]) -> Optional[date]:
    if first is None:
        return second
    if second is None:
        return first
    return max(first, second)
