"""Leg pairing engine.

Groups option-opening transactions by trade date, ticker and expiration and
pairs the legs of each group into spread orders: iron condors, straddles and
strangles, verticals, and whatever is left over as naked single legs.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, NamedTuple, Optional

from ..models.spread_order import Leg, SpreadOrder
from ..models.transaction import OPTION_TYPES, Transaction

logger = logging.getLogger("position_reconciler.pairing")


class Side(Enum):
    """Direction of an opening leg."""

    LONG = "long"
    SHORT = "short"


class GroupKey(NamedTuple):
    """Transactions opened together: same trade date, ticker and expiration."""

    date: date
    ticker: str
    expiration: date


@dataclass
class _WorkingLeg:
    """Pairing cursor over one opening transaction.

    The transaction itself is never modified; remaining tracks the unsigned
    quantity not yet assigned to an order.
    """

    txn: Transaction
    side: Side
    remaining: int

    @classmethod
    def from_transaction(cls, txn: Transaction) -> "_WorkingLeg":
        side = Side.LONG if txn.qty > 0 else Side.SHORT
        return cls(txn=txn, side=side, remaining=abs(txn.qty))

    @property
    def strike(self) -> float:
        return self.txn.strike

    @property
    def option_type(self) -> str:
        return self.txn.option_type

    @property
    def price(self) -> float:
        return self.txn.price

    def signed(self, qty: int) -> int:
        """Convert an unsigned quantity on this leg's side to a signed one."""
        return qty if self.side is Side.LONG else -qty


def pair_transactions_into_spreads(transactions: Iterable[Transaction]) -> List[SpreadOrder]:
    """Pair opening transactions into spread orders.

    Args:
        transactions: Normalized option transactions (non-opening ones are ignored)

    Returns:
        List of SpreadOrder objects, grouped in first-seen group order

    Design notes:
        - An exact 1/1/1/1 condor shape with equal quantities becomes one
          iron-condor order; any other shape falls through to verticals.
        - All-long (or all-short) groups with both calls and puts pair one
          call with one put into a straddle/strangle; remainders fall through.
        - Verticals pair longs and shorts of one type by ascending strike.
    """
    groups = _group_opening_transactions(transactions)

    spreads: List[SpreadOrder] = []
    for key, txns in groups.items():
        group_spreads = _pair_group(key, txns)
        logger.debug(
            "Group %s %s %s: %d legs -> %d orders",
            key.date, key.ticker, key.expiration, len(txns), len(group_spreads),
        )
        spreads.extend(group_spreads)

    logger.info("Paired %d opening groups into %d spread orders", len(groups), len(spreads))
    return spreads


def _group_opening_transactions(
    transactions: Iterable[Transaction],
) -> Dict[GroupKey, List[Transaction]]:
    """Group opening transactions by (date, ticker, expiration).

    Args:
        transactions: Normalized option transactions

    Returns:
        Dictionary mapping GroupKey to the group's transactions in input order
    """
    groups: Dict[GroupKey, List[Transaction]] = defaultdict(list)
    for txn in transactions:
        if not txn.is_open:
            continue
        if not txn.is_pairable:
            logger.debug("Ignoring unpairable opening transaction: %r", txn)
            continue
        groups[GroupKey(txn.date, txn.ticker, txn.expiration)].append(txn)
    return dict(groups)


def _pair_group(key: GroupKey, txns: List[Transaction]) -> List[SpreadOrder]:
    """Pair the legs of a single opening group."""
    legs = [_WorkingLeg.from_transaction(txn) for txn in txns]

    long_calls = _select(legs, "Call", Side.LONG)
    short_calls = _select(legs, "Call", Side.SHORT)
    long_puts = _select(legs, "Put", Side.LONG)
    short_puts = _select(legs, "Put", Side.SHORT)

    condor = _detect_iron_condor(key, long_calls, short_calls, long_puts, short_puts)
    if condor is not None:
        return [condor]

    orders: List[SpreadOrder] = []

    if long_calls and long_puts and not short_calls and not short_puts:
        orders.append(_pair_straddle(key, long_calls[0], long_puts[0]))
    elif short_calls and short_puts and not long_calls and not long_puts:
        orders.append(_pair_straddle(key, short_calls[0], short_puts[0]))

    for option_type in OPTION_TYPES:
        orders.extend(_pair_verticals(key, option_type, [leg for leg in legs if leg.option_type == option_type]))

    return orders


def _select(legs: List[_WorkingLeg], option_type: str, side: Side) -> List[_WorkingLeg]:
    return [leg for leg in legs if leg.option_type == option_type and leg.side is side]


def _detect_iron_condor(
    key: GroupKey,
    long_calls: List[_WorkingLeg],
    short_calls: List[_WorkingLeg],
    long_puts: List[_WorkingLeg],
    short_puts: List[_WorkingLeg],
) -> Optional[SpreadOrder]:
    """Build an iron condor if the group is exactly one of each leg at equal size.

    Returns:
        Iron condor SpreadOrder (legs sorted by strike), or None
    """
    if not (len(long_calls) == len(short_calls) == len(long_puts) == len(short_puts) == 1):
        return None

    four = [long_puts[0], short_puts[0], short_calls[0], long_calls[0]]
    qty = four[0].remaining
    if any(leg.remaining != qty for leg in four):
        logger.debug("Condor-shaped group %s has unequal quantities; pairing as verticals", key)
        return None

    legs = sorted(
        (Leg(strike=leg.strike, option_type=leg.option_type, qty=leg.signed(qty), price=leg.price)
         for leg in four),
        key=lambda leg: leg.strike,
    )
    for leg in four:
        leg.remaining = 0

    return SpreadOrder(
        kind="iron-condor",
        ticker=key.ticker,
        date=key.date,
        expiration=key.expiration,
        qty=qty,
        legs=tuple(legs),
    )


def _pair_straddle(key: GroupKey, call: _WorkingLeg, put: _WorkingLeg) -> SpreadOrder:
    """Pair one call and one put of the same side into a straddle or strangle.

    Consumes min(call, put) from both cursors; any remainder is left for
    vertical pairing.
    """
    pair_qty = min(call.remaining, put.remaining)
    is_straddle = call.strike == put.strike
    prefix = "long" if call.side is Side.LONG else "short"
    kind = f"{prefix}-{'straddle' if is_straddle else 'strangle'}"

    legs = sorted(
        [
            Leg(strike=put.strike, option_type="Put", qty=put.signed(pair_qty), price=put.price),
            Leg(strike=call.strike, option_type="Call", qty=call.signed(pair_qty), price=call.price),
        ],
        key=lambda leg: leg.strike,
    )

    call.remaining -= pair_qty
    put.remaining -= pair_qty

    return SpreadOrder(
        kind=kind,
        ticker=key.ticker,
        date=key.date,
        expiration=key.expiration,
        qty=pair_qty,
        legs=tuple(legs),
    )


def _pair_verticals(key: GroupKey, option_type: str, legs: List[_WorkingLeg]) -> List[SpreadOrder]:
    """Greedily pair longs with shorts of one option type by ascending strike.

    Args:
        key: Group the legs belong to
        option_type: "Call" or "Put"
        legs: Working legs of that type (consumed legs are skipped)

    Returns:
        Vertical orders followed by naked orders for unmatched quantity
    """
    longs = sorted(
        (leg for leg in legs if leg.side is Side.LONG and leg.remaining > 0),
        key=lambda leg: leg.strike,
    )
    shorts = sorted(
        (leg for leg in legs if leg.side is Side.SHORT and leg.remaining > 0),
        key=lambda leg: leg.strike,
    )

    orders: List[SpreadOrder] = []
    li = si = 0
    while li < len(longs) and si < len(shorts):
        long_leg = longs[li]
        short_leg = shorts[si]
        pair_qty = min(long_leg.remaining, short_leg.remaining)

        orders.append(SpreadOrder(
            kind="vertical",
            ticker=key.ticker,
            date=key.date,
            expiration=key.expiration,
            option_type=option_type,
            qty=pair_qty,
            lower_strike=long_leg.strike,
            upper_strike=short_leg.strike,
            lower_price=long_leg.price,
            upper_price=short_leg.price,
        ))

        long_leg.remaining -= pair_qty
        short_leg.remaining -= pair_qty
        if long_leg.remaining == 0:
            li += 1
        if short_leg.remaining == 0:
            si += 1

    for leg in longs[li:]:
        if leg.remaining > 0:
            orders.append(SpreadOrder(
                kind="naked-long",
                ticker=key.ticker,
                date=key.date,
                expiration=key.expiration,
                option_type=option_type,
                qty=leg.remaining,
                lower_strike=leg.strike,
                lower_price=leg.price,
            ))
            leg.remaining = 0

    for leg in shorts[si:]:
        if leg.remaining > 0:
            orders.append(SpreadOrder(
                kind="naked-short",
                ticker=key.ticker,
                date=key.date,
                expiration=key.expiration,
                option_type=option_type,
                qty=-leg.remaining,
                upper_strike=leg.strike,
                upper_price=leg.price,
            ))
            leg.remaining = 0

    return orders
