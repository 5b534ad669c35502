"""Closing price resolution for traded option legs.

Each leg gets a settlement value from the first rule that applies:

    1. explicit close     quantity-weighted average fill of closing trades
    2. exercise/assign    intrinsic value against the same-day stock price
    3. expiration         0 for legs that expired without a close

A leg resolved by an earlier rule is never overwritten by a later one. Legs
no rule resolves are left out of the map for manual entry.
"""

import logging
from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from ..models.keys import LegKey
from ..models.transaction import StockTransaction, Transaction

logger = logging.getLogger("position_reconciler.closing_prices")

ClosingPriceMap = Dict[LegKey, float]


def leg_key(txn: Transaction) -> LegKey:
    """LegKey of the option a transaction trades."""
    return LegKey(txn.ticker, txn.expiration, txn.strike, txn.option_type)


def build_closing_prices(
    transactions: Iterable[Transaction],
    stock_transactions: Iterable[StockTransaction],
    as_of: Optional[date] = None,
    price_decimals: int = 2,
) -> ClosingPriceMap:
    """Resolve a closing price for every leg the transactions settle.

    Args:
        transactions: All option transactions of the run (opens and closes)
        stock_transactions: All stock transactions of the run
        as_of: Reference date for the expiration rule (default: today)
        price_decimals: Rounding applied to resolved prices

    Returns:
        Mapping of LegKey to resolved closing price
    """
    transactions = list(transactions)
    as_of = as_of or date.today()

    result: ClosingPriceMap = {}
    closed = _apply_explicit_closes(transactions, result, price_decimals)
    exercised = _apply_exercise_assignment(transactions, stock_transactions, result, price_decimals)
    expired = _apply_expiration_default(transactions, result, as_of)

    logger.info(
        "Resolved %d closing prices (%d closed, %d exercised/assigned, %d expired)",
        len(result), closed, exercised, expired,
    )
    return result


def unresolved_leg_keys(
    transactions: Iterable[Transaction],
    closing_prices: ClosingPriceMap,
    as_of: Optional[date] = None,
) -> List[LegKey]:
    """Legs settled by exercise/assignment, or already expired, with no price.

    These need a manual closing price downstream.
    """
    as_of = as_of or date.today()
    pending: Set[LegKey] = set()
    for txn in transactions:
        key = leg_key(txn)
        if key in closing_prices:
            continue
        if txn.is_exercised or txn.is_assigned or txn.expiration < as_of:
            pending.add(key)
    return sorted(pending, key=str)


def _apply_explicit_closes(
    transactions: Sequence[Transaction],
    result: ClosingPriceMap,
    price_decimals: int,
) -> int:
    """Rule 1: weighted average absolute fill price of closing trades."""
    fills: Dict[LegKey, Tuple[List[float], List[float]]] = defaultdict(lambda: ([], []))
    for txn in transactions:
        if not txn.is_closed:
            continue
        quantities, prices = fills[leg_key(txn)]
        quantities.append(abs(txn.qty))
        prices.append(txn.price)

    resolved = 0
    for key, (quantities, prices) in fills.items():
        if sum(quantities) <= 0:
            continue
        result[key] = round(float(np.average(prices, weights=quantities)), price_decimals)
        resolved += 1
    return resolved


def _apply_exercise_assignment(
    transactions: Sequence[Transaction],
    stock_transactions: Iterable[StockTransaction],
    result: ClosingPriceMap,
    price_decimals: int,
) -> int:
    """Rule 2: intrinsic value at the highest same-day stock price."""
    stock_prices: Dict[Tuple[date, str], List[float]] = defaultdict(list)
    for stk in stock_transactions:
        stock_prices[(stk.date, stk.ticker)].append(stk.price)

    resolved = 0
    for txn in transactions:
        if not (txn.is_exercised or txn.is_assigned):
            continue

        key = leg_key(txn)
        if key in result:
            continue

        prices = stock_prices.get((txn.date, txn.ticker))
        if not prices:
            logger.debug("No stock trade on %s for %s; leaving %s unresolved", txn.date, txn.ticker, key)
            continue

        result[key] = round(intrinsic_value(txn.option_type, txn.strike, max(prices)), price_decimals)
        resolved += 1
    return resolved


def _apply_expiration_default(
    transactions: Sequence[Transaction],
    result: ClosingPriceMap,
    as_of: date,
) -> int:
    """Rule 3: opened legs that expired before as_of with no price are worth 0."""
    opened = {leg_key(txn) for txn in transactions if txn.is_open}

    resolved = 0
    for key in opened:
        if key in result:
            continue
        if key.expiration < as_of:
            result[key] = 0.0
            resolved += 1
    return resolved


def intrinsic_value(option_type: str, strike: float, market_price: float) -> float:
    """In-the-money value of an option at a reference underlying price.

    Example:
        >>> intrinsic_value("Call", 400.0, 425.5)
        25.5
        >>> intrinsic_value("Put", 400.0, 425.5)
        0.0
    """
    if option_type == "Call":
        return max(0.0, market_price - strike)
    return max(0.0, strike - market_price)
