"""Stock and cash orders from stock transactions or a portfolio snapshot."""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional

from ..models.keys import CASH_KEY
from ..models.snapshot import PortfolioSnapshot
from ..models.spread_order import SpreadOrder
from ..models.transaction import StockTransaction

logger = logging.getLogger("position_reconciler.stock_positions")


@dataclass
class _StockAccumulator:
    qty: float = 0.0
    last_date: Optional[date] = None
    last_price: Optional[float] = None


def build_latest_stock_dates(stock_transactions: Iterable[StockTransaction]) -> Dict[str, date]:
    """Latest transaction date per ticker.

    Args:
        stock_transactions: Stock buys and sells

    Returns:
        Dictionary mapping ticker to its most recent trade date
    """
    latest: Dict[str, date] = {}
    for txn in stock_transactions:
        if not txn.ticker:
            continue
        current = latest.get(txn.ticker)
        if current is None or txn.date > current:
            latest[txn.ticker] = txn.date
    return latest


def aggregate_stock_transactions(
    stock_transactions: Iterable[StockTransaction],
    since_by_ticker: Optional[Mapping[str, date]] = None,
) -> List[SpreadOrder]:
    """Net stock transactions into one stock order per ticker.

    Args:
        stock_transactions: Stock buys (qty > 0) and sells (qty < 0)
        since_by_ticker: Optional cutoff per ticker; transactions on or before
            the cutoff are ignored (they were applied in an earlier run)

    Returns:
        Stock SpreadOrders whose qty is the net change and whose price and
        date come from the most recent transaction
    """
    by_ticker: Dict[str, _StockAccumulator] = defaultdict(_StockAccumulator)

    for txn in stock_transactions:
        if not txn.ticker:
            continue

        if since_by_ticker is not None:
            cutoff = since_by_ticker.get(txn.ticker)
            if cutoff is not None and txn.date <= cutoff:
                continue

        entry = by_ticker[txn.ticker]
        entry.qty += txn.qty
        if entry.last_date is None or txn.date > entry.last_date:
            entry.last_date = txn.date
            entry.last_price = txn.price

    orders = []
    for ticker, entry in by_ticker.items():
        if entry.qty == 0 and entry.last_date is None:
            continue
        orders.append(SpreadOrder(
            kind="stock",
            ticker=ticker,
            date=entry.last_date,
            qty=entry.qty,
            price=entry.last_price,
            option_type="Stock",
        ))

    logger.debug("Aggregated stock transactions into %d stock orders", len(orders))
    return orders


def stock_orders_from_snapshot(
    snapshot: PortfolioSnapshot,
    stock_transactions: Iterable[StockTransaction],
    as_of: date,
    price_decimals: int = 2,
) -> List[SpreadOrder]:
    """Absolute stock orders from a portfolio snapshot.

    Each holding is dated with the ticker's latest stock transaction, or
    as_of when the transaction history does not mention it.
    """
    latest = build_latest_stock_dates(stock_transactions)

    orders = []
    for ticker, lot in snapshot.stocks.items():
        if lot.qty == 0:
            continue
        orders.append(SpreadOrder(
            kind="stock",
            ticker=ticker,
            date=latest.get(ticker, as_of),
            qty=lot.qty,
            price=round(lot.price_paid, price_decimals),
            option_type="Stock",
        ))

    logger.info("Found %d stock positions and $%.2f cash in snapshot", len(orders), snapshot.cash)
    return orders


def cash_order(amount: float, as_of: date) -> SpreadOrder:
    """Cash balance as a single-leg order."""
    return SpreadOrder(
        kind="cash",
        ticker=CASH_KEY,
        date=as_of,
        qty=1,
        price=amount,
        option_type="Cash",
    )
