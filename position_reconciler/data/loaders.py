"""Data loaders for canonical transaction and portfolio snapshot CSV files."""

import csv
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from ..models.keys import LegKey
from ..models.snapshot import PortfolioSnapshot, SnapshotLot
from ..models.transaction import StockTransaction, Transaction
from ..utils.error_handling import DataValidationError

logger = logging.getLogger("position_reconciler.loaders")

DATE_FORMATS = ('%Y-%m-%d', '%m/%d/%Y', '%m/%d/%y')

TRANSACTION_FIELDS = {'date', 'activity', 'ticker', 'qty', 'price'}
SNAPSHOT_FIELDS = {'symbol', 'type', 'qty'}

# activity -> (category, sign applied to |qty|); None keeps the reported sign
OPTION_ACTIVITIES: Dict[str, Tuple[str, Optional[int]]] = {
    'bought to open': ('open', 1),
    'sold short': ('open', -1),
    'sold to open': ('open', -1),
    'sold to close': ('close', -1),
    'bought to cover': ('close', 1),
    'bought to close': ('close', 1),
    'option exercised': ('exercise', None),
    'option assigned': ('assign', None),
}

STOCK_ACTIVITIES = {
    'bought': 1,
    'sold': -1,
}


@dataclass
class TransactionBatch:
    """Transactions read from one or more export files.

    Attributes:
        transactions: Distinct option transactions in file order
        stock_transactions: Distinct stock transactions in file order
        skipped_rows: Rows dropped because they could not be parsed
        duplicate_rows: Identical records removed across files
    """

    transactions: List[Transaction] = field(default_factory=list)
    stock_transactions: List[StockTransaction] = field(default_factory=list)
    skipped_rows: int = 0
    duplicate_rows: int = 0

    @property
    def total(self) -> int:
        return len(self.transactions) + len(self.stock_transactions)


def parse_date(value: str) -> date:
    """Parse a date in one of the accepted formats.

    Raises:
        ValueError: If no format matches
    """
    value = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date format: {value!r}")


def read_transactions(csv_paths: Iterable["str | Path"]) -> TransactionBatch:
    """Read canonical transaction CSV files into one deduplicated batch.

    Overlapping exports repeat the same records; identical records are kept
    once, in the order first seen.

    Args:
        csv_paths: Transaction CSV files

    Returns:
        TransactionBatch

    Raises:
        FileNotFoundError: If a file doesn't exist
        DataValidationError: If a file is missing required columns
    """
    options: Dict[Transaction, None] = {}
    stocks: Dict[StockTransaction, None] = {}
    batch = TransactionBatch()
    read = 0

    for path in csv_paths:
        file_options, file_stocks, skipped = load_transactions_csv(path)
        batch.skipped_rows += skipped
        read += len(file_options) + len(file_stocks)
        options.update(dict.fromkeys(file_options))
        stocks.update(dict.fromkeys(file_stocks))

    batch.transactions = list(options)
    batch.stock_transactions = list(stocks)
    batch.duplicate_rows = read - batch.total

    if batch.duplicate_rows:
        logger.info("Removed %d duplicate records across files", batch.duplicate_rows)
    logger.info(
        "Read %d option and %d stock transactions",
        len(batch.transactions), len(batch.stock_transactions),
    )
    return batch


def load_transactions_csv(csv_path: "str | Path") -> Tuple[List[Transaction], List[StockTransaction], int]:
    """Load one canonical transaction CSV file.

    Expected CSV format:
        date,activity,ticker,expiration,strike,option_type,qty,price,amount

    `activity` is one of Bought To Open, Sold Short, Sold To Open,
    Sold To Close, Bought To Cover, Bought To Close, Option Exercised,
    Option Assigned (option rows) or Bought, Sold (stock rows). Other
    activities (dividends, transfers, fees) are ignored.

    Args:
        csv_path: Path to CSV file

    Returns:
        Tuple of (option transactions, stock transactions, skipped row count)

    Raises:
        FileNotFoundError: If CSV file doesn't exist
        DataValidationError: If required columns are missing
    """
    csv_path = Path(csv_path)
    if not csv_path.exists():
        logger.error("CSV file not found: %s", csv_path)
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    logger.info("Loading transactions from CSV: %s", csv_path)

    transactions: List[Transaction] = []
    stock_transactions: List[StockTransaction] = []
    skipped_rows = 0

    with open(csv_path, 'r', newline='') as f:
        reader = csv.DictReader(f)
        _require_fields(reader.fieldnames, TRANSACTION_FIELDS, csv_path)

        for row_num, row in enumerate(reader, start=2):  # header is row 1
            activity = (row.get('activity') or '').strip().lower()
            try:
                if activity in OPTION_ACTIVITIES:
                    transactions.append(_parse_option_row(row, activity))
                elif activity in STOCK_ACTIVITIES:
                    stock_transactions.append(_parse_stock_row(row, activity))
                else:
                    logger.debug("Ignoring row %d in %s: activity %r", row_num, csv_path.name, activity)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping row %d in %s due to error: %s", row_num, csv_path.name, e)
                skipped_rows += 1

    if skipped_rows:
        logger.warning("Skipped %d invalid rows in %s", skipped_rows, csv_path.name)

    logger.info(
        "Loaded %d option and %d stock transactions from %s",
        len(transactions), len(stock_transactions), csv_path.name,
    )
    return transactions, stock_transactions, skipped_rows


def load_portfolio_snapshot(csv_path: "str | Path") -> PortfolioSnapshot:
    """Load a broker portfolio snapshot.

    Expected CSV format:
        symbol,type,expiration,strike,qty,price_paid

    `type` is Stock, Cash, Call or Put. Option quantities are signed (short
    lots negative). For the Cash row the balance goes in `qty`.

    Args:
        csv_path: Path to CSV file

    Returns:
        PortfolioSnapshot

    Raises:
        FileNotFoundError: If CSV file doesn't exist
        DataValidationError: If required columns are missing
    """
    csv_path = Path(csv_path)
    if not csv_path.exists():
        logger.error("CSV file not found: %s", csv_path)
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    snapshot = PortfolioSnapshot()

    with open(csv_path, 'r', newline='') as f:
        reader = csv.DictReader(f)
        _require_fields(reader.fieldnames, SNAPSHOT_FIELDS, csv_path)

        for row_num, row in enumerate(reader, start=2):
            try:
                _add_snapshot_row(snapshot, row)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping row %d in %s due to error: %s", row_num, csv_path.name, e)

    logger.info(
        "Loaded snapshot: %d stocks, %d option lots, cash %.2f",
        len(snapshot.stocks), len(snapshot.options), snapshot.cash,
    )
    return snapshot


def _require_fields(fieldnames: Optional[List[str]], required: set, csv_path: Path) -> None:
    present = {name.strip().lower() for name in fieldnames or []}
    missing = required - present
    if missing:
        logger.error("CSV missing required fields: %s", sorted(missing))
        raise DataValidationError(f"{csv_path} is missing required fields: {sorted(missing)}")


def _field(row: dict, name: str) -> str:
    for key, value in row.items():
        if key is not None and key.strip().lower() == name:
            return (value or '').strip()
    return ''


def _parse_float(value: str) -> float:
    """Parse a number that may carry a currency sign or thousands separators."""
    cleaned = value.replace('$', '').replace(',', '').strip()
    if not cleaned:
        raise ValueError("missing numeric value")
    return float(cleaned)


def _parse_option_type(value: str) -> str:
    normalized = value.strip().capitalize()
    if normalized not in ('Call', 'Put'):
        raise ValueError(f"Invalid option_type: {value!r}")
    return normalized


def _parse_option_row(row: dict, activity: str) -> Transaction:
    category, sign = OPTION_ACTIVITIES[activity]

    ticker = _field(row, 'ticker').upper()
    if not ticker:
        raise ValueError("missing ticker")

    qty = _parse_float(_field(row, 'qty'))
    if sign is not None:
        qty = sign * abs(qty)

    amount_str = _field(row, 'amount')
    return Transaction(
        date=parse_date(_field(row, 'date')),
        ticker=ticker,
        expiration=parse_date(_field(row, 'expiration')),
        strike=_parse_float(_field(row, 'strike')),
        option_type=_parse_option_type(_field(row, 'option_type')),  # type: ignore
        qty=int(qty),
        price=abs(_parse_float(_field(row, 'price'))),
        amount=_parse_float(amount_str) if amount_str else 0.0,
        category=category,  # type: ignore
    )


def _parse_stock_row(row: dict, activity: str) -> StockTransaction:
    ticker = _field(row, 'ticker').upper()
    if not ticker:
        raise ValueError("missing ticker")

    return StockTransaction(
        date=parse_date(_field(row, 'date')),
        ticker=ticker,
        qty=STOCK_ACTIVITIES[activity] * abs(_parse_float(_field(row, 'qty'))),
        price=abs(_parse_float(_field(row, 'price'))),
    )


def _add_snapshot_row(snapshot: PortfolioSnapshot, row: dict) -> None:
    kind = _field(row, 'type').capitalize()
    symbol = _field(row, 'symbol').upper()
    qty = _parse_float(_field(row, 'qty'))
    paid_str = _field(row, 'price_paid')
    price_paid = _parse_float(paid_str) if paid_str else 0.0

    if kind == 'Cash':
        snapshot.cash += qty
        return
    if not symbol:
        raise ValueError("missing symbol")
    if kind == 'Stock':
        snapshot.stocks[symbol] = SnapshotLot(qty=qty, price_paid=price_paid)
        return

    key = LegKey(
        ticker=symbol,
        expiration=parse_date(_field(row, 'expiration')),
        strike=_parse_float(_field(row, 'strike')),
        option_type=_parse_option_type(kind),
    )
    snapshot.options[key] = SnapshotLot(qty=qty, price_paid=price_paid)
