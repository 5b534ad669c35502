"""Persisted position store.

The store is a flat table, one row per position leg. Rows sharing a Group
value form one position:

    Symbol,Group,Strike,Type,Expiration,Qty,Price,LastTxnDate,ClosePrice
    TSLA,1,350,Call,2028-12-15,7,223.5,2025-01-10,
    TSLA,1,440,Call,2028-12-15,-7,165.5,2025-01-10,
    AAPL,2,,Stock,,100,187.2,2025-01-08,
    CASH,3,,Cash,,1,5230.11,2025-01-10,
"""

import logging
import os
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

import pandas as pd

from ..analytics.closing_prices import ClosingPriceMap
from ..models.keys import LegKey, spread_key_from_legs
from ..models.position import CASH_TYPE, STOCK_TYPE, Position, PositionLeg
from ..utils.error_handling import PositionStoreError
from .loaders import parse_date

logger = logging.getLogger("position_reconciler.position_store")

STORE_COLUMNS = [
    "Symbol", "Group", "Strike", "Type", "Expiration",
    "Qty", "Price", "LastTxnDate", "ClosePrice",
]


class PositionStore(Protocol):
    """Durable table of positions."""

    def load_positions(self) -> Dict[str, Position]:
        ...

    def save_positions(
        self,
        updated: Iterable[Position],
        created: Iterable[Position],
        closing_prices: Optional[ClosingPriceMap] = None,
        replace_existing: bool = False,
    ) -> None:
        ...


class CsvPositionStore:
    """Position store backed by a CSV file.

    Saves go through a temporary file and os.replace, so the previous file
    survives a failed write.
    """

    def __init__(self, path: "str | Path"):
        self.path = Path(path)
        self._frame: Optional[pd.DataFrame] = None

    def load_positions(self) -> Dict[str, Position]:
        """Read every position, keyed by canonical key.

        Returns:
            Dictionary of canonical key -> Position (empty if no file yet)

        Raises:
            PositionStoreError: If the file cannot be read or lacks columns
        """
        frame = self._read_frame()
        self._frame = frame

        groups: "OrderedDict[str, List[int]]" = OrderedDict()
        for index, group in frame["Group"].items():
            groups.setdefault(group or f"#{index}", []).append(index)

        positions: Dict[str, Position] = {}
        for label, rows in groups.items():
            position = self._position_from_rows(frame, rows)
            if position is None:
                continue
            if position.canonical_key in positions:
                logger.warning(
                    "Group %s duplicates position %s; keeping the first",
                    label, position.canonical_key,
                )
                continue
            positions[position.canonical_key] = position

        logger.info("Loaded %d positions from %s", len(positions), self.path)
        return positions

    def save_positions(
        self,
        updated: Iterable[Position],
        created: Iterable[Position],
        closing_prices: Optional[ClosingPriceMap] = None,
        replace_existing: bool = False,
    ) -> None:
        """Write updated and new positions back to the store.

        Args:
            updated: Stored positions changed in place by the run
            created: Positions to append
            closing_prices: Resolved prices to record on legs with none yet
            replace_existing: Drop every stored row first (rebuild)

        Raises:
            PositionStoreError: If the store cannot be written
        """
        if replace_existing:
            frame = pd.DataFrame(columns=STORE_COLUMNS, dtype=str)
        elif self._frame is not None:
            frame = self._frame.copy()
        else:
            frame = self._read_frame()

        updated_rows = 0
        if not replace_existing:
            for position in updated:
                updated_rows += self._write_back(frame, position)

        new_rows = []
        new_legs = []
        for position in created:
            for leg in position.legs:
                new_rows.append(_leg_row(leg, position))
                new_legs.append(leg)

        if new_rows:
            start = len(frame)
            added = pd.DataFrame(new_rows, columns=STORE_COLUMNS)
            frame = pd.concat([frame, added], ignore_index=True) if start else added
            for offset, leg in enumerate(new_legs):
                leg.source_row = start + offset

        recorded = _record_closing_prices(frame, closing_prices or {})

        self._write_frame(frame)
        self._frame = frame
        logger.info(
            "Saved %s: %d rows updated, %d rows added, %d closing prices recorded",
            self.path, updated_rows, len(new_rows), recorded,
        )

    def _read_frame(self) -> pd.DataFrame:
        if not self.path.exists():
            logger.info("No position store at %s; starting empty", self.path)
            return pd.DataFrame(columns=STORE_COLUMNS, dtype=str)

        try:
            frame = pd.read_csv(self.path, dtype=str, keep_default_na=False)
        except (OSError, pd.errors.ParserError) as e:
            raise PositionStoreError(f"Failed to read position store {self.path}: {e}")
        except pd.errors.EmptyDataError:
            return pd.DataFrame(columns=STORE_COLUMNS, dtype=str)

        missing = [col for col in STORE_COLUMNS if col not in frame.columns]
        if missing:
            raise PositionStoreError(f"Position store {self.path} is missing columns: {missing}")
        return frame.reset_index(drop=True)

    def _write_frame(self, frame: pd.DataFrame) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            frame.to_csv(tmp_path, index=False, columns=STORE_COLUMNS)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if tmp_path.exists():
                tmp_path.unlink()
            raise PositionStoreError(f"Failed to write position store {self.path}: {e}")

    def _position_from_rows(self, frame: pd.DataFrame, rows: List[int]) -> Optional[Position]:
        legs = []
        last_dates = []
        for index in rows:
            row = frame.loc[index]
            try:
                legs.append(PositionLeg(
                    symbol=row["Symbol"].strip().upper(),
                    strike=_optional_float(row["Strike"]),
                    option_type=row["Type"].strip() or STOCK_TYPE,
                    qty=_optional_float(row["Qty"]) or 0.0,
                    avg_price=_optional_float(row["Price"]) or 0.0,
                    expiration=parse_date(row["Expiration"]) if row["Expiration"].strip() else None,
                    source_row=index,
                    closing_price=_optional_float(row["ClosePrice"]),
                ))
                if row["LastTxnDate"].strip():
                    last_dates.append(parse_date(row["LastTxnDate"]))
            except ValueError as e:
                raise PositionStoreError(f"Invalid row {index + 2} in {self.path}: {e}")

        key = spread_key_from_legs(legs)
        if key is None:
            return None
        return Position(
            canonical_key=key,
            legs=legs,
            last_txn_date=max(last_dates) if last_dates else None,
            group_label=frame.at[rows[0], "Group"],
        )

    def _write_back(self, frame: pd.DataFrame, position: Position) -> int:
        written = 0
        last = position.last_txn_date.isoformat() if position.last_txn_date else ""
        for leg in position.legs:
            if leg.source_row is None or leg.source_row not in frame.index:
                logger.warning("Leg of %s has no stored row; skipping write-back", position.canonical_key)
                continue
            frame.at[leg.source_row, "Qty"] = format_number(leg.qty)
            frame.at[leg.source_row, "Price"] = format_number(leg.avg_price)
            frame.at[leg.source_row, "LastTxnDate"] = last
            written += 1
        return written


def format_number(value: Optional[float]) -> str:
    """Render a number for the store ('' for None, no trailing .0)."""
    if value is None:
        return ""
    value = round(float(value), 6)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _optional_float(value: str) -> Optional[float]:
    value = (value or "").replace("$", "").replace(",", "").strip()
    if not value:
        return None
    return float(value)


def _leg_row(leg: PositionLeg, position: Position) -> Dict[str, str]:
    return {
        "Symbol": leg.symbol,
        "Group": position.group_label,
        "Strike": format_number(leg.strike),
        "Type": leg.option_type,
        "Expiration": leg.expiration.isoformat() if leg.expiration else "",
        "Qty": format_number(leg.qty),
        "Price": format_number(leg.avg_price),
        "LastTxnDate": position.last_txn_date.isoformat() if position.last_txn_date else "",
        "ClosePrice": format_number(leg.closing_price),
    }


def _record_closing_prices(frame: pd.DataFrame, closing_prices: ClosingPriceMap) -> int:
    """Fill ClosePrice on option rows that have none and whose leg resolved."""
    if not closing_prices:
        return 0

    recorded = 0
    for index, row in frame.iterrows():
        if row["ClosePrice"].strip() or row["Type"] in (STOCK_TYPE, CASH_TYPE):
            continue
        if not row["Expiration"].strip() or not row["Strike"].strip():
            continue
        key = LegKey(row["Symbol"], parse_date(row["Expiration"]), float(row["Strike"]), row["Type"])
        price = closing_prices.get(key)
        if price is not None:
            frame.at[index, "ClosePrice"] = format_number(price)
            recorded += 1
    return recorded
