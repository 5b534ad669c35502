"""Normalized brokerage transaction records."""

import math
from dataclasses import dataclass
from datetime import date
from typing import Literal

OptionType = Literal["Call", "Put"]
TransactionCategory = Literal["open", "close", "exercise", "assign"]

OPTION_TYPES = ("Call", "Put")
TRANSACTION_CATEGORIES = ("open", "close", "exercise", "assign")


@dataclass(frozen=True)
class Transaction:
    """A single option event from a brokerage export.

    Immutable and hashable so identical records from overlapping exports
    collapse in a set. Quantity is signed: positive increases the long side,
    negative increases the short side.
    """

    date: date
    ticker: str
    expiration: date
    strike: float
    option_type: OptionType
    qty: int
    price: float
    amount: float
    category: TransactionCategory

    def __post_init__(self) -> None:
        """Validate enumerated fields."""
        if self.option_type not in OPTION_TYPES:
            raise ValueError(f"Invalid option_type: {self.option_type}")
        if self.category not in TRANSACTION_CATEGORIES:
            raise ValueError(f"Invalid transaction category: {self.category}")

    @property
    def is_open(self) -> bool:
        return self.category == "open"

    @property
    def is_closed(self) -> bool:
        return self.category == "close"

    @property
    def is_exercised(self) -> bool:
        return self.category == "exercise"

    @property
    def is_assigned(self) -> bool:
        return self.category == "assign"

    @property
    def is_pairable(self) -> bool:
        """Whether the record carries enough data to take part in grouping."""
        return bool(self.ticker) and math.isfinite(self.strike) and self.qty != 0

    def __repr__(self) -> str:
        """Compact string representation for debugging."""
        return (f"Transaction({self.date.isoformat()} {self.category} {self.qty:+g} "
                f"{self.ticker} {self.expiration.isoformat()} {self.strike:g}{self.option_type[0]} "
                f"@{self.price:.2f})")


@dataclass(frozen=True)
class StockTransaction:
    """An equity buy (positive qty) or sell (negative qty)."""

    date: date
    ticker: str
    qty: float
    price: float

    def __repr__(self) -> str:
        return f"StockTransaction({self.date.isoformat()} {self.qty:+g} {self.ticker} @{self.price:.2f})"
