"""Reconciliation run: transactions + stored positions -> new store state."""

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import yaml

from ..analytics.closing_prices import ClosingPriceMap, build_closing_prices, unresolved_leg_keys
from ..builders.premerge import pre_merge_spreads
from ..builders.spread_pairing import pair_transactions_into_spreads
from ..builders.stock_positions import (
    aggregate_stock_transactions,
    cash_order,
    stock_orders_from_snapshot,
)
from ..data.validators import (
    QuantityCheck,
    held_option_quantities,
    orders_for_unexplained_lots,
    validate_option_quantities,
)
from ..models.keys import LegKey
from ..models.position import Position
from ..models.snapshot import PortfolioSnapshot
from ..models.spread_order import SpreadOrder
from ..models.transaction import StockTransaction, Transaction
from ..utils.error_handling import ConfigurationError
from .merger import find_position, merge_spreads

logger = logging.getLogger("position_reconciler.engine")


class ReconcileMode(str, Enum):
    """How stock quantities are interpreted and whether the store is kept.

    FRESH: stock quantities are absolute (snapshot or full history)
    UPDATE: stock quantities are deltas since each ticker's last stored date
    REBUILD: stored positions are discarded; quantities are absolute
    """

    FRESH = "fresh"
    UPDATE = "update"
    REBUILD = "rebuild"

    @classmethod
    def parse(cls, value: "str | ReconcileMode") -> "ReconcileMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ConfigurationError(f"Unknown reconcile mode '{value}' (expected one of: {valid})")


class ReconcileConfig:
    """Configuration for a reconciliation run."""

    def __init__(
        self,
        mode: str = "update",
        price_decimals: int = 2,
        average_multi_leg_prices: bool = False,
        as_of: Optional[date] = None,
    ):
        """Initialize reconcile configuration.

        Args:
            mode: Default run mode ("fresh", "update" or "rebuild")
            price_decimals: Rounding for resolved closing and snapshot prices
            average_multi_leg_prices: Weight condor/straddle leg prices when
                duplicate orders are pre-merged
            as_of: Reference date for expiration checks (None = today)
        """
        self.mode = ReconcileMode.parse(mode)
        if price_decimals < 0:
            raise ConfigurationError(f"price_decimals must be >= 0, got {price_decimals}")
        self.price_decimals = price_decimals
        self.average_multi_leg_prices = average_multi_leg_prices
        self.as_of = as_of

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "ReconcileConfig":
        """Create ReconcileConfig from dictionary (e.g., from YAML).

        Args:
            config: Dictionary with reconcile parameters

        Returns:
            ReconcileConfig instance
        """
        return cls(
            mode=config.get('mode', 'update'),
            price_decimals=int(config.get('price_decimals', 2)),
            average_multi_leg_prices=bool(config.get('average_multi_leg_prices', False)),
            as_of=_parse_as_of(config.get('as_of')),
        )

    @property
    def reference_date(self) -> date:
        return self.as_of or date.today()


@dataclass
class ReconcileResult:
    """Everything one run produced, ready for the store and the operator.

    Attributes:
        updated_positions: Stored positions changed by the run
        new_positions: Positions to append to the store
        skipped_count: Orders skipped as already applied or empty
        closing_prices: Resolved exit prices per option leg
        transactions_parsed: Option plus stock transactions consumed
        spread_orders_generated: Orders after pre-merge
        quantity_check: Snapshot comparison (fresh/rebuild with a snapshot)
        unresolved_legs: Settled legs still needing a manual closing price
    """

    mode: ReconcileMode
    updated_positions: List[Position] = field(default_factory=list)
    new_positions: List[Position] = field(default_factory=list)
    skipped_count: int = 0
    closing_prices: ClosingPriceMap = field(default_factory=dict)
    transactions_parsed: int = 0
    spread_orders_generated: int = 0
    quantity_check: Optional[QuantityCheck] = None
    unresolved_legs: List[LegKey] = field(default_factory=list)


def reconcile(
    transactions: Iterable[Transaction],
    stock_transactions: Iterable[StockTransaction],
    existing_positions: Mapping[str, Position],
    mode: "str | ReconcileMode" = ReconcileMode.UPDATE,
    snapshot: Optional[PortfolioSnapshot] = None,
    config: Optional[ReconcileConfig] = None,
) -> ReconcileResult:
    """Run one reconciliation.

    Stored positions that receive orders are mutated in place (except in
    rebuild mode, where the store is ignored and every position is new).

    Args:
        transactions: Option transactions for this run
        stock_transactions: Stock transactions for this run
        existing_positions: Stored positions keyed by canonical key
        mode: "fresh", "update" or "rebuild"
        snapshot: Optional broker snapshot (ignored in update mode)
        config: Run configuration (defaults apply when None)

    Returns:
        ReconcileResult

    Raises:
        ConfigurationError: If mode is not recognized
    """
    config = config or ReconcileConfig()
    mode = ReconcileMode.parse(mode)
    as_of = config.reference_date
    transactions = list(transactions)
    stock_transactions = list(stock_transactions)

    if mode is ReconcileMode.REBUILD:
        positions: Dict[str, Position] = {}
    else:
        positions = dict(existing_positions)
    logger.info("Reconciling in %s mode against %d stored positions", mode.value, len(positions))

    use_snapshot = snapshot is not None and mode is not ReconcileMode.UPDATE

    raw_spreads: List[SpreadOrder] = []
    raw_spreads.extend(_stock_orders(mode, stock_transactions, positions, snapshot if use_snapshot else None,
                                     config, as_of))
    option_orders, already_applied = _drop_applied_orders(positions, pair_transactions_into_spreads(transactions))
    raw_spreads.extend(option_orders)
    if use_snapshot and snapshot.cash > 0:
        raw_spreads.append(cash_order(snapshot.cash, as_of))

    spreads = pre_merge_spreads(raw_spreads, config.average_multi_leg_prices)
    logger.info("Paired into %d spread orders", len(spreads))

    if mode is ReconcileMode.FRESH:
        spreads = [_absolute_to_delta(positions, spread) for spread in spreads]

    quantity_check = None
    if use_snapshot and snapshot.options:
        quantity_check = validate_option_quantities(
            spreads, snapshot.options, held_option_quantities(positions.values()))
        spreads.extend(orders_for_unexplained_lots(quantity_check.extra, snapshot.options, as_of))

    closing_prices = build_closing_prices(transactions, stock_transactions, as_of, config.price_decimals)
    merge = merge_spreads(positions, spreads)

    return ReconcileResult(
        mode=mode,
        updated_positions=merge.updated_positions,
        new_positions=merge.new_positions,
        skipped_count=merge.skipped_count + already_applied,
        closing_prices=closing_prices,
        transactions_parsed=len(transactions) + len(stock_transactions),
        spread_orders_generated=len(spreads),
        quantity_check=quantity_check,
        unresolved_legs=unresolved_leg_keys(transactions, closing_prices, as_of),
    )


def stock_cutoff_dates(positions: Mapping[str, Position]) -> Dict[str, date]:
    """Last applied stock transaction date per ticker, from stored stock positions."""
    cutoffs = {}
    for key, position in positions.items():
        if key.endswith("|STOCK") and position.last_txn_date is not None:
            cutoffs[key.split("|")[0]] = position.last_txn_date
    return cutoffs


def _stock_orders(
    mode: ReconcileMode,
    stock_transactions: List[StockTransaction],
    positions: Mapping[str, Position],
    snapshot: Optional[PortfolioSnapshot],
    config: ReconcileConfig,
    as_of: date,
) -> List[SpreadOrder]:
    if mode is ReconcileMode.UPDATE:
        return aggregate_stock_transactions(stock_transactions, stock_cutoff_dates(positions))
    if snapshot is not None:
        return stock_orders_from_snapshot(snapshot, stock_transactions, as_of, config.price_decimals)
    return aggregate_stock_transactions(stock_transactions)


def _drop_applied_orders(
    positions: Mapping[str, Position],
    orders: List[SpreadOrder],
) -> Tuple[List[SpreadOrder], int]:
    """Remove option orders a stored position has already absorbed.

    Runs before pre-merge so an old fill collapsed with a newer one on the
    same key cannot slip past the merger's date gate.
    """
    kept = []
    skipped = 0
    for order in orders:
        position = find_position(positions, order)
        last = position.last_txn_date if position is not None else None
        if last is not None and order.date is not None and order.date <= last:
            logger.debug("Skipping %r: already applied through %s", order, last)
            skipped += 1
            continue
        kept.append(order)
    return kept, skipped


def _absolute_to_delta(positions: Mapping[str, Position], spread: SpreadOrder) -> SpreadOrder:
    """Turn an absolute stock quantity into a change against the stored one."""
    if spread.kind != "stock":
        return spread
    position = find_position(positions, spread)
    if position is None or not position.legs:
        return spread
    return replace(spread, qty=spread.qty - position.legs[0].qty)


def _parse_as_of(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), '%Y-%m-%d').date()
    except ValueError:
        raise ConfigurationError(f"as_of must be YYYY-MM-DD, got {value!r}")


def load_config(config_path: "str | Path") -> Dict[str, Any]:
    """Read a YAML parameter file.

    Args:
        config_path: Path to the YAML file

    Returns:
        Parsed configuration dictionary (empty for an empty file)

    Raises:
        ConfigurationError: If the file is missing or is not a YAML mapping
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    try:
        with open(config_path) as f:
            params = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")

    if params is None:
        return {}
    if not isinstance(params, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")
    return params
