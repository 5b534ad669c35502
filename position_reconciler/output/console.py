"""Console output formatter for reconciliation runs."""

from typing import List, Sequence

from ..analytics.closing_prices import ClosingPriceMap
from ..models.keys import LegKey
from ..models.position import Position
from ..reconcile.engine import ReconcileMode, ReconcileResult


def print_header(mode: ReconcileMode, store_path: str):
    """Print run header.

    Args:
        mode: Reconcile mode of the run
        store_path: Position store being reconciled
    """
    print("\n" + "=" * 80)
    print(f"  POSITION RECONCILER - {mode.value.upper()}")
    print(f"  Store: {store_path}")
    print("=" * 80)


def print_summary(result: ReconcileResult, stored_count: int):
    """Print the run counts and any warnings.

    Args:
        result: Outcome of the run
        stored_count: Positions in the store before the run
    """
    print("\nSummary:")
    print(f"  Transactions parsed:      {result.transactions_parsed}")
    print(f"  Spread orders generated:  {result.spread_orders_generated}")
    print(f"  Positions updated:        {len(result.updated_positions)}")
    print(f"  Positions added:          {len(result.new_positions)}")
    print(f"  Skipped (already applied): {result.skipped_count}")
    print(f"  Closing prices resolved:  {len(result.closing_prices)}")

    for line in summary_warnings(result, stored_count):
        print(f"\n⚠️  {line}")


def summary_warnings(result: ReconcileResult, stored_count: int) -> List[str]:
    """Conditions the operator should look at after a run."""
    warnings = []
    if (result.mode is ReconcileMode.UPDATE and stored_count > 0
            and result.skipped_count == 0 and not result.updated_positions):
        warnings.append(
            "Update run neither skipped nor updated any stored position. "
            "Check that the export overlaps the store's history."
        )

    check = result.quantity_check
    if check is not None:
        if check.mismatches:
            warnings.append(f"{len(check.mismatches)} option legs disagree with the snapshot")
        if check.extra:
            warnings.append(f"{len(check.extra)} snapshot option lots had no transactions; added as naked legs")
    return warnings


def print_positions(title: str, positions: Sequence[Position]):
    """Print a compact table of positions.

    Args:
        title: Section heading
        positions: Positions to list
    """
    if not positions:
        return

    print(f"\n{title}:")
    print("-" * 80)
    print(f"{'Group':>5}  {'Key':<48} {'Legs':>4}  {'Last Txn':<10}")
    print("-" * 80)
    for position in positions:
        last = position.last_txn_date.isoformat() if position.last_txn_date else "-"
        print(f"{position.group_label:>5}  {position.canonical_key:<48} {len(position.legs):>4}  {last:<10}")


def print_unresolved_legs(unresolved: Sequence[LegKey], closing_prices: ClosingPriceMap):
    """List settled legs that still need a manual closing price."""
    pending = [key for key in unresolved if key not in closing_prices]
    if not pending:
        return

    print(f"\n📋 Legs needing a manual closing price ({len(pending)}):")
    for key in pending:
        print(f"    {key}")
