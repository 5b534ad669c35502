#!/usr/bin/env python3
"""Reconcile brokerage transaction exports into the position store.

Usage:
    python3 reconcile_positions.py data/transactions.csv
    python3 reconcile_positions.py data/2024.csv data/2025.csv --store data/positions.csv
    python3 reconcile_positions.py data/all.csv --mode rebuild --snapshot data/portfolio.csv
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from position_reconciler.data.loaders import load_portfolio_snapshot, read_transactions
from position_reconciler.data.position_store import CsvPositionStore
from position_reconciler.output.console import (
    print_header,
    print_positions,
    print_summary,
    print_unresolved_legs,
)
from position_reconciler.reconcile.engine import (
    ReconcileConfig,
    ReconcileMode,
    load_config,
    reconcile,
)
from position_reconciler.utils.error_handling import ReconcileError
from position_reconciler.utils.logging_config import setup_logging

DEFAULT_CONFIG = Path(__file__).parent / "position_reconciler" / "config" / "default_params.yaml"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Reconcile transaction exports into the position store',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Modes:
  update   apply new transactions to the stored positions (default)
  fresh    stock quantities are absolute (snapshot or full history)
  rebuild  discard the store and rebuild it from the files

Examples:
  # Daily import
  python3 reconcile_positions.py data/transactions.csv

  # First import with a broker portfolio download
  python3 reconcile_positions.py data/history.csv --mode fresh \\
      --snapshot data/portfolio.csv

  # Preview without writing the store
  python3 reconcile_positions.py data/transactions.csv --dry-run --show-positions
        """
    )

    parser.add_argument('csv_files', nargs='+', help='Transaction CSV file(s)')
    parser.add_argument('--mode', choices=[m.value for m in ReconcileMode],
                        help='Reconcile mode (default: from config, else update)')
    parser.add_argument('--store', help='Position store CSV (default: from config)')
    parser.add_argument('--snapshot', help='Portfolio snapshot CSV (fresh/rebuild only)')
    parser.add_argument('--config', default=str(DEFAULT_CONFIG),
                        help='YAML parameter file')
    parser.add_argument('--as-of', help='Reference date YYYY-MM-DD (default: today)')
    parser.add_argument('--average-multi-leg-prices', action='store_true',
                        help='Weight condor/straddle leg prices when collapsing duplicates')
    parser.add_argument('--dry-run', action='store_true', help='Do not write the store')
    parser.add_argument('--show-positions', action='store_true',
                        help='List updated and new positions')
    parser.add_argument('--log-level', help='Logging level (default: from config)')
    parser.add_argument('--log-file', help='Log file path (default: from config)')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        params = load_config(args.config)
    except ReconcileError as e:
        print(f"❌ Error: {e}")
        return 1

    reconcile_params = dict(params.get('reconcile') or {})
    store_params = params.get('store') or {}
    logging_params = params.get('logging') or {}

    if args.mode:
        reconcile_params['mode'] = args.mode
    if args.as_of:
        reconcile_params['as_of'] = args.as_of
    if args.average_multi_leg_prices:
        reconcile_params['average_multi_leg_prices'] = True

    setup_logging(
        log_level=args.log_level or logging_params.get('level') or "INFO",
        log_file=args.log_file or logging_params.get('file'),
    )

    store_path = args.store or store_params.get('path') or 'data/positions.csv'

    try:
        config = ReconcileConfig.from_dict(reconcile_params)
        mode = config.mode
        print_header(mode, store_path)

        print(f"📊 Reading transactions from {len(args.csv_files)} file(s)...")
        batch = read_transactions(args.csv_files)
        print(f"✅ Parsed {len(batch.transactions)} option and "
              f"{len(batch.stock_transactions)} stock transactions")
        if batch.skipped_rows:
            print(f"⚠️  Skipped {batch.skipped_rows} unparseable rows (see log)")

        if mode is ReconcileMode.UPDATE and not batch.transactions:
            print("❌ No option transactions found; nothing to update")
            return 1

        snapshot = None
        if args.snapshot:
            if mode is ReconcileMode.UPDATE:
                print("⚠️  Snapshot is ignored in update mode")
            else:
                snapshot = load_portfolio_snapshot(args.snapshot)

        store = CsvPositionStore(store_path)
        existing = store.load_positions()
        print(f"💾 Loaded {len(existing)} stored positions")

        result = reconcile(
            batch.transactions,
            batch.stock_transactions,
            existing,
            mode=mode,
            snapshot=snapshot,
            config=config,
        )

        print_summary(result, len(existing))
        if args.show_positions:
            print_positions("Updated positions", result.updated_positions)
            print_positions("New positions", result.new_positions)
        print_unresolved_legs(result.unresolved_legs, result.closing_prices)

        if args.dry_run:
            print("\n💡 Dry run: store not written")
            return 0

        store.save_positions(
            result.updated_positions,
            result.new_positions,
            closing_prices=result.closing_prices,
            replace_existing=mode is ReconcileMode.REBUILD,
        )
        print(f"\n✅ Saved {store_path}")

    except FileNotFoundError as e:
        print(f"❌ Error: {e}")
        return 1
    except ReconcileError as e:
        print(f"❌ Error: {e}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
