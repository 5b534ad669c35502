"""Unit tests for loaders, snapshot validators and the CSV position store."""

import pytest
import csv
import tempfile
from datetime import date
from pathlib import Path

from position_reconciler.data.loaders import (
    load_portfolio_snapshot,
    load_transactions_csv,
    parse_date,
    read_transactions,
)
from position_reconciler.data.position_store import CsvPositionStore, format_number
from position_reconciler.data.validators import (
    held_option_quantities,
    orders_for_unexplained_lots,
    validate_option_quantities,
)
from position_reconciler.models.keys import LegKey, spread_key_from_order
from position_reconciler.models.snapshot import SnapshotLot
from position_reconciler.models.spread_order import SpreadOrder
from position_reconciler.reconcile.merger import position_from_order
from position_reconciler.utils.error_handling import DataValidationError, PositionStoreError

TRANSACTION_FIELDS = [
    'date', 'activity', 'ticker', 'expiration', 'strike', 'option_type', 'qty', 'price', 'amount',
]
TSLA_EXP = date(2028, 12, 15)


def write_csv(path, fieldnames, rows):
    with open(path, 'w', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(rows)
    return path


class TestTransactionLoader:
    """Test suite for the transaction CSV loader."""

    @pytest.fixture
    def sample_rows(self):
        """Rows covering option, stock, ignored and invalid activities."""
        return [
            {'date': '01/10/2025', 'activity': 'Bought To Open', 'ticker': 'tsla',
             'expiration': '12/15/2028', 'strike': '350', 'option_type': 'Call',
             'qty': '7', 'price': '223.50', 'amount': '-156,450.00'},
            {'date': '01/10/2025', 'activity': 'Sold Short', 'ticker': 'TSLA',
             'expiration': '2028-12-15', 'strike': '440', 'option_type': 'call',
             'qty': '7', 'price': '165.50', 'amount': '115850'},
            {'date': '2025-01-09', 'activity': 'Bought', 'ticker': 'AAPL',
             'expiration': '', 'strike': '', 'option_type': '',
             'qty': '100', 'price': '$150.00', 'amount': '-15000'},
            {'date': '2025-01-11', 'activity': 'Sold', 'ticker': 'AAPL',
             'expiration': '', 'strike': '', 'option_type': '',
             'qty': '-40', 'price': '155', 'amount': '6200'},
            {'date': '2025-01-12', 'activity': 'Dividend', 'ticker': 'AAPL',
             'expiration': '', 'strike': '', 'option_type': '',
             'qty': '0', 'price': '0', 'amount': '25'},
            {'date': 'yesterday', 'activity': 'Bought To Open', 'ticker': 'TSLA',
             'expiration': '12/15/2028', 'strike': '350', 'option_type': 'Call',
             'qty': '1', 'price': '1', 'amount': '-100'},
        ]

    @pytest.fixture
    def temp_csv_file(self, sample_rows):
        """Create a temporary CSV file with sample data."""
        temp_file = tempfile.NamedTemporaryFile(mode='w', delete=False, suffix='.csv', newline='')
        writer = csv.DictWriter(temp_file, fieldnames=TRANSACTION_FIELDS)
        writer.writeheader()
        writer.writerows(sample_rows)
        temp_file.close()

        yield temp_file.name

        # Cleanup
        Path(temp_file.name).unlink()

    def test_load_transactions(self, temp_csv_file):
        """Option and stock rows are parsed; other activities are ignored."""
        options, stocks, skipped = load_transactions_csv(temp_csv_file)

        assert len(options) == 2
        assert len(stocks) == 2
        assert skipped == 1

        long_call, short_call = options
        assert long_call.ticker == "TSLA"
        assert long_call.qty == 7
        assert long_call.is_open
        assert long_call.expiration == TSLA_EXP
        assert long_call.amount == -156450.0
        assert short_call.qty == -7
        assert short_call.option_type == "Call"

    def test_stock_signs(self, temp_csv_file):
        """Bought is positive and Sold is negative regardless of the file's sign."""
        _, stocks, _ = load_transactions_csv(temp_csv_file)
        assert [(s.ticker, s.qty, s.price) for s in stocks] == [
            ("AAPL", 100, 150.0),
            ("AAPL", -40, 155.0),
        ]

    def test_read_transactions_dedups_across_files(self, temp_csv_file):
        """The same records in two files are kept once."""
        batch = read_transactions([temp_csv_file, temp_csv_file])

        assert len(batch.transactions) == 2
        assert len(batch.stock_transactions) == 2
        assert batch.duplicate_rows == 4
        assert batch.skipped_rows == 2
        assert batch.total == 4

    def test_close_and_exercise_activities(self, tmp_path):
        """Closing and settlement activities map to their categories."""
        rows = [
            {'date': '2025-02-01', 'activity': 'Sold To Close', 'ticker': 'SPY', 'expiration': '2025-03-21',
             'strike': '400', 'option_type': 'Put', 'qty': '2', 'price': '1.5', 'amount': '300'},
            {'date': '2025-02-01', 'activity': 'Bought To Cover', 'ticker': 'SPY', 'expiration': '2025-03-21',
             'strike': '380', 'option_type': 'Put', 'qty': '-2', 'price': '0.5', 'amount': '-100'},
            {'date': '2025-03-21', 'activity': 'Option Assigned', 'ticker': 'SPY', 'expiration': '2025-03-21',
             'strike': '410', 'option_type': 'Call', 'qty': '1', 'price': '0', 'amount': ''},
        ]
        path = write_csv(tmp_path / "closes.csv", TRANSACTION_FIELDS, rows)
        options, _, _ = load_transactions_csv(path)

        assert [(t.category, t.qty) for t in options] == [("close", -2), ("close", 2), ("assign", 1)]
        assert options[2].amount == 0.0

    def test_missing_columns(self, tmp_path):
        """Files without required columns are rejected."""
        path = write_csv(tmp_path / "bad.csv", ['date', 'ticker', 'qty', 'price'], [])
        with pytest.raises(DataValidationError, match="activity"):
            load_transactions_csv(path)

    def test_missing_file(self, tmp_path):
        """Missing files raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            read_transactions([tmp_path / "nope.csv"])

    @pytest.mark.parametrize("value,expected", [
        ("2025-01-10", date(2025, 1, 10)),
        ("01/10/2025", date(2025, 1, 10)),
        ("1/10/25", date(2025, 1, 10)),
    ])
    def test_parse_date(self, value, expected):
        """Accepted date formats."""
        assert parse_date(value) == expected

    def test_parse_date_rejects_other_formats(self):
        """Other formats are errors."""
        with pytest.raises(ValueError):
            parse_date("Jan 10 2025")


class TestSnapshotLoader:
    """Test suite for the portfolio snapshot loader."""

    def test_load_snapshot(self, tmp_path):
        """Stocks, cash and option lots are read."""
        rows = [
            {'symbol': 'AAPL', 'type': 'Stock', 'expiration': '', 'strike': '', 'qty': '150', 'price_paid': '155.25'},
            {'symbol': 'CASH', 'type': 'Cash', 'expiration': '', 'strike': '', 'qty': '5,230.11', 'price_paid': ''},
            {'symbol': 'TSLA', 'type': 'Call', 'expiration': '2028-12-15', 'strike': '350', 'qty': '7',
             'price_paid': '223.50'},
            {'symbol': 'MSFT', 'type': 'Put', 'expiration': '03/21/2025', 'strike': '300', 'qty': '-2',
             'price_paid': '4.10'},
            {'symbol': 'BAD', 'type': 'Put', 'expiration': 'soon', 'strike': '1', 'qty': '1', 'price_paid': '1'},
        ]
        path = write_csv(tmp_path / "portfolio.csv",
                         ['symbol', 'type', 'expiration', 'strike', 'qty', 'price_paid'], rows)
        snapshot = load_portfolio_snapshot(path)

        assert snapshot.stocks == {"AAPL": SnapshotLot(150, 155.25)}
        assert snapshot.cash == pytest.approx(5230.11)
        assert snapshot.options == {
            LegKey("TSLA", TSLA_EXP, 350.0, "Call"): SnapshotLot(7, 223.50),
            LegKey("MSFT", date(2025, 3, 21), 300.0, "Put"): SnapshotLot(-2, 4.10),
        }


class TestQuantityValidation:
    """Test snapshot quantity validation."""

    @pytest.fixture
    def vertical(self):
        """7 x 350/440 TSLA call vertical."""
        return SpreadOrder(kind="vertical", ticker="TSLA", expiration=TSLA_EXP, option_type="Call", qty=7,
                           lower_strike=350.0, upper_strike=440.0, lower_price=223.5, upper_price=165.5)

    def test_consistent_snapshot(self, vertical):
        """Matching quantities produce no findings."""
        snapshot_options = {
            LegKey("TSLA", TSLA_EXP, 350.0, "Call"): SnapshotLot(7, 223.5),
            LegKey("TSLA", TSLA_EXP, 440.0, "Call"): SnapshotLot(-7, 165.5),
        }
        assert validate_option_quantities([vertical], snapshot_options).is_consistent

    def test_mismatch_and_extra(self, vertical):
        """Differing and unexplained legs are reported."""
        extra_key = LegKey("QQQ", TSLA_EXP, 500.0, "Put")
        snapshot_options = {
            LegKey("TSLA", TSLA_EXP, 350.0, "Call"): SnapshotLot(5, 223.5),
            LegKey("TSLA", TSLA_EXP, 440.0, "Call"): SnapshotLot(-7, 165.5),
            extra_key: SnapshotLot(3, 9.0),
        }
        check = validate_option_quantities([vertical], snapshot_options)

        assert len(check.mismatches) == 1
        assert check.mismatches[0].expected == 7
        assert check.mismatches[0].actual == 5
        assert check.extra == [extra_key]

    def test_stored_legs_count_as_expected(self, vertical):
        """Lots the store already holds are neither mismatched nor unexplained."""
        stored = position_from_order(vertical, spread_key_from_order(vertical), "1")
        stock = position_from_order(
            SpreadOrder(kind="stock", ticker="AAPL", qty=100, price=150.0), "AAPL|STOCK", "2")
        held = held_option_quantities([stored, stock])

        assert held == {
            LegKey("TSLA", TSLA_EXP, 350.0, "Call"): 7,
            LegKey("TSLA", TSLA_EXP, 440.0, "Call"): -7,
        }
        snapshot_options = {
            LegKey("TSLA", TSLA_EXP, 350.0, "Call"): SnapshotLot(9, 223.5),
            LegKey("TSLA", TSLA_EXP, 440.0, "Call"): SnapshotLot(-9, 165.5),
        }
        more = SpreadOrder(kind="vertical", ticker="TSLA", expiration=TSLA_EXP, option_type="Call", qty=2,
                           lower_strike=350.0, upper_strike=440.0, lower_price=230.0, upper_price=170.0)
        assert validate_option_quantities([more], snapshot_options, held).is_consistent
        assert not validate_option_quantities([], snapshot_options, held).is_consistent

    def test_orders_for_unexplained_lots(self):
        """Unexplained lots become naked long or short orders."""
        long_key = LegKey("QQQ", TSLA_EXP, 500.0, "Put")
        short_key = LegKey("QQQ", TSLA_EXP, 600.0, "Call")
        lots = {long_key: SnapshotLot(3, 9.0), short_key: SnapshotLot(-2, 4.0)}

        orders = orders_for_unexplained_lots([long_key, short_key], lots, date(2025, 2, 1))

        assert [(o.kind, o.qty) for o in orders] == [("naked-long", 3), ("naked-short", -2)]
        assert orders[0].lower_strike == 500.0
        assert orders[1].upper_strike == 600.0
        assert spread_key_from_order(orders[1]) == "QQQ|2028-12-15|600|Call"


class TestCsvPositionStore:
    """Test suite for the CSV position store."""

    @pytest.fixture
    def positions(self):
        """A vertical, a stock and a cash position ready to save."""
        orders = [
            SpreadOrder(kind="vertical", ticker="TSLA", date=date(2025, 1, 10), expiration=TSLA_EXP,
                        option_type="Call", qty=7, lower_strike=350.0, upper_strike=440.0,
                        lower_price=223.5, upper_price=165.5),
            SpreadOrder(kind="stock", ticker="AAPL", date=date(2025, 1, 9), qty=100, price=150.0),
            SpreadOrder(kind="cash", ticker="CASH", date=date(2025, 1, 10), qty=1, price=5230.11),
        ]
        return [
            position_from_order(order, spread_key_from_order(order), str(label))
            for label, order in enumerate(orders, start=1)
        ]

    def test_missing_store_is_empty(self, tmp_path):
        """No file yet means no positions."""
        assert CsvPositionStore(tmp_path / "positions.csv").load_positions() == {}

    def test_round_trip(self, tmp_path, positions):
        """Saved positions load back with the same keys and values."""
        path = tmp_path / "positions.csv"
        store = CsvPositionStore(path)
        store.load_positions()
        store.save_positions([], positions)

        loaded = CsvPositionStore(path).load_positions()

        assert set(loaded) == {"TSLA|2028-12-15|350/440|Call", "AAPL|STOCK", "CASH"}
        vertical = loaded["TSLA|2028-12-15|350/440|Call"]
        assert [(leg.strike, leg.qty, leg.avg_price) for leg in vertical.legs] == [
            (350.0, 7, 223.5),
            (440.0, -7, 165.5),
        ]
        assert vertical.last_txn_date == date(2025, 1, 10)
        assert vertical.group_label == "1"
        assert vertical.legs[0].expiration == TSLA_EXP
        assert loaded["CASH"].legs[0].avg_price == pytest.approx(5230.11)
        assert not (tmp_path / "positions.csv.tmp").exists()

    def test_update_in_place(self, tmp_path, positions):
        """Updated positions are written back to their own rows."""
        path = tmp_path / "positions.csv"
        CsvPositionStore(path).save_positions([], positions)

        store = CsvPositionStore(path)
        loaded = store.load_positions()
        aapl = loaded["AAPL|STOCK"]
        aapl.legs[0].qty = 150
        aapl.last_txn_date = date(2025, 1, 15)
        store.save_positions([aapl], [])

        reloaded = CsvPositionStore(path).load_positions()
        assert reloaded["AAPL|STOCK"].legs[0].qty == 150
        assert reloaded["AAPL|STOCK"].last_txn_date == date(2025, 1, 15)
        assert len(reloaded) == 3

    def test_closing_prices_fill_blanks_only(self, tmp_path, positions):
        """Closing prices are recorded once and never overwritten."""
        path = tmp_path / "positions.csv"
        store = CsvPositionStore(path)
        key = LegKey("TSLA", TSLA_EXP, 350.0, "Call")

        store.save_positions([], positions, closing_prices={key: 12.5})
        store.save_positions([], [], closing_prices={key: 99.0})

        vertical = CsvPositionStore(path).load_positions()["TSLA|2028-12-15|350/440|Call"]
        assert vertical.legs[0].closing_price == 12.5
        assert vertical.legs[1].closing_price is None

    def test_replace_existing(self, tmp_path, positions):
        """Rebuild saves drop every stored row first."""
        path = tmp_path / "positions.csv"
        CsvPositionStore(path).save_positions([], positions)

        store = CsvPositionStore(path)
        store.load_positions()
        store.save_positions([], positions[1:2], replace_existing=True)

        assert set(CsvPositionStore(path).load_positions()) == {"AAPL|STOCK"}

    def test_missing_columns(self, tmp_path):
        """A file that is not a position store is rejected."""
        path = tmp_path / "positions.csv"
        path.write_text("Symbol,Qty\nAAPL,1\n")
        with pytest.raises(PositionStoreError, match="missing columns"):
            CsvPositionStore(path).load_positions()

    def test_format_number(self):
        """Store numbers drop trailing zeros."""
        assert format_number(7.0) == "7"
        assert format_number(-7) == "-7"
        assert format_number(223.5) == "223.5"
        assert format_number(None) == ""
