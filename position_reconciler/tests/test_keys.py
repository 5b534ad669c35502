"""Unit tests for canonical key derivation."""

import itertools
import pytest
from datetime import date

from position_reconciler.models.keys import (
    LegKey,
    format_strike,
    spread_key_from_legs,
    spread_key_from_order,
)
from position_reconciler.models.position import PositionLeg
from position_reconciler.models.spread_order import Leg, SpreadOrder
from position_reconciler.reconcile.merger import position_from_order

EXP = date(2026, 3, 20)


def condor_order():
    return SpreadOrder(
        kind="iron-condor",
        ticker="SPY",
        date=date(2025, 1, 10),
        expiration=EXP,
        qty=3,
        legs=(
            Leg(200.0, "Put", 3, 1.10),
            Leg(250.0, "Put", -3, 2.40),
            Leg(400.0, "Call", -3, 2.20),
            Leg(450.0, "Call", 3, 0.95),
        ),
    )


def straddle_order(kind="long-straddle", sign=1, put_strike=400.0):
    return SpreadOrder(
        kind=kind,
        ticker="SPY",
        date=date(2025, 1, 10),
        expiration=EXP,
        qty=2,
        legs=(
            Leg(put_strike, "Put", sign * 2, 5.0),
            Leg(400.0, "Call", sign * 2, 6.0),
        ),
    )


class TestFormatting:
    """Test key component formatting."""

    def test_format_strike(self):
        """Whole strikes drop the decimal."""
        assert format_strike(350.0) == "350"
        assert format_strike(402.5) == "402.5"

    def test_leg_key_str(self):
        """LegKey renders as ticker|date|strike|type."""
        key = LegKey("TSLA", date(2028, 12, 15), 350.0, "Call")
        assert str(key) == "TSLA|2028-12-15|350|Call"


class TestSpreadKeyFromOrder:
    """Test keys derived from spread orders."""

    def test_vertical_key(self):
        """Vertical key sorts strikes and uses the option type."""
        order = SpreadOrder(kind="vertical", ticker="TSLA", expiration=date(2028, 12, 15),
                            option_type="Call", qty=7, lower_strike=440.0, upper_strike=350.0)
        assert spread_key_from_order(order) == "TSLA|2028-12-15|350/440|Call"

    def test_condor_key(self):
        """Condor key lists all four strikes with the IC tag."""
        assert spread_key_from_order(condor_order()) == "SPY|2026-03-20|200/250/400/450|IC"

    def test_stock_and_cash_keys(self):
        """Stock and cash keys ignore strikes and dates."""
        assert spread_key_from_order(SpreadOrder(kind="stock", ticker="AAPL", qty=1)) == "AAPL|STOCK"
        assert spread_key_from_order(SpreadOrder(kind="cash", ticker="CASH", qty=1)) == "CASH"

    @pytest.mark.parametrize("kind,sign,put_strike,tag", [
        ("long-straddle", 1, 400.0, "LS"),
        ("short-straddle", -1, 400.0, "SS"),
        ("long-strangle", 1, 380.0, "LSg"),
        ("short-strangle", -1, 380.0, "SSg"),
    ])
    def test_straddle_tags(self, kind, sign, put_strike, tag):
        """Straddles and strangles carry their own tags."""
        key = spread_key_from_order(straddle_order(kind, sign, put_strike))
        assert key.endswith(f"|{tag}")


class TestSpreadKeyFromLegs:
    """Test keys derived from persisted legs."""

    def test_empty_legs(self):
        """No legs means no key."""
        assert spread_key_from_legs([]) is None

    def test_stock_and_cash(self):
        """Single stock and cash legs map to their keys."""
        assert spread_key_from_legs([PositionLeg("AAPL", None, "Stock", 100, 150.0)]) == "AAPL|STOCK"
        assert spread_key_from_legs([PositionLeg("CASH", None, "Cash", 1, 900.0)]) == "CASH"

    def test_condor_permutations(self):
        """Every ordering of a condor's legs yields the same key."""
        legs = position_from_order(condor_order(), "").legs
        keys = {spread_key_from_legs(list(perm)) for perm in itertools.permutations(legs)}
        assert keys == {"SPY|2026-03-20|200/250/400/450|IC"}

    def test_vertical_permutations(self):
        """Vertical key does not depend on leg order."""
        legs = [
            PositionLeg("TSLA", 440.0, "Call", -7, 165.5, expiration=date(2028, 12, 15)),
            PositionLeg("TSLA", 350.0, "Call", 7, 223.5, expiration=date(2028, 12, 15)),
        ]
        assert spread_key_from_legs(legs) == spread_key_from_legs(legs[::-1]) == "TSLA|2028-12-15|350/440|Call"

    def test_mixed_type_fallback(self):
        """Call/put mixes that are not straddles fall back to a joined tag."""
        legs = [
            PositionLeg("SPY", 400.0, "Call", 1, 5.0, expiration=EXP),
            PositionLeg("SPY", 380.0, "Put", -1, 4.0, expiration=EXP),
        ]
        assert spread_key_from_legs(legs) == "SPY|2026-03-20|380/400|Call/Put"


class TestOrderPositionAgreement:
    """A position built from an order has the order's key."""

    @pytest.mark.parametrize("order", [
        condor_order(),
        straddle_order("long-straddle", 1, 400.0),
        straddle_order("short-strangle", -1, 380.0),
        SpreadOrder(kind="vertical", ticker="TSLA", expiration=date(2028, 12, 15), option_type="Call",
                    qty=7, lower_strike=350.0, upper_strike=440.0, lower_price=223.5, upper_price=165.5),
        SpreadOrder(kind="naked-long", ticker="QQQ", expiration=EXP, option_type="Put",
                    qty=4, lower_strike=420.0, lower_price=6.0),
        SpreadOrder(kind="naked-short", ticker="QQQ", expiration=EXP, option_type="Call",
                    qty=-4, upper_strike=520.0, upper_price=2.0),
        SpreadOrder(kind="stock", ticker="AAPL", qty=100, price=150.0),
        SpreadOrder(kind="cash", ticker="CASH", qty=1, price=2500.0),
    ])
    def test_round_trip_key(self, order):
        """spread_key_from_legs(position legs) == spread_key_from_order(order)."""
        key = spread_key_from_order(order)
        assert spread_key_from_legs(position_from_order(order, key).legs) == key
