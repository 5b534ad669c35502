"""Core data models for transaction pairing and position reconciliation."""

from .keys import LegKey, spread_key_from_legs, spread_key_from_order
from .position import Position, PositionLeg
from .snapshot import PortfolioSnapshot, SnapshotLot
from .spread_order import Leg, SpreadOrder
from .transaction import StockTransaction, Transaction

__all__ = [
    "Transaction",
    "StockTransaction",
    "Leg",
    "SpreadOrder",
    "Position",
    "PositionLeg",
    "PortfolioSnapshot",
    "SnapshotLot",
    "LegKey",
    "spread_key_from_order",
    "spread_key_from_legs",
]
