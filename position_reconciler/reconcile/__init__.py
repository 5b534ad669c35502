"""Reconciliation of spread orders against the persisted position store."""

from .engine import ReconcileConfig, ReconcileMode, ReconcileResult, load_config, reconcile
from .merger import MergeResult, merge_spreads, position_from_order

__all__ = [
    "ReconcileConfig",
    "ReconcileMode",
    "ReconcileResult",
    "MergeResult",
    "load_config",
    "merge_spreads",
    "position_from_order",
    "reconcile",
]
