"""Error types and numeric helpers shared across the reconciler."""

import logging

logger = logging.getLogger("position_reconciler.error_handling")


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safely divide two numbers, returning default on division by zero.

    Args:
        numerator: Numerator value
        denominator: Denominator value
        default: Value to return if denominator is zero

    Returns:
        Result of division, or default if denominator is zero

    Example:
        >>> safe_divide(45.0, 15)
        3.0
        >>> safe_divide(10, 0, default=2.5)
        2.5
    """
    if denominator == 0:
        logger.debug("Division by zero: %s/%s, returning %s", numerator, denominator, default)
        return default
    return numerator / denominator


def weighted_average(
    old_qty: float,
    old_price: float,
    added_qty: float,
    added_price: float,
) -> float:
    """Quantity-weighted average of two prices.

    Falls back to the old price when the combined quantity is zero.

    Example:
        >>> weighted_average(10, 2.0, 5, 5.0)
        3.0
    """
    return safe_divide(
        old_qty * old_price + added_qty * added_price,
        old_qty + added_qty,
        default=old_price,
    )


class ReconcileError(Exception):
    """Base exception for reconciliation errors."""
    pass


class DataValidationError(ValueError, ReconcileError):
    """Raised when an input file or record set fails validation.

    Inherits from ValueError so callers catching bad input keep working.
    """
    pass


class PositionStoreError(ReconcileError):
    """Raised when the persisted position store cannot be read or written."""
    pass


class ConfigurationError(ReconcileError):
    """Raised when configuration is invalid."""
    pass
