"""Pure quantity and cost metrics for material discrepancy detection.

Three quantities tell the story of every material line:

* **variance**: purchased but never delivered (supplier shortfall).
* **loss**: delivered but never used (site wastage, theft, damage).
* **wastage**: purchased but never used, as a percentage of purchased.

Every function here is total: missing, non-numeric, NaN or negative inputs
are treated as 0 instead of raising, so a half-filled material record still
renders on a dashboard.
"""

from __future__ import annotations

import math
from typing import Any


def to_quantity(value: Any) -> float:
    """Coerce any input to a finite, non-negative float (0 on failure)."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0
    return number


def _percentage(part: float, whole: float) -> float:
    """``part / whole * 100`` clamped to [0, 100] and rounded to 2 dp."""
    if whole == 0:
        return 0.0
    pct = round((part / whole) * 100, 2)
    return max(0.0, min(100.0, pct))


# ── Quantities ───────────────────────────────────────────────────────


def calculate_variance(quantity_purchased: Any, quantity_delivered: Any) -> float:
    """Materials paid for but not delivered: ``max(0, purchased - delivered)``."""
    purchased = to_quantity(quantity_purchased)
    delivered = to_quantity(quantity_delivered)
    return max(0.0, purchased - delivered)


def calculate_variance_percentage(
    quantity_purchased: Any, quantity_delivered: Any
) -> float:
    """Variance as a share of purchased; 0 when nothing was purchased."""
    purchased = to_quantity(quantity_purchased)
    delivered = to_quantity(quantity_delivered)
    return _percentage(purchased - delivered, purchased)


def calculate_loss(quantity_delivered: Any, quantity_used: Any) -> float:
    """Delivered materials unaccounted for: ``max(0, delivered - used)``."""
    delivered = to_quantity(quantity_delivered)
    used = to_quantity(quantity_used)
    return max(0.0, delivered - used)


def calculate_loss_percentage(quantity_delivered: Any, quantity_used: Any) -> float:
    """Loss as a share of delivered; 0 when nothing was delivered."""
    delivered = to_quantity(quantity_delivered)
    used = to_quantity(quantity_used)
    return _percentage(delivered - used, delivered)


def calculate_wastage(
    quantity_purchased: Any, quantity_delivered: Any, quantity_used: Any
) -> float:
    """``(purchased - used) / purchased * 100``, clamped to [0, 100].

    Combines variance and loss into one purchaser-centric ratio. Returns 0
    until something has been both purchased and delivered.
    """
    purchased = to_quantity(quantity_purchased)
    delivered = to_quantity(quantity_delivered)
    used = to_quantity(quantity_used)

    if purchased == 0 or delivered == 0:
        return 0.0
    return _percentage(purchased - used, purchased)


def calculate_wastage_amount(quantity_purchased: Any, quantity_used: Any) -> float:
    """Absolute wastage: ``max(0, purchased - used)``."""
    return max(0.0, to_quantity(quantity_purchased) - to_quantity(quantity_used))


def calculate_total_discrepancy(
    quantity_purchased: Any, quantity_delivered: Any, quantity_used: Any
) -> float:
    """Everything unaccounted for: variance + loss."""
    return calculate_variance(quantity_purchased, quantity_delivered) + calculate_loss(
        quantity_delivered, quantity_used
    )


def calculate_total_discrepancy_percentage(
    quantity_purchased: Any, quantity_delivered: Any, quantity_used: Any
) -> float:
    """Total discrepancy as a share of purchased, clamped to [0, 100]."""
    purchased = to_quantity(quantity_purchased)
    total = calculate_total_discrepancy(
        quantity_purchased, quantity_delivered, quantity_used
    )
    return _percentage(total, purchased)


# ── Costs ────────────────────────────────────────────────────────────


def calculate_total_cost(quantity: Any, unit_cost: Any) -> float:
    """Line cost ``quantity * unit_cost`` rounded to 2 dp."""
    return round(to_quantity(quantity) * to_quantity(unit_cost), 2)


def calculate_variance_cost(
    quantity_purchased: Any, quantity_delivered: Any, unit_cost: Any
) -> float:
    """Money paid for undelivered materials."""
    variance = calculate_variance(quantity_purchased, quantity_delivered)
    return round(variance * to_quantity(unit_cost), 2)


def calculate_loss_cost(quantity_delivered: Any, quantity_used: Any, unit_cost: Any) -> float:
    """Money tied up in delivered-but-unused materials."""
    loss = calculate_loss(quantity_delivered, quantity_used)
    return round(loss * to_quantity(unit_cost), 2)


def calculate_total_discrepancy_cost(
    quantity_purchased: Any,
    quantity_delivered: Any,
    quantity_used: Any,
    unit_cost: Any,
) -> float:
    """Variance cost + loss cost."""
    variance_cost = calculate_variance_cost(
        quantity_purchased, quantity_delivered, unit_cost
    )
    loss_cost = calculate_loss_cost(quantity_delivered, quantity_used, unit_cost)
    return round(variance_cost + loss_cost, 2)


# ── Threshold predicates ─────────────────────────────────────────────


def is_variance_excessive(
    quantity_purchased: Any,
    quantity_delivered: Any,
    threshold_percentage: float = 5,
    threshold_amount: float = 0,
) -> bool:
    """True when variance % > threshold, or variance > a nonzero amount."""
    if calculate_variance_percentage(quantity_purchased, quantity_delivered) > threshold_percentage:
        return True
    if threshold_amount > 0:
        return calculate_variance(quantity_purchased, quantity_delivered) > threshold_amount
    return False


def is_loss_excessive(
    quantity_delivered: Any,
    quantity_used: Any,
    threshold_percentage: float = 10,
    threshold_amount: float = 0,
) -> bool:
    """True when loss % > threshold, or loss > a nonzero amount."""
    if calculate_loss_percentage(quantity_delivered, quantity_used) > threshold_percentage:
        return True
    if threshold_amount > 0:
        return calculate_loss(quantity_delivered, quantity_used) > threshold_amount
    return False


def is_wastage_excessive(
    quantity_purchased: Any,
    quantity_delivered: Any,
    quantity_used: Any,
    threshold_percentage: float = 15,
) -> bool:
    """True when wastage % strictly exceeds the threshold."""
    wastage = calculate_wastage(quantity_purchased, quantity_delivered, quantity_used)
    return wastage > threshold_percentage
