"""
Weighted-average costing.

Pure functions; no I/O and no store access. Every stock movement that
brings goods in (a purchase, a completed production batch) re-prices the
item with weighted_average(). Movements out leave the average unchanged.
"""

from __future__ import annotations


def weighted_average(
    current_qty: float,
    current_avg_cost: float,
    incoming_qty: float,
    incoming_unit_cost: float,
) -> float:
    """Blend incoming stock into the current average cost.

    Args:
        current_qty: Quantity on hand before the movement
        current_avg_cost: Average unit cost of the quantity on hand
        incoming_qty: Quantity being added
        incoming_unit_cost: Unit cost of the quantity being added

    Returns:
        New average unit cost; 0.0 when the resulting quantity is zero

    Raises:
        ValueError: If any input is negative
    """
    for name, value in (
        ("current_qty", current_qty),
        ("current_avg_cost", current_avg_cost),
        ("incoming_qty", incoming_qty),
        ("incoming_unit_cost", incoming_unit_cost),
    ):
        if value < 0:
            raise ValueError(f"{name} must not be negative, got {value}")

    new_qty = current_qty + incoming_qty
    if new_qty <= 0:
        return 0.0
    new_total_value = current_qty * current_avg_cost + incoming_qty * incoming_unit_cost
    return new_total_value / new_qty


def unit_cost(total_cost: float, quantity: float) -> float:
    """Per-unit cost of a batch, 0.0 for an empty batch."""
    if total_cost < 0 or quantity < 0:
        raise ValueError("total_cost and quantity must not be negative")
    if quantity == 0:
        return 0.0
    return total_cost / quantity


def extended_cost(quantity: float, average_cost: float) -> float:
    """Value of `quantity` units carried at `average_cost`."""
    if quantity < 0 or average_cost < 0:
        raise ValueError("quantity and average_cost must not be negative")
    return quantity * average_cost
