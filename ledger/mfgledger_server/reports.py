"""
Read-only financial projections over a tenant's ledger.

Every function takes plain document dicts (as returned by the ledger
service's read path) and returns a dataclass; nothing here writes.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

from .models import OrderStatus, ReceivableStatus

AGING_BUCKETS = ("Current", "1-30 Days", "31-60 Days", "61-90 Days", "90+ Days")


def _amount(doc: dict[str, Any], key: str) -> float:
    return float(doc.get(key) or 0.0)


def _parse_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _month_key(value: Any) -> str | None:
    parsed = _parse_datetime(value)
    return f"{parsed.year}-{parsed.month:02d}" if parsed else None


@dataclass
class FinancialSummary:
    revenue: float
    cogs: float
    gross_profit: float
    total_expenses: float
    net_profit: float
    profit_margin: float
    finished_goods_value: float
    raw_materials_value: float
    receivables_value: float
    current_assets: float


def financial_summary(
    sales_orders: Iterable[dict[str, Any]],
    expenses: Iterable[dict[str, Any]],
    inventory_items: Iterable[dict[str, Any]],
    raw_materials: Iterable[dict[str, Any]],
    receivables: Iterable[dict[str, Any]],
) -> FinancialSummary:
    """Profit and loss over delivered orders plus current working capital.

    Revenue and COGS count delivered orders only. Profit margin is net
    profit as a percentage of revenue (0 when there is no revenue).
    """
    delivered = [o for o in sales_orders if o.get("status") == OrderStatus.DELIVERED.value]
    revenue = sum(_amount(o, "totalAmount") for o in delivered)
    cogs = sum(_amount(o, "totalCost") for o in delivered)
    gross_profit = revenue - cogs
    total_expenses = sum(_amount(e, "amount") for e in expenses)
    net_profit = gross_profit - total_expenses
    profit_margin = (net_profit / revenue) * 100 if revenue > 0 else 0.0

    finished_goods_value = sum(
        _amount(i, "quantity") * _amount(i, "averageCost") for i in inventory_items
    )
    raw_materials_value = sum(
        _amount(m, "quantity") * _amount(m, "averageCost") for m in raw_materials
    )
    receivables_value = sum(_amount(r, "dueAmount") for r in receivables)

    return FinancialSummary(
        revenue=revenue,
        cogs=cogs,
        gross_profit=gross_profit,
        total_expenses=total_expenses,
        net_profit=net_profit,
        profit_margin=profit_margin,
        finished_goods_value=finished_goods_value,
        raw_materials_value=raw_materials_value,
        receivables_value=receivables_value,
        current_assets=finished_goods_value + raw_materials_value + receivables_value,
    )


@dataclass
class MonthlyFigures:
    month: str
    revenue: float = 0.0
    cogs: float = 0.0
    expenses: float = 0.0

    @property
    def profit(self) -> float:
        return self.revenue - self.cogs - self.expenses


def monthly_breakdown(
    sales_orders: Iterable[dict[str, Any]],
    expenses: Iterable[dict[str, Any]],
) -> list[MonthlyFigures]:
    """Revenue, COGS and expenses per YYYY-MM, oldest month first.

    Delivered orders are dated by deliveredAt (falling back to createdAt);
    expenses by their own date.
    """
    months: dict[str, MonthlyFigures] = {}

    def bucket(key: str) -> MonthlyFigures:
        if key not in months:
            months[key] = MonthlyFigures(month=key)
        return months[key]

    for order in sales_orders:
        if order.get("status") != OrderStatus.DELIVERED.value:
            continue
        key = _month_key(order.get("deliveredAt") or order.get("createdAt"))
        if key is None:
            continue
        figures = bucket(key)
        figures.revenue += _amount(order, "totalAmount")
        figures.cogs += _amount(order, "totalCost")

    for expense in expenses:
        key = _month_key(expense.get("date") or expense.get("createdAt"))
        if key is None:
            continue
        bucket(key).expenses += _amount(expense, "amount")

    return [months[key] for key in sorted(months)]


def expenses_by_category(expenses: Iterable[dict[str, Any]]) -> dict[str, float]:
    totals: dict[str, float] = defaultdict(float)
    for expense in expenses:
        totals[expense.get("category") or "Other"] += _amount(expense, "amount")
    return dict(totals)


def aging_bucket(due_date: Any, as_of: datetime) -> str:
    """Bucket for a receivable by whole days past due (rounded up)."""
    due = _parse_datetime(due_date)
    if due is None:
        return AGING_BUCKETS[0]
    days = math.ceil((as_of - due).total_seconds() / 86400)
    if days <= 0:
        return "Current"
    if days <= 30:
        return "1-30 Days"
    if days <= 60:
        return "31-60 Days"
    if days <= 90:
        return "61-90 Days"
    return "90+ Days"


@dataclass
class AgingReport:
    as_of: datetime
    total_outstanding: float = 0.0
    overdue: float = 0.0
    buckets: dict[str, float] = field(default_factory=lambda: {b: 0.0 for b in AGING_BUCKETS})
    receivables: list[dict[str, Any]] = field(default_factory=list)


def receivable_aging(receivables: Iterable[dict[str, Any]], as_of: datetime) -> AgingReport:
    """Outstanding receivables bucketed by days past due at `as_of`."""
    if as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=timezone.utc)
    report = AgingReport(as_of=as_of)
    for receivable in receivables:
        if receivable.get("status") not in (
            ReceivableStatus.UNPAID.value,
            ReceivableStatus.PARTIAL.value,
        ):
            continue
        due = _amount(receivable, "dueAmount")
        bucket = aging_bucket(receivable.get("dueDate"), as_of)
        report.total_outstanding += due
        report.buckets[bucket] += due
        if bucket != "Current":
            report.overdue += due
        report.receivables.append({**receivable, "aging": bucket})
    return report


def low_stock_materials(raw_materials: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Materials at or below their minimum stock level (when one is set)."""
    return [
        m
        for m in raw_materials
        if _amount(m, "minStock") > 0 and _amount(m, "quantity") <= _amount(m, "minStock")
    ]
