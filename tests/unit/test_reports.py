"""
Unit tests for financial reports.

Tests cover:
- Profit and loss over delivered orders
- Monthly grouping
- Expense categories
- Receivable aging buckets
- Low-stock materials
"""

from datetime import datetime, timezone

import pytest

from ledger.mfgledger_server import reports

AS_OF = datetime(2025, 6, 30, tzinfo=timezone.utc)

ORDERS = [
    {"status": "delivered", "totalAmount": 1000.0, "totalCost": 600.0, "deliveredAt": "2025-05-10T09:00:00+00:00"},
    {"status": "delivered", "totalAmount": 500.0, "totalCost": 200.0, "deliveredAt": "2025-06-02T09:00:00+00:00"},
    {"status": "pending", "totalAmount": 9999.0},
    {"status": "cancelled", "totalAmount": 50.0},
]

EXPENSES = [
    {"amount": 100.0, "category": "Rent", "date": "2025-05-01"},
    {"amount": 50.0, "category": "Utilities", "date": "2025-06-15"},
    {"amount": 25.0, "category": "Rent", "date": "2025-06-01"},
    {"amount": 5.0, "date": "2025-06-20"},
]


class TestFinancialSummary:
    """Tests for financial_summary()."""

    def test_profit_and_loss(self):
        summary = reports.financial_summary(
            ORDERS,
            EXPENSES,
            [{"quantity": 5, "averageCost": 106.67}],
            [{"quantity": 130, "averageCost": 53.33}],
            [{"dueAmount": 300.0}, {"dueAmount": 0.0}],
        )

        assert summary.revenue == pytest.approx(1500.0)
        assert summary.cogs == pytest.approx(800.0)
        assert summary.gross_profit == pytest.approx(700.0)
        assert summary.total_expenses == pytest.approx(180.0)
        assert summary.net_profit == pytest.approx(520.0)
        assert summary.profit_margin == pytest.approx(520.0 / 1500.0 * 100)
        assert summary.finished_goods_value == pytest.approx(533.35)
        assert summary.raw_materials_value == pytest.approx(6932.9)
        assert summary.receivables_value == pytest.approx(300.0)
        assert summary.current_assets == pytest.approx(533.35 + 6932.9 + 300.0)

    def test_no_revenue_has_zero_margin(self):
        summary = reports.financial_summary([], [{"amount": 10}], [], [], [])
        assert summary.profit_margin == 0.0
        assert summary.net_profit == pytest.approx(-10.0)


class TestMonthlyBreakdown:
    """Tests for monthly_breakdown()."""

    def test_groups_by_month_in_order(self):
        months = reports.monthly_breakdown(ORDERS, EXPENSES)

        assert [m.month for m in months] == ["2025-05", "2025-06"]
        may, june = months
        assert may.revenue == pytest.approx(1000.0)
        assert may.expenses == pytest.approx(100.0)
        assert may.profit == pytest.approx(300.0)
        assert june.cogs == pytest.approx(200.0)
        assert june.expenses == pytest.approx(80.0)


class TestExpensesByCategory:
    def test_uncategorized_is_other(self):
        totals = reports.expenses_by_category(EXPENSES)
        assert totals == {"Rent": 125.0, "Utilities": 50.0, "Other": 5.0}


class TestReceivableAging:
    """Tests for aging_bucket() and receivable_aging()."""

    @pytest.mark.parametrize(
        "due_date,bucket",
        [
            ("2025-07-15T00:00:00+00:00", "Current"),
            ("2025-06-30T00:00:00+00:00", "Current"),
            ("2025-06-29T12:00:00+00:00", "1-30 Days"),
            ("2025-05-31T00:00:00+00:00", "1-30 Days"),
            ("2025-05-30T00:00:00+00:00", "31-60 Days"),
            ("2025-04-15T00:00:00+00:00", "61-90 Days"),
            ("2025-01-01T00:00:00+00:00", "90+ Days"),
        ],
    )
    def test_aging_bucket(self, due_date, bucket):
        assert reports.aging_bucket(due_date, AS_OF) == bucket

    def test_only_open_receivables_counted(self):
        receivables = [
            {"status": "unpaid", "dueAmount": 100.0, "dueDate": "2025-07-10T00:00:00+00:00"},
            {"status": "partial", "dueAmount": 40.0, "dueDate": "2025-05-01T00:00:00+00:00"},
            {"status": "paid", "dueAmount": 0.0, "dueDate": "2025-01-01T00:00:00+00:00"},
        ]

        report = reports.receivable_aging(receivables, AS_OF)

        assert report.total_outstanding == pytest.approx(140.0)
        assert report.overdue == pytest.approx(40.0)
        assert report.buckets["Current"] == pytest.approx(100.0)
        assert report.buckets["31-60 Days"] == pytest.approx(40.0)
        assert len(report.receivables) == 2


class TestLowStock:
    def test_threshold(self):
        materials = [
            {"name": "a", "quantity": 5, "minStock": 10},
            {"name": "b", "quantity": 10, "minStock": 10},
            {"name": "c", "quantity": 11, "minStock": 10},
            {"name": "d", "quantity": 0, "minStock": 0},
        ]
        assert [m["name"] for m in reports.low_stock_materials(materials)] == ["a", "b"]
