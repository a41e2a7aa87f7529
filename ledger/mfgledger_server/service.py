"""
Tenant-scoped facade over the ledger engine.

LedgerService builds operations with the current time, runs them through
the TransactionCoordinator and exposes the query-by-tenant read path and
reports. It is the only entry point the HTTP layer uses.

Invariants:
    - Every call is scoped to one org_id; there is no cross-tenant read
    - A tenant partition is created on its first write
    - Mutations return OperationResult; only programming errors raise

How to change safely:
    - Add one method per new operation, taking org_id first
    - Keep reads side-effect free (never create a tenant on read)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from .clock import Clock, SystemClock
from .engine.audit import AuditLogger, ReconciliationReport
from .engine.coordinator import LedgerOperation, OperationResult, TransactionCoordinator
from .engine.handlers import (
    AddBomLine,
    CancelSalesOrder,
    CreateMaterial,
    CreateProduct,
    CreateSalesOrder,
    ManualAdjustment,
    ProductionRun,
    Purchase,
    RecordCollection,
    RecordExpense,
    SalesDelivery,
)
from .errors import NotFoundError, ValidationError
from .models import (
    ALL_COLLECTIONS,
    EXPENSES,
    INVENTORY_ITEMS,
    RAW_MATERIALS,
    RECEIVABLES,
    SALES_ORDERS,
    ItemKind,
)
from . import reports
from .store.base import LedgerStore

logger = logging.getLogger(__name__)


class LedgerService:
    """Runs ledger operations for any organization.

    Example:
        >>> service = LedgerService(store, TransactionCoordinator(store))
        >>> result = await service.create_material("org_1", "Steel", "kg")
        >>> material_id = result.created["material"]
        >>> await service.purchase("org_1", material_id, 100, 5000)
    """

    def __init__(
        self,
        store: LedgerStore,
        coordinator: TransactionCoordinator | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.coordinator = coordinator or TransactionCoordinator(store)
        self.clock = clock or SystemClock()
        self.audit: AuditLogger = self.coordinator.audit
        self._known_tenants: set[str] = set()

    async def ensure_tenant(self, org_id: str) -> None:
        """Create the organization's partition if it does not exist yet."""
        if org_id in self._known_tenants:
            return
        if not await self.store.tenant_exists(org_id):
            await self.store.initialize_tenant(org_id)
        self._known_tenants.add(org_id)

    async def execute(self, org_id: str, operation: LedgerOperation) -> OperationResult:
        """Run any operation for an organization."""
        self._check_org(org_id)
        await self.ensure_tenant(org_id)
        result = await self.coordinator.execute_atomic(org_id, operation)
        if not result.success:
            logger.info(
                "Ledger operation failed",
                extra={
                    "org_id": org_id,
                    "operation": operation.name,
                    "error_code": result.error.code if result.error else None,
                    "attempts": result.attempts,
                },
            )
        return result

    def _now(self) -> datetime:
        return self.clock.now_utc()

    @staticmethod
    def _check_org(org_id: str) -> None:
        if not org_id or not org_id.strip():
            raise ValidationError("Organization ID is required", field_name="orgId")

    # Stock operations

    async def purchase(
        self, org_id: str, material_id: str, quantity: float, total_cost: float
    ) -> OperationResult:
        return await self.execute(
            org_id, Purchase(material_id, quantity, total_cost, self._now(), self.audit)
        )

    async def production_run(self, org_id: str, product_id: str, quantity: float) -> OperationResult:
        return await self.execute(
            org_id, ProductionRun(product_id, quantity, self._now(), self.audit)
        )

    async def deliver_order(self, org_id: str, order_id: str) -> OperationResult:
        return await self.execute(org_id, SalesDelivery(order_id, self._now(), self.audit))

    async def record_collection(
        self, org_id: str, receivable_id: str, amount: float
    ) -> OperationResult:
        return await self.execute(
            org_id, RecordCollection(receivable_id, amount, self._now(), self.audit)
        )

    async def manual_adjustment(
        self,
        org_id: str,
        item_id: str,
        delta: float,
        reason: str,
        item_kind: ItemKind | str = ItemKind.INVENTORY,
    ) -> OperationResult:
        return await self.execute(
            org_id,
            ManualAdjustment(
                item_id, delta, reason, self._now(), item_kind=item_kind, audit=self.audit
            ),
        )

    # Catalogue operations

    async def create_material(
        self, org_id: str, name: str, unit: str, min_stock: float = 0.0
    ) -> OperationResult:
        return await self.execute(
            org_id, CreateMaterial(name, unit, self._now(), min_stock=min_stock, audit=self.audit)
        )

    async def create_product(
        self,
        org_id: str,
        name: str,
        description: str = "",
        bom: Iterable[tuple[str, float]] = (),
    ) -> OperationResult:
        return await self.execute(
            org_id,
            CreateProduct(name, self._now(), description=description, bom=bom, audit=self.audit),
        )

    async def add_bom_line(
        self, org_id: str, product_id: str, material_id: str, quantity_per_unit: float
    ) -> OperationResult:
        return await self.execute(
            org_id,
            AddBomLine(product_id, material_id, quantity_per_unit, self._now(), self.audit),
        )

    async def create_sales_order(
        self,
        org_id: str,
        customer_name: str,
        items: Iterable[tuple[str, float, float]],
    ) -> OperationResult:
        return await self.execute(
            org_id, CreateSalesOrder(customer_name, items, self._now(), self.audit)
        )

    async def cancel_sales_order(self, org_id: str, order_id: str) -> OperationResult:
        return await self.execute(org_id, CancelSalesOrder(order_id, self._now(), self.audit))

    async def record_expense(
        self,
        org_id: str,
        description: str,
        amount: float,
        category: str = "General",
        date: str | None = None,
    ) -> OperationResult:
        return await self.execute(
            org_id,
            RecordExpense(
                description, amount, self._now(), category=category, date=date, audit=self.audit
            ),
        )

    # Read path

    async def get(self, org_id: str, collection: str, doc_id: str) -> dict[str, Any]:
        """Fetch one document with its store metadata.

        Raises:
            ValidationError: If the collection is unknown
            NotFoundError: If the document (or the tenant) does not exist
        """
        self._check_org(org_id)
        self._check_collection(collection)
        if not await self.store.tenant_exists(org_id):
            raise NotFoundError(collection, doc_id)
        snapshot = await self.store.get(org_id, collection, doc_id)
        if not snapshot.exists:
            raise NotFoundError(collection, doc_id)
        return snapshot.to_dict()

    async def list(
        self,
        org_id: str,
        collection: str,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """List a collection in creation order; empty for an unknown tenant."""
        self._check_org(org_id)
        self._check_collection(collection)
        if not await self.store.tenant_exists(org_id):
            return []
        snapshots = await self.store.query(org_id, collection, limit=limit, offset=offset)
        return [snapshot.to_dict() for snapshot in snapshots]

    @staticmethod
    def _check_collection(collection: str) -> None:
        if collection not in ALL_COLLECTIONS:
            raise ValidationError(f"Unknown collection: {collection}", field_name="collection")

    # Reports

    async def financial_summary(self, org_id: str) -> reports.FinancialSummary:
        return reports.financial_summary(
            await self.list(org_id, SALES_ORDERS),
            await self.list(org_id, EXPENSES),
            await self.list(org_id, INVENTORY_ITEMS),
            await self.list(org_id, RAW_MATERIALS),
            await self.list(org_id, RECEIVABLES),
        )

    async def monthly_breakdown(self, org_id: str) -> list[reports.MonthlyFigures]:
        return reports.monthly_breakdown(
            await self.list(org_id, SALES_ORDERS),
            await self.list(org_id, EXPENSES),
        )

    async def expenses_by_category(self, org_id: str) -> dict[str, float]:
        return reports.expenses_by_category(await self.list(org_id, EXPENSES))

    async def receivable_aging(
        self, org_id: str, as_of: datetime | None = None
    ) -> reports.AgingReport:
        return reports.receivable_aging(
            await self.list(org_id, RECEIVABLES), as_of or self._now()
        )

    async def low_stock_materials(self, org_id: str) -> list[dict[str, Any]]:
        return reports.low_stock_materials(await self.list(org_id, RAW_MATERIALS))

    async def reconcile(self, org_id: str) -> ReconciliationReport:
        """Check that every item's logged changes sum to its quantity."""
        self._check_org(org_id)
        if not await self.store.tenant_exists(org_id):
            return ReconciliationReport(tenant_id=org_id)
        return await self.audit.reconcile(self.store, org_id)
