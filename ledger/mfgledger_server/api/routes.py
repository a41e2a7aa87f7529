"""
API routes for the MfgLedger HTTP API.

Every ledger route is scoped to the organization named by the X-Org-ID
header. Request models validate shape only; business rules are enforced
by the engine and surface through the app's LedgerError handler.
"""

import dataclasses
import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field

from ..engine.coordinator import OperationResult
from ..service import LedgerService
from .settings import ApiSettings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["MfgLedger"])


# --- Request/Response Models ---


class _CamelModel(BaseModel):
    model_config = {"populate_by_name": True, "allow_inf_nan": False}


class MaterialCreateRequest(_CamelModel):
    """Request to register a raw material."""

    name: str = Field(..., description="Material name")
    unit: str = Field(..., description="Unit of measure")
    min_stock: float = Field(0.0, alias="minStock", description="Low-stock threshold")


class PurchaseRequest(_CamelModel):
    quantity: float = Field(..., description="Quantity received")
    total_cost: float = Field(..., alias="totalCost", description="Total cost of the batch")


class BomLineRequest(_CamelModel):
    material_id: str = Field(..., alias="materialId")
    quantity: float = Field(..., description="Quantity per finished unit")


class ProductCreateRequest(_CamelModel):
    name: str = Field(..., description="Product name")
    description: str = Field("", description="Free-form description")
    bom: list[BomLineRequest] = Field(default_factory=list, description="Bill of materials")


class ProductionRunRequest(_CamelModel):
    quantity: float = Field(..., description="Units to produce")


class OrderLineRequest(_CamelModel):
    product_id: str = Field(..., alias="productId")
    quantity: float
    unit_price: float = Field(..., alias="unitPrice")


class SalesOrderCreateRequest(_CamelModel):
    customer_name: str = Field(..., alias="customerName")
    items: list[OrderLineRequest] = Field(..., description="Order lines")


class CollectionRequest(_CamelModel):
    amount: float = Field(..., description="Amount received")


class AdjustmentRequest(_CamelModel):
    """Signed manual stock correction."""

    item_id: str = Field(..., alias="itemId")
    quantity: float = Field(..., description="Signed quantity change")
    reason: str = Field(..., description="Why the stock is being corrected")
    item_kind: str = Field("inventory", alias="itemKind", description="inventory or material")


class ExpenseRequest(_CamelModel):
    description: str
    amount: float
    category: str = "General"
    date: str | None = Field(None, description="ISO date; defaults to today")


class OperationResponse(BaseModel):
    """Result of a committed operation."""

    operation: str
    outcome: Any = None
    created: dict[str, str]
    attempts: int


class PaginatedResponse(BaseModel):
    """Paginated list response."""

    items: list[dict[str, Any]]
    offset: int
    limit: int
    has_more: bool


# --- Dependencies ---


def get_service(request: Request) -> LedgerService:
    """Get ledger service from app state."""
    return request.app.state.service


def get_settings(request: Request) -> ApiSettings:
    return request.app.state.settings


def get_org_id(x_org_id: str | None = Header(None, alias="X-Org-ID")) -> str:
    """Organization ID from the X-Org-ID header (required)."""
    if not x_org_id or not x_org_id.strip():
        raise HTTPException(status_code=400, detail="X-Org-ID header is required")
    return x_org_id.strip()


def _respond(result: OperationResult) -> OperationResponse:
    result.raise_for_error()
    outcome = result.outcome
    if dataclasses.is_dataclass(outcome):
        outcome = dataclasses.asdict(outcome)
    return OperationResponse(
        operation=result.operation,
        outcome=outcome,
        created=result.created,
        attempts=result.attempts,
    )


# --- Catalogue Routes ---


@router.post("/materials", response_model=OperationResponse, status_code=201)
async def create_material(
    request: MaterialCreateRequest,
    service: LedgerService = Depends(get_service),
    org_id: str = Depends(get_org_id),
):
    """Register a raw material at zero stock."""
    result = await service.create_material(org_id, request.name, request.unit, request.min_stock)
    return _respond(result)


@router.post("/products", response_model=OperationResponse, status_code=201)
async def create_product(
    request: ProductCreateRequest,
    service: LedgerService = Depends(get_service),
    org_id: str = Depends(get_org_id),
):
    result = await service.create_product(
        org_id,
        request.name,
        request.description,
        [(line.material_id, line.quantity) for line in request.bom],
    )
    return _respond(result)


@router.post("/products/{product_id}/bom", response_model=OperationResponse)
async def add_bom_line(
    product_id: str,
    request: BomLineRequest,
    service: LedgerService = Depends(get_service),
    org_id: str = Depends(get_org_id),
):
    result = await service.add_bom_line(org_id, product_id, request.material_id, request.quantity)
    return _respond(result)


@router.post("/sales-orders", response_model=OperationResponse, status_code=201)
async def create_sales_order(
    request: SalesOrderCreateRequest,
    service: LedgerService = Depends(get_service),
    org_id: str = Depends(get_org_id),
):
    result = await service.create_sales_order(
        org_id,
        request.customer_name,
        [(line.product_id, line.quantity, line.unit_price) for line in request.items],
    )
    return _respond(result)


@router.post("/sales-orders/{order_id}/cancel", response_model=OperationResponse)
async def cancel_sales_order(
    order_id: str,
    service: LedgerService = Depends(get_service),
    org_id: str = Depends(get_org_id),
):
    return _respond(await service.cancel_sales_order(org_id, order_id))


@router.post("/expenses", response_model=OperationResponse, status_code=201)
async def record_expense(
    request: ExpenseRequest,
    service: LedgerService = Depends(get_service),
    org_id: str = Depends(get_org_id),
):
    """Book an expense together with its cash outflow."""
    result = await service.record_expense(
        org_id, request.description, request.amount, request.category, request.date
    )
    return _respond(result)


# --- Stock Routes ---


@router.post("/materials/{material_id}/purchases", response_model=OperationResponse)
async def purchase(
    material_id: str,
    request: PurchaseRequest,
    service: LedgerService = Depends(get_service),
    org_id: str = Depends(get_org_id),
):
    """
    Receive raw material.

    Re-averages the material's unit cost and books a cash outflow.
    """
    result = await service.purchase(org_id, material_id, request.quantity, request.total_cost)
    return _respond(result)


@router.post("/products/{product_id}/production-runs", response_model=OperationResponse)
async def production_run(
    product_id: str,
    request: ProductionRunRequest,
    service: LedgerService = Depends(get_service),
    org_id: str = Depends(get_org_id),
):
    """
    Produce finished goods.

    Consumes every BOM material atomically; fails with no changes if any
    material is short.
    """
    result = await service.production_run(org_id, product_id, request.quantity)
    return _respond(result)


@router.post("/sales-orders/{order_id}/deliver", response_model=OperationResponse)
async def deliver_order(
    order_id: str,
    service: LedgerService = Depends(get_service),
    org_id: str = Depends(get_org_id),
):
    """
    Deliver a pending order in full.

    Deducts finished goods, records COGS and opens a 30-day receivable.
    """
    return _respond(await service.deliver_order(org_id, order_id))


@router.post("/receivables/{receivable_id}/collections", response_model=OperationResponse)
async def record_collection(
    receivable_id: str,
    request: CollectionRequest,
    service: LedgerService = Depends(get_service),
    org_id: str = Depends(get_org_id),
):
    result = await service.record_collection(org_id, receivable_id, request.amount)
    return _respond(result)


@router.post("/adjustments", response_model=OperationResponse)
async def manual_adjustment(
    request: AdjustmentRequest,
    service: LedgerService = Depends(get_service),
    org_id: str = Depends(get_org_id),
):
    result = await service.manual_adjustment(
        org_id, request.item_id, request.quantity, request.reason, request.item_kind
    )
    return _respond(result)


# --- Read Routes ---


@router.get("/documents/{collection}", response_model=PaginatedResponse)
async def list_documents(
    collection: str,
    offset: int = Query(0, ge=0, description="Pagination offset"),
    limit: int | None = Query(None, ge=1, description="Page size"),
    service: LedgerService = Depends(get_service),
    settings: ApiSettings = Depends(get_settings),
    org_id: str = Depends(get_org_id),
):
    """List a collection in creation order."""
    page_size = min(limit or settings.default_page_size, settings.max_page_size)
    docs = await service.list(org_id, collection, limit=page_size + 1, offset=offset)
    return PaginatedResponse(
        items=docs[:page_size],
        offset=offset,
        limit=page_size,
        has_more=len(docs) > page_size,
    )


@router.get("/documents/{collection}/{doc_id}")
async def get_document(
    collection: str,
    doc_id: str,
    service: LedgerService = Depends(get_service),
    org_id: str = Depends(get_org_id),
):
    return await service.get(org_id, collection, doc_id)


# --- Report Routes ---


@router.get("/reports/financial-summary")
async def financial_summary(
    service: LedgerService = Depends(get_service),
    org_id: str = Depends(get_org_id),
):
    return dataclasses.asdict(await service.financial_summary(org_id))


@router.get("/reports/monthly")
async def monthly_breakdown(
    service: LedgerService = Depends(get_service),
    org_id: str = Depends(get_org_id),
):
    return [
        {
            "month": m.month,
            "revenue": m.revenue,
            "cogs": m.cogs,
            "expenses": m.expenses,
            "profit": m.profit,
        }
        for m in await service.monthly_breakdown(org_id)
    ]


@router.get("/reports/expenses-by-category")
async def expenses_by_category(
    service: LedgerService = Depends(get_service),
    org_id: str = Depends(get_org_id),
):
    return await service.expenses_by_category(org_id)


@router.get("/reports/receivable-aging")
async def receivable_aging(
    as_of: datetime | None = Query(None, description="Aging date (defaults to now)"),
    service: LedgerService = Depends(get_service),
    org_id: str = Depends(get_org_id),
):
    report = await service.receivable_aging(org_id, as_of)
    return {
        "asOf": report.as_of.isoformat(),
        "totalOutstanding": report.total_outstanding,
        "overdue": report.overdue,
        "buckets": report.buckets,
        "receivables": report.receivables,
    }


@router.get("/reports/low-stock")
async def low_stock(
    service: LedgerService = Depends(get_service),
    org_id: str = Depends(get_org_id),
):
    return await service.low_stock_materials(org_id)


@router.get("/reports/reconciliation")
async def reconciliation(
    service: LedgerService = Depends(get_service),
    org_id: str = Depends(get_org_id),
):
    """Compare logged quantity changes with current stock."""
    report = await service.reconcile(org_id)
    return {
        "balanced": report.balanced,
        "checked": report.checked,
        "mismatches": [dataclasses.asdict(m) for m in report.mismatches],
    }
