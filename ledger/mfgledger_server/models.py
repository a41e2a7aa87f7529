"""
Ledger document model for MfgLedger.

Documents are stored as camelCase JSON objects in named collections. The
dataclasses here are typed views over those documents, used by the
operation handlers to read state; writes are always expressed as plain
dicts staged on a write plan.

Invariants:
    - quantity and averageCost are never negative in a committed document
    - A receivable's dueAmount equals totalAmount - paidAmount within MONEY_EPSILON
    - Log collections are append-only

How to change safely:
    - New document fields must be optional when parsed (old documents lack them)
    - Collection names are persisted; never rename one
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .store.base import DocumentSnapshot

# Collection names
RAW_MATERIALS = "raw_materials"
PRODUCTS = "products"
INVENTORY_ITEMS = "inventory_items"
PRODUCTION_ORDERS = "production_orders"
SALES_ORDERS = "sales_orders"
RECEIVABLES = "receivables"
COLLECTIONS = "collections"
RAW_MATERIAL_LOGS = "raw_material_logs"
INVENTORY_LOGS = "inventory_logs"
CASHFLOW_ENTRIES = "cashflow_entries"
EXPENSES = "expenses"

ALL_COLLECTIONS = frozenset(
    {
        RAW_MATERIALS,
        PRODUCTS,
        INVENTORY_ITEMS,
        PRODUCTION_ORDERS,
        SALES_ORDERS,
        RECEIVABLES,
        COLLECTIONS,
        RAW_MATERIAL_LOGS,
        INVENTORY_LOGS,
        CASHFLOW_ENTRIES,
        EXPENSES,
    }
)

# Written once, never updated
APPEND_ONLY_COLLECTIONS = frozenset(
    {
        RAW_MATERIAL_LOGS,
        INVENTORY_LOGS,
        COLLECTIONS,
        CASHFLOW_ENTRIES,
        PRODUCTION_ORDERS,
        EXPENSES,
    }
)

# Collections whose documents carry a quantity that must be paired with a log
STOCK_COLLECTIONS = {
    RAW_MATERIALS: (RAW_MATERIAL_LOGS, "materialId"),
    INVENTORY_ITEMS: (INVENTORY_LOGS, "itemId"),
}

MONEY_EPSILON = 0.01
RECEIVABLE_TERM_DAYS = 30
FINISHED_GOODS_UNIT = "pc"


class OrderStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class ReceivableStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class ItemKind(str, Enum):
    """Which stock ledger a manual adjustment targets."""

    INVENTORY = "inventory"
    MATERIAL = "material"

    @property
    def collection(self) -> str:
        return INVENTORY_ITEMS if self is ItemKind.INVENTORY else RAW_MATERIALS


def _num(data: dict[str, Any], key: str) -> float:
    value = data.get(key)
    return float(value) if value is not None else 0.0


@dataclass
class RawMaterial:
    """A purchasable input tracked by quantity and weighted-average cost."""

    id: str
    name: str
    unit: str
    quantity: float
    average_cost: float
    min_stock: float = 0.0

    @classmethod
    def from_snapshot(cls, snapshot: DocumentSnapshot) -> RawMaterial:
        data = snapshot.data
        return cls(
            id=snapshot.doc_id,
            name=data.get("name", snapshot.doc_id),
            unit=data.get("unit", ""),
            quantity=_num(data, "quantity"),
            average_cost=_num(data, "averageCost"),
            min_stock=_num(data, "minStock"),
        )


@dataclass
class BomLine:
    material_id: str
    material_name: str
    quantity: float

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BomLine:
        return cls(
            material_id=data["materialId"],
            material_name=data.get("materialName", data["materialId"]),
            quantity=float(data["quantity"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "materialId": self.material_id,
            "materialName": self.material_name,
            "quantity": self.quantity,
        }


@dataclass
class Product:
    """A finished good defined by its bill of materials."""

    id: str
    name: str
    description: str = ""
    bom: list[BomLine] = field(default_factory=list)

    @classmethod
    def from_snapshot(cls, snapshot: DocumentSnapshot) -> Product:
        data = snapshot.data
        return cls(
            id=snapshot.doc_id,
            name=data.get("name", snapshot.doc_id),
            description=data.get("description", ""),
            bom=[BomLine.from_dict(line) for line in data.get("bom") or []],
        )


@dataclass
class InventoryItem:
    """Finished-goods stock for one product. Its document ID is the product ID."""

    id: str
    product_name: str
    quantity: float
    average_cost: float

    @classmethod
    def from_snapshot(cls, snapshot: DocumentSnapshot) -> InventoryItem:
        data = snapshot.data
        return cls(
            id=snapshot.doc_id,
            product_name=data.get("productName", snapshot.doc_id),
            quantity=_num(data, "quantity"),
            average_cost=_num(data, "averageCost"),
        )


@dataclass
class OrderLine:
    product_id: str
    product_name: str
    quantity: float
    unit_price: float

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OrderLine:
        return cls(
            product_id=data["productId"],
            product_name=data.get("productName", data["productId"]),
            quantity=float(data["quantity"]),
            unit_price=float(data.get("unitPrice", 0.0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "productId": self.product_id,
            "productName": self.product_name,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
        }


@dataclass
class SalesOrder:
    id: str
    customer_name: str
    items: list[OrderLine]
    total_amount: float
    status: str

    @classmethod
    def from_snapshot(cls, snapshot: DocumentSnapshot) -> SalesOrder:
        data = snapshot.data
        return cls(
            id=snapshot.doc_id,
            customer_name=data.get("customerName", ""),
            items=[OrderLine.from_dict(line) for line in data.get("items") or []],
            total_amount=_num(data, "totalAmount"),
            status=data.get("status", OrderStatus.PENDING.value),
        )


@dataclass
class Receivable:
    id: str
    order_id: str
    customer_name: str
    total_amount: float
    paid_amount: float
    due_amount: float
    status: str

    @classmethod
    def from_snapshot(cls, snapshot: DocumentSnapshot) -> Receivable:
        data = snapshot.data
        return cls(
            id=snapshot.doc_id,
            order_id=data.get("orderId", ""),
            customer_name=data.get("customerName", ""),
            total_amount=_num(data, "totalAmount"),
            paid_amount=_num(data, "paidAmount"),
            due_amount=_num(data, "dueAmount"),
            status=data.get("status", ReceivableStatus.UNPAID.value),
        )
