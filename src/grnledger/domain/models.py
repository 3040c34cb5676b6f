from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional


class Unit(str, Enum):
    PIECE = "pc"
    WEIGHT = "kg"


class MovementType(str, Enum):
    RECEIVE = "RECEIVE"
    ADJUST = "ADJUST"
    WASTE = "WASTE"


class GRNStatus(str, Enum):
    OPEN = "OPEN"
    POSTED = "POSTED"
    VOID = "VOID"


class CostPolicy(str, Enum):
    NONE = "none"
    AVERAGE = "average"
    LATEST = "latest"


class Language(str, Enum):
    EN = "EN"
    SI = "SI"
    TA = "TA"


def is_low_stock(current_stock: Decimal, reorder_level: Decimal) -> bool:
    return reorder_level > 0 and current_stock <= reorder_level


@dataclass(frozen=True)
class Product:
    id: int
    sku: str
    name: str
    unit: Unit
    cost: Decimal
    price: Decimal
    reorder_level: Decimal
    barcode: Optional[str] = None
    name_en: Optional[str] = None
    name_si: Optional[str] = None
    name_ta: Optional[str] = None
    active: int = 1

    def localized_name(self, language: Language) -> str:
        """Requested language, then English, then the raw name."""
        by_language = {
            Language.EN: self.name_en,
            Language.SI: self.name_si,
            Language.TA: self.name_ta,
        }
        return by_language.get(Language(language)) or self.name_en or self.name


@dataclass(frozen=True)
class Supplier:
    id: int
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    active: int = 1


@dataclass(frozen=True)
class InventoryMovement:
    id: int
    product_id: int
    quantity: Decimal
    type: MovementType
    reason: Optional[str]
    note: Optional[str]
    origin_reference: Optional[str]
    created_at: str


@dataclass(frozen=True)
class GRNHeader:
    id: int
    supplier_id: int
    document_no: str
    received_by: Optional[str]
    note: Optional[str]
    status: GRNStatus
    subtotal: Decimal
    tax: Decimal
    other: Decimal
    total: Decimal
    created_at: str
    posted_at: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status is GRNStatus.OPEN


@dataclass(frozen=True)
class GRNLine:
    id: int
    grn_id: int
    product_id: int
    quantity: Decimal
    unit_cost: Decimal
    line_total: Decimal
    mrp: Optional[Decimal] = None
    batch_no: Optional[str] = None
    expiry_date: Optional[str] = None


@dataclass(frozen=True)
class GRNLineInput:
    """Caller-side line payload for upserts; ``id`` set means update."""

    grn_id: int
    product_id: int
    quantity: Decimal
    unit_cost: Decimal
    mrp: Optional[Decimal] = None
    batch_no: Optional[str] = None
    expiry_date: Optional[str] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class GRNDetails:
    header: GRNHeader
    supplier: Supplier
    lines: list[tuple[GRNLine, Product]]


@dataclass(frozen=True)
class GRNSummary:
    header: GRNHeader
    supplier_name: Optional[str]
    line_count: int


@dataclass(frozen=True)
class GRNStats:
    total: int
    open: int
    posted: int
    void: int
    posted_value: Decimal


@dataclass(frozen=True)
class LabelItem:
    sku: str
    name: str
    price: Decimal
    language: Language
    barcode: Optional[str] = None
    mrp: Optional[Decimal] = None
    batch_no: Optional[str] = None
    expiry_date: Optional[str] = None


@dataclass(frozen=True)
class StockRow:
    product_id: int
    sku: str
    name: str
    unit: Unit
    current_stock: Decimal
    reorder_level: Decimal
    is_low_stock: bool
    active: int = 1


@dataclass(frozen=True)
class MovementLogRow:
    id: int
    created_at: str
    type: MovementType
    sku: str
    name: str
    quantity: Decimal
    reason: Optional[str]
    note: Optional[str]
    origin_reference: Optional[str]


@dataclass(frozen=True)
class StocktakeDiff:
    product_id: int
    sku: str
    name: str
    unit: Unit
    current_stock: Decimal
    counted_qty: Decimal
    delta: Decimal
    note: Optional[str] = None
