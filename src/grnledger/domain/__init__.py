from .models import (
    CostPolicy,
    GRNDetails,
    GRNHeader,
    GRNLine,
    GRNLineInput,
    GRNStatus,
    InventoryMovement,
    LabelItem,
    Language,
    MovementType,
    Product,
    StockRow,
    Supplier,
    Unit,
)
from .errors import (
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    ReferentialError,
    ValidationError,
)

__all__ = [
    "CostPolicy",
    "GRNDetails",
    "GRNHeader",
    "GRNLine",
    "GRNLineInput",
    "GRNStatus",
    "InventoryMovement",
    "LabelItem",
    "Language",
    "MovementType",
    "Product",
    "StockRow",
    "Supplier",
    "Unit",
    "InvalidStateError",
    "NotFoundError",
    "PersistenceError",
    "ReferentialError",
    "ValidationError",
]
