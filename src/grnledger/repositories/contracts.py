from __future__ import annotations

from decimal import Decimal
from typing import Callable, Optional, Protocol, TypeVar

from grnledger.domain.models import GRNHeader, GRNLine, MovementType, Product, Supplier, Unit

T = TypeVar("T")


class UnitOfWork(Protocol):
    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...

    def get_product(self, product_id: int) -> Optional[Product]: ...
    def get_product_by_sku(self, sku: str) -> Optional[Product]: ...
    def get_supplier(self, supplier_id: int) -> Optional[Supplier]: ...
    def insert_product(self, sku: str, name: str, unit: Unit, cost: Decimal, price: Decimal,
                       reorder_level: Decimal, barcode: Optional[str] = None, name_en: Optional[str] = None,
                       name_si: Optional[str] = None, name_ta: Optional[str] = None) -> int: ...
    def update_product_cost(self, product_id: int, cost: Decimal) -> None: ...

    def append_movement(
        self,
        product_id: int,
        quantity: Decimal,
        movement_type: MovementType,
        reason: Optional[str],
        note: Optional[str],
        origin_reference: Optional[str],
    ) -> int: ...
    def ledger_totals(self) -> dict[int, Decimal]: ...
    def cached_stock(self) -> dict[int, Decimal]: ...
    def replace_stock_projection(self, totals: dict[int, Decimal]) -> None: ...

    def latest_document_no(self) -> Optional[str]: ...
    def get_grn_header(self, grn_id: int) -> Optional[GRNHeader]: ...
    def get_grn_header_by_document_no(self, document_no: str) -> Optional[GRNHeader]: ...
    def insert_grn_header(self, supplier_id: int, document_no: str, received_by: Optional[str], note: Optional[str]) -> int: ...
    def update_grn_header(self, grn_id: int, **fields) -> None: ...
    def grn_lines(self, grn_id: int) -> list[GRNLine]: ...
    def get_grn_line(self, line_id: int) -> Optional[GRNLine]: ...
    def insert_grn_line(self, grn_id: int, product_id: int, quantity: Decimal, unit_cost: Decimal,
                        line_total: Decimal, mrp: Optional[Decimal], batch_no: Optional[str],
                        expiry_date: Optional[str]) -> int: ...
    def update_grn_line(self, line_id: int, product_id: int, quantity: Decimal, unit_cost: Decimal,
                        line_total: Decimal, mrp: Optional[Decimal], batch_no: Optional[str],
                        expiry_date: Optional[str]) -> None: ...
    def delete_grn_line(self, line_id: int) -> int: ...


class LedgerRepository(Protocol):
    """Query side of the persistence collaborator plus its transaction scope."""

    db_path: str

    def unit_of_work(self) -> UnitOfWork: ...
    def transaction(self, fn: Callable[[UnitOfWork], T]) -> T: ...
    def get_product_by_id(self, product_id: int) -> Optional[Product]: ...
    def get_product_by_sku(self, sku: str) -> Optional[Product]: ...
