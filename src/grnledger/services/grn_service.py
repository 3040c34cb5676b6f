from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional

from grnledger.domain.errors import (
    InvalidStateError,
    NotFoundError,
    ReferentialError,
    ValidationError,
)
from grnledger.domain.filters import GRNFilters
from grnledger.domain.models import (
    GRNDetails,
    GRNHeader,
    GRNLineInput,
    GRNStats,
    GRNStatus,
    GRNSummary,
)
from grnledger.domain.quantities import to_decimal, validate_quantity
from grnledger.repositories.contracts import UnitOfWork

log = logging.getLogger(__name__)


def _expiry_iso(value) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value).strip()).isoformat()
    except ValueError as e:
        raise ValidationError(f"Expiry date must be YYYY-MM-DD. Received: {value!r}") from e


def _non_negative(value, label: str) -> Decimal:
    d = to_decimal(value, label)
    if d < 0:
        raise ValidationError(f"{label} must be >= 0.")
    return d


class GRNService:
    """GRN aggregate: header + lines, mutable only while OPEN."""

    def __init__(
        self,
        repo,
        numbering,
        posting,
        kg_decimals: int = 3,
        uow_factory: Callable[[], UnitOfWork] | None = None,
    ):
        self.repo = repo
        self.numbering = numbering
        self.posting = posting
        self.kg_decimals = kg_decimals
        self.uow_factory = uow_factory or repo.unit_of_work

    @staticmethod
    def _open_header(uow: UnitOfWork, grn_id: int, action: str = "modified") -> GRNHeader:
        header = uow.get_grn_header(int(grn_id))
        if header is None:
            raise NotFoundError("GRN not found.")
        if header.status is not GRNStatus.OPEN:
            raise InvalidStateError(
                f"Only OPEN GRNs can be {action}. {header.document_no} is {header.status.value}."
            )
        return header

    @staticmethod
    def _refresh_totals(uow: UnitOfWork, header: GRNHeader, tax: Decimal | None = None, other: Decimal | None = None) -> None:
        tax = header.tax if tax is None else tax
        other = header.other if other is None else other
        subtotal = sum((line.line_total for line in uow.grn_lines(header.id)), Decimal("0"))
        uow.update_grn_header(header.id, subtotal=subtotal, tax=tax, other=other, total=subtotal + tax + other)

    def create(self, supplier_id: int, received_by: Optional[str] = None, note: Optional[str] = None) -> int:
        with self.uow_factory() as uow:
            if not uow.get_supplier(int(supplier_id)):
                raise ReferentialError(f"Supplier not found/active: {supplier_id}")
            document_no = self.numbering.next_document_no(uow)
            grn_id = uow.insert_grn_header(int(supplier_id), document_no, received_by, note)
        log.info("grn_created grn_id=%s document_no=%s supplier_id=%s", grn_id, document_no, supplier_id)
        return grn_id

    def upsert_line(self, line: GRNLineInput) -> int:
        qty = to_decimal(line.quantity, "Quantity")
        if qty <= 0:
            raise ValidationError("Quantity must be > 0.")
        unit_cost = _non_negative(line.unit_cost, "Unit cost")
        mrp = _non_negative(line.mrp, "MRP") if line.mrp is not None else None
        expiry = _expiry_iso(line.expiry_date)
        batch_no = (line.batch_no or "").strip() or None
        line_total = qty * unit_cost

        with self.uow_factory() as uow:
            header = self._open_header(uow, line.grn_id)
            product = uow.get_product(int(line.product_id))
            if not product:
                raise ReferentialError(f"Product not found/active: {line.product_id}")
            validate_quantity(qty, product.unit, self.kg_decimals)

            if line.id is not None:
                existing = uow.get_grn_line(int(line.id))
                if not existing or existing.grn_id != header.id:
                    raise NotFoundError("GRN line not found.")
                uow.update_grn_line(existing.id, product.id, qty, unit_cost, line_total, mrp, batch_no, expiry)
                line_id = existing.id
            else:
                line_id = uow.insert_grn_line(header.id, product.id, qty, unit_cost, line_total, mrp, batch_no, expiry)

            self._refresh_totals(uow, header)

        log.info(
            "grn_line_saved grn_id=%s line_id=%s product_id=%s qty=%s unit_cost=%s",
            line.grn_id, line_id, line.product_id, qty, unit_cost,
        )
        return line_id

    def delete_line(self, line_id: int) -> None:
        with self.uow_factory() as uow:
            line = uow.get_grn_line(int(line_id))
            if not line:
                raise NotFoundError("GRN line not found.")
            header = self._open_header(uow, line.grn_id)
            uow.delete_grn_line(line.id)
            self._refresh_totals(uow, header)
        log.info("grn_line_deleted grn_id=%s line_id=%s", line.grn_id, line_id)

    def update_header(
        self,
        grn_id: int,
        *,
        tax=None,
        other=None,
        note: Optional[str] = None,
        received_by: Optional[str] = None,
        supplier_id: Optional[int] = None,
    ) -> None:
        tax_d = _non_negative(tax, "Tax") if tax is not None else None
        other_d = _non_negative(other, "Other charges") if other is not None else None

        with self.uow_factory() as uow:
            header = self._open_header(uow, grn_id)
            fields = {}
            if supplier_id is not None:
                if not uow.get_supplier(int(supplier_id)):
                    raise ReferentialError(f"Supplier not found/active: {supplier_id}")
                fields["supplier_id"] = int(supplier_id)
            if note is not None:
                fields["note"] = note
            if received_by is not None:
                fields["received_by"] = received_by
            uow.update_grn_header(header.id, **fields)
            self._refresh_totals(uow, header, tax=tax_d, other=other_d)

    def post(self, grn_id: int, cost_policy=None) -> GRNHeader:
        return self.posting.post(grn_id, cost_policy)

    def void(self, grn_id: int, reason: Optional[str] = None) -> None:
        with self.uow_factory() as uow:
            header = self._open_header(uow, grn_id, action="voided")
            marker = f"VOIDED: {(reason or '').strip() or 'No reason provided'}"
            note = f"{header.note} | {marker}" if header.note else marker
            uow.update_grn_header(header.id, status=GRNStatus.VOID, note=note)
        log.info("grn_voided grn_id=%s document_no=%s", grn_id, header.document_no)

    def get_grn(self, grn_id: int) -> GRNDetails:
        details = self.repo.get_grn_details(int(grn_id))
        if not details:
            raise NotFoundError("GRN not found.")
        return details

    def list_grn(self, filters: GRNFilters | None = None) -> list[GRNSummary]:
        return self.repo.list_grn(filters or GRNFilters())

    def stats(self) -> GRNStats:
        return self.repo.grn_stats()
