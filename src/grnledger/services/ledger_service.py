from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable, Iterable, Optional

from grnledger.domain.errors import InvalidStateError, ReferentialError, ValidationError
from grnledger.domain.filters import MovementFilters
from grnledger.domain.models import GRNStatus, MovementLogRow, MovementType, StocktakeDiff, Unit
from grnledger.domain.quantities import to_decimal, validate_quantity
from grnledger.repositories.contracts import UnitOfWork

log = logging.getLogger("grnledger.ledger")

ADJUSTMENT_REASONS = ("Stocktake", "Damage", "Expired", "Theft", "Other")


def _movement_type(value) -> MovementType:
    try:
        return MovementType(value)
    except ValueError as e:
        raise ValidationError(f"Unknown movement type: {value!r}") from e


def normalize_quantity(quantity, movement_type: MovementType) -> Decimal:
    qty = to_decimal(quantity, "Quantity")
    if qty == 0:
        raise ValidationError("Quantity must be non-zero.")
    if movement_type is MovementType.RECEIVE and qty < 0:
        raise ValidationError("RECEIVE quantity must be > 0.")
    if movement_type is MovementType.WASTE:
        return -abs(qty)
    return qty


class LedgerService:
    """Append-only movement log; the only writer of stock."""

    def __init__(self, repo, kg_decimals: int = 3, uow_factory: Callable[[], UnitOfWork] | None = None):
        self.repo = repo
        self.kg_decimals = kg_decimals
        self.uow_factory = uow_factory or repo.unit_of_work

    def record(
        self,
        product_id: int,
        quantity,
        movement_type,
        reason: Optional[str] = None,
        note: Optional[str] = None,
        origin: Optional[str] = None,
        uow: UnitOfWork | None = None,
    ) -> int:
        mtype = _movement_type(movement_type)
        qty = normalize_quantity(quantity, mtype)

        if uow is not None:
            movement_id = self._append(uow, int(product_id), qty, mtype, reason, note, origin)
        else:
            with self.uow_factory() as own:
                movement_id = self._append(own, int(product_id), qty, mtype, reason, note, origin)
        log.info(
            "movement_recorded id=%s product_id=%s type=%s qty=%s origin=%s",
            movement_id, product_id, mtype.value, qty, origin,
        )
        return movement_id

    def _append(
        self,
        uow: UnitOfWork,
        product_id: int,
        qty: Decimal,
        mtype: MovementType,
        reason: Optional[str],
        note: Optional[str],
        origin: Optional[str],
    ) -> int:
        product = uow.get_product(product_id)
        if not product:
            raise ReferentialError(f"Product not found/active: {product_id}")
        validate_quantity(abs(qty), product.unit, self.kg_decimals)
        if origin:
            header = uow.get_grn_header_by_document_no(origin)
            # GRN stock only lands through posting, which flips the header first.
            if header is not None and header.status is not GRNStatus.POSTED:
                raise InvalidStateError(
                    f"Movements cannot reference {origin} while it is {header.status.value}."
                )
        return uow.append_movement(product_id, qty, mtype, reason, note, origin)

    def _resolve_product_id(self, uow: UnitOfWork, item: dict) -> int:
        if item.get("product_id") is not None:
            return int(item["product_id"])
        sku = str(item.get("sku") or "").strip()
        product = uow.get_product_by_sku(sku) if sku else None
        if not product:
            raise ReferentialError(f"Product not found for SKU: {sku or '<empty>'}")
        return product.id

    def post_adjust_batch(self, lines: Iterable[dict], mode, reason: str) -> list[int]:
        """
        lines: [{product_id | sku, qty, note?}]

        ADJUST keeps the caller's sign; WASTE is always written negative.
        """
        mtype = _movement_type(mode)
        if mtype is MovementType.RECEIVE:
            raise ValidationError("Batch mode must be ADJUST or WASTE.")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Reason is required.")

        valid = [it for it in lines if to_decimal(it.get("qty"), "Quantity") != 0]
        if not valid:
            raise ValidationError("No valid lines to adjust.")

        ids: list[int] = []
        with self.uow_factory() as uow:
            for it in valid:
                pid = self._resolve_product_id(uow, it)
                qty = normalize_quantity(it.get("qty"), mtype)
                ids.append(self._append(uow, pid, qty, mtype, reason, it.get("note"), None))
        log.info("adjust_batch_posted mode=%s lines=%s reason=%s", mtype.value, len(ids), reason)
        return ids

    def calculate_stocktake_differences(self, counted: Iterable[dict]) -> list[StocktakeDiff]:
        """
        counted: [{sku, counted_qty, note?}]

        Unknown SKUs are skipped.
        """
        diffs: list[StocktakeDiff] = []
        for row in counted:
            product = self.repo.get_product_by_sku(str(row.get("sku") or "").strip())
            if not product:
                continue
            counted_qty = to_decimal(row.get("counted_qty"), "Counted quantity")
            if counted_qty < 0:
                raise ValidationError(f"Counted quantity must be >= 0 for {product.sku}.")
            current = self.repo.ledger_totals([product.id]).get(product.id, Decimal("0"))
            diffs.append(
                StocktakeDiff(
                    product_id=product.id,
                    sku=product.sku,
                    name=product.name_en or product.name,
                    unit=Unit(product.unit),
                    current_stock=current,
                    counted_qty=counted_qty,
                    delta=counted_qty - current,
                    note=row.get("note"),
                )
            )
        return diffs

    def apply_stocktake_differences(self, diffs: Iterable[StocktakeDiff]) -> list[int]:
        valid = [d for d in diffs if d.delta != 0]
        if not valid:
            raise ValidationError("No differences to apply.")

        ids: list[int] = []
        with self.uow_factory() as uow:
            for d in valid:
                note = d.note or f"Stocktake: {d.current_stock} -> {d.counted_qty}"
                ids.append(self._append(uow, d.product_id, d.delta, MovementType.ADJUST, "Stocktake", note, None))
        log.info("stocktake_applied lines=%s", len(ids))
        return ids

    def movement_logs(self, filters: MovementFilters | None = None) -> list[MovementLogRow]:
        return self.repo.movement_logs(filters or MovementFilters())

    def adjustment_reasons(self) -> list[str]:
        return list(ADJUSTMENT_REASONS)

    def validate_quantity(self, quantity, unit) -> Decimal:
        qty = to_decimal(quantity, "Quantity")
        validate_quantity(qty, unit, self.kg_decimals)
        return qty
