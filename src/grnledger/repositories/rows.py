from __future__ import annotations

import sqlite3
from decimal import Decimal
from typing import Optional

from grnledger.domain.models import (
    GRNHeader,
    GRNLine,
    GRNStatus,
    InventoryMovement,
    MovementType,
    Product,
    Supplier,
    Unit,
)

# Quantities and money live in TEXT columns so Decimal values round-trip exactly.
sqlite3.register_adapter(Decimal, str)

PRODUCT_COLUMNS = "id, sku, name, unit, cost, price, reorder_level, barcode, name_en, name_si, name_ta, active"
SUPPLIER_COLUMNS = "id, name, phone, email, active"
MOVEMENT_COLUMNS = "id, product_id, quantity, type, reason, note, origin_reference, created_at"
HEADER_COLUMNS = (
    "id, supplier_id, document_no, received_by, note, status, "
    "subtotal, tax, other, total, created_at, posted_at"
)
LINE_COLUMNS = "id, grn_id, product_id, quantity, unit_cost, line_total, mrp, batch_no, expiry_date"


def dec(value) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


def opt_dec(value) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def product_from_row(r, offset: int = 0) -> Product:
    r = r[offset:]
    return Product(
        id=int(r[0]),
        sku=str(r[1]),
        name=str(r[2]),
        unit=Unit(r[3]),
        cost=dec(r[4]),
        price=dec(r[5]),
        reorder_level=dec(r[6]),
        barcode=r[7],
        name_en=r[8],
        name_si=r[9],
        name_ta=r[10],
        active=int(r[11]),
    )


def supplier_from_row(r) -> Supplier:
    return Supplier(id=int(r[0]), name=str(r[1]), phone=r[2], email=r[3], active=int(r[4]))


def movement_from_row(r) -> InventoryMovement:
    return InventoryMovement(
        id=int(r[0]),
        product_id=int(r[1]),
        quantity=dec(r[2]),
        type=MovementType(r[3]),
        reason=r[4],
        note=r[5],
        origin_reference=r[6],
        created_at=str(r[7]),
    )


def header_from_row(r) -> GRNHeader:
    return GRNHeader(
        id=int(r[0]),
        supplier_id=int(r[1]),
        document_no=str(r[2]),
        received_by=r[3],
        note=r[4],
        status=GRNStatus(r[5]),
        subtotal=dec(r[6]),
        tax=dec(r[7]),
        other=dec(r[8]),
        total=dec(r[9]),
        created_at=str(r[10]),
        posted_at=r[11],
    )


def line_from_row(r) -> GRNLine:
    return GRNLine(
        id=int(r[0]),
        grn_id=int(r[1]),
        product_id=int(r[2]),
        quantity=dec(r[3]),
        unit_cost=dec(r[4]),
        line_total=dec(r[5]),
        mrp=opt_dec(r[6]),
        batch_no=r[7],
        expiry_date=r[8],
    )
