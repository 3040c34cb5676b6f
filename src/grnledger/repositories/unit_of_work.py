from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from decimal import Decimal
from typing import Optional

from grnledger.domain.errors import PersistenceError
from grnledger.domain.models import GRNHeader, GRNLine, MovementType, Product, Supplier, Unit
from grnledger.repositories.rows import (
    HEADER_COLUMNS,
    LINE_COLUMNS,
    PRODUCT_COLUMNS,
    SUPPLIER_COLUMNS,
    dec,
    header_from_row,
    line_from_row,
    product_from_row,
    supplier_from_row,
)

log = logging.getLogger(__name__)

_HEADER_FIELDS = {"supplier_id", "received_by", "note", "status", "subtotal", "tax", "other", "total", "posted_at"}


def now_iso() -> str:
    return datetime.now().replace(microsecond=0).isoformat(sep=" ")


class SqliteUnitOfWork:
    """Atomic write scope over one SQLite connection.

    ``BEGIN IMMEDIATE`` takes the database write lock before the first read,
    so read-then-write sequences (status checks, document numbering, stock
    counters) are serialized against every other unit of work. Leaving the
    block commits; any exception rolls back and propagates, with raw
    ``sqlite3.Error`` translated to ``PersistenceError``.
    """

    def __init__(self, db_path: str, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout
        self._conn: Optional[sqlite3.Connection] = None

    def __enter__(self) -> "SqliteUnitOfWork":
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
            conn.execute("PRAGMA foreign_keys = ON;")
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not open transaction: {e}") from e
        self._conn = conn
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        conn = self._conn
        self._conn = None
        if conn is None:
            return None
        try:
            if exc_type is None:
                try:
                    conn.execute("COMMIT")
                except sqlite3.Error as e:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise PersistenceError(f"Commit failed: {e}") from e
                return None

            if conn.in_transaction:
                conn.execute("ROLLBACK")
            log.warning("transaction_rolled_back error=%s", exc)
            if isinstance(exc, sqlite3.Error):
                raise PersistenceError(f"Transaction aborted: {exc}") from exc
            return None
        finally:
            conn.close()

    @property
    def cur(self) -> sqlite3.Cursor:
        if self._conn is None:
            raise PersistenceError("Unit of work is not active.")
        return self._conn.cursor()

    # ---------- Catalog ----------
    def get_product(self, product_id: int) -> Optional[Product]:
        cur = self.cur
        cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE active=1 AND id=?", (int(product_id),))
        r = cur.fetchone()
        return product_from_row(r) if r else None

    def get_product_by_sku(self, sku: str) -> Optional[Product]:
        cur = self.cur
        cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE active=1 AND sku=?", (sku,))
        r = cur.fetchone()
        return product_from_row(r) if r else None

    def get_supplier(self, supplier_id: int) -> Optional[Supplier]:
        cur = self.cur
        cur.execute(f"SELECT {SUPPLIER_COLUMNS} FROM suppliers WHERE active=1 AND id=?", (int(supplier_id),))
        r = cur.fetchone()
        return supplier_from_row(r) if r else None

    def insert_product(
        self,
        sku: str,
        name: str,
        unit: Unit,
        cost: Decimal,
        price: Decimal,
        reorder_level: Decimal,
        barcode: Optional[str] = None,
        name_en: Optional[str] = None,
        name_si: Optional[str] = None,
        name_ta: Optional[str] = None,
    ) -> int:
        cur = self.cur
        cur.execute(
            """
            INSERT INTO products (sku, barcode, name, name_en, name_si, name_ta, unit, cost, price, reorder_level)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (sku, barcode, name, name_en, name_si, name_ta, Unit(unit).value, cost, price, reorder_level),
        )
        return int(cur.lastrowid)

    def update_product_cost(self, product_id: int, cost: Decimal) -> None:
        cur = self.cur
        cur.execute(
            "UPDATE products SET cost=?, updated_at=? WHERE id=? AND active=1",
            (Decimal(cost), now_iso(), int(product_id)),
        )
        if cur.rowcount != 1:
            raise PersistenceError(f"Cost update touched {cur.rowcount} rows for product {product_id}.")

    # ---------- Ledger ----------
    def append_movement(
        self,
        product_id: int,
        quantity: Decimal,
        movement_type: MovementType,
        reason: Optional[str],
        note: Optional[str],
        origin_reference: Optional[str],
    ) -> int:
        created_at = now_iso()
        cur = self.cur
        cur.execute(
            """
            INSERT INTO inventory_movements (product_id, quantity, type, reason, note, origin_reference, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (int(product_id), Decimal(quantity), MovementType(movement_type).value, reason, note, origin_reference, created_at),
        )
        movement_id = int(cur.lastrowid)

        # Cached counter moves in the same transaction as the append.
        cur.execute("SELECT quantity FROM product_stock WHERE product_id=?", (int(product_id),))
        row = cur.fetchone()
        current = dec(row[0]) if row else Decimal("0")
        cur.execute(
            """
            INSERT INTO product_stock (product_id, quantity, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(product_id) DO UPDATE SET quantity=excluded.quantity, updated_at=excluded.updated_at
            """,
            (int(product_id), current + Decimal(quantity), created_at),
        )
        return movement_id

    def ledger_totals(self) -> dict[int, Decimal]:
        cur = self.cur
        cur.execute("SELECT product_id, quantity FROM inventory_movements")
        totals: dict[int, Decimal] = {}
        for pid, qty in cur.fetchall():
            totals[int(pid)] = totals.get(int(pid), Decimal("0")) + dec(qty)
        return totals

    def cached_stock(self) -> dict[int, Decimal]:
        cur = self.cur
        cur.execute("SELECT product_id, quantity FROM product_stock")
        return {int(pid): dec(qty) for pid, qty in cur.fetchall()}

    def replace_stock_projection(self, totals: dict[int, Decimal]) -> None:
        cur = self.cur
        ts = now_iso()
        cur.execute("DELETE FROM product_stock")
        cur.executemany(
            "INSERT INTO product_stock (product_id, quantity, updated_at) VALUES (?, ?, ?)",
            [(int(pid), Decimal(qty), ts) for pid, qty in totals.items()],
        )

    # ---------- GRN ----------
    def latest_document_no(self) -> Optional[str]:
        cur = self.cur
        cur.execute("SELECT document_no FROM grn_headers ORDER BY id DESC LIMIT 1")
        r = cur.fetchone()
        return str(r[0]) if r and r[0] is not None else None

    def get_grn_header(self, grn_id: int) -> Optional[GRNHeader]:
        cur = self.cur
        cur.execute(f"SELECT {HEADER_COLUMNS} FROM grn_headers WHERE id=?", (int(grn_id),))
        r = cur.fetchone()
        return header_from_row(r) if r else None

    def get_grn_header_by_document_no(self, document_no: str) -> Optional[GRNHeader]:
        cur = self.cur
        cur.execute(f"SELECT {HEADER_COLUMNS} FROM grn_headers WHERE document_no=?", (document_no,))
        r = cur.fetchone()
        return header_from_row(r) if r else None

    def insert_grn_header(
        self,
        supplier_id: int,
        document_no: str,
        received_by: Optional[str],
        note: Optional[str],
    ) -> int:
        cur = self.cur
        cur.execute(
            """
            INSERT INTO grn_headers (
                supplier_id, document_no, received_by, note, status, subtotal, tax, other, total, created_at
            ) VALUES (?, ?, ?, ?, 'OPEN', '0', '0', '0', '0', ?)
            """,
            (int(supplier_id), document_no, received_by, note, now_iso()),
        )
        return int(cur.lastrowid)

    def update_grn_header(self, grn_id: int, **fields) -> None:
        unknown = set(fields) - _HEADER_FIELDS
        if unknown:
            raise ValueError(f"Unknown GRN header fields: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(f"{name}=?" for name in fields)
        values = [getattr(v, "value", v) for v in fields.values()]
        cur = self.cur
        cur.execute(f"UPDATE grn_headers SET {assignments} WHERE id=?", (*values, int(grn_id)))

    def grn_lines(self, grn_id: int) -> list[GRNLine]:
        cur = self.cur
        cur.execute(f"SELECT {LINE_COLUMNS} FROM grn_lines WHERE grn_id=? ORDER BY id", (int(grn_id),))
        return [line_from_row(r) for r in cur.fetchall()]

    def get_grn_line(self, line_id: int) -> Optional[GRNLine]:
        cur = self.cur
        cur.execute(f"SELECT {LINE_COLUMNS} FROM grn_lines WHERE id=?", (int(line_id),))
        r = cur.fetchone()
        return line_from_row(r) if r else None

    def insert_grn_line(
        self,
        grn_id: int,
        product_id: int,
        quantity: Decimal,
        unit_cost: Decimal,
        line_total: Decimal,
        mrp: Optional[Decimal],
        batch_no: Optional[str],
        expiry_date: Optional[str],
    ) -> int:
        cur = self.cur
        cur.execute(
            """
            INSERT INTO grn_lines (grn_id, product_id, quantity, unit_cost, line_total, mrp, batch_no, expiry_date)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (int(grn_id), int(product_id), quantity, unit_cost, line_total, mrp, batch_no, expiry_date),
        )
        return int(cur.lastrowid)

    def update_grn_line(
        self,
        line_id: int,
        product_id: int,
        quantity: Decimal,
        unit_cost: Decimal,
        line_total: Decimal,
        mrp: Optional[Decimal],
        batch_no: Optional[str],
        expiry_date: Optional[str],
    ) -> None:
        cur = self.cur
        cur.execute(
            """
            UPDATE grn_lines
            SET product_id=?, quantity=?, unit_cost=?, line_total=?, mrp=?, batch_no=?, expiry_date=?
            WHERE id=?
            """,
            (int(product_id), quantity, unit_cost, line_total, mrp, batch_no, expiry_date, int(line_id)),
        )

    def delete_grn_line(self, line_id: int) -> int:
        cur = self.cur
        cur.execute("DELETE FROM grn_lines WHERE id=?", (int(line_id),))
        return int(cur.rowcount)
