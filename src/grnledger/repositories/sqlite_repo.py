from __future__ import annotations

import shutil
import sqlite3
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, Optional, TypeVar

from grnledger.domain.filters import GRNFilters, MovementFilters, StockFilters
from grnledger.domain.models import (
    GRNDetails,
    GRNHeader,
    GRNLine,
    GRNStats,
    GRNStatus,
    GRNSummary,
    InventoryMovement,
    MovementLogRow,
    MovementType,
    Product,
    StockRow,
    Supplier,
    Unit,
    is_low_stock,
)
from grnledger.repositories.rows import (
    HEADER_COLUMNS,
    LINE_COLUMNS,
    MOVEMENT_COLUMNS,
    PRODUCT_COLUMNS,
    SUPPLIER_COLUMNS,
    dec,
    header_from_row,
    line_from_row,
    movement_from_row,
    product_from_row,
    supplier_from_row,
)
from grnledger.repositories.unit_of_work import SqliteUnitOfWork, now_iso

T = TypeVar("T")


def _prefixed(columns: str, alias: str) -> str:
    return ", ".join(f"{alias}.{c.strip()}" for c in columns.split(","))


class SqliteRepository:
    def __init__(self, db_path: Path | str, busy_timeout: float = 5.0):
        self.db_path = str(db_path)
        self.busy_timeout = float(busy_timeout)

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def unit_of_work(self) -> SqliteUnitOfWork:
        return SqliteUnitOfWork(self.db_path, timeout=self.busy_timeout)

    def transaction(self, fn: Callable[[SqliteUnitOfWork], T]) -> T:
        """Run ``fn(uow)`` atomically and return its result."""
        with self.unit_of_work() as uow:
            return fn(uow)

    def init_db(self) -> None:
        self.run_migrations()

    # ---------- Migrations ----------
    def _migrations(self):
        return [
            (1, self._migration_v1_base),
            (2, self._migration_v2_ledger_guards),
        ]

    def _schema_version(self) -> int:
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='schema_migrations'")
            if not cur.fetchone():
                return 0
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            return int(cur.fetchone()[0])
        finally:
            conn.close()

    def run_migrations(self) -> None:
        migrations = self._migrations()
        if self._schema_version() >= max(v for v, _ in migrations):
            return

        backup_path = self._create_pre_migration_backup()
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS suppliers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                phone TEXT,
                email TEXT,
                active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1)),
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sku TEXT UNIQUE NOT NULL,
                barcode TEXT,
                name TEXT NOT NULL,
                name_en TEXT,
                name_si TEXT,
                name_ta TEXT,
                unit TEXT NOT NULL DEFAULT 'pc' CHECK(unit IN ('pc','kg')),
                cost TEXT NOT NULL DEFAULT '0',
                price TEXT NOT NULL DEFAULT '0',
                reorder_level TEXT NOT NULL DEFAULT '0',
                active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1)),
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                updated_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS inventory_movements (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                product_id INTEGER NOT NULL,
                quantity TEXT NOT NULL CHECK(CAST(quantity AS REAL) <> 0),
                type TEXT NOT NULL CHECK(type IN ('RECEIVE','ADJUST','WASTE')),
                reason TEXT,
                note TEXT,
                origin_reference TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY(product_id) REFERENCES products(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS product_stock (
                product_id INTEGER PRIMARY KEY,
                quantity TEXT NOT NULL DEFAULT '0',
                updated_at TEXT NOT NULL,
                FOREIGN KEY(product_id) REFERENCES products(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS grn_headers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                supplier_id INTEGER NOT NULL,
                document_no TEXT NOT NULL UNIQUE,
                received_by TEXT,
                note TEXT,
                status TEXT NOT NULL DEFAULT 'OPEN' CHECK(status IN ('OPEN','POSTED','VOID')),
                subtotal TEXT NOT NULL DEFAULT '0',
                tax TEXT NOT NULL DEFAULT '0',
                other TEXT NOT NULL DEFAULT '0',
                total TEXT NOT NULL DEFAULT '0',
                created_at TEXT NOT NULL,
                posted_at TEXT,
                FOREIGN KEY(supplier_id) REFERENCES suppliers(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS grn_lines (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                grn_id INTEGER NOT NULL,
                product_id INTEGER NOT NULL,
                quantity TEXT NOT NULL CHECK(CAST(quantity AS REAL) > 0),
                unit_cost TEXT NOT NULL CHECK(CAST(unit_cost AS REAL) >= 0),
                line_total TEXT NOT NULL,
                mrp TEXT,
                batch_no TEXT,
                expiry_date TEXT,
                FOREIGN KEY(grn_id) REFERENCES grn_headers(id) ON DELETE CASCADE,
                FOREIGN KEY(product_id) REFERENCES products(id)
            )
            """
        )

    def _migration_v2_ledger_guards(self, cur: sqlite3.Cursor) -> None:
        cur.execute("CREATE INDEX IF NOT EXISTS idx_movements_product ON inventory_movements(product_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_movements_origin ON inventory_movements(origin_reference)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_movements_created ON inventory_movements(created_at)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_grn_supplier ON grn_headers(supplier_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_grn_status ON grn_headers(status)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_grn_lines_grn ON grn_lines(grn_id)")

        # The ledger is append-only.
        for event in ("UPDATE", "DELETE"):
            cur.execute(
                f"""
                CREATE TRIGGER IF NOT EXISTS trg_movements_no_{event.lower()}
                BEFORE {event} ON inventory_movements
                BEGIN
                    SELECT RAISE(ABORT, 'inventory movements are immutable');
                END
                """
            )

        # Terminal headers never change again.
        cur.execute(
            """
            CREATE TRIGGER IF NOT EXISTS trg_grn_headers_terminal
            BEFORE UPDATE ON grn_headers
            WHEN OLD.status <> 'OPEN'
            BEGIN
                SELECT RAISE(ABORT, 'GRN is no longer OPEN');
            END
            """
        )

        for event, ref in (("INSERT", "NEW"), ("UPDATE", "OLD"), ("DELETE", "OLD")):
            cur.execute(
                f"""
                CREATE TRIGGER IF NOT EXISTS trg_grn_lines_open_{event.lower()}
                BEFORE {event} ON grn_lines
                WHEN (SELECT status FROM grn_headers WHERE id = {ref}.grn_id) <> 'OPEN'
                BEGIN
                    SELECT RAISE(ABORT, 'GRN lines are frozen once the GRN leaves OPEN');
                END
                """
            )

    # ---------- Suppliers ----------
    def add_supplier(self, name: str, phone: Optional[str] = None, email: Optional[str] = None) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("INSERT INTO suppliers (name, phone, email) VALUES (?, ?, ?)", (name, phone, email))
        supplier_id = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return supplier_id

    def get_supplier(self, supplier_id: int) -> Optional[Supplier]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {SUPPLIER_COLUMNS} FROM suppliers WHERE id=?", (int(supplier_id),))
        r = cur.fetchone()
        conn.close()
        return supplier_from_row(r) if r else None

    def list_suppliers(self) -> list[Supplier]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {SUPPLIER_COLUMNS} FROM suppliers WHERE active=1 ORDER BY name")
        rows = cur.fetchall()
        conn.close()
        return [supplier_from_row(r) for r in rows]

    # ---------- Products ----------
    def list_products(self) -> list[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE active=1 ORDER BY name")
        rows = cur.fetchall()
        conn.close()
        return [product_from_row(r) for r in rows]

    def get_product_by_id(self, product_id: int) -> Optional[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE active=1 AND id=?", (int(product_id),))
        r = cur.fetchone()
        conn.close()
        return product_from_row(r) if r else None

    def get_product_by_sku(self, sku: str) -> Optional[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE active=1 AND sku=?", (sku,))
        r = cur.fetchone()
        conn.close()
        return product_from_row(r) if r else None

    def get_product_any_state(self, product_id: int) -> Optional[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE id=?", (int(product_id),))
        r = cur.fetchone()
        conn.close()
        return product_from_row(r) if r else None

    def deactivate_product(self, product_id: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "UPDATE products SET active=0, updated_at=? WHERE id=? AND active=1",
            (now_iso(), int(product_id)),
        )
        changed = cur.rowcount == 1
        conn.commit()
        conn.close()
        return changed

    def update_product_pricing(self, product_id: int, price: Decimal, reorder_level: Decimal) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "UPDATE products SET price=?, reorder_level=?, updated_at=? WHERE id=? AND active=1",
            (price, reorder_level, now_iso(), int(product_id)),
        )
        changed = cur.rowcount == 1
        conn.commit()
        conn.close()
        return changed

    # ---------- Ledger ----------
    def movements_for_product(self, product_id: int) -> list[InventoryMovement]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {MOVEMENT_COLUMNS} FROM inventory_movements WHERE product_id=? ORDER BY id",
            (int(product_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [movement_from_row(r) for r in rows]

    def movements_by_origin(self, origin_reference: str) -> list[InventoryMovement]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {MOVEMENT_COLUMNS} FROM inventory_movements WHERE origin_reference=? ORDER BY id",
            (origin_reference,),
        )
        rows = cur.fetchall()
        conn.close()
        return [movement_from_row(r) for r in rows]

    def count_movements(self) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT COUNT(*) FROM inventory_movements")
        n = int(cur.fetchone()[0])
        conn.close()
        return n

    def ledger_totals(self, product_ids: Optional[Iterable[int]] = None) -> dict[int, Decimal]:
        """Fold the ledger into per-product quantities."""
        sql = "SELECT product_id, quantity FROM inventory_movements"
        params: list = []
        ids = [int(p) for p in product_ids] if product_ids is not None else None
        if ids is not None:
            if not ids:
                return {}
            sql += f" WHERE product_id IN ({','.join('?' for _ in ids)})"
            params.extend(ids)

        conn = self._conn()
        cur = conn.cursor()
        cur.execute(sql, params)
        rows = cur.fetchall()
        conn.close()

        totals: dict[int, Decimal] = defaultdict(lambda: Decimal("0"))
        for pid, qty in rows:
            totals[int(pid)] += dec(qty)
        return dict(totals)

    def cached_stock(self, product_ids: Optional[Iterable[int]] = None) -> dict[int, Decimal]:
        sql = "SELECT product_id, quantity FROM product_stock"
        params: list = []
        ids = [int(p) for p in product_ids] if product_ids is not None else None
        if ids is not None:
            if not ids:
                return {}
            sql += f" WHERE product_id IN ({','.join('?' for _ in ids)})"
            params.extend(ids)

        conn = self._conn()
        cur = conn.cursor()
        cur.execute(sql, params)
        rows = cur.fetchall()
        conn.close()
        return {int(pid): dec(qty) for pid, qty in rows}

    def movement_logs(self, filters: MovementFilters) -> list[MovementLogRow]:
        sql = """
            SELECT m.id, m.created_at, m.type, p.sku, COALESCE(p.name_en, p.name),
                   m.quantity, m.reason, m.note, m.origin_reference
            FROM inventory_movements m
            JOIN products p ON p.id = m.product_id
            WHERE 1=1
        """
        params: list = []
        if filters.from_date:
            sql += " AND date(m.created_at) >= ?"
            params.append(filters.from_date)
        if filters.to_date:
            sql += " AND date(m.created_at) <= ?"
            params.append(filters.to_date)
        if filters.type is not None:
            sql += " AND m.type = ?"
            params.append(MovementType(filters.type).value)
        if filters.sku:
            sql += " AND p.sku LIKE ?"
            params.append(f"%{filters.sku}%")
        if filters.reason:
            sql += " AND m.reason LIKE ?"
            params.append(f"%{filters.reason}%")
        sql += " ORDER BY m.created_at DESC, m.id DESC"
        if filters.limit or filters.offset:
            sql += " LIMIT ? OFFSET ?"
            params.extend([int(filters.limit) if filters.limit else -1, int(filters.offset or 0)])

        conn = self._conn()
        cur = conn.cursor()
        cur.execute(sql, params)
        rows = cur.fetchall()
        conn.close()
        return [
            MovementLogRow(
                id=int(r[0]),
                created_at=str(r[1]),
                type=MovementType(r[2]),
                sku=str(r[3]),
                name=str(r[4]),
                quantity=dec(r[5]),
                reason=r[6],
                note=r[7],
                origin_reference=r[8],
            )
            for r in rows
        ]

    def stock_rows(self, filters: StockFilters) -> list[StockRow]:
        sql = f"""
            SELECT {_prefixed(PRODUCT_COLUMNS, 'p')}, COALESCE(ps.quantity, '0')
            FROM products p
            LEFT JOIN product_stock ps ON ps.product_id = p.id
            WHERE 1=1
        """
        params: list = []
        if filters.search:
            sql += " AND (p.sku LIKE ? OR p.barcode LIKE ? OR p.name LIKE ? OR p.name_en LIKE ?)"
            term = f"%{filters.search}%"
            params.extend([term, term, term, term])
        if filters.unit is not None:
            sql += " AND p.unit = ?"
            params.append(Unit(filters.unit).value)
        if filters.active is not None:
            sql += " AND p.active = ?"
            params.append(1 if filters.active else 0)
        sql += " ORDER BY COALESCE(p.name_en, p.name), p.id"

        conn = self._conn()
        cur = conn.cursor()
        cur.execute(sql, params)
        rows = cur.fetchall()
        conn.close()

        out: list[StockRow] = []
        for r in rows:
            product = product_from_row(r)
            current = dec(r[12])
            out.append(
                StockRow(
                    product_id=product.id,
                    sku=product.sku,
                    name=product.name_en or product.name,
                    unit=product.unit,
                    current_stock=current,
                    reorder_level=product.reorder_level,
                    is_low_stock=is_low_stock(current, product.reorder_level),
                    active=product.active,
                )
            )

        # Low-stock is derived, so paging happens after that filter.
        if filters.low_stock_only:
            out = [row for row in out if row.is_low_stock]
        start = int(filters.offset or 0)
        end = start + int(filters.limit) if filters.limit else None
        return out[start:end]

    # ---------- GRN ----------
    def get_grn_header(self, grn_id: int) -> Optional[GRNHeader]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {HEADER_COLUMNS} FROM grn_headers WHERE id=?", (int(grn_id),))
        r = cur.fetchone()
        conn.close()
        return header_from_row(r) if r else None

    def grn_lines_with_products(self, grn_id: int) -> list[tuple[GRNLine, Product]]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {_prefixed(LINE_COLUMNS, 'l')}, {_prefixed(PRODUCT_COLUMNS, 'p')}
            FROM grn_lines l
            JOIN products p ON p.id = l.product_id
            WHERE l.grn_id = ?
            ORDER BY l.id
            """,
            (int(grn_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [(line_from_row(r), product_from_row(r, offset=9)) for r in rows]

    def get_grn_details(self, grn_id: int) -> Optional[GRNDetails]:
        header = self.get_grn_header(grn_id)
        if header is None:
            return None
        supplier = self.get_supplier(header.supplier_id)
        if supplier is None:
            return None
        return GRNDetails(header=header, supplier=supplier, lines=self.grn_lines_with_products(grn_id))

    def list_grn(self, filters: GRNFilters) -> list[GRNSummary]:
        sql = f"""
            SELECT {_prefixed(HEADER_COLUMNS, 'g')}, s.name, COUNT(l.id)
            FROM grn_headers g
            LEFT JOIN suppliers s ON s.id = g.supplier_id
            LEFT JOIN grn_lines l ON l.grn_id = g.id
            WHERE 1=1
        """
        params: list = []
        if filters.q:
            sql += " AND (g.document_no LIKE ? OR s.name LIKE ?)"
            term = f"%{filters.q}%"
            params.extend([term, term])
        if filters.supplier_id is not None:
            sql += " AND g.supplier_id = ?"
            params.append(int(filters.supplier_id))
        if filters.status is not None:
            sql += " AND g.status = ?"
            params.append(GRNStatus(filters.status).value)
        if filters.date_from:
            sql += " AND date(g.created_at) >= ?"
            params.append(filters.date_from)
        if filters.date_to:
            sql += " AND date(g.created_at) <= ?"
            params.append(filters.date_to)
        sql += " GROUP BY g.id ORDER BY g.created_at DESC, g.id DESC"
        if filters.limit:
            sql += " LIMIT ?"
            params.append(int(filters.limit))

        conn = self._conn()
        cur = conn.cursor()
        cur.execute(sql, params)
        rows = cur.fetchall()
        conn.close()
        return [GRNSummary(header=header_from_row(r), supplier_name=r[12], line_count=int(r[13])) for r in rows]

    def grn_stats(self) -> GRNStats:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT status, total FROM grn_headers")
        rows = cur.fetchall()
        conn.close()

        counts = {status: 0 for status in GRNStatus}
        posted_value = Decimal("0")
        for status, total in rows:
            st = GRNStatus(status)
            counts[st] += 1
            if st is GRNStatus.POSTED:
                posted_value += dec(total)
        return GRNStats(
            total=len(rows),
            open=counts[GRNStatus.OPEN],
            posted=counts[GRNStatus.POSTED],
            void=counts[GRNStatus.VOID],
            posted_value=posted_value,
        )

    # ---------- Operations ----------
    def integrity_check(self) -> str:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("PRAGMA integrity_check")
        row = cur.fetchone()
        conn.close()
        return str(row[0]) if row else "unknown"

    def orphan_movement_count(self) -> int:
        """Movements whose origin is a GRN that is not POSTED."""
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT COUNT(*)
            FROM inventory_movements m
            JOIN grn_headers g ON g.document_no = m.origin_reference
            WHERE g.status <> 'POSTED'
            """
        )
        n = int(cur.fetchone()[0])
        conn.close()
        return n
