from __future__ import annotations

import logging
from pathlib import Path

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from grnledger.domain.errors import InvalidStateError, NotFoundError, ReferentialError, ValidationError
from grnledger.domain.filters import StockFilters
from grnledger.domain.models import GRNLineInput, GRNStatus
from grnledger.domain.quantities import to_decimal

log = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("sku", "qty", "unit_cost")
OPTIONAL_COLUMNS = ("mrp", "batch_no", "expiry_date")


class ExcelService:
    def __init__(self, repo, grn_service, stock_service):
        self.repo = repo
        self.grns = grn_service
        self.stock = stock_service

    def import_grn_lines(self, grn_id: int, path: str | Path) -> tuple[int, int]:
        """
        Supplier delivery note as lines of an OPEN GRN.
        Headers:
          sku | qty | unit_cost | mrp | batch_no | expiry_date
        The last three are optional.
        """
        header = self.repo.get_grn_header(int(grn_id))
        if not header:
            raise NotFoundError("GRN not found.")
        if header.status is not GRNStatus.OPEN:
            raise InvalidStateError(f"Only OPEN GRNs can be modified. {header.document_no} is {header.status.value}.")

        wb = load_workbook(path)
        ws = wb.active

        headers = {}
        for col in range(1, ws.max_column + 1):
            v = ws.cell(row=1, column=col).value
            if isinstance(v, str):
                headers[v.strip().lower()] = col

        for r in REQUIRED_COLUMNS:
            if r not in headers:
                raise ValidationError(f"Missing column header: {r}")

        def cell(row: int, name: str):
            col = headers.get(name)
            return ws.cell(row=row, column=col).value if col else None

        ok = 0
        skipped = 0

        for row in range(2, ws.max_row + 1):
            sku = cell(row, "sku")
            qty = cell(row, "qty")
            unit_cost = cell(row, "unit_cost")
            if not sku or qty is None or unit_cost is None:
                skipped += 1
                continue

            try:
                product = self.repo.get_product_by_sku(str(sku).strip())
                if not product:
                    raise ReferentialError(f"Unknown SKU {sku}")

                mrp = cell(row, "mrp")
                batch_no = cell(row, "batch_no")
                self.grns.upsert_line(
                    GRNLineInput(
                        grn_id=header.id,
                        product_id=product.id,
                        quantity=to_decimal(qty, "Quantity"),
                        unit_cost=to_decimal(unit_cost, "Unit cost"),
                        mrp=to_decimal(mrp, "MRP") if mrp is not None else None,
                        batch_no=str(batch_no).strip() if batch_no is not None else None,
                        expiry_date=cell(row, "expiry_date"),
                    )
                )
                ok += 1
            except (ValidationError, ReferentialError) as e:
                log.warning("Excel import skipped row %s: %s", row, e)
                skipped += 1

        log.info("grn_lines_imported grn_id=%s ok=%s skipped=%s", grn_id, ok, skipped)
        return ok, skipped

    def export_stock_rows(self, path: str | Path, filters: StockFilters | None = None) -> Path:
        rows = self.stock.get_stock_rows(filters)

        wb = Workbook()
        ws = wb.active
        ws.title = "Stock"
        ws.append(["Product ID", "SKU", "Name", "Unit", "Current Stock", "Reorder Level", "Low Stock"])
        for c in ws[1]:
            c.font = Font(bold=True)

        for r in rows:
            ws.append([
                r.product_id, r.sku, r.name, r.unit.value,
                float(r.current_stock), float(r.reorder_level),
                "YES" if r.is_low_stock else "",
            ])
            ws[f"E{ws.max_row}"].number_format = "#,##0.000"
            ws[f"F{ws.max_row}"].number_format = "#,##0.000"

        ws.freeze_panes = "A2"
        for col, w in {"A": 12, "B": 16, "C": 34, "D": 6, "E": 16, "F": 16, "G": 10}.items():
            ws.column_dimensions[col].width = w
        if ws.max_row >= 2:
            tab = Table(displayName="StockRows", ref=f"A1:{get_column_letter(7)}{ws.max_row}")
            tab.tableStyleInfo = TableStyleInfo(name="TableStyleMedium9", showRowStripes=True, showColumnStripes=False)
            ws.add_table(tab)

        out = Path(path)
        wb.save(out)
        return out
