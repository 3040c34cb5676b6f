from __future__ import annotations

import json
import logging
import zipfile
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from grnledger.domain.filters import GRNFilters
from grnledger.domain.models import GRNStatus


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockDrift:
    product_id: int
    cached: Decimal
    ledger: Decimal


@dataclass(frozen=True)
class HealthReport:
    sqlite_integrity: str
    orphan_movements: int
    open_grns: int
    generated_at: str
    stock_drift: list[StockDrift] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.sqlite_integrity == "ok" and not self.stock_drift and self.orphan_movements == 0


class OperationsService:
    def __init__(self, repo, db_path: Path | str, logs_dir: Path | str):
        self.repo = repo
        self.db_path = Path(db_path)
        self.logs_dir = Path(logs_dir)

    def stock_drift(self) -> list[StockDrift]:
        # Both sides from one snapshot; a post landing in between would look like drift.
        with self.repo.unit_of_work() as uow:
            ledger = uow.ledger_totals()
            cached = uow.cached_stock()
        drift = []
        for pid in sorted(set(ledger) | set(cached)):
            a = cached.get(pid, Decimal("0"))
            b = ledger.get(pid, Decimal("0"))
            if a != b:
                drift.append(StockDrift(product_id=pid, cached=a, ledger=b))
        return drift

    def run_health_check(self) -> HealthReport:
        report = HealthReport(
            sqlite_integrity=self.repo.integrity_check(),
            orphan_movements=self.repo.orphan_movement_count(),
            open_grns=len(self.repo.list_grn(GRNFilters(status=GRNStatus.OPEN))),
            generated_at=datetime.now().isoformat(timespec="seconds"),
            stock_drift=self.stock_drift(),
        )
        if not report.ok:
            log.error(
                "health_check_failed integrity=%s drift=%s orphans=%s",
                report.sqlite_integrity, len(report.stock_drift), report.orphan_movements,
            )
        return report

    def rebuild_stock_projection(self) -> int:
        """Recompute the cached counter from the ledger; returns rows written."""
        with self.repo.unit_of_work() as uow:
            totals = uow.ledger_totals()
            uow.replace_stock_projection(totals)
        log.warning("stock_projection_rebuilt products=%s", len(totals))
        return len(totals)

    def export_diagnostics(self, target_dir: Path | str | None = None) -> Path:
        out_dir = Path(target_dir) if target_dir else self.db_path.parent
        out_dir.mkdir(parents=True, exist_ok=True)

        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        zip_path = out_dir / f"diagnostics_{ts}.zip"
        report = self.run_health_check()

        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            if self.db_path.exists():
                zf.write(self.db_path, arcname=self.db_path.name)

            if self.logs_dir.exists():
                for f in sorted(self.logs_dir.glob("*.log")):
                    zf.write(f, arcname=f"logs/{f.name}")

            zf.writestr("health_report.json", json.dumps(asdict(report), ensure_ascii=False, indent=2, default=str))

        log.info("diagnostics_exported path=%s", zip_path)
        return zip_path
