from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from grnledger.config import LedgerSettings
from grnledger.repositories.sqlite_repo import SqliteRepository
from grnledger.services.catalog_service import CatalogService
from grnledger.services.excel_service import ExcelService
from grnledger.services.grn_service import GRNService
from grnledger.services.label_service import LabelService
from grnledger.services.ledger_service import LedgerService
from grnledger.services.numbering_service import NumberingService
from grnledger.services.operations_service import OperationsService
from grnledger.services.posting_service import PostingEngine
from grnledger.services.stock_service import StockService


@dataclass(frozen=True)
class AppContainer:
    settings: LedgerSettings
    repo: SqliteRepository
    ledger: LedgerService
    stock: StockService
    numbering: NumberingService
    posting: PostingEngine
    grns: GRNService
    labels: LabelService
    catalog: CatalogService
    excel: ExcelService
    operations: OperationsService


def build_container(
    db_path: Path | str,
    settings: LedgerSettings | None = None,
    clock: Callable[[], datetime] | None = None,
) -> AppContainer:
    settings = settings or LedgerSettings()
    repo = SqliteRepository(db_path, busy_timeout=settings.busy_timeout)
    repo.init_db()

    ledger = LedgerService(repo, kg_decimals=settings.kg_decimals)
    stock = StockService(repo)
    numbering = NumberingService(repo, clock=clock)
    posting = PostingEngine(repo, ledger, default_policy=settings.default_cost_policy)
    grns = GRNService(repo, numbering, posting, kg_decimals=settings.kg_decimals)
    labels = LabelService(repo, default_language=settings.label_language)
    catalog = CatalogService(repo, ledger)
    excel = ExcelService(repo, grns, stock)
    operations = OperationsService(repo, db_path=db_path, logs_dir=Path(db_path).parent / "logs")

    return AppContainer(
        settings=settings,
        repo=repo,
        ledger=ledger,
        stock=stock,
        numbering=numbering,
        posting=posting,
        grns=grns,
        labels=labels,
        catalog=catalog,
        excel=excel,
        operations=operations,
    )
