from .ledger_service import LedgerService
from .stock_service import StockService
from .numbering_service import NumberingService
from .posting_service import PostingEngine
from .grn_service import GRNService
from .label_service import LabelService
from .catalog_service import CatalogService
from .excel_service import ExcelService
from .operations_service import OperationsService

__all__ = [
    "LedgerService",
    "StockService",
    "NumberingService",
    "PostingEngine",
    "GRNService",
    "LabelService",
    "CatalogService",
    "ExcelService",
    "OperationsService",
]
