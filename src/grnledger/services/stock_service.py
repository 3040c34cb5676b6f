from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional

from grnledger.domain.errors import NotFoundError
from grnledger.domain.filters import StockFilters
from grnledger.domain.models import StockRow, is_low_stock


class StockService:
    """Read side of the ledger.

    ``stock_of`` folds the movement log directly; list views read the cached
    ``product_stock`` counter, which the ledger keeps in step on every append.
    """

    def __init__(self, repo):
        self.repo = repo

    def _product(self, product_id: int):
        product = self.repo.get_product_any_state(int(product_id))
        if not product:
            raise NotFoundError("Product not found.")
        return product

    def stock_of(self, product_id: int) -> Decimal:
        product = self._product(product_id)
        return self.repo.ledger_totals([product.id]).get(product.id, Decimal("0"))

    def is_low_stock(self, product_id: int) -> bool:
        product = self._product(product_id)
        current = self.repo.ledger_totals([product.id]).get(product.id, Decimal("0"))
        return is_low_stock(current, product.reorder_level)

    def stock_map(self, product_ids: Optional[Iterable[int]] = None) -> dict[int, Decimal]:
        return self.repo.ledger_totals(product_ids)

    def get_stock_rows(self, filters: StockFilters | None = None) -> list[StockRow]:
        return self.repo.stock_rows(filters or StockFilters())
