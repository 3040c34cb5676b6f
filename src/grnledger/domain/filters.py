from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from grnledger.domain.models import GRNStatus, MovementType, Unit


@dataclass(frozen=True)
class GRNFilters:
    q: Optional[str] = None
    supplier_id: Optional[int] = None
    status: Optional[GRNStatus] = None
    date_from: Optional[str] = None  # YYYY-MM-DD, inclusive
    date_to: Optional[str] = None  # YYYY-MM-DD, inclusive
    limit: Optional[int] = None


@dataclass(frozen=True)
class StockFilters:
    search: Optional[str] = None
    unit: Optional[Unit] = None
    active: Optional[bool] = None
    low_stock_only: bool = False
    limit: Optional[int] = None
    offset: Optional[int] = None


@dataclass(frozen=True)
class MovementFilters:
    from_date: Optional[str] = None
    to_date: Optional[str] = None
    type: Optional[MovementType] = None
    sku: Optional[str] = None
    reason: Optional[str] = None
    limit: Optional[int] = None
    offset: Optional[int] = None
