from __future__ import annotations

import sqlite3
from typing import Callable, Optional

from grnledger.domain.errors import NotFoundError, ValidationError
from grnledger.domain.models import MovementType, Product, Supplier, Unit
from grnledger.domain.quantities import to_decimal, validate_quantity
from grnledger.repositories.contracts import UnitOfWork


class CatalogService:
    def __init__(self, repo, ledger, uow_factory: Callable[[], UnitOfWork] | None = None):
        self.repo = repo
        self.ledger = ledger
        self.uow_factory = uow_factory or repo.unit_of_work

    def list_products(self) -> list[Product]:
        return self.repo.list_products()

    def list_suppliers(self) -> list[Supplier]:
        return self.repo.list_suppliers()

    def get_product_by_sku(self, sku: str) -> Product:
        p = self.repo.get_product_by_sku((sku or "").strip())
        if not p:
            raise NotFoundError("Product not found.")
        return p

    def add_supplier(self, name: str, phone: Optional[str] = None, email: Optional[str] = None) -> int:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Supplier name is required.")
        return self.repo.add_supplier(name, (phone or "").strip() or None, (email or "").strip() or None)

    def add_product(
        self,
        sku: str,
        name: str,
        unit: str = "pc",
        cost=0,
        price=1,
        reorder_level=0,
        barcode: Optional[str] = None,
        name_en: Optional[str] = None,
        name_si: Optional[str] = None,
        name_ta: Optional[str] = None,
        opening_stock=0,
    ) -> int:
        sku = (sku or "").strip()
        name = (name or "").strip()
        if not sku or not name:
            raise ValidationError("SKU and Name are required.")
        try:
            unit = Unit(unit)
        except ValueError as e:
            raise ValidationError(f"Unit must be 'pc' or 'kg'. Received: {unit!r}") from e

        cost = to_decimal(cost, "Cost")
        price = to_decimal(price, "Price")
        reorder_level = to_decimal(reorder_level, "Reorder level")
        opening_stock = to_decimal(opening_stock, "Opening stock")
        if cost < 0:
            raise ValidationError("Cost must be >= 0.")
        if price <= 0:
            raise ValidationError("Price must be > 0.")
        if reorder_level < 0 or opening_stock < 0:
            raise ValidationError("Stock values must be >= 0.")

        if opening_stock > 0:
            validate_quantity(opening_stock, unit, self.ledger.kg_decimals)

        # Product row and opening movement commit together.
        with self.uow_factory() as uow:
            try:
                product_id = uow.insert_product(
                    sku, name, unit, cost, price, reorder_level,
                    barcode=(barcode or "").strip() or None,
                    name_en=name_en, name_si=name_si, name_ta=name_ta,
                )
            except sqlite3.IntegrityError as e:
                raise ValidationError(f"SKU already exists: {sku}") from e

            # Stock only ever enters through the ledger.
            if opening_stock > 0:
                self.ledger.record(product_id, opening_stock, MovementType.ADJUST, reason="Opening stock", uow=uow)
        return product_id

    def deactivate_product(self, product_id: int) -> None:
        if not self.repo.deactivate_product(int(product_id)):
            raise NotFoundError("Product not found.")

    def update_product_pricing(self, product_id: int, price, reorder_level) -> None:
        price = to_decimal(price, "Price")
        reorder_level = to_decimal(reorder_level, "Reorder level")
        if price <= 0:
            raise ValidationError("Price must be > 0.")
        if reorder_level < 0:
            raise ValidationError("Reorder level must be >= 0.")

        if not self.repo.update_product_pricing(int(product_id), price, reorder_level):
            raise NotFoundError("Product not found.")
