import logging
import sqlite3
from decimal import Decimal
from pathlib import Path

import pytest

from conftest import build, raw_exec, seed_catalog
from grnledger.domain.errors import InvalidStateError, NotFoundError, ReferentialError, ValidationError
from grnledger.domain.filters import MovementFilters, StockFilters
from grnledger.domain.models import GRNLineInput, MovementType, Unit


def test_stock_is_sum_of_movements(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)
    rice = ids["rice"]

    c.ledger.record(rice, 10, MovementType.RECEIVE, reason="GRN")
    c.ledger.record(rice, -3, MovementType.ADJUST, reason="Damage")
    c.ledger.record(rice, 2, MovementType.WASTE, reason="Expired")

    assert c.stock.stock_of(rice) == Decimal("5")
    movements = c.repo.movements_for_product(rice)
    assert sum((m.quantity for m in movements), Decimal("0")) == Decimal("5")
    assert c.repo.cached_stock([rice])[rice] == Decimal("5")


def test_waste_is_always_written_negative(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)

    c.ledger.record(ids["rice"], 4, MovementType.RECEIVE)
    c.ledger.record(ids["rice"], 1, "WASTE", reason="Damage")

    waste = [m for m in c.repo.movements_for_product(ids["rice"]) if m.type is MovementType.WASTE]
    assert [m.quantity for m in waste] == [Decimal("-1")]


def test_record_rejects_bad_quantities(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)

    with pytest.raises(ValidationError, match="non-zero"):
        c.ledger.record(ids["rice"], 0, MovementType.ADJUST)
    with pytest.raises(ValidationError, match="RECEIVE quantity must be > 0"):
        c.ledger.record(ids["rice"], -1, MovementType.RECEIVE)
    with pytest.raises(ValidationError, match="Unknown movement type"):
        c.ledger.record(ids["rice"], 1, "SALE")
    with pytest.raises(ValidationError, match="whole number"):
        c.ledger.record(ids["rice"], "1.5", MovementType.RECEIVE)
    with pytest.raises(ValidationError, match="at most 3 decimal places"):
        c.ledger.record(ids["dhal"], "1.2345", MovementType.RECEIVE)

    assert c.repo.count_movements() == 0


def test_record_unknown_or_inactive_product_is_referential_error(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)

    with pytest.raises(ReferentialError):
        c.ledger.record(9999, 1, MovementType.RECEIVE)

    c.catalog.deactivate_product(ids["dhal"])
    with pytest.raises(ReferentialError):
        c.ledger.record(ids["dhal"], "0.5", MovementType.RECEIVE)


def test_weight_quantities_keep_exact_decimals(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)

    c.ledger.record(ids["dhal"], "2.125", MovementType.RECEIVE)
    c.ledger.record(ids["dhal"], "0.1", MovementType.WASTE)

    assert c.stock.stock_of(ids["dhal"]) == Decimal("2.025")


def test_movements_are_immutable(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)
    c.ledger.record(ids["rice"], 3, MovementType.RECEIVE)

    with pytest.raises(sqlite3.IntegrityError, match="immutable"):
        raw_exec(c.repo, "UPDATE inventory_movements SET quantity='30'")
    with pytest.raises(sqlite3.IntegrityError, match="immutable"):
        raw_exec(c.repo, "DELETE FROM inventory_movements")

    assert c.stock.stock_of(ids["rice"]) == Decimal("3")


def test_stock_of_unknown_product(tmp_path: Path):
    c = build(tmp_path)
    with pytest.raises(NotFoundError):
        c.stock.stock_of(42)


def test_low_stock_rules(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)

    # reorder level 5, no stock yet
    assert c.stock.is_low_stock(ids["rice"]) is True
    c.ledger.record(ids["rice"], 5, MovementType.RECEIVE)
    assert c.stock.is_low_stock(ids["rice"]) is True
    c.ledger.record(ids["rice"], 1, MovementType.RECEIVE)
    assert c.stock.is_low_stock(ids["rice"]) is False

    # reorder level 0 never flags
    assert c.stock.is_low_stock(ids["dhal"]) is False


def test_stock_rows_filters(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)
    c.ledger.record(ids["dhal"], "12.5", MovementType.RECEIVE)

    rows = c.stock.get_stock_rows()
    assert {r.sku for r in rows} == {"RICE-5KG", "DHAL"}
    by_sku = {r.sku: r for r in rows}
    assert by_sku["DHAL"].current_stock == Decimal("12.5")
    assert by_sku["RICE-5KG"].is_low_stock is True

    low = c.stock.get_stock_rows(StockFilters(low_stock_only=True))
    assert [r.sku for r in low] == ["RICE-5KG"]

    kg = c.stock.get_stock_rows(StockFilters(unit=Unit.WEIGHT))
    assert [r.sku for r in kg] == ["DHAL"]

    assert c.stock.stock_map([ids["dhal"]]) == {ids["dhal"]: Decimal("12.5")}


def test_opening_stock_enters_through_ledger(tmp_path: Path):
    c = build(tmp_path)
    pid = c.catalog.add_product("SOAP", "Soap", price="120", opening_stock=24)

    movements = c.repo.movements_for_product(pid)
    assert len(movements) == 1
    assert movements[0].type is MovementType.ADJUST
    assert movements[0].reason == "Opening stock"
    assert c.stock.stock_of(pid) == Decimal("24")


def test_adjust_batch_by_sku_and_id(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)
    c.ledger.record(ids["rice"], 10, MovementType.RECEIVE)

    created = c.ledger.post_adjust_batch(
        [
            {"sku": "RICE-5KG", "qty": -2, "note": "torn bags"},
            {"product_id": ids["dhal"], "qty": "1.5"},
            {"sku": "RICE-5KG", "qty": 0},
        ],
        mode="ADJUST",
        reason="Damage",
    )

    assert len(created) == 2
    assert c.stock.stock_of(ids["rice"]) == Decimal("8")
    assert c.stock.stock_of(ids["dhal"]) == Decimal("1.5")


def test_adjust_batch_is_atomic(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)

    with pytest.raises(ReferentialError):
        c.ledger.post_adjust_batch(
            [{"sku": "RICE-5KG", "qty": 3}, {"sku": "NOPE", "qty": 1}],
            mode="WASTE",
            reason="Expired",
        )

    assert c.repo.count_movements() == 0
    assert c.stock.stock_of(ids["rice"]) == Decimal("0")


def test_adjust_batch_requires_reason_and_mode(tmp_path: Path):
    c = build(tmp_path)
    seed_catalog(c)

    with pytest.raises(ValidationError, match="Reason is required"):
        c.ledger.post_adjust_batch([{"sku": "RICE-5KG", "qty": 1}], mode="ADJUST", reason=" ")
    with pytest.raises(ValidationError, match="ADJUST or WASTE"):
        c.ledger.post_adjust_batch([{"sku": "RICE-5KG", "qty": 1}], mode="RECEIVE", reason="x")
    with pytest.raises(ValidationError, match="No valid lines"):
        c.ledger.post_adjust_batch([{"sku": "RICE-5KG", "qty": 0}], mode="ADJUST", reason="x")


def test_stocktake_calculate_and_apply(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)
    c.ledger.record(ids["rice"], 10, MovementType.RECEIVE)

    diffs = c.ledger.calculate_stocktake_differences(
        [
            {"sku": "RICE-5KG", "counted_qty": 7},
            {"sku": "DHAL", "counted_qty": "2.5"},
            {"sku": "MISSING", "counted_qty": 1},
        ]
    )
    assert [(d.sku, d.delta) for d in diffs] == [("RICE-5KG", Decimal("-3")), ("DHAL", Decimal("2.5"))]

    c.ledger.apply_stocktake_differences(diffs)

    assert c.stock.stock_of(ids["rice"]) == Decimal("7")
    assert c.stock.stock_of(ids["dhal"]) == Decimal("2.5")
    rice_moves = c.repo.movements_for_product(ids["rice"])
    assert rice_moves[-1].reason == "Stocktake"
    assert rice_moves[-1].note == "Stocktake: 10 -> 7"


def test_stocktake_without_differences(tmp_path: Path):
    c = build(tmp_path)
    seed_catalog(c)

    diffs = c.ledger.calculate_stocktake_differences([{"sku": "RICE-5KG", "counted_qty": 0}])
    with pytest.raises(ValidationError, match="No differences"):
        c.ledger.apply_stocktake_differences(diffs)


def test_movement_logs_filters(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)
    c.ledger.record(ids["rice"], 6, MovementType.RECEIVE, reason="GRN")
    c.ledger.record(ids["rice"], 1, MovementType.WASTE, reason="Damage")
    c.ledger.record(ids["dhal"], "0.75", MovementType.ADJUST, reason="Stocktake")

    assert len(c.ledger.movement_logs()) == 3

    waste = c.ledger.movement_logs(MovementFilters(type=MovementType.WASTE))
    assert [(r.sku, r.quantity) for r in waste] == [("RICE-5KG", Decimal("-1"))]

    dhal = c.ledger.movement_logs(MovementFilters(sku="DHAL"))
    assert len(dhal) == 1 and dhal[0].reason == "Stocktake"

    assert len(c.ledger.movement_logs(MovementFilters(limit=2))) == 2


def test_validate_quantity_and_reasons(tmp_path: Path):
    c = build(tmp_path)

    assert c.ledger.validate_quantity("3", Unit.PIECE) == Decimal("3")
    assert c.ledger.validate_quantity("0.250", "kg") == Decimal("0.250")
    with pytest.raises(ValidationError):
        c.ledger.validate_quantity("abc", "kg")
    assert "Stocktake" in c.ledger.adjustment_reasons()


def test_movement_origin_must_be_posted_grn(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)

    voided = c.grns.create(ids["supplier_id"])
    voided_no = c.grns.get_grn(voided).header.document_no
    c.grns.void(voided)
    with pytest.raises(InvalidStateError, match="VOID"):
        c.ledger.record(ids["rice"], -1, MovementType.ADJUST, origin=voided_no)

    posted = c.grns.create(ids["supplier_id"])
    c.grns.upsert_line(GRNLineInput(posted, ids["rice"], quantity=5, unit_cost="50"))
    posted_no = c.grns.post(posted).document_no

    # Corrections against a posted receipt are allowed.
    c.ledger.record(ids["rice"], -1, MovementType.ADJUST, reason="Damage", origin=posted_no)
    assert [m.quantity for m in c.repo.movements_by_origin(posted_no)] == [Decimal("5"), Decimal("-1")]
    assert c.repo.movements_by_origin(voided_no) == []


def test_movements_inside_posting_are_logged(tmp_path: Path, caplog):
    c = build(tmp_path)
    ids = seed_catalog(c)
    grn_id = c.grns.create(ids["supplier_id"])
    c.grns.upsert_line(GRNLineInput(grn_id, ids["rice"], quantity=2, unit_cost="50"))

    with caplog.at_level(logging.INFO, logger="grnledger.ledger"):
        header = c.grns.post(grn_id)

    recorded = [r.getMessage() for r in caplog.records if r.name == "grnledger.ledger"]
    assert len(recorded) == 1
    assert "movement_recorded" in recorded[0]
    assert f"origin={header.document_no}" in recorded[0]


def test_missing_quantity_keys_are_validation_errors(tmp_path: Path):
    c = build(tmp_path)
    seed_catalog(c)

    with pytest.raises(ValidationError, match="Quantity must be a number"):
        c.ledger.post_adjust_batch([{"sku": "RICE-5KG"}], mode="ADJUST", reason="Damage")
    with pytest.raises(ValidationError, match="Counted quantity must be a number"):
        c.ledger.calculate_stocktake_differences([{"sku": "RICE-5KG"}])
