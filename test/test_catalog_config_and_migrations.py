import logging
from decimal import Decimal
from pathlib import Path

import pytest

from conftest import build, seed_catalog
from grnledger.config import get_app_paths, get_settings
from grnledger.domain.errors import NotFoundError, ValidationError
from grnledger.domain.models import CostPolicy, Language, Unit
from grnledger.logging_config import setup_logging
from grnledger.repositories.sqlite_repo import SqliteRepository
from grnledger.services.catalog_service import CatalogService


def test_settings_defaults_and_overrides():
    defaults = get_settings({})
    assert defaults.default_cost_policy is CostPolicy.LATEST
    assert defaults.label_language is Language.EN
    assert defaults.kg_decimals == 3

    s = get_settings(
        {
            "GRNLEDGER_COST_POLICY": "Average",
            "GRNLEDGER_LABEL_LANGUAGE": "ta",
            "GRNLEDGER_KG_DECIMALS": "2",
            "GRNLEDGER_BUSY_TIMEOUT": "1.5",
        }
    )
    assert s.default_cost_policy is CostPolicy.AVERAGE
    assert s.label_language is Language.TA
    assert s.kg_decimals == 2
    assert s.busy_timeout == 1.5


def test_settings_reject_bad_values():
    with pytest.raises(ValidationError):
        get_settings({"GRNLEDGER_COST_POLICY": "fifo"})
    with pytest.raises(ValidationError):
        get_settings({"GRNLEDGER_KG_DECIMALS": "-1"})
    with pytest.raises(ValidationError):
        get_settings({"GRNLEDGER_BUSY_TIMEOUT": "0"})


def test_app_paths_honor_home_override(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("GRNLEDGER_HOME", str(tmp_path / "home"))
    paths = get_app_paths()
    assert paths.db_path == tmp_path / "home" / "ledger.db"
    assert paths.logs_dir.is_dir()


def test_setup_logging_creates_channel_files(tmp_path: Path):
    root = logging.getLogger()
    saved = root.handlers[:]
    root.handlers.clear()
    try:
        setup_logging(tmp_path / "logs")
        logging.getLogger("grnledger.posting").info("grn_posted grn_id=1")
        for h in logging.getLogger("grnledger.posting").handlers + root.handlers:
            h.flush()
        assert (tmp_path / "logs" / "posting.log").read_text(encoding="utf-8").strip()
        assert (tmp_path / "logs" / "app.log").exists()
    finally:
        for h in root.handlers:
            h.close()
        root.handlers[:] = saved
        for channel in ("grnledger.posting", "grnledger.ledger"):
            for h in logging.getLogger(channel).handlers:
                h.close()
            logging.getLogger(channel).handlers.clear()


def test_weight_precision_setting(tmp_path: Path):
    c = build(tmp_path, settings=get_settings({"GRNLEDGER_KG_DECIMALS": "1"}))
    ids = seed_catalog(c)
    with pytest.raises(ValidationError, match="at most 1 decimal places"):
        c.ledger.record(ids["dhal"], "0.25", "RECEIVE")


def test_catalog_validation(tmp_path: Path):
    c = build(tmp_path)
    seed_catalog(c)

    with pytest.raises(ValidationError, match="SKU already exists"):
        c.catalog.add_product("RICE-5KG", "Duplicate", price="1")
    with pytest.raises(ValidationError, match="Price must be > 0"):
        c.catalog.add_product("NEW", "New", price="0")
    with pytest.raises(ValidationError, match="Unit must be"):
        c.catalog.add_product("NEW", "New", unit="box")
    with pytest.raises(ValidationError, match="Supplier name"):
        c.catalog.add_supplier("  ")
    with pytest.raises(NotFoundError):
        c.catalog.get_product_by_sku("NOPE")


def test_catalog_pricing_and_deactivation(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)

    c.catalog.update_product_pricing(ids["dhal"], "400", "10")
    dhal = c.catalog.get_product_by_sku("DHAL")
    assert (dhal.price, dhal.reorder_level, dhal.unit) == (Decimal("400"), Decimal("10"), Unit.WEIGHT)

    c.catalog.deactivate_product(ids["dhal"])
    assert [p.sku for p in c.catalog.list_products()] == ["RICE-5KG"]
    with pytest.raises(NotFoundError):
        c.catalog.deactivate_product(ids["dhal"])
    assert [s.name for s in c.catalog.list_suppliers()] == ["Lanka Traders"]


def test_init_db_is_idempotent(tmp_path: Path):
    db = tmp_path / "ledger.db"
    repo = SqliteRepository(db)
    repo.init_db()
    repo.init_db()

    conn = repo._conn()
    cur = conn.cursor()
    cur.execute("SELECT version FROM schema_migrations ORDER BY version")
    versions = [int(r[0]) for r in cur.fetchall()]
    conn.close()

    assert versions == [1, 2]
    assert list(tmp_path.glob("*.bak")) == []


def test_failed_migration_restores_database(tmp_path: Path):
    class BrokenMigrationRepo(SqliteRepository):
        def _migrations(self):
            return super()._migrations() + [(3, self._broken)]

        def _broken(self, cur):
            cur.execute("CREATE TABLE scratch (id INTEGER)")
            raise RuntimeError("forced migration failure")

    db = tmp_path / "ledger.db"
    c = build(tmp_path)
    ids = seed_catalog(c)

    broken = BrokenMigrationRepo(db)
    with pytest.raises(RuntimeError, match="Original database restored"):
        broken.run_migrations()

    assert c.repo.get_product_by_id(ids["rice"]) is not None
    assert list(tmp_path.glob("ledger.pre_migration_*.bak"))

    conn = c.repo._conn()
    cur = conn.cursor()
    cur.execute("SELECT name FROM sqlite_master WHERE name='scratch'")
    assert cur.fetchone() is None
    conn.close()


def test_main_reports_health(tmp_path: Path, monkeypatch, capsys):
    from grnledger.main import main

    monkeypatch.setenv("GRNLEDGER_HOME", str(tmp_path / "home"))

    assert main() == 0
    assert '"sqlite_integrity": "ok"' in capsys.readouterr().out
    assert (tmp_path / "home" / "ledger.db").exists()


def test_add_product_with_invalid_opening_stock_writes_nothing(tmp_path: Path):
    c = build(tmp_path)

    with pytest.raises(ValidationError, match="whole number"):
        c.catalog.add_product("EGG", "Egg", unit="pc", price="10", opening_stock="1.5")

    assert c.repo.get_product_by_sku("EGG") is None
    assert c.repo.count_movements() == 0


def test_add_product_rolls_back_when_opening_movement_fails(tmp_path: Path):
    class FailingLedger:
        kg_decimals = 3

        def record(self, *args, **kwargs):
            raise RuntimeError("boom")

    c = build(tmp_path)
    catalog = CatalogService(c.repo, FailingLedger())

    with pytest.raises(RuntimeError):
        catalog.add_product("FLOUR", "Flour", unit="kg", price="200", opening_stock="2.5")

    assert c.repo.get_product_by_sku("FLOUR") is None
    assert c.repo.cached_stock() == {}
