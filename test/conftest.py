import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def build(tmp_path: Path, settings=None, clock=None, name: str = "ledger.db"):
    from grnledger.application.container import build_container

    return build_container(tmp_path / name, settings, clock=clock)


def seed_catalog(c) -> dict:
    """One supplier, one piece product and one weight product."""
    supplier_id = c.catalog.add_supplier("Lanka Traders")
    rice = c.catalog.add_product(
        "RICE-5KG", "Rice 5kg", unit="pc", cost="50", price="75", reorder_level="5",
        barcode="4791234567890", name_en="Rice 5kg", name_si="සහල් 5kg",
    )
    dhal = c.catalog.add_product("DHAL", "Red Dhal", unit="kg", cost="300", price="380")
    return {"supplier_id": supplier_id, "rice": rice, "dhal": dhal}


def raw_exec(repo, sql: str, params=()):
    conn = repo._conn()
    try:
        cur = conn.cursor()
        cur.execute(sql, params)
        conn.commit()
    finally:
        conn.close()
