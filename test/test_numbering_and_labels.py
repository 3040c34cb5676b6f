import re
import threading
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest

from conftest import build, seed_catalog
from grnledger.config import LedgerSettings
from grnledger.domain.errors import InvalidStateError, NotFoundError, ValidationError
from grnledger.domain.models import GRNLineInput, Language
from grnledger.services.numbering_service import format_document_no, parse_sequence


class FakeClock:
    def __init__(self, year: int):
        self.now = datetime(year, 12, 31, 23, 59)

    def __call__(self) -> datetime:
        return self.now


def test_numbers_are_sequential(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)

    numbers = [c.grns.get_grn(c.grns.create(ids["supplier_id"])).header.document_no for _ in range(3)]

    assert all(re.fullmatch(r"GRN-\d{4}-\d{6}", n) for n in numbers)
    seqs = [int(n.rsplit("-", 1)[1]) for n in numbers]
    assert seqs == [1, 2, 3]


def test_sequence_restarts_with_new_year(tmp_path: Path):
    clock = FakeClock(2025)
    c = build(tmp_path, clock=clock)
    ids = seed_catalog(c)

    first = c.grns.create(ids["supplier_id"])
    second = c.grns.create(ids["supplier_id"])
    clock.now = datetime(2026, 1, 1, 0, 1)
    third = c.grns.create(ids["supplier_id"])

    assert [c.grns.get_grn(g).header.document_no for g in (first, second, third)] == [
        "GRN-2025-000001",
        "GRN-2025-000002",
        "GRN-2026-000001",
    ]


def test_preview_does_not_reserve(tmp_path: Path):
    c = build(tmp_path, clock=FakeClock(2026))
    ids = seed_catalog(c)

    assert c.numbering.next_document_no() == "GRN-2026-000001"
    assert c.numbering.next_document_no() == "GRN-2026-000001"
    c.grns.create(ids["supplier_id"])
    assert c.numbering.next_document_no() == "GRN-2026-000002"


def test_parse_and_format():
    assert format_document_no(2026, 42) == "GRN-2026-000042"
    assert parse_sequence("GRN-2026-000042", 2026) == 42
    assert parse_sequence("GRN-2025-000042", 2026) is None
    assert parse_sequence("PO-2026-000001", 2026) is None
    assert parse_sequence(None, 2026) is None


def _posted_grn(c, ids, **line):
    grn_id = c.grns.create(ids["supplier_id"])
    c.grns.upsert_line(GRNLineInput(grn_id, ids["rice"], **line))
    c.grns.post(grn_id)
    return grn_id


def test_labels_one_per_unit(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)
    grn_id = _posted_grn(c, ids, quantity=3, unit_cost="55", mrp="80", batch_no="B1", expiry_date="2027-03-31")

    labels = c.labels.expand(grn_id)

    assert len(labels) == 3
    assert {(l.sku, l.batch_no, l.expiry_date) for l in labels} == {("RICE-5KG", "B1", "2027-03-31")}
    assert labels[0].price == Decimal("55")
    assert labels[0].mrp == Decimal("80")
    assert labels[0].barcode == "4791234567890"
    assert labels[0].name == "Rice 5kg"


def test_label_language_falls_back(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)
    grn_id = _posted_grn(c, ids, quantity=1, unit_cost="55")

    assert c.labels.expand(grn_id, "SI")[0].name == "සහල් 5kg"
    # No Tamil name: English is used.
    tamil = c.labels.expand(grn_id, Language.TA)[0]
    assert tamil.name == "Rice 5kg"
    assert tamil.language is Language.TA

    with pytest.raises(ValidationError, match="Unsupported label language"):
        c.labels.expand(grn_id, "FR")


def test_label_default_language_from_settings(tmp_path: Path):
    c = build(tmp_path, settings=LedgerSettings(label_language=Language.SI))
    ids = seed_catalog(c)
    grn_id = _posted_grn(c, ids, quantity=1, unit_cost="55")
    assert c.labels.build_label_items_from_grn(grn_id)[0].language is Language.SI


def test_labels_need_posted_grn(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)
    grn_id = c.grns.create(ids["supplier_id"])
    c.grns.upsert_line(GRNLineInput(grn_id, ids["rice"], quantity=2, unit_cost="50"))

    with pytest.raises(InvalidStateError, match="POSTED"):
        c.labels.expand(grn_id)
    assert len(c.labels.expand(grn_id, allow_draft=True)) == 2

    c.grns.void(grn_id)
    with pytest.raises(InvalidStateError):
        c.labels.expand(grn_id, allow_draft=True)

    with pytest.raises(NotFoundError):
        c.labels.expand(999)


def test_weight_labels_drop_fraction(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)
    grn_id = c.grns.create(ids["supplier_id"])
    c.grns.upsert_line(GRNLineInput(grn_id, ids["dhal"], quantity="2.75", unit_cost="300"))
    c.grns.upsert_line(GRNLineInput(grn_id, ids["dhal"], quantity="0.5", unit_cost="300"))
    c.grns.post(grn_id)

    labels = c.labels.expand(grn_id)
    assert len(labels) == 2
    assert all(l.name == "Red Dhal" for l in labels)


def test_concurrent_creates_get_distinct_numbers(tmp_path: Path):
    c = build(tmp_path)
    ids = seed_catalog(c)
    workers = 8

    barrier = threading.Barrier(workers)
    created = []
    errors = []

    def worker():
        barrier.wait()
        try:
            created.append(c.grns.create(ids["supplier_id"]))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    numbers = [c.grns.get_grn(g).header.document_no for g in created]
    assert len(set(numbers)) == workers
    assert all(re.fullmatch(r"GRN-\d{4}-\d{6}", n) for n in numbers)
    assert sorted(int(n.rsplit("-", 1)[1]) for n in numbers) == list(range(1, workers + 1))
