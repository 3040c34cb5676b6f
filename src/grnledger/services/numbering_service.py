from __future__ import annotations

import re
from datetime import datetime
from typing import Callable, Optional

from grnledger.repositories.contracts import UnitOfWork

PREFIX = "GRN"
SEQUENCE_WIDTH = 6


def format_document_no(year: int, sequence: int) -> str:
    return f"{PREFIX}-{year}-{sequence:0{SEQUENCE_WIDTH}d}"


def parse_sequence(document_no: Optional[str], year: int) -> Optional[int]:
    """Trailing sequence of ``document_no`` when it belongs to ``year``."""
    if not document_no:
        return None
    m = re.fullmatch(rf"{PREFIX}-{year}-(\d+)", document_no.strip())
    return int(m.group(1)) if m else None


class NumberingService:
    """Allocates ``GRN-<year>-<NNNNNN>`` numbers.

    Allocation must run inside the unit of work that inserts the header: that
    transaction holds the write lock from the read of the last number until
    commit, so two concurrent creates cannot observe the same predecessor.
    """

    def __init__(self, repo, clock: Callable[[], datetime] | None = None):
        self.repo = repo
        self.clock = clock or datetime.now

    def next_document_no(self, uow: UnitOfWork | None = None) -> str:
        if uow is None:
            # Preview only; nothing is reserved.
            with self.repo.unit_of_work() as own:
                return self._next(own)
        return self._next(uow)

    def _next(self, uow: UnitOfWork) -> str:
        year = self.clock().year
        last = parse_sequence(uow.latest_document_no(), year)
        return format_document_no(year, (last or 0) + 1)
