from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable

from grnledger.domain.errors import (
    AppError,
    InvalidStateError,
    NotFoundError,
    ReferentialError,
    ValidationError,
)
from grnledger.domain.models import CostPolicy, GRNHeader, GRNStatus, MovementType
from grnledger.repositories.contracts import UnitOfWork
from grnledger.repositories.unit_of_work import now_iso

log = logging.getLogger("grnledger.posting")


def apply_cost_policy(current_cost: Decimal, unit_cost: Decimal, policy: CostPolicy) -> Decimal:
    policy = CostPolicy(policy)
    if policy is CostPolicy.NONE:
        return current_cost
    if policy is CostPolicy.LATEST:
        return unit_cost
    # Two-point average of recorded and incoming cost; quantities are not weighted.
    return (current_cost + unit_cost) / 2


def resolve_cost_policy(value, default: CostPolicy) -> CostPolicy:
    if value is None:
        return default
    try:
        return CostPolicy(str(getattr(value, "value", value)).strip().lower())
    except ValueError as e:
        raise ValidationError(f"Unknown cost policy: {value!r}") from e


class PostingEngine:
    """Moves an OPEN GRN to POSTED in a single transaction.

    Header totals, one RECEIVE movement per line and product cost updates are
    written together; any failure rolls all of it back and the GRN stays OPEN.
    """

    def __init__(
        self,
        repo,
        ledger,
        default_policy: CostPolicy = CostPolicy.LATEST,
        uow_factory: Callable[[], UnitOfWork] | None = None,
    ):
        self.repo = repo
        self.ledger = ledger
        self.default_policy = CostPolicy(default_policy)
        self.uow_factory = uow_factory or repo.unit_of_work

    def post(self, grn_id: int, cost_policy=None) -> GRNHeader:
        policy = resolve_cost_policy(cost_policy, self.default_policy)

        try:
            with self.uow_factory() as uow:
                document_no, line_count, total = self._post(uow, int(grn_id), policy)
        except AppError as e:
            log.warning("grn_post_rejected grn_id=%s policy=%s error=%s", grn_id, policy.value, e)
            raise

        log.info(
            "grn_posted grn_id=%s document_no=%s lines=%s total=%s policy=%s",
            grn_id, document_no, line_count, total, policy.value,
        )
        return self.repo.get_grn_header(int(grn_id))

    def _post(self, uow: UnitOfWork, grn_id: int, policy: CostPolicy) -> tuple[str, int, Decimal]:
        header = uow.get_grn_header(grn_id)
        if header is None:
            raise NotFoundError("GRN not found.")
        if header.status is not GRNStatus.OPEN:
            raise InvalidStateError(f"Only OPEN GRNs can be posted. {header.document_no} is {header.status.value}.")

        lines = uow.grn_lines(grn_id)
        if not lines:
            raise ValidationError(f"{header.document_no} has no lines to post.")
        for line in lines:
            if uow.get_product(line.product_id) is None:
                raise ReferentialError(
                    f"{header.document_no} line {line.id} references a missing or inactive product ({line.product_id})."
                )

        subtotal = sum((line.line_total for line in lines), Decimal("0"))
        total = subtotal + header.tax + header.other
        uow.update_grn_header(
            grn_id,
            subtotal=subtotal,
            total=total,
            status=GRNStatus.POSTED,
            posted_at=now_iso(),
        )

        for line in lines:
            self.ledger.record(
                line.product_id,
                line.quantity,
                MovementType.RECEIVE,
                reason="GRN",
                note=header.document_no,
                origin=header.document_no,
                uow=uow,
            )

            # Re-read per line so repeated products compound in line order.
            product = uow.get_product(line.product_id)
            new_cost = apply_cost_policy(product.cost, line.unit_cost, policy)
            if new_cost != product.cost:
                uow.update_product_cost(product.id, new_cost)

        return header.document_no, len(lines), total
