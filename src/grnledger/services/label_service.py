from __future__ import annotations

import logging
from decimal import ROUND_FLOOR

from grnledger.domain.errors import InvalidStateError, NotFoundError, ValidationError
from grnledger.domain.models import GRNStatus, LabelItem, Language

log = logging.getLogger(__name__)


def _language(value) -> Language:
    try:
        return Language(str(getattr(value, "value", value)).strip().upper())
    except ValueError as e:
        raise ValidationError(f"Unsupported label language: {value!r}") from e


class LabelService:
    def __init__(self, repo, default_language: Language = Language.EN):
        self.repo = repo
        self.default_language = Language(default_language)

    def expand(self, grn_id: int, language=None, allow_draft: bool = False) -> list[LabelItem]:
        """One label per whole received unit of each GRN line.

        Requires a POSTED GRN; ``allow_draft`` also accepts OPEN ones for
        previews. Weight lines drop their fractional remainder.
        """
        lang = self.default_language if language is None else _language(language)
        details = self.repo.get_grn_details(int(grn_id))
        if not details:
            raise NotFoundError("GRN not found.")

        status = details.header.status
        if status is GRNStatus.VOID or (status is GRNStatus.OPEN and not allow_draft):
            raise InvalidStateError(
                f"Labels need a POSTED GRN. {details.header.document_no} is {status.value}."
            )

        items: list[LabelItem] = []
        for line, product in details.lines:
            copies = int(line.quantity.to_integral_value(rounding=ROUND_FLOOR))
            if copies != line.quantity:
                log.info(
                    "label_fraction_dropped grn_id=%s line_id=%s qty=%s labels=%s",
                    grn_id, line.id, line.quantity, copies,
                )
            label = LabelItem(
                sku=product.sku,
                name=product.localized_name(lang),
                price=line.unit_cost,
                language=lang,
                barcode=product.barcode,
                mrp=line.mrp,
                batch_no=line.batch_no,
                expiry_date=line.expiry_date,
            )
            items.extend(label for _ in range(copies))
        return items

    def build_label_items_from_grn(self, grn_id: int, language=None) -> list[LabelItem]:
        return self.expand(grn_id, language)
