from __future__ import annotations

from decimal import Decimal, InvalidOperation

from grnledger.domain.errors import ValidationError
from grnledger.domain.models import Unit


def to_decimal(value, label: str = "Value") -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{label} must be a number.")
    try:
        d = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{label} must be a number. Received: {value!r}") from e
    if not d.is_finite():
        raise ValidationError(f"{label} must be a finite number.")
    return d


def validate_quantity(quantity: Decimal, unit: Unit, kg_decimals: int = 3) -> None:
    """Piece items take whole numbers; weight items at most ``kg_decimals`` places."""
    unit = Unit(unit)
    if unit is Unit.PIECE:
        if quantity != quantity.to_integral_value():
            raise ValidationError("Quantity for piece items must be a whole number.")
        return
    if quantity.normalize().as_tuple().exponent < -kg_decimals:
        raise ValidationError(f"Quantity for kg items can have at most {kg_decimals} decimal places.")
