from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


MONEY_QUANTUM = Decimal("0.01")
READING_QUANTUM = Decimal("0.001")

# Numeric(15, 3) meter register: 12 integer digits
MAX_READING = Decimal("999999999999.999")
# Numeric(17, 2) money columns: 15 integer digits
MAX_MONEY = Decimal("999999999999999.99")


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, *, field: str | None = None, entity_id: int | None = None):
        super().__init__(message)
        self.field = field
        self.entity_id = entity_id


class StateError(ValidationError):
    """Entity is not in the lifecycle state the operation requires."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., a second OPEN assignment on a nozzle)."""

    def __init__(self, message: str, *, field: str | None = None, entity_id: int | None = None):
        super().__init__(message)
        self.field = field
        self.entity_id = entity_id


class OverDistributionError(ConflictError, ValidationError):
    """Distributing more cash than was physically counted for a shift."""


class NotFoundError(LookupError):
    """Entity does not exist (or belongs to another tenant)."""

    def __init__(self, message: str, *, entity_id: int | None = None):
        super().__init__(message)
        self.field = None
        self.entity_id = entity_id


class PermissionDeniedError(PermissionError):
    """Caller role may not perform the operation."""

    def __init__(self, message: str, *, entity_id: int | None = None):
        super().__init__(message)
        self.field = None
        self.entity_id = entity_id


def _to_decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a decimal number", field=field)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        # repr() round-trips the shortest decimal form, never the binary expansion
        result = Decimal(repr(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be a decimal number", field=field)
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain decimal (scientific notation not allowed)", field=field)
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a decimal number", field=field)
    else:
        raise ValidationError(f"{field} must be a decimal number", field=field)

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    return result


def _check_scale(value: Decimal, quantum: Decimal, field: str) -> Decimal:
    quantized = value.quantize(quantum, rounding=ROUND_HALF_UP)
    if quantized != value:
        places = -quantum.as_tuple().exponent
        raise ValidationError(f"{field} must have at most {places} decimal places", field=field)
    return quantized


def parse_money(value: Any, field: str, *, allow_zero: bool = True) -> Decimal:
    """Non-negative money amount with at most 2 decimal places."""
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    amount = _check_scale(_to_decimal(value, field), MONEY_QUANTUM, field)
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)
    if not allow_zero and amount == 0:
        raise ValidationError(f"{field} must be greater than 0.00", field=field)
    if amount > MAX_MONEY:
        raise ValidationError(f"{field} exceeds the maximum amount", field=field)
    return amount


def parse_reading(value: Any, field: str) -> Decimal:
    """Meter reading: non-negative, at most 3 decimal places."""
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    reading = _check_scale(_to_decimal(value, field), READING_QUANTUM, field)
    if reading < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)
    if reading > MAX_READING:
        raise ValidationError(f"{field} exceeds the meter register size", field=field)
    return reading


def parse_unit_price(value: Any, field: str = "unit_price") -> Decimal:
    price = parse_money(value, field)
    if price == 0:
        raise ValidationError(f"{field} must be positive", field=field)
    return price


def parse_count(value: Any, field: str) -> int:
    """
    Denomination count: a plain non-negative integer.

    Rejects floats (even 3.0), decimal strings and scientific notation.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, int):
        count = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or not stripped.lstrip("-").isdigit():
            raise ValidationError(f"{field} must be an integer", field=field)
        count = int(stripped)
    else:
        raise ValidationError(f"{field} must be an integer", field=field)

    if count < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)
    return count


def parse_id(value: Any, field: str) -> int:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} is required", field=field)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer id", field=field)


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
