from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy.types import String, TypeDecorator


class ExactDecimal(TypeDecorator):
    """
    Fixed-point decimal stored as its canonical string.

    SQLite has no exact NUMERIC storage (values round-trip through REAL), so
    amounts are persisted as text and always come back as Decimal at the
    column's scale. Aggregation happens in Python, never in SQL.
    """

    impl = String(40)
    cache_ok = True

    def __init__(self, scale: int = 2, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.scale = scale
        self.quantum = Decimal(1).scaleb(-scale)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return format(value.quantize(self.quantum, rounding=ROUND_HALF_UP), "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value).quantize(self.quantum)


def Money():
    return ExactDecimal(2)


def Reading():
    return ExactDecimal(3)
