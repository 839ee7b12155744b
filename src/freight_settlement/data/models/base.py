"""
Shared pieces for record models.

Records arrive from a document store in camelCase; models accept either
spelling and dump in snake_case unless ``by_alias=True`` is requested.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict
from pydantic.alias_generators import to_camel

CENTS = Decimal("0.01")
ZERO = Decimal("0")


def money(value: Any) -> Decimal:
    """Quantize an amount to cents (half-up)."""
    if value is None:
        return ZERO.quantize(CENTS)
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_date_only(value: Any) -> Optional[date]:
    """
    Read a date-only value.

    ISO strings keep their calendar date ("2024-01-05T23:30:00Z" is
    2024-01-05) so timezone shifts never move a load into another period.
    Empty strings read as missing.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip().split("T")[0].split(" ")[0])
    raise ValueError(f"Unrecognized date value: {value!r}")


DateOnly = Annotated[Optional[date], BeforeValidator(parse_date_only)]


class RecordModel(BaseModel):
    """Base for every ingested record."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        use_enum_values=False,
    )
