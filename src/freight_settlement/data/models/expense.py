"""
Expense data model.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, Field, field_validator

from freight_settlement.data.models.base import DateOnly, RecordModel


class ExpensePaidBy(str, Enum):
    """Who bore the cost."""

    COMPANY = "company"
    DRIVER = "driver"
    TRACKED_ONLY = "tracked_only"

    @classmethod
    def _missing_(cls, value: object) -> Optional["ExpensePaidBy"]:
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_")
            # owner_operator is the legacy spelling of driver
            if key in ("owner_operator", "owneroperator"):
                return cls.DRIVER
            for member in cls:
                if member.value == key:
                    return member
        return None


class ExpenseStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class Expense(RecordModel):
    """A single cost record, optionally tied to a driver or load."""

    id: str
    amount: Decimal = Field(Decimal("0"), ge=0)
    type: str = Field(
        "other",
        validation_alias=AliasChoices("type", "category"),
        description="Category, e.g. fuel, toll, maintenance",
    )
    description: Optional[str] = None
    date: DateOnly = None
    driver_id: Optional[str] = None
    load_id: Optional[str] = None
    paid_by: Optional[ExpensePaidBy] = None
    status: ExpenseStatus = ExpenseStatus.APPROVED

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> str:
        if not value:
            return "other"
        return str(value).strip().lower()

    @property
    def counts_for_company(self) -> bool:
        """
        Whether the company bore this cost.

        Unset ``paid_by`` counts as company, matching records written before
        the field existed.
        """
        return self.paid_by in (None, ExpensePaidBy.COMPANY, ExpensePaidBy.TRACKED_ONLY)
