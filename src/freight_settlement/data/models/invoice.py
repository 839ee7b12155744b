"""
Invoice data model - a bill to a customer for one or more loads.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import Field, model_validator

from freight_settlement.data.models.base import DateOnly, RecordModel


class InvoiceStatus(str, Enum):
    """
    Invoice status.

    pending -> overdue happens automatically once the due date passes;
    pending/overdue -> paid is a manual, terminal step.
    """

    DRAFT = "draft"
    PENDING = "pending"
    OVERDUE = "overdue"
    PAID = "paid"

    @classmethod
    def _missing_(cls, value: object) -> Optional["InvoiceStatus"]:
        if isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if member.value == key:
                    return member
        return None


OPEN_STATUSES = frozenset({InvoiceStatus.PENDING, InvoiceStatus.OVERDUE})


class Invoice(RecordModel):
    """Customer invoice."""

    id: str
    invoice_number: str
    customer_name: Optional[str] = None
    customer_id: Optional[str] = None

    load_ids: list[str] = Field(default_factory=list)
    load_id: Optional[str] = Field(None, description="Legacy single-load reference")

    amount: Decimal = Field(Decimal("0"), ge=0)
    status: InvoiceStatus = InvoiceStatus.PENDING
    invoice_date: DateOnly = Field(None, alias="date")
    due_date: DateOnly = None

    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None

    # Factoring
    is_factored: bool = False
    factoring_company_id: Optional[str] = None
    factoring_fee: Optional[Decimal] = Field(None, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _drop_bad_load_ids(cls, data: Any) -> Any:
        if isinstance(data, dict):
            ids = data.get("loadIds", data.get("load_ids"))
            if ids is not None and not isinstance(ids, list):
                data = {k: v for k, v in data.items() if k not in ("loadIds", "load_ids")}
            elif isinstance(ids, list):
                data = dict(data)
                data.pop("loadIds", None)
                data["load_ids"] = [i for i in ids if isinstance(i, str) and i]
        return data

    @property
    def referenced_load_ids(self) -> frozenset[str]:
        """Every load this invoice bills, including the legacy single reference."""
        refs = set(self.load_ids)
        if self.load_id:
            refs.add(self.load_id)
        return frozenset(refs)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def is_past_due(self, today: date) -> bool:
        """Due date strictly before today (date-only comparison)."""
        return self.due_date is not None and self.due_date < today
