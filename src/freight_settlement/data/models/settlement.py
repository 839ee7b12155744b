"""
Settlement data model - what a driver was (or will be) paid for a set of loads.

Stores reference loads in three shapes: a single ``loadId``, a ``loadIds``
list, and ``loads[].loadId`` lines. They are unioned into ``load_refs`` once,
at ingestion; nothing downstream reads the raw shapes.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Optional

import structlog
from pydantic import Field, model_validator

from freight_settlement.data.models.base import DateOnly, RecordModel
from freight_settlement.data.models.driver import Driver

logger = structlog.get_logger(__name__)


class SettlementType(str, Enum):
    DRIVER = "driver"
    DISPATCHER = "dispatcher"


class SettlementStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    PAID = "paid"
    VOID = "void"


class PayStatus(str, Enum):
    """Direction of money once a settlement is netted."""

    OWED_TO_DRIVER = "owed_to_driver"
    DRIVER_OWES = "driver_owes"
    SETTLED = "settled"


class SettlementLine(RecordModel):
    """Driver pay for a single load inside a settlement."""

    load_id: str
    load_number: Optional[str] = None
    base_pay: Optional[Decimal] = None
    detention: Optional[Decimal] = None
    layover: Optional[Decimal] = None
    tonu: Optional[Decimal] = None
    total_pay: Optional[Decimal] = None
    miles: Decimal = Decimal("0")
    delivery_date: DateOnly = None
    calculation_method: Optional[str] = None


class OtherEarning(RecordModel):
    type: str
    description: Optional[str] = None
    amount: Decimal = Decimal("0")


DEDUCTION_CATEGORIES = (
    "insurance",
    "ifta",
    "cash_advance",
    "fuel",
    "trailer",
    "repairs",
    "parking",
    "form2290",
    "eld",
    "toll",
    "irp",
    "ucr",
    "escrow",
    "occupational_accident",
    "other",
)


def collect_load_refs(raw: dict[str, Any]) -> frozenset[str]:
    """
    Union every legacy load reference shape into one set.

    Anything that is not a non-empty string (or a line carrying one) is
    ignored; a settlement with no parseable reference simply matches no loads.
    """
    refs: set[str] = set()

    single = raw.get("loadId", raw.get("load_id"))
    if isinstance(single, str) and single:
        refs.add(single)

    many = raw.get("loadIds", raw.get("load_ids"))
    if isinstance(many, (list, tuple, set, frozenset)):
        refs.update(ref for ref in many if isinstance(ref, str) and ref)

    lines = raw.get("loads")
    if isinstance(lines, (list, tuple)):
        for line in lines:
            if isinstance(line, dict):
                ref = line.get("loadId", line.get("load_id"))
            else:
                ref = getattr(line, "load_id", None)
            if isinstance(ref, str) and ref:
                refs.add(ref)

    return frozenset(refs)


class Settlement(RecordModel):
    """
    Driver (or dispatcher) settlement.

    Cash entitlement depends on driver type: owner-operators are owed
    ``gross_pay``, company drivers ``net_pay``. Use ``settlement_entitlement``
    rather than reading either field directly.
    """

    id: str
    settlement_number: Optional[str] = None
    type: SettlementType = SettlementType.DRIVER
    driver_id: Optional[str] = None
    payee_id: Optional[str] = None
    payee_name: Optional[str] = None
    period_start: DateOnly = None
    period_end: DateOnly = None
    settlement_date: DateOnly = Field(None, alias="date")

    load_refs: frozenset[str] = Field(default_factory=frozenset)
    loads: list[SettlementLine] = Field(default_factory=list)

    gross_pay: Decimal = Decimal("0")
    deductions: dict[str, Decimal] = Field(default_factory=dict)
    total_deductions: Optional[Decimal] = None
    other_earnings: list[OtherEarning] = Field(default_factory=list)
    net_pay: Optional[Decimal] = None

    status: SettlementStatus = SettlementStatus.DRAFT
    pay_status: Optional[PayStatus] = None
    notes: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize_refs(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        refs = collect_load_refs(data)
        explicit = data.get("load_refs", data.get("loadRefs"))
        if isinstance(explicit, (list, tuple, set, frozenset)):
            refs = refs | {ref for ref in explicit if isinstance(ref, str) and ref}
        data["load_refs"] = refs
        data.pop("loadRefs", None)

        # Keep only well-formed lines; malformed ones already counted as no-ref
        lines = data.get("loads")
        if lines is not None and not isinstance(lines, list):
            data["loads"] = []
        elif isinstance(lines, list):
            data["loads"] = [
                line for line in lines
                if isinstance(line, SettlementLine)
                or (isinstance(line, dict) and (line.get("loadId") or line.get("load_id")))
            ]

        deductions = data.get("deductions")
        if isinstance(deductions, dict):
            data["deductions"] = {
                deduction_key(k): v for k, v in deductions.items() if v is not None
            }
        elif deductions is not None:
            logger.warning("settlement_deductions_unrecognized", settlement_id=data.get("id"))
            data["deductions"] = {}
        return data

    @property
    def payee(self) -> Optional[str]:
        """Driver the settlement pays (legacy records only carry payee_id)."""
        return self.payee_id or self.driver_id

    @property
    def is_driver_settlement(self) -> bool:
        return self.type == SettlementType.DRIVER

    @property
    def deduction_total(self) -> Decimal:
        if self.total_deductions is not None:
            return self.total_deductions
        return sum(self.deductions.values(), Decimal("0"))

    @property
    def other_earnings_total(self) -> Decimal:
        return sum((e.amount for e in self.other_earnings), Decimal("0"))

    @property
    def computed_net_pay(self) -> Decimal:
        """Net pay as stored, or gross + other earnings - deductions."""
        if self.net_pay is not None:
            return self.net_pay
        return self.gross_pay + self.other_earnings_total - self.deduction_total

    def covers(self, load_ids: frozenset[str] | set[str]) -> bool:
        """True when every referenced load lies inside ``load_ids``."""
        return bool(self.load_refs) and self.load_refs <= load_ids


def settlement_entitlement(settlement: Settlement, driver: Driver) -> Decimal:
    """
    Cash the settlement entitles the driver to.

    Owner-operators: gross pay (their costs are their own). Company drivers:
    net pay after deductions.
    """
    if driver.is_owner_operator:
        return settlement.gross_pay
    return settlement.computed_net_pay


def deduction_key(key: str) -> str:
    """cashAdvance -> cash_advance; digits stay attached (form2290)."""
    out = []
    for ch in key:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out).lstrip("_")
