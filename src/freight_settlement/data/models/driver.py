"""
Driver data model and pay configuration.

Payment is a tagged union: exactly one of per_mile, percentage or flat_rate.
Every percentage is stored as a 0-1 fraction; ``normalize_pay_fraction`` is the
one function that converts what users typed (35 or 0.35) into that range.
"""

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

import structlog
from pydantic import Field, TypeAdapter, ValidationError, field_validator

from freight_settlement.data.models.base import RecordModel

logger = structlog.get_logger(__name__)


def normalize_pay_fraction(value: Any) -> Decimal:
    """
    Normalize a pay percentage to the 0-1 fraction range.

    Values above 1 are read as percentages and divided by 100. Idempotent:
    normalize_pay_fraction(normalize_pay_fraction(x)) == normalize_pay_fraction(x)
    for any x in [0, 100].

    Args:
        value: Percentage as entered (e.g., 88, "88", 0.88) or None

    Returns:
        Fraction as Decimal (e.g., Decimal("0.88")); 0 for None

    Raises:
        ValueError: If the value is not a finite number, so pydantic reports
            it as a validation error on the owning field
    """
    if value is None or value == "":
        return Decimal("0")
    try:
        fraction = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"pay percentage is not a number: {value!r}") from e
    if not fraction.is_finite():
        raise ValueError(f"pay percentage is not a number: {value!r}")
    if fraction > 1:
        fraction = fraction / Decimal("100")
    return fraction


class DriverType(str, Enum):
    """Employment relationship of the driver."""

    COMPANY = "Company"
    OWNER_OPERATOR = "OwnerOperator"

    @classmethod
    def _missing_(cls, value: object) -> Optional["DriverType"]:
        if isinstance(value, str):
            key = value.strip().lower().replace("_", "").replace("-", "").replace(" ", "")
            if key in ("company", "companydriver"):
                return cls.COMPANY
            if key in ("owneroperator", "oo"):
                return cls.OWNER_OPERATOR
        return None


class PerMilePayment(RecordModel):
    """Paid a fixed rate for every loaded mile."""

    type: Literal["per_mile"] = "per_mile"
    rate: Decimal = Field(Decimal("0"), ge=0, description="USD per mile")


class PercentagePayment(RecordModel):
    """Paid a share of the load's gross."""

    type: Literal["percentage"] = "percentage"
    rate: Decimal = Field(Decimal("0"), ge=0, description="Fraction of gross (0-1)")

    @field_validator("rate", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Decimal:
        return normalize_pay_fraction(value)


class FlatRatePayment(RecordModel):
    """Paid a fixed amount per load."""

    type: Literal["flat_rate"] = "flat_rate"
    rate: Decimal = Field(Decimal("0"), ge=0, description="USD per load")


Payment = Annotated[
    Union[PerMilePayment, PercentagePayment, FlatRatePayment],
    Field(discriminator="type"),
]

_payment_adapter: TypeAdapter[Payment] = TypeAdapter(Payment)

# Legacy stores keep the amount under a type-specific key
_LEGACY_RATE_KEYS = {
    "per_mile": ("perMileRate", "per_mile_rate"),
    "percentage": ("percentage",),
    "flat_rate": ("flatRate", "flat_rate"),
}


def parse_payment(raw: Any) -> Optional[Union[PerMilePayment, PercentagePayment, FlatRatePayment]]:
    """
    Read a payment configuration, degrading to None when it is unusable.

    Accepts the current shape ({"type", "rate"}) and the legacy shape
    ({"type": "per_mile", "perMileRate": 0.55}).
    """
    if raw is None:
        return None
    if isinstance(raw, (PerMilePayment, PercentagePayment, FlatRatePayment)):
        return raw
    if not isinstance(raw, dict):
        logger.warning("payment_config_unrecognized", payment=repr(raw))
        return None

    data = dict(raw)
    pay_type = data.get("type")
    if "rate" not in data and pay_type in _LEGACY_RATE_KEYS:
        for key in _LEGACY_RATE_KEYS[pay_type]:
            if data.get(key) is not None:
                data["rate"] = data[key]
                break

    try:
        return _payment_adapter.validate_python(data)
    except ValidationError as e:
        logger.warning("payment_config_invalid", payment_type=pay_type, error=str(e))
        return None


class DeductionPreferences(RecordModel):
    """Which costs an owner-operator has deducted from settlements."""

    fuel: bool = False
    insurance: bool = False
    maintenance: bool = False
    ifta: bool = False
    eld: bool = False
    other: bool = False


class Driver(RecordModel):
    """
    A driver and their pay configuration.

    ``payment`` is None when the stored configuration is missing or
    malformed; the pay calculator treats that as "no pay configured".
    """

    id: str
    first_name: str = ""
    last_name: str = ""
    type: DriverType = DriverType.COMPANY
    status: str = "active"

    payment: Optional[Payment] = None

    # Legacy split fields, normalized to fractions
    pay_percentage: Optional[Decimal] = None
    rate_or_split: Optional[Decimal] = None

    # Add-ons passed through to driver pay
    detention_pay: bool = False
    layover_pay: bool = False
    fuel_surcharge_pay: bool = False

    deduction_preferences: Optional[DeductionPreferences] = None

    @field_validator("payment", mode="before")
    @classmethod
    def _parse_payment(cls, value: Any) -> Any:
        return parse_payment(value)

    @field_validator("pay_percentage", "rate_or_split", mode="before")
    @classmethod
    def _normalize_legacy_split(cls, value: Any) -> Optional[Decimal]:
        if value is None or value == "":
            return None
        return normalize_pay_fraction(value)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.id

    @property
    def is_owner_operator(self) -> bool:
        return self.type == DriverType.OWNER_OPERATOR

    @property
    def legacy_pay_fraction(self) -> Optional[Decimal]:
        """Pay fraction from the legacy fields, if either is set."""
        if self.pay_percentage:
            return self.pay_percentage
        if self.rate_or_split:
            return self.rate_or_split
        return None

    @property
    def has_pay_configuration(self) -> bool:
        return self.payment is not None or self.legacy_pay_fraction is not None
