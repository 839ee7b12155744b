"""
Pay Calculator - Split a load's gross between the company and the driver.

This engine:
- Computes company revenue for a load given the assigned driver
- Computes driver pay from stored load pay or the driver's payment profile
- Adds enabled detention/layover/fuel-surcharge add-ons for company drivers
- Degrades to "no driver pay" when the payment profile is missing or malformed

Every result is quantized to cents, and for company drivers
``driver_pay + company_revenue == gross`` holds exactly.
"""

from decimal import Decimal
from time import time
from typing import Any, Iterable, Optional, assert_never

import structlog
from pydantic import BaseModel, Field, computed_field

from freight_settlement.data.models.base import ZERO, money
from freight_settlement.data.models.driver import (
    Driver,
    DriverType,
    FlatRatePayment,
    PercentagePayment,
    PerMilePayment,
    normalize_pay_fraction,
)
from freight_settlement.data.models.load import Load
from freight_settlement.engines.base import BaseEngine

logger = structlog.get_logger(__name__)

__all__ = [
    "LoadPaySplit",
    "PayCalculator",
    "company_revenue",
    "driver_pay",
    "normalize_pay_fraction",
    "owner_operator_pay_fraction",
    "split_load",
]


class LoadPaySplit(BaseModel):
    """How one load's gross divides between company and driver."""

    load_id: str
    driver_id: Optional[str] = None
    driver_type: Optional[DriverType] = None
    gross: Decimal
    base_pay: Decimal = ZERO
    add_ons: Decimal = ZERO
    driver_pay: Decimal = ZERO
    company_revenue: Decimal
    method: str = Field(..., description="How driver pay was derived")
    pay_source: str = Field("profile", description="stored, profile or none")
    notes: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def is_negative_margin(self) -> bool:
        """Driver pay exceeded what the load grossed."""
        return self.company_revenue < 0


def owner_operator_pay_fraction(driver: Driver) -> Decimal:
    """
    Share of gross an owner-operator keeps.

    Percentage payment first, then the legacy split fields. Per-mile and
    flat-rate payments carry no split, so without a legacy split this is 0.
    """
    if isinstance(driver.payment, PercentagePayment):
        return normalize_pay_fraction(driver.payment.rate)
    legacy = driver.legacy_pay_fraction
    if legacy is not None:
        return normalize_pay_fraction(legacy)
    return ZERO


def _profile_base_pay(
    driver: Driver, gross: Decimal, miles: Decimal
) -> Optional[tuple[Decimal, str]]:
    """Company-driver base pay from the payment profile; None when unconfigured."""
    payment = driver.payment
    if payment is None:
        legacy = driver.legacy_pay_fraction
        if legacy is None:
            return None
        return gross * legacy, f"{legacy * 100:.0f}% of gross (legacy split)"

    match payment:
        case PerMilePayment(rate=rate):
            return rate * miles, f"${rate}/mile x {miles} miles"
        case PercentagePayment(rate=rate):
            return gross * rate, f"{rate * 100:.0f}% of gross"
        case FlatRatePayment(rate=rate):
            return rate, f"${rate} flat per load"
        case _:
            assert_never(payment)


def _add_ons(load: Load, driver: Driver) -> tuple[Decimal, list[str]]:
    """Enabled accessorial pass-through for a company driver."""
    total = ZERO
    notes = []
    if driver.detention_pay:
        amount = load.driver_detention_pay or load.detention_amount or ZERO
        if amount:
            total += amount
            notes.append(f"Detention ${amount}")
    if driver.layover_pay:
        amount = load.driver_layover_pay or load.layover_amount or ZERO
        if amount:
            total += amount
            notes.append(f"Layover ${amount}")
    if driver.fuel_surcharge_pay:
        amount = load.fsc_amount or ZERO
        if amount:
            total += amount
            notes.append(f"Fuel surcharge ${amount}")
    return total, notes


def _stored_pay(load: Load) -> Optional[tuple[Decimal, Decimal, str]]:
    """(base, total, method) from pay stored on the load at delivery."""
    if load.driver_total_gross:
        return load.driver_total_gross, load.driver_total_gross, "stored total gross"
    if load.driver_base_pay:
        extras = (load.driver_detention_pay or ZERO) + (load.driver_layover_pay or ZERO)
        return load.driver_base_pay, load.driver_base_pay + extras, "stored base pay"
    return None


def split_load(load: Load, driver: Optional[Driver]) -> LoadPaySplit:
    """
    Split a load's gross between the company and its driver.

    Args:
        load: The load
        driver: The assigned driver, or None

    Returns:
        LoadPaySplit with driver pay, company revenue and the method used
    """
    gross = money(load.gross_amount)

    if driver is None:
        return LoadPaySplit(
            load_id=load.id,
            gross=gross,
            company_revenue=gross,
            method="no driver",
            pay_source="none",
        )

    base = {
        "load_id": load.id,
        "driver_id": driver.id,
        "driver_type": driver.type,
        "gross": gross,
    }
    stored = _stored_pay(load)

    if driver.is_owner_operator:
        fraction = owner_operator_pay_fraction(driver)
        share = money(gross * fraction)
        revenue = gross - share
        notes = []
        if fraction == 0:
            logger.warning(
                "owner_operator_split_missing", driver_id=driver.id, load_id=load.id
            )
            notes.append("No owner-operator split configured; company keeps gross")
        if stored is not None:
            stored_base, stored_total, method = stored
            return LoadPaySplit(
                **base,
                base_pay=money(stored_base),
                add_ons=money(stored_total - stored_base),
                driver_pay=money(stored_total),
                company_revenue=revenue,
                method=method,
                pay_source="stored",
                notes=notes,
            )
        return LoadPaySplit(
            **base,
            base_pay=share,
            driver_pay=share,
            company_revenue=revenue,
            method=f"{fraction * 100:.0f}% owner-operator split",
            notes=notes,
        )

    if stored is not None:
        stored_base, stored_total, method = stored
        pay = money(stored_total)
        return LoadPaySplit(
            **base,
            base_pay=money(stored_base),
            add_ons=pay - money(stored_base),
            driver_pay=pay,
            company_revenue=gross - pay,
            method=method,
            pay_source="stored",
        )

    profile = _profile_base_pay(driver, gross, load.miles)
    if profile is None:
        logger.warning("driver_pay_unconfigured", driver_id=driver.id, load_id=load.id)
        return LoadPaySplit(
            **base,
            company_revenue=gross,
            method="unconfigured",
            pay_source="none",
            notes=["Driver has no payment configuration; pay = 0"],
        )

    base_pay, method = profile
    base_pay = money(base_pay)
    add_ons, notes = _add_ons(load, driver)
    add_ons = money(add_ons)
    pay = base_pay + add_ons
    revenue = gross - pay
    if revenue < 0:
        logger.warning(
            "negative_company_revenue",
            load_id=load.id,
            driver_id=driver.id,
            gross=str(gross),
            driver_pay=str(pay),
        )
    return LoadPaySplit(
        **base,
        base_pay=base_pay,
        add_ons=add_ons,
        driver_pay=pay,
        company_revenue=revenue,
        method=method,
        notes=notes,
    )


def driver_pay(load: Load, driver: Optional[Driver]) -> Decimal:
    """Driver pay for a load (0 without a driver or pay configuration)."""
    return split_load(load, driver).driver_pay


def company_revenue(
    gross_amount: Decimal, driver: Optional[Driver], load: Optional[Load] = None
) -> Decimal:
    """
    Company's share of ``gross_amount``.

    Args:
        gross_amount: Load gross (rate, falling back to grand total)
        driver: Assigned driver, or None (company keeps the full gross)
        load: The load, when known; needed for per-mile pay, stored pay
            and add-ons

    Returns:
        Company revenue, which may be negative for company drivers whose
        pay exceeds the gross
    """
    if load is None:
        load = Load(id="", rate=gross_amount)
    elif money(load.gross_amount) != money(gross_amount):
        load = load.model_copy(update={"rate": gross_amount, "grand_total": None})
    return split_load(load, driver).company_revenue


class PayCalculator(BaseEngine):
    """
    Pay Calculator engine.

    Splits a batch of loads and records the batch totals as a decision.
    """

    def __init__(self, **kwargs: Any) -> None:
        """Initialize the pay calculator."""
        super().__init__(engine_name="pay_calculator", **kwargs)

    def split(self, load: Load, driver: Optional[Driver]) -> LoadPaySplit:
        return split_load(load, driver)

    def calculate(
        self, loads: Iterable[Load], drivers: Iterable[Driver]
    ) -> list[LoadPaySplit]:
        """
        Split every load against its assigned driver.

        Args:
            loads: Loads to split
            drivers: Drivers the loads may reference

        Returns:
            One LoadPaySplit per load, in input order
        """
        start_time = time()
        drivers_by_id = {d.id: d for d in drivers}
        splits = []
        for load in loads:
            driver = drivers_by_id.get(load.driver_id) if load.driver_id else None
            if load.driver_id and driver is None:
                self.logger.warning("driver_not_found", load_id=load.id, driver_id=load.driver_id)
            splits.append(split_load(load, driver))

        total_pay = sum((s.driver_pay for s in splits), ZERO)
        total_revenue = sum((s.company_revenue for s in splits), ZERO)
        self.record_decision(
            decision_type="pay_split",
            input_data={"loads": len(splits), "drivers": len(drivers_by_id)},
            reasoning=f"Split {len(splits)} loads between company and drivers",
            output_data={
                "driver_pay": str(total_pay),
                "company_revenue": str(total_revenue),
            },
            started_at=start_time,
            finished_at=time(),
        )
        return splits

    def execute(self, *args: Any, **kwargs: Any) -> list[LoadPaySplit]:
        """Execute the pay split (delegates to calculate)."""
        return self.calculate(*args, **kwargs)
