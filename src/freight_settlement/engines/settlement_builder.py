"""
Settlement Builder - Draft driver settlements for a pay period.

This engine:
- Validates settlement input (pay configuration, loads, period)
- Builds per-load pay lines with detention/layover/TONU pass-through
- Folds approved company-paid expenses into deduction categories
- Computes net pay and pay status
- Generates settlement notes for the driver
"""

from datetime import date
from decimal import Decimal
from time import time
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field

from freight_settlement.core.exceptions import SettlementValidationError
from freight_settlement.data.models.base import ZERO, money, parse_date_only
from freight_settlement.data.models.driver import Driver
from freight_settlement.data.models.expense import Expense, ExpensePaidBy, ExpenseStatus
from freight_settlement.data.models.load import Load
from freight_settlement.data.models.settlement import (
    DEDUCTION_CATEGORIES,
    OtherEarning,
    PayStatus,
    Settlement,
    SettlementLine,
    SettlementStatus,
    SettlementType,
    deduction_key,
)
from freight_settlement.engines.base import BaseEngine
from freight_settlement.engines.pay_calculator import split_load

# Expense type -> deduction category
EXPENSE_DEDUCTION_CATEGORY = {
    "fuel": "fuel",
    "maintenance": "repairs",
    "insurance": "insurance",
    "toll": "toll",
}


class SettlementValidation(BaseModel):
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


class SettlementDraft(BaseModel):
    """A built settlement plus what the builder noticed along the way."""

    settlement: Settlement
    total_miles: Decimal
    effective_rate: Decimal = Field(..., description="Gross pay per mile")
    warnings: list[str] = Field(default_factory=list)


def validate_settlement_input(
    driver: Optional[Driver],
    loads: list[Load],
    period_start: Optional[date],
    period_end: Optional[date],
) -> SettlementValidation:
    """Check settlement input; errors block the build, warnings do not."""
    result = SettlementValidation()

    if driver is None:
        result.errors.append("Driver is required for settlement calculation")
    elif not driver.has_pay_configuration:
        result.errors.append(f"Driver {driver.full_name} has no payment configuration")

    if not loads:
        result.errors.append("At least one load is required for settlement")
    else:
        undelivered = [l for l in loads if not l.is_revenue_eligible]
        if undelivered:
            result.warnings.append(
                f"{len(undelivered)} load(s) are not yet delivered: "
                f"{', '.join(l.load_number or l.id for l in undelivered)}"
            )
        settled = [l for l in loads if l.settlement_id]
        if settled:
            result.warnings.append(
                f"{len(settled)} load(s) already have settlements: "
                f"{', '.join(l.load_number or l.id for l in settled)}"
            )
        if driver is not None:
            other_driver = [l for l in loads if l.driver_id and l.driver_id != driver.id]
            if other_driver:
                result.errors.append(
                    f"{len(other_driver)} load(s) are assigned to a different driver"
                )

    if period_start is None or period_end is None:
        result.errors.append("Settlement period start and end dates are required")
    elif period_start > period_end:
        result.errors.append("Period start date must be before end date")

    return result


def build_line(load: Load, driver: Driver) -> SettlementLine:
    """Pay line for one load: base pay plus 100% accessorial pass-through."""
    if load.driver_base_pay:
        base_pay = money(load.driver_base_pay)
        method = "stored base pay"
    else:
        profile = split_load(
            load.model_copy(update={"driver_total_gross": None, "driver_base_pay": None}),
            driver,
        )
        base_pay = profile.base_pay
        method = profile.method

    detention = money(load.driver_detention_pay)
    layover = money(load.driver_layover_pay)
    tonu = money(load.tonu_fee)
    return SettlementLine(
        load_id=load.id,
        load_number=load.load_number,
        base_pay=base_pay,
        detention=detention,
        layover=layover,
        tonu=tonu,
        total_pay=base_pay + detention + layover + tonu,
        miles=load.miles,
        delivery_date=load.delivery_date,
        calculation_method=method,
    )


def build_deductions(
    deductions: Optional[dict[str, Any]], expenses: Iterable[Expense]
) -> dict[str, Decimal]:
    """Every deduction category, with approved company-paid expenses folded in."""
    result = {category: ZERO for category in DEDUCTION_CATEGORIES}
    for name, amount in (deductions or {}).items():
        if amount is None:
            continue
        category = deduction_key(name)
        key = category if category in result else "other"
        result[key] += Decimal(str(amount))

    for expense in expenses:
        if expense.paid_by != ExpensePaidBy.COMPANY or expense.status != ExpenseStatus.APPROVED:
            continue
        category = EXPENSE_DEDUCTION_CATEGORY.get(expense.type, "other")
        result[category] += expense.amount

    return {category: money(amount) for category, amount in result.items()}


def pay_status_for(net_pay: Decimal) -> PayStatus:
    if net_pay > 0:
        return PayStatus.OWED_TO_DRIVER
    if net_pay < 0:
        return PayStatus.DRIVER_OWES
    return PayStatus.SETTLED


def settlement_notes(
    driver: Driver, gross_pay: Decimal, total_deductions: Decimal, net_pay: Decimal
) -> list[str]:
    """Generate notes for the settlement statement."""
    notes = []

    if driver.payment is not None:
        notes.append(f"Pay type: {driver.payment.type}")
    notes.append(f"Gross earnings: ${gross_pay:.2f}")
    if total_deductions > 0:
        notes.append(f"Total deductions: ${total_deductions:.2f}")

    if net_pay > 0:
        notes.append(f"Amount owed to driver: ${net_pay:.2f}")
    elif net_pay < 0:
        notes.append(f"Driver owes company: ${abs(net_pay):.2f}")
    else:
        notes.append("Settlement is balanced")
    return notes


def build_settlement(
    driver: Optional[Driver],
    loads: list[Load],
    period_start: date | str,
    period_end: date | str,
    deductions: Optional[dict[str, Any]] = None,
    other_earnings: Optional[list[OtherEarning | dict[str, Any]]] = None,
    expenses: Optional[list[Expense]] = None,
) -> SettlementDraft:
    """
    Build a draft driver settlement.

    Args:
        driver: Driver being paid
        loads: Loads the settlement pays
        period_start: Pay period start
        period_end: Pay period end
        deductions: Manual deductions by category (camelCase or snake_case)
        other_earnings: Bonuses, reimbursements and similar
        expenses: Expenses to fold into deductions

    Returns:
        SettlementDraft with the settlement and any validation warnings

    Raises:
        SettlementValidationError: The input cannot produce a settlement
    """
    start = parse_date_only(period_start)
    end = parse_date_only(period_end)
    validation = validate_settlement_input(driver, loads, start, end)
    if not validation.valid:
        raise SettlementValidationError(validation.errors)

    lines = [build_line(load, driver) for load in loads]
    total_miles = sum((line.miles for line in lines), ZERO)
    gross_pay = sum((line.total_pay for line in lines), ZERO)

    deduction_map = build_deductions(deductions, expenses or [])
    total_deductions = sum(deduction_map.values(), ZERO)

    earnings = [
        e if isinstance(e, OtherEarning) else OtherEarning.model_validate(e)
        for e in (other_earnings or [])
    ]
    total_other = money(sum((e.amount for e in earnings), ZERO))

    net_pay = gross_pay + total_other - total_deductions
    effective_rate = money(gross_pay / total_miles) if total_miles else ZERO

    settlement = Settlement(
        id=f"settlement_{driver.id}_{start:%Y%m%d}_{end:%Y%m%d}",
        settlement_number=f"SETTLE-{driver.id}-{end:%Y%m%d}",
        type=SettlementType.DRIVER,
        driver_id=driver.id,
        payee_id=driver.id,
        payee_name=driver.full_name,
        period_start=start,
        period_end=end,
        load_refs=frozenset(load.id for load in loads),
        loads=lines,
        gross_pay=gross_pay,
        deductions=deduction_map,
        total_deductions=total_deductions,
        other_earnings=earnings,
        net_pay=net_pay,
        status=SettlementStatus.DRAFT,
        pay_status=pay_status_for(net_pay),
        notes=settlement_notes(driver, gross_pay, total_deductions, net_pay),
    )
    return SettlementDraft(
        settlement=settlement,
        total_miles=total_miles,
        effective_rate=effective_rate,
        warnings=validation.warnings,
    )


class SettlementBuilder(BaseEngine):
    """Settlement Builder engine for driver pay statements."""

    def __init__(self, **kwargs: Any) -> None:
        """Initialize the settlement builder."""
        super().__init__(engine_name="settlement_builder", **kwargs)

    def calculate_settlement(
        self,
        driver: Optional[Driver],
        loads: list[Load],
        period_start: date | str,
        period_end: date | str,
        deductions: Optional[dict[str, Any]] = None,
        other_earnings: Optional[list[OtherEarning | dict[str, Any]]] = None,
        expenses: Optional[list[Expense]] = None,
    ) -> SettlementDraft:
        """
        Calculate a driver settlement for a period.

        Validation failures are logged before the error propagates.
        """
        start_time = time()

        self.logger.info(
            "calculating_settlement",
            driver_id=driver.id if driver else None,
            loads=len(loads),
            expenses=len(expenses or []),
        )
        try:
            draft = build_settlement(
                driver, loads, period_start, period_end, deductions, other_earnings, expenses
            )
        except SettlementValidationError as e:
            self.logger.warning("settlement_validation_failed", errors=e.errors)
            raise

        for warning in draft.warnings:
            self.logger.warning("settlement_warning", driver_id=driver.id, warning=warning)

        settlement = draft.settlement
        self.record_decision(
            decision_type="settlement_calculation",
            input_data={"driver_id": driver.id, "loads": len(loads)},
            reasoning=f"Calculated settlement for {len(loads)} loads",
            output_data={
                "gross_pay": str(settlement.gross_pay),
                "net_pay": str(settlement.net_pay),
                "pay_status": settlement.pay_status.value,
            },
            started_at=start_time,
            finished_at=time(),
        )
        return draft

    def execute(self, *args: Any, **kwargs: Any) -> SettlementDraft:
        """Execute settlement calculation (delegates to calculate_settlement)."""
        return self.calculate_settlement(*args, **kwargs)
