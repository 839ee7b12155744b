"""
Settlement Aggregator - Period income, expense and profit summaries.

This engine:
- Selects revenue-eligible loads delivered (or picked up) in a period
- Totals company revenue with company-driver / owner-operator breakdowns
- Takes driver pay from settlements covering the period, else estimates it
- Totals company expenses, factoring fees and dispatcher commission
- Reports profit, margin, per-load and per-mile averages
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from time import time
from typing import Any, Iterable, Optional

import structlog
from pydantic import BaseModel, Field, computed_field

from freight_settlement.data.models.base import ZERO, money, parse_date_only
from freight_settlement.data.models.driver import Driver
from freight_settlement.data.models.expense import Expense, ExpenseStatus
from freight_settlement.data.models.factoring import FactoringCompany
from freight_settlement.data.models.load import CommissionType, Load
from freight_settlement.data.models.settlement import Settlement, settlement_entitlement
from freight_settlement.engines.base import BaseEngine
from freight_settlement.engines.pay_calculator import LoadPaySplit, split_load

logger = structlog.get_logger(__name__)

DEFAULT_FACTORING_FEE_PERCENT = Decimal("2.5")
DEFAULT_PASS_THROUGH_TYPES = frozenset({"fuel", "insurance", "toll", "maintenance", "eld"})
TOP_CUSTOMER_LIMIT = 10

MARGIN_PLACES = Decimal("0.0001")


class CustomerRevenue(BaseModel):
    name: str
    revenue: Decimal
    loads: int


class PeriodSummary(BaseModel):
    """
    Money and counts for one reporting period.

    ``total_driver_pay`` comes either entirely from settlements or entirely
    from estimates; ``is_estimated`` says which. When settlements are used,
    driver loads that none of them cover add no pay at all: they are listed
    in ``unsettled_load_ids`` and ``net_profit`` is overstated by their pay
    until a settlement for them exists.

    ``net_profit`` is gross revenue minus expenses minus driver pay, and
    ``profit_margin`` is taken against gross revenue.
    """

    period_start: date
    period_end: date

    # Revenue
    gross_revenue: Decimal = Field(ZERO, description="Sum of load gross")
    total_revenue: Decimal = Field(ZERO, description="Company share of gross")
    company_driver_revenue: Decimal = ZERO
    owner_operator_gross: Decimal = ZERO
    owner_operator_commission: Decimal = ZERO

    # Driver pay
    total_driver_pay: Decimal = ZERO
    company_driver_pay: Decimal = ZERO
    owner_operator_pay: Decimal = ZERO
    is_estimated: bool = False
    driver_pay_source: str = Field("settlements", description="settlements or estimated")
    matched_settlement_ids: list[str] = Field(default_factory=list)
    unsettled_load_ids: list[str] = Field(default_factory=list)

    # Expenses
    company_expenses: Decimal = ZERO
    expense_breakdown: dict[str, Decimal] = Field(default_factory=dict)
    factoring_expenses: Decimal = ZERO
    dispatcher_commission: Decimal = ZERO

    # Profit
    net_profit: Decimal = ZERO
    profit_margin: Decimal = Field(ZERO, description="net_profit / gross_revenue (fraction)")

    # Counts
    loads_completed: int = 0
    total_miles: Decimal = ZERO
    unique_customers: int = 0
    unique_drivers: int = 0

    negative_margin_loads: list[str] = Field(default_factory=list)
    revenue_by_month: dict[str, Decimal] = Field(default_factory=dict)
    top_customers: list[CustomerRevenue] = Field(default_factory=list)
    skipped_records: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def total_expenses(self) -> Decimal:
        """Company expenses plus factoring fees plus dispatcher commission."""
        return self.company_expenses + self.factoring_expenses + self.dispatcher_commission

    @computed_field
    @property
    def avg_revenue_per_load(self) -> Decimal:
        if not self.loads_completed:
            return ZERO
        return money(self.total_revenue / self.loads_completed)

    @computed_field
    @property
    def avg_miles_per_load(self) -> Decimal:
        if not self.loads_completed:
            return ZERO
        return money(self.total_miles / self.loads_completed)

    @computed_field
    @property
    def revenue_per_mile(self) -> Decimal:
        if not self.total_miles:
            return ZERO
        return money(self.total_revenue / self.total_miles)


def in_period(value: Optional[date], period_start: date, period_end: date) -> bool:
    return value is not None and period_start <= value <= period_end


def factoring_fee(
    load: Load,
    factoring_companies: dict[str, FactoringCompany],
    fallback_percent: Decimal = DEFAULT_FACTORING_FEE_PERCENT,
) -> Decimal:
    """
    Factoring cost of a load.

    Explicit fee first; otherwise billable total x percent, the percent taken
    from the load, then its factoring company, then ``fallback_percent``.
    """
    if not load.is_factored:
        return ZERO
    if load.factoring_fee:
        return money(load.factoring_fee)

    percent = load.factoring_fee_percent
    if not percent and load.factoring_company_id:
        company = factoring_companies.get(load.factoring_company_id)
        if company is not None and company.fee_percentage:
            percent = company.fee_percentage
    if not percent:
        percent = fallback_percent
    return money(load.billable_total * percent / Decimal("100"))


def dispatcher_commission(load: Load) -> Decimal:
    """Dispatcher commission on a load: stored amount, else by commission type."""
    if load.dispatcher_commission_amount:
        return money(load.dispatcher_commission_amount)
    rate = load.dispatcher_commission_rate
    if not rate or load.dispatcher_commission_type is None:
        return ZERO
    if load.dispatcher_commission_type == CommissionType.PERCENTAGE:
        # Commission percentages are entered as e.g. 10 for 10%
        return money(load.gross_amount * rate / Decimal("100"))
    if load.dispatcher_commission_type == CommissionType.FLAT_FEE:
        return money(rate)
    return money(rate * load.miles)


def is_pass_through(
    expense: Expense, driver: Optional[Driver], pass_through_types: frozenset[str]
) -> bool:
    """An owner-operator's own operating cost, outside the company P&L."""
    if driver is None or not driver.is_owner_operator:
        return False
    if expense.type in pass_through_types:
        return True
    description = (expense.description or "").lower().split()
    return "eld" in pass_through_types and "eld" in description


def aggregate(
    period_start: date | str,
    period_end: date | str,
    loads: Iterable[Load],
    drivers: Iterable[Driver],
    settlements: Iterable[Settlement],
    expenses: Iterable[Expense],
    factoring_companies: Iterable[FactoringCompany],
    factoring_fallback_percent: Decimal = DEFAULT_FACTORING_FEE_PERCENT,
    pass_through_types: Iterable[str] = DEFAULT_PASS_THROUGH_TYPES,
) -> PeriodSummary:
    """
    Summarize income, driver pay, expenses and profit for a period.

    Args:
        period_start: First day of the period (inclusive)
        period_end: Last day of the period (inclusive)
        loads: Load snapshots
        drivers: Driver snapshots
        settlements: Settlement snapshots
        expenses: Expense snapshots
        factoring_companies: Factoring company snapshots
        factoring_fallback_percent: Fee percent when neither the load nor
            its factoring company carries one
        pass_through_types: Expense types excluded for owner-operators

    Returns:
        PeriodSummary for the period
    """
    start = parse_date_only(period_start)
    end = parse_date_only(period_end)
    pass_through = frozenset(t.lower() for t in pass_through_types)
    drivers_by_id = {d.id: d for d in drivers}
    factors_by_id = {f.id: f for f in factoring_companies}
    skipped: list[str] = []

    # 1. Loads in period
    selected = [
        load
        for load in loads
        if load.is_revenue_eligible and in_period(load.effective_date, start, end)
    ]
    selected_ids = frozenset(load.id for load in selected)

    # 2. Revenue
    splits: dict[str, LoadPaySplit] = {}
    gross_revenue = total_revenue = ZERO
    company_driver_revenue = owner_operator_gross = owner_operator_commission = ZERO
    factoring_total = commission_total = ZERO
    total_miles = ZERO
    by_month: dict[str, Decimal] = defaultdict(lambda: ZERO)
    by_customer: dict[str, list] = {}

    for load in selected:
        driver = drivers_by_id.get(load.driver_id) if load.driver_id else None
        try:
            split = split_load(load, driver)
            fee = factoring_fee(load, factors_by_id, factoring_fallback_percent)
            commission = dispatcher_commission(load)
        except ArithmeticError as e:
            logger.warning("load_skipped", load_id=load.id, error=str(e))
            skipped.append(load.id)
            continue

        splits[load.id] = split
        gross_revenue += split.gross
        total_revenue += split.company_revenue
        if driver is not None and driver.is_owner_operator:
            owner_operator_gross += split.gross
            owner_operator_commission += split.company_revenue
        else:
            company_driver_revenue += split.company_revenue
        factoring_total += fee
        commission_total += commission
        total_miles += load.miles

        month = load.effective_date.strftime("%Y-%m")
        by_month[month] += split.gross
        if load.customer_name:
            entry = by_customer.setdefault(load.customer_name, [ZERO, 0])
            entry[0] += split.gross
            entry[1] += 1

    counted = [load for load in selected if load.id in splits]

    # 3. Driver pay
    matched = [
        s for s in settlements if s.is_driver_settlement and s.covers(selected_ids)
    ]
    company_driver_pay = owner_operator_pay = ZERO
    settled_ids: set[str] = set()

    if matched:
        is_estimated = False
        for settlement in matched:
            settled_ids |= settlement.load_refs
            driver = drivers_by_id.get(settlement.payee)
            if driver is None:
                logger.warning(
                    "settlement_driver_not_found",
                    settlement_id=settlement.id,
                    driver_id=settlement.payee,
                )
                continue
            amount = settlement_entitlement(settlement, driver)
            if driver.is_owner_operator:
                owner_operator_pay += amount
            else:
                company_driver_pay += amount
    else:
        is_estimated = True
        for load in counted:
            driver = drivers_by_id.get(load.driver_id) if load.driver_id else None
            if driver is None:
                continue
            if driver.is_owner_operator:
                owner_operator_pay += splits[load.id].driver_pay
            else:
                company_driver_pay += splits[load.id].driver_pay

    total_driver_pay = company_driver_pay + owner_operator_pay
    unsettled = sorted(
        load.id for load in counted if load.driver_id and load.id not in settled_ids
    )
    if matched and unsettled:
        logger.warning(
            "driver_pay_missing_for_loads",
            unsettled_load_ids=unsettled,
            matched_settlement_ids=sorted(s.id for s in matched),
        )

    # 4. Company expenses
    breakdown: dict[str, Decimal] = defaultdict(lambda: ZERO)
    company_expenses = ZERO
    for expense in expenses:
        if expense.status == ExpenseStatus.REJECTED:
            continue
        if not in_period(expense.date, start, end):
            continue
        if not expense.counts_for_company:
            continue
        driver = drivers_by_id.get(expense.driver_id) if expense.driver_id else None
        if is_pass_through(expense, driver, pass_through):
            continue
        company_expenses += expense.amount
        breakdown[expense.type] += expense.amount

    # 5-7. Profit from gross; company revenue already excludes driver pay
    company_expenses = money(company_expenses)
    net_profit = (
        gross_revenue
        - (company_expenses + factoring_total + commission_total)
        - total_driver_pay
    )
    if gross_revenue == 0:
        margin = ZERO
    else:
        margin = (net_profit / gross_revenue).quantize(MARGIN_PLACES)

    top_customers = sorted(
        (
            CustomerRevenue(name=name, revenue=revenue, loads=count)
            for name, (revenue, count) in by_customer.items()
        ),
        key=lambda c: (-c.revenue, c.name),
    )[:TOP_CUSTOMER_LIMIT]

    return PeriodSummary(
        period_start=start,
        period_end=end,
        gross_revenue=gross_revenue,
        total_revenue=total_revenue,
        company_driver_revenue=company_driver_revenue,
        owner_operator_gross=owner_operator_gross,
        owner_operator_commission=owner_operator_commission,
        total_driver_pay=money(total_driver_pay),
        company_driver_pay=money(company_driver_pay),
        owner_operator_pay=money(owner_operator_pay),
        is_estimated=is_estimated,
        driver_pay_source="estimated" if is_estimated else "settlements",
        matched_settlement_ids=sorted(s.id for s in matched),
        unsettled_load_ids=unsettled,
        company_expenses=company_expenses,
        expense_breakdown={k: money(v) for k, v in sorted(breakdown.items())},
        factoring_expenses=factoring_total,
        dispatcher_commission=commission_total,
        net_profit=money(net_profit),
        profit_margin=margin,
        loads_completed=len(counted),
        total_miles=total_miles,
        unique_customers=len({load.customer_name for load in counted if load.customer_name}),
        unique_drivers=len({load.driver_id for load in counted if load.driver_id}),
        negative_margin_loads=sorted(
            load_id for load_id, split in splits.items() if split.is_negative_margin
        ),
        revenue_by_month=dict(sorted(by_month.items())),
        top_customers=top_customers,
        skipped_records=skipped,
    )


class SettlementAggregator(BaseEngine):
    """
    Settlement Aggregator engine.

    Reads the factoring fallback and pass-through categories from
    configuration and records each summary as a decision.
    """

    def __init__(self, **kwargs: Any) -> None:
        """Initialize the settlement aggregator."""
        super().__init__(engine_name="settlement_aggregator", **kwargs)

    def aggregate(
        self,
        period_start: date | str,
        period_end: date | str,
        loads: Iterable[Load],
        drivers: Iterable[Driver],
        settlements: Iterable[Settlement],
        expenses: Iterable[Expense],
        factoring_companies: Iterable[FactoringCompany],
    ) -> PeriodSummary:
        """Summarize a period using configured fallbacks (see module ``aggregate``)."""
        start_time = time()
        factoring = self.config_manager.get_factoring_settings()
        expense_settings = self.config_manager.get_expense_settings()

        self.logger.info(
            "aggregating_period",
            period_start=str(period_start),
            period_end=str(period_end),
        )
        summary = aggregate(
            period_start,
            period_end,
            loads,
            drivers,
            settlements,
            expenses,
            factoring_companies,
            factoring_fallback_percent=factoring.default_fee_percent,
            pass_through_types=expense_settings.pass_through_types,
        )

        if summary.is_estimated and summary.loads_completed:
            self.logger.info("driver_pay_estimated", loads=summary.loads_completed)
        if summary.negative_margin_loads:
            self.logger.warning(
                "negative_margin_loads", load_ids=summary.negative_margin_loads
            )

        self.record_decision(
            decision_type="period_summary",
            input_data={
                "period_start": str(summary.period_start),
                "period_end": str(summary.period_end),
            },
            reasoning=(
                f"Summarized {summary.loads_completed} loads, "
                f"driver pay from {summary.driver_pay_source}"
            ),
            output_data={
                "total_revenue": str(summary.total_revenue),
                "total_driver_pay": str(summary.total_driver_pay),
                "net_profit": str(summary.net_profit),
                "is_estimated": summary.is_estimated,
            },
            started_at=start_time,
            finished_at=time(),
        )
        return summary

    def execute(self, *args: Any, **kwargs: Any) -> PeriodSummary:
        """Execute the period summary (delegates to aggregate)."""
        return self.aggregate(*args, **kwargs)
