"""
Pydantic data models for settlement and workflow.

Core models:
- Load: Freight shipment and the money attached to it
- Driver: Driver and pay configuration
- Settlement: Driver pay for a period
- Invoice: Customer bill for one or more loads
- Expense: Cost tracking
- FactoringCompany: Invoice factor
- Task / WorkflowRule / WorkflowEvent: Follow-up work and what creates it
"""

from typing import Any, Iterable, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from .base import DateOnly, RecordModel, money, parse_date_only
from .driver import (
    DeductionPreferences,
    Driver,
    DriverType,
    FlatRatePayment,
    Payment,
    PercentagePayment,
    PerMilePayment,
    normalize_pay_fraction,
    parse_payment,
)
from .expense import Expense, ExpensePaidBy, ExpenseStatus
from .factoring import FactoringCompany
from .invoice import Invoice, InvoiceStatus
from .load import CommissionType, DocumentType, Load, LoadDocument, LoadStatus
from .settlement import (
    OtherEarning,
    PayStatus,
    Settlement,
    SettlementLine,
    SettlementStatus,
    SettlementType,
    settlement_entitlement,
)
from .task import (
    EntityType,
    Task,
    TaskPriority,
    TaskRequest,
    TaskStatus,
    make_dedupe_key,
    task_id_from_dedupe_key,
)
from .workflow import (
    AssignTarget,
    RuleFilter,
    TaskAction,
    WorkflowEvent,
    WorkflowEventType,
    WorkflowRule,
)

ModelT = TypeVar("ModelT", bound=BaseModel)

_logger = structlog.get_logger(__name__)


def ingest_records(model: type[ModelT], raw_items: Iterable[Any]) -> list[ModelT]:
    """
    Validate a batch of raw records, skipping the ones that fail.

    Items that are already instances of ``model`` pass through untouched.
    A malformed record is logged and dropped so one bad row never aborts
    the batch.
    """
    records: list[ModelT] = []
    for position, raw in enumerate(raw_items):
        if isinstance(raw, model):
            records.append(raw)
            continue
        try:
            records.append(model.model_validate(raw))
        except ValidationError as e:
            record_id = raw.get("id") if isinstance(raw, dict) else None
            _logger.warning(
                "record_skipped",
                model=model.__name__,
                position=position,
                record_id=record_id,
                errors=e.error_count(),
            )
    return records


__all__ = [
    "AssignTarget",
    "CommissionType",
    "DateOnly",
    "DeductionPreferences",
    "DocumentType",
    "Driver",
    "DriverType",
    "EntityType",
    "Expense",
    "ExpensePaidBy",
    "ExpenseStatus",
    "FactoringCompany",
    "FlatRatePayment",
    "Invoice",
    "InvoiceStatus",
    "Load",
    "LoadDocument",
    "LoadStatus",
    "OtherEarning",
    "PayStatus",
    "Payment",
    "PerMilePayment",
    "PercentagePayment",
    "RecordModel",
    "RuleFilter",
    "Settlement",
    "SettlementLine",
    "SettlementStatus",
    "SettlementType",
    "Task",
    "TaskAction",
    "TaskPriority",
    "TaskRequest",
    "TaskStatus",
    "WorkflowEvent",
    "WorkflowEventType",
    "WorkflowRule",
    "ingest_records",
    "make_dedupe_key",
    "money",
    "normalize_pay_fraction",
    "parse_date_only",
    "parse_payment",
    "settlement_entitlement",
    "task_id_from_dedupe_key",
]
