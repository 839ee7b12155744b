"""
Guardrails - Checks run before invoicing or dispatching a load.

A failed check yields a ``blocked`` task request whose blockers are condition
keys, so the task clears itself once the load is fixed.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from freight_settlement.data.models.invoice import Invoice
from freight_settlement.data.models.load import Load
from freight_settlement.data.models.task import (
    EntityType,
    TaskPriority,
    TaskRequest,
    TaskStatus,
)
from freight_settlement.engines.checklist import condition_satisfied

BLOCKER_REASONS = {
    "DELIVERY_DATE_REQUIRED": "Missing delivery date",
    "CUSTOMER_REQUIRED": "Missing broker/customer",
    "RATE_REQUIRED": "Invalid rate (must be greater than 0)",
    "POD_REQUIRED": "Missing POD",
    "DRIVER_REQUIRED": "Missing driver assignment",
    "BOL_REQUIRED": "Missing BOL",
    "PICKUP_DATE_REQUIRED": "Missing pickup date",
}

INVOICE_CONDITIONS = ("DELIVERY_DATE_REQUIRED", "CUSTOMER_REQUIRED", "RATE_REQUIRED", "POD_REQUIRED")
DISPATCH_CONDITIONS = ("DRIVER_REQUIRED", "BOL_REQUIRED", "PICKUP_DATE_REQUIRED")


class GuardrailResult(BaseModel):
    ok: bool
    blockers: list[str] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)
    task_request: Optional[TaskRequest] = None


def _check(
    load: Load,
    conditions: tuple[str, ...],
    template_key: str,
    action: str,
    tags: list[str],
    tenant_id: str,
    occurred_at: Optional[datetime],
) -> GuardrailResult:
    blockers = [key for key in conditions if not condition_satisfied(key, load)]
    if not blockers:
        return GuardrailResult(ok=True)

    reasons = [BLOCKER_REASONS[key] for key in blockers]
    label = load.load_number or load.id
    request = TaskRequest(
        tenant_id=tenant_id,
        entity_type=EntityType.LOAD,
        entity_id=load.id,
        template_key=template_key,
        title=f"{action.capitalize()} blocked for Load {label}",
        description=f"Cannot {action} due to: {', '.join(reasons)}",
        priority=TaskPriority.HIGH,
        status=TaskStatus.BLOCKED,
        blockers=blockers,
        tags=tags,
        requested_at=occurred_at,
    )
    return GuardrailResult(ok=False, blockers=blockers, reasons=reasons, task_request=request)


def check_can_invoice(
    load: Load, tenant_id: str = "default", occurred_at: Optional[datetime] = None
) -> GuardrailResult:
    """Delivery date, customer, positive rate and POD are needed to invoice."""
    return _check(
        load,
        INVOICE_CONDITIONS,
        "INVOICE_BLOCKED",
        "invoice",
        ["invoice", "blocked", "load"],
        tenant_id,
        occurred_at,
    )


def check_can_dispatch(
    load: Load, tenant_id: str = "default", occurred_at: Optional[datetime] = None
) -> GuardrailResult:
    """Driver, BOL and pickup date are needed to dispatch."""
    return _check(
        load,
        DISPATCH_CONDITIONS,
        "DISPATCH_BLOCKED",
        "dispatch",
        ["dispatch", "blocked", "load"],
        tenant_id,
        occurred_at,
    )


def validate_invoice_requirements(invoice: Invoice) -> GuardrailResult:
    """Customer name, positive amount and invoice date."""
    reasons = []
    if not invoice.customer_name:
        reasons.append("Missing customer name")
    if invoice.amount <= 0:
        reasons.append("Invalid invoice amount")
    if invoice.invoice_date is None:
        reasons.append("Missing invoice date")
    return GuardrailResult(ok=not reasons, reasons=reasons)
