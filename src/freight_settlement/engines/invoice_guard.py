"""
Invoice Lifecycle Guard - At most one invoice per load, and status over time.

This engine:
- Auto-invoices delivered loads that have a customer and a rate
- Numbers invoices PREFIX-YEAR-NNNN, skipping numbers already taken
- Sweeps pending invoices past their due date to overdue
- Marks invoices paid (manual, terminal)
- Creates manual multi-load invoices with duplicate checks

Nothing here writes to a store: every result lists what the caller should
persist.
"""

import re
import uuid
from datetime import date, datetime, timedelta
from time import time
from typing import Any, Iterable, Optional

import structlog
from pydantic import BaseModel, Field

from freight_settlement.core.config import InvoiceSettings
from freight_settlement.core.exceptions import (
    DuplicateInvoiceError,
    InvalidInvoiceTransitionError,
    InvoiceEligibilityError,
)
from freight_settlement.data.models.base import ZERO, money
from freight_settlement.data.models.invoice import OPEN_STATUSES, Invoice, InvoiceStatus
from freight_settlement.data.models.load import Load
from freight_settlement.engines.base import BaseEngine

logger = structlog.get_logger(__name__)

INVOICE_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "freight-settlement/invoice")


class LoadLink(BaseModel):
    """Invoice reference to write back onto a load."""

    load_id: str
    invoice_id: str
    invoice_number: str


class SkippedLoad(BaseModel):
    load_id: str
    reasons: list[str]


class ReconcileResult(BaseModel):
    """Everything one reconcile pass wants persisted."""

    new_invoices: list[Invoice] = Field(default_factory=list)
    status_updates: list[Invoice] = Field(default_factory=list)
    load_links: list[LoadLink] = Field(default_factory=list)
    skipped: list[SkippedLoad] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.new_invoices or self.status_updates or self.load_links)


class InvoiceDraft(BaseModel):
    """A manually requested invoice and its load links."""

    invoice: Invoice
    load_links: list[LoadLink]


def invoice_id_for_loads(load_ids: Iterable[str]) -> str:
    """Deterministic invoice id for a set of loads."""
    key = ",".join(sorted(set(load_ids)))
    return f"inv_{uuid.uuid5(INVOICE_ID_NAMESPACE, key).hex}"


def invoiced_load_ids(invoices: Iterable[Invoice]) -> dict[str, str]:
    """Map every invoiced load id to the invoice that bills it."""
    billed: dict[str, str] = {}
    for invoice in invoices:
        for load_id in invoice.referenced_load_ids:
            billed.setdefault(load_id, invoice.id)
    return billed


def next_invoice_number(
    existing_numbers: Iterable[str],
    year: int,
    prefix: str = "INV",
    sequence_start: int = 1000,
) -> str:
    """
    Next free invoice number for ``year``.

    Continues from the highest sequence already used that year (or
    ``sequence_start``) and steps past any collision.
    """
    pattern = re.compile(rf"^{re.escape(prefix)}-{year}-(\d+)$")
    taken = set(existing_numbers)
    highest = sequence_start
    for number in taken:
        match = pattern.match(number or "")
        if match:
            highest = max(highest, int(match.group(1)))

    sequence = highest + 1
    candidate = f"{prefix}-{year}-{sequence:04d}"
    while candidate in taken:
        sequence += 1
        candidate = f"{prefix}-{year}-{sequence:04d}"
    return candidate


def auto_invoice_blockers(load: Load) -> list[str]:
    """Reasons a revenue-eligible load cannot be auto-invoiced."""
    reasons = []
    if not (load.customer_name or "").strip():
        reasons.append("missing customer name")
    if load.rate <= 0:
        reasons.append("rate must be greater than 0")
    return reasons


def sweep_overdue(invoices: Iterable[Invoice], today: date) -> list[Invoice]:
    """
    Move pending invoices whose due date is strictly before ``today`` to overdue.

    Returns only the invoices that changed; running the sweep again over the
    updated set returns nothing.
    """
    updates = []
    for invoice in invoices:
        if invoice.status != InvoiceStatus.PENDING:
            continue
        if invoice.due_date is None:
            logger.debug("invoice_without_due_date", invoice_id=invoice.id)
            continue
        if invoice.is_past_due(today):
            updates.append(invoice.model_copy(update={"status": InvoiceStatus.OVERDUE}))
    return updates


def mark_paid(
    invoice: Invoice,
    paid_at: Optional[datetime] = None,
    payment_method: Optional[str] = None,
    reference: Optional[str] = None,
) -> Invoice:
    """
    Record payment of an open invoice.

    Raises:
        InvalidInvoiceTransitionError: The invoice is not pending or overdue
    """
    if invoice.status not in OPEN_STATUSES:
        raise InvalidInvoiceTransitionError(
            invoice.id, invoice.status.value, InvoiceStatus.PAID.value
        )
    return invoice.model_copy(
        update={
            "status": InvoiceStatus.PAID,
            "paid_at": paid_at or datetime.now(),
            "payment_method": payment_method,
            "payment_reference": reference,
        }
    )


def _new_invoice(
    loads: list[Load],
    invoice_number: str,
    today: date,
    settings: InvoiceSettings,
    customer_name: Optional[str],
) -> Invoice:
    first = loads[0]
    factored = any(load.is_factored for load in loads)
    return Invoice(
        id=invoice_id_for_loads(load.id for load in loads),
        invoice_number=invoice_number,
        customer_name=customer_name,
        customer_id=first.customer_id,
        load_ids=[load.id for load in loads],
        amount=money(sum((load.billable_total for load in loads), ZERO)),
        status=InvoiceStatus.PENDING,
        invoice_date=today,
        due_date=today + timedelta(days=settings.due_days),
        is_factored=factored,
        factoring_company_id=first.factoring_company_id if factored else None,
    )


def reconcile(
    loads: Iterable[Load],
    invoices: Iterable[Invoice],
    today: date,
    settings: Optional[InvoiceSettings] = None,
) -> ReconcileResult:
    """
    Invoice every qualifying load once and sweep overdue invoices.

    A load qualifies when it is revenue-eligible, has a customer name and a
    positive rate, carries no invoice_id, and no invoice lists it.

    Args:
        loads: Load snapshots
        invoices: Existing invoices
        today: Invoice date and overdue cutoff
        settings: Numbering and terms (defaults: INV, 30 days, from 1000)

    Returns:
        ReconcileResult with new invoices, overdue transitions and load links
    """
    settings = settings or InvoiceSettings()
    invoices = list(invoices)
    billed = invoiced_load_ids(invoices)
    taken_numbers = {invoice.invoice_number for invoice in invoices}
    result = ReconcileResult()

    for load in loads:
        if not load.is_revenue_eligible:
            continue
        if load.invoice_id or load.id in billed:
            continue
        reasons = auto_invoice_blockers(load)
        if reasons:
            result.skipped.append(SkippedLoad(load_id=load.id, reasons=reasons))
            continue

        number = next_invoice_number(
            taken_numbers, today.year, settings.prefix, settings.sequence_start
        )
        invoice = _new_invoice([load], number, today, settings, load.customer_name)
        taken_numbers.add(number)
        billed[load.id] = invoice.id
        result.new_invoices.append(invoice)
        result.load_links.append(
            LoadLink(load_id=load.id, invoice_id=invoice.id, invoice_number=number)
        )

    result.status_updates = sweep_overdue(invoices, today)
    return result


def create_invoice(
    loads: list[Load],
    invoices: Iterable[Invoice],
    today: date,
    settings: Optional[InvoiceSettings] = None,
) -> InvoiceDraft:
    """
    Create one invoice billing several loads.

    Raises:
        InvoiceEligibilityError: No loads, or a load is not delivered/completed
        DuplicateInvoiceError: A load is already billed
    """
    settings = settings or InvoiceSettings()
    invoices = list(invoices)
    if not loads:
        raise InvoiceEligibilityError("", ["no loads selected"])

    billed = invoiced_load_ids(invoices)
    for load in loads:
        existing = load.invoice_id or billed.get(load.id)
        if existing:
            raise DuplicateInvoiceError(load.id, existing)
        if not load.is_revenue_eligible:
            raise InvoiceEligibilityError(load.id, [f"status is {load.status.value}"])

    first = loads[0]
    customer = first.customer_name or first.broker_name
    number = next_invoice_number(
        (invoice.invoice_number for invoice in invoices),
        today.year,
        settings.prefix,
        settings.sequence_start,
    )
    invoice = _new_invoice(loads, number, today, settings, customer)
    links = [
        LoadLink(load_id=load.id, invoice_id=invoice.id, invoice_number=number)
        for load in loads
    ]
    return InvoiceDraft(invoice=invoice, load_links=links)


class InvoiceGuard(BaseEngine):
    """
    Invoice Lifecycle Guard engine.

    Applies the configured numbering and terms, and logs every invoice
    created and every status change.
    """

    def __init__(self, **kwargs: Any) -> None:
        """Initialize the invoice guard."""
        super().__init__(engine_name="invoice_guard", **kwargs)

    @property
    def settings(self) -> InvoiceSettings:
        return self.config_manager.get_invoice_settings()

    def reconcile(
        self, loads: Iterable[Load], invoices: Iterable[Invoice], today: date
    ) -> ReconcileResult:
        """Run one reconcile pass (see module ``reconcile``)."""
        start_time = time()
        result = reconcile(loads, invoices, today, self.settings)

        for invoice in result.new_invoices:
            self.logger.info(
                "invoice_created",
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                load_ids=invoice.load_ids,
                amount=str(invoice.amount),
            )
        for invoice in result.status_updates:
            self.logger.info(
                "invoice_overdue", invoice_id=invoice.id, due_date=str(invoice.due_date)
            )
        for skipped in result.skipped:
            self.logger.warning(
                "auto_invoice_skipped", load_id=skipped.load_id, reasons=skipped.reasons
            )

        self.record_decision(
            decision_type="invoice_reconcile",
            input_data={"today": str(today)},
            reasoning=(
                f"Created {len(result.new_invoices)} invoices, "
                f"marked {len(result.status_updates)} overdue"
            ),
            output_data={
                "new_invoices": [i.invoice_number for i in result.new_invoices],
                "overdue": [i.id for i in result.status_updates],
            },
            started_at=start_time,
            finished_at=time(),
        )
        return result

    def sweep_overdue(self, invoices: Iterable[Invoice], today: date) -> list[Invoice]:
        updates = sweep_overdue(invoices, today)
        for invoice in updates:
            self.logger.info(
                "invoice_overdue", invoice_id=invoice.id, due_date=str(invoice.due_date)
            )
        return updates

    def mark_paid(
        self,
        invoice: Invoice,
        paid_at: Optional[datetime] = None,
        payment_method: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> Invoice:
        try:
            paid = mark_paid(invoice, paid_at, payment_method, reference)
        except InvalidInvoiceTransitionError as e:
            self.logger.warning(
                "invoice_transition_rejected",
                invoice_id=e.invoice_id,
                from_status=e.from_status,
                to_status=e.to_status,
            )
            raise
        self.logger.info(
            "invoice_paid", invoice_id=paid.id, paid_at=paid.paid_at.isoformat()
        )
        return paid

    def create_invoice(
        self, loads: list[Load], invoices: Iterable[Invoice], today: date
    ) -> InvoiceDraft:
        draft = create_invoice(loads, invoices, today, self.settings)
        self.logger.info(
            "invoice_created",
            invoice_id=draft.invoice.id,
            invoice_number=draft.invoice.invoice_number,
            load_ids=draft.invoice.load_ids,
            amount=str(draft.invoice.amount),
        )
        return draft

    def execute(self, *args: Any, **kwargs: Any) -> ReconcileResult:
        """Execute a reconcile pass (delegates to reconcile)."""
        return self.reconcile(*args, **kwargs)
