"""
Lifecycle Coordinator - Explicit dispatch from record changes to follow-ups.

Given a load's previous and current snapshot, work out which workflow events
happened, which tasks they call for, which blocked tasks have cleared, and
whether the load should now be invoiced. Invoice sweeps and payments go
through the same path. The outcome lists everything the caller should
persist; nothing is written here.
"""

from datetime import date, datetime
from time import time
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field

from freight_settlement.core.config import InvoiceSettings
from freight_settlement.data.models.driver import Driver
from freight_settlement.data.models.invoice import Invoice
from freight_settlement.data.models.load import Load, LoadDocument
from freight_settlement.data.models.task import EntityType, Task, TaskStatus
from freight_settlement.data.models.workflow import (
    WorkflowEvent,
    WorkflowEventType,
    WorkflowRule,
)
from freight_settlement.data.workflow_rules import default_workflow_rules
from freight_settlement.engines import invoice_guard, task_machine
from freight_settlement.engines.base import BaseEngine
from freight_settlement.engines.invoice_guard import ReconcileResult
from freight_settlement.engines.workflow_engine import (
    document_uploaded_event,
    evaluate,
    invoice_event,
    load_created_event,
    load_delivered_event,
    load_status_changed_event,
)


class LifecycleOutcome(BaseModel):
    """Everything one lifecycle step wants persisted."""

    events: list[WorkflowEvent] = Field(default_factory=list)
    new_tasks: list[Task] = Field(default_factory=list)
    updated_tasks: list[Task] = Field(default_factory=list)
    invoices: ReconcileResult = Field(default_factory=ReconcileResult)

    @property
    def is_empty(self) -> bool:
        return not (self.events or self.new_tasks or self.updated_tasks) and self.invoices.is_empty


def _document_key(document: LoadDocument) -> tuple:
    return (document.id, document.type, document.file_name)


def new_documents(previous: Optional[Load], current: Load) -> list[LoadDocument]:
    """Documents on ``current`` that ``previous`` did not have."""
    seen = {_document_key(d) for d in previous.documents} if previous else set()
    return [d for d in current.documents if _document_key(d) not in seen]


def load_events(
    previous: Optional[Load],
    current: Load,
    occurred_at: datetime,
    tenant_id: str = "default",
) -> list[WorkflowEvent]:
    """
    Events implied by a load change.

    A new load emits LOAD_CREATED; a status change emits LOAD_STATUS_CHANGED;
    becoming delivered/completed emits LOAD_DELIVERED; new documents emit one
    DOCUMENT_UPLOADED.
    """
    events = []
    if previous is None:
        events.append(load_created_event(current, occurred_at, tenant_id))
    elif previous.status != current.status:
        events.append(
            load_status_changed_event(current, previous.status, occurred_at, tenant_id)
        )

    was_eligible = previous is not None and previous.is_revenue_eligible
    if current.is_revenue_eligible and not was_eligible:
        events.append(load_delivered_event(current, occurred_at, tenant_id))

    documents = new_documents(previous, current)
    if documents:
        events.append(document_uploaded_event(current, documents, occurred_at, tenant_id))
    return events


def _with_driver_type(event: WorkflowEvent, driver: Optional[Driver]) -> WorkflowEvent:
    if driver is None:
        return event
    payload = {**event.payload, "driverType": driver.type.value}
    return event.model_copy(update={"payload": payload})


def _create_tasks(
    event: WorkflowEvent,
    subject: Any,
    rules: list[WorkflowRule],
    known: list[Task],
    outcome: LifecycleOutcome,
) -> None:
    load = subject if isinstance(subject, Load) else None
    for request in evaluate(rules, event, subject):
        task, created = task_machine.create_if_not_exists(
            known, request, load, now=event.occurred_at
        )
        if created:
            known.append(task)
            outcome.new_tasks.append(task)


def _refresh_load_tasks(
    load: Load, known: list[Task], now: datetime, outcome: LifecycleOutcome
) -> None:
    new_ids = {task.id for task in outcome.new_tasks}
    for index, task in enumerate(known):
        if task.status != TaskStatus.BLOCKED:
            continue
        if task.entity_type != EntityType.LOAD or task.entity_id != load.id:
            continue
        refreshed = task_machine.refresh_blockers(task, known, load, now)
        if refreshed is task:
            continue
        known[index] = refreshed
        if task.id in new_ids:
            outcome.new_tasks = [refreshed if t.id == task.id else t for t in outcome.new_tasks]
        else:
            outcome.updated_tasks.append(refreshed)


def handle_load_change(
    previous: Optional[Load],
    current: Load,
    occurred_at: datetime,
    tasks: Iterable[Task],
    invoices: Iterable[Invoice],
    today: date,
    rules: Optional[list[WorkflowRule]] = None,
    tenant_id: str = "default",
    driver: Optional[Driver] = None,
    settings: Optional[InvoiceSettings] = None,
) -> LifecycleOutcome:
    """
    Process one load change.

    Args:
        previous: Load before the change (None for a new load)
        current: Load after the change
        occurred_at: When the change happened (event time)
        tasks: Existing tasks (for idempotent creation and blocker resolution)
        invoices: Existing invoices (for at-most-once invoicing)
        today: Invoice date
        rules: Rule set (defaults to the built-in rules)
        tenant_id: Tenant the events belong to
        driver: The load's driver, adds driverType to event payloads
        settings: Invoice numbering and terms

    Returns:
        LifecycleOutcome with events, new and updated tasks, and invoices
    """
    rules = default_workflow_rules() if rules is None else rules
    known = list(tasks)
    outcome = LifecycleOutcome()

    for event in load_events(previous, current, occurred_at, tenant_id):
        event = _with_driver_type(event, driver)
        outcome.events.append(event)
        _create_tasks(event, current, rules, known, outcome)

    _refresh_load_tasks(current, known, occurred_at, outcome)

    became_eligible = current.is_revenue_eligible and not (
        previous is not None and previous.is_revenue_eligible
    )
    if became_eligible:
        invoices = list(invoices)
        outcome.invoices = invoice_guard.reconcile([current], invoices, today, settings)
        for invoice in outcome.invoices.new_invoices:
            event = invoice_event(
                WorkflowEventType.INVOICE_CREATED, invoice, occurred_at, tenant_id
            )
            outcome.events.append(event)
            _create_tasks(event, invoice, rules, known, outcome)
        for invoice in outcome.invoices.status_updates:
            event = invoice_event(
                WorkflowEventType.INVOICE_OVERDUE, invoice, occurred_at, tenant_id
            )
            outcome.events.append(event)
            _create_tasks(event, invoice, rules, known, outcome)

    return outcome


def handle_overdue_sweep(
    invoices: Iterable[Invoice],
    tasks: Iterable[Task],
    today: date,
    occurred_at: datetime,
    rules: Optional[list[WorkflowRule]] = None,
    tenant_id: str = "default",
) -> LifecycleOutcome:
    """Sweep pending invoices to overdue and raise INVOICE_OVERDUE follow-ups."""
    rules = default_workflow_rules() if rules is None else rules
    known = list(tasks)
    outcome = LifecycleOutcome()
    outcome.invoices = ReconcileResult(
        status_updates=invoice_guard.sweep_overdue(invoices, today)
    )
    for invoice in outcome.invoices.status_updates:
        event = invoice_event(WorkflowEventType.INVOICE_OVERDUE, invoice, occurred_at, tenant_id)
        outcome.events.append(event)
        _create_tasks(event, invoice, rules, known, outcome)
    return outcome


def handle_payment_posted(
    invoice: Invoice,
    tasks: Iterable[Task],
    occurred_at: datetime,
    rules: Optional[list[WorkflowRule]] = None,
    tenant_id: str = "default",
    payment_method: Optional[str] = None,
    reference: Optional[str] = None,
) -> LifecycleOutcome:
    """
    Mark an invoice paid and raise PAYMENT_POSTED follow-ups.

    Raises:
        InvalidInvoiceTransitionError: The invoice is not open
    """
    rules = default_workflow_rules() if rules is None else rules
    known = list(tasks)
    paid = invoice_guard.mark_paid(invoice, occurred_at, payment_method, reference)
    outcome = LifecycleOutcome(invoices=ReconcileResult(status_updates=[paid]))
    event = invoice_event(WorkflowEventType.PAYMENT_POSTED, paid, occurred_at, tenant_id)
    outcome.events.append(event)
    _create_tasks(event, paid, rules, known, outcome)
    return outcome


class LifecycleCoordinator(BaseEngine):
    """
    Lifecycle Coordinator engine.

    Uses the tenant's configured rules and invoice settings, and logs a
    summary of every step.
    """

    def __init__(
        self,
        rules: Optional[list[WorkflowRule]] = None,
        tenant_id: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(engine_name="lifecycle_coordinator", **kwargs)
        self.tenant_id = tenant_id or self.config_manager.tenant_id
        if rules is None:
            rules = self.config_manager.get_workflow_rules(self.tenant_id)
        self.rules = list(rules)

    def _log_outcome(self, step: str, entity_id: str, outcome: LifecycleOutcome) -> None:
        self.logger.info(
            "lifecycle_step",
            step=step,
            entity_id=entity_id,
            events=[e.type.value for e in outcome.events],
            new_tasks=len(outcome.new_tasks),
            updated_tasks=len(outcome.updated_tasks),
            new_invoices=[i.invoice_number for i in outcome.invoices.new_invoices],
        )
        for skipped in outcome.invoices.skipped:
            self.logger.warning(
                "auto_invoice_skipped", load_id=skipped.load_id, reasons=skipped.reasons
            )

    def handle_load_change(
        self,
        previous: Optional[Load],
        current: Load,
        occurred_at: datetime,
        tasks: Iterable[Task],
        invoices: Iterable[Invoice],
        today: date,
        driver: Optional[Driver] = None,
    ) -> LifecycleOutcome:
        start_time = time()
        outcome = handle_load_change(
            previous,
            current,
            occurred_at,
            tasks,
            invoices,
            today,
            rules=self.rules,
            tenant_id=self.tenant_id,
            driver=driver,
            settings=self.config_manager.get_invoice_settings(),
        )
        self._log_outcome("load_change", current.id, outcome)
        self.record_decision(
            decision_type="load_change",
            input_data={
                "load_id": current.id,
                "from_status": previous.status.value if previous else None,
                "to_status": current.status.value,
            },
            reasoning=f"{len(outcome.events)} events, {len(outcome.new_tasks)} new tasks",
            output_data={
                "events": [e.id for e in outcome.events],
                "tasks": [t.id for t in outcome.new_tasks],
                "invoices": [i.id for i in outcome.invoices.new_invoices],
            },
            started_at=start_time,
            finished_at=time(),
        )
        return outcome

    def handle_overdue_sweep(
        self,
        invoices: Iterable[Invoice],
        tasks: Iterable[Task],
        today: date,
        occurred_at: datetime,
    ) -> LifecycleOutcome:
        outcome = handle_overdue_sweep(
            invoices, tasks, today, occurred_at, rules=self.rules, tenant_id=self.tenant_id
        )
        self._log_outcome("overdue_sweep", self.tenant_id, outcome)
        return outcome

    def handle_payment_posted(
        self,
        invoice: Invoice,
        tasks: Iterable[Task],
        occurred_at: datetime,
        payment_method: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> LifecycleOutcome:
        outcome = handle_payment_posted(
            invoice,
            tasks,
            occurred_at,
            rules=self.rules,
            tenant_id=self.tenant_id,
            payment_method=payment_method,
            reference=reference,
        )
        self._log_outcome("payment_posted", invoice.id, outcome)
        return outcome

    def execute(self, *args: Any, **kwargs: Any) -> LifecycleOutcome:
        """Execute a load change step (delegates to handle_load_change)."""
        return self.handle_load_change(*args, **kwargs)
