"""
Workflow Rule Engine - Turn events into task requests.

This engine:
- Matches enabled rules against an event's type and filter
- Materializes every action of a matching rule as a TaskRequest
- Resolves due dates from event time and assignees from the event payload
- Builds workflow events for load, invoice and settlement transitions

Evaluation is deterministic: the same rules, event and subject always yield
the same requests.
"""

from datetime import datetime, timedelta
from time import time
from typing import Any, Optional, Union

from freight_settlement.data.models.invoice import Invoice
from freight_settlement.data.models.load import Load, LoadDocument, LoadStatus
from freight_settlement.data.models.settlement import Settlement
from freight_settlement.data.models.task import EntityType, TaskRequest, TaskStatus
from freight_settlement.data.models.workflow import (
    AssignTarget,
    RuleFilter,
    TaskAction,
    WorkflowEvent,
    WorkflowEventType,
    WorkflowRule,
)
from freight_settlement.data.workflow_rules import default_workflow_rules, set_rule_enabled
from freight_settlement.engines.base import BaseEngine

Subject = Union[Load, Invoice, Settlement, None]


def _parse_status(value: Any) -> Optional[LoadStatus]:
    if value is None or value == "":
        return None
    if isinstance(value, LoadStatus):
        return value
    try:
        return LoadStatus(value)
    except ValueError:
        return None


def _normalize_driver_type(value: str) -> str:
    return value.lower().replace("_", "").replace("-", "").replace(" ", "")


def event_status(event: WorkflowEvent, subject: Subject) -> Optional[LoadStatus]:
    """Load status the event is about: payload newStatus, else the subject's."""
    status = _parse_status(event.payload.get("newStatus"))
    if status is None and isinstance(subject, Load):
        status = subject.status
    return status


def matches_filter(
    rule_filter: Optional[RuleFilter], event: WorkflowEvent, subject: Subject = None
) -> bool:
    """
    Check a rule filter against an event and its subject record.

    A condition whose value is unknown for this event does not exclude it.
    """
    if rule_filter is None:
        return True
    payload = event.payload

    if rule_filter.load_status_in is not None:
        status = event_status(event, subject)
        if status is not None and status not in rule_filter.load_status_in:
            return False

    if rule_filter.customer_id_in is not None:
        customer_id = payload.get("customerId")
        if customer_id is None and isinstance(subject, (Load, Invoice)):
            customer_id = subject.customer_id
        if customer_id is not None and customer_id not in rule_filter.customer_id_in:
            return False

    if rule_filter.driver_type_in is not None:
        driver_type = payload.get("driverType")
        if driver_type:
            normalized = _normalize_driver_type(str(driver_type))
            allowed = {_normalize_driver_type(t) for t in rule_filter.driver_type_in}
            if normalized not in allowed:
                return False

    if rule_filter.requires_factoring is not None:
        factored = payload.get("isFactored")
        if factored is None and isinstance(subject, (Load, Invoice)):
            factored = subject.is_factored
        if factored is not None and bool(factored) != rule_filter.requires_factoring:
            return False

    return True


def resolve_assignee(
    assign_to: Optional[AssignTarget], event: WorkflowEvent, subject: Subject = None
) -> Optional[str]:
    """
    Who a task goes to.

    LOAD_DRIVER and CREATOR resolve from the event payload (falling back to
    the subject load); role targets stay unassigned for the host to route.
    """
    if assign_to == AssignTarget.LOAD_DRIVER:
        driver_id = event.payload.get("driverId")
        if driver_id is None and isinstance(subject, Load):
            driver_id = subject.driver_id
        return driver_id
    if assign_to == AssignTarget.CREATOR:
        created_by = event.payload.get("createdBy")
        if created_by is None and isinstance(subject, Load):
            created_by = subject.created_by
        return created_by
    return None


def build_request(
    rule: WorkflowRule, action: TaskAction, event: WorkflowEvent, subject: Subject = None
) -> TaskRequest:
    """Materialize one rule action for an event."""
    due_at = None
    if action.due_offset_minutes is not None:
        due_at = event.occurred_at + timedelta(minutes=action.due_offset_minutes)
    return TaskRequest(
        tenant_id=event.tenant_id,
        entity_type=event.entity_type,
        entity_id=event.entity_id,
        rule_id=rule.id,
        template_key=action.template_key,
        title=action.title,
        description=action.description,
        priority=action.priority,
        status=TaskStatus.BLOCKED if action.blockers else TaskStatus.PENDING,
        due_at=due_at,
        assigned_to=resolve_assignee(action.assign_to, event, subject),
        tags=list(action.tags),
        blockers=list(action.blockers),
        metadata={
            "eventId": event.id,
            "eventType": event.type.value,
            "eventKey": event.event_key,
        },
        requested_at=event.occurred_at,
    )


def evaluate(
    rules: list[WorkflowRule], event: WorkflowEvent, subject: Subject = None
) -> list[TaskRequest]:
    """
    Task requests an event produces under a rule set.

    Args:
        rules: Rule set (disabled rules are ignored)
        event: The event
        subject: The record the event is about, for filter and assignee fallbacks

    Returns:
        Requests in rule order, then action order
    """
    requests = []
    for rule in rules:
        if not rule.is_enabled or rule.event_type != event.type:
            continue
        if not matches_filter(rule.filter, event, subject):
            continue
        for action in rule.actions:
            requests.append(build_request(rule, action, event, subject))
    return requests


# Event builders


def record_payload(record: Union[Load, Invoice, Settlement]) -> dict[str, Any]:
    """Event payload for a record (camelCase, JSON-safe)."""
    return record.model_dump(mode="json", by_alias=True, exclude_none=True)


def load_created_event(
    load: Load, occurred_at: datetime, tenant_id: str = "default"
) -> WorkflowEvent:
    return WorkflowEvent(
        tenant_id=tenant_id,
        type=WorkflowEventType.LOAD_CREATED,
        entity_type=EntityType.LOAD,
        entity_id=load.id,
        occurred_at=occurred_at,
        payload=record_payload(load),
    )


def load_status_changed_event(
    load: Load,
    old_status: Optional[LoadStatus],
    occurred_at: datetime,
    tenant_id: str = "default",
) -> WorkflowEvent:
    payload = record_payload(load)
    payload["oldStatus"] = old_status.value if old_status else None
    payload["newStatus"] = load.status.value
    return WorkflowEvent(
        tenant_id=tenant_id,
        type=WorkflowEventType.LOAD_STATUS_CHANGED,
        entity_type=EntityType.LOAD,
        entity_id=load.id,
        occurred_at=occurred_at,
        payload=payload,
    )


def load_delivered_event(
    load: Load, occurred_at: datetime, tenant_id: str = "default"
) -> WorkflowEvent:
    return WorkflowEvent(
        tenant_id=tenant_id,
        type=WorkflowEventType.LOAD_DELIVERED,
        entity_type=EntityType.LOAD,
        entity_id=load.id,
        occurred_at=occurred_at,
        payload=record_payload(load),
    )


def document_uploaded_event(
    load: Load,
    documents: list[LoadDocument],
    occurred_at: datetime,
    tenant_id: str = "default",
) -> WorkflowEvent:
    """One event for every document that arrived in the same change."""
    payload = record_payload(load)
    payload["uploaded"] = [
        d.model_dump(mode="json", by_alias=True, exclude_none=True) for d in documents
    ]
    return WorkflowEvent(
        tenant_id=tenant_id,
        type=WorkflowEventType.DOCUMENT_UPLOADED,
        entity_type=EntityType.LOAD,
        entity_id=load.id,
        occurred_at=occurred_at,
        payload=payload,
    )


def invoice_event(
    event_type: WorkflowEventType,
    invoice: Invoice,
    occurred_at: datetime,
    tenant_id: str = "default",
) -> WorkflowEvent:
    """INVOICE_CREATED, INVOICE_OVERDUE or PAYMENT_POSTED for an invoice."""
    return WorkflowEvent(
        tenant_id=tenant_id,
        type=event_type,
        entity_type=EntityType.INVOICE,
        entity_id=invoice.id,
        occurred_at=occurred_at,
        payload=record_payload(invoice),
    )


def settlement_created_event(
    settlement: Settlement, occurred_at: datetime, tenant_id: str = "default"
) -> WorkflowEvent:
    return WorkflowEvent(
        tenant_id=tenant_id,
        type=WorkflowEventType.SETTLEMENT_CREATED,
        entity_type=EntityType.SETTLEMENT,
        entity_id=settlement.id,
        occurred_at=occurred_at,
        payload=record_payload(settlement),
    )


class WorkflowEngine(BaseEngine):
    """
    Workflow Rule Engine.

    Holds a tenant's rule set (loaded from configuration unless given) and
    evaluates events against it.
    """

    def __init__(
        self,
        rules: Optional[list[WorkflowRule]] = None,
        tenant_id: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        """
        Initialize the workflow engine.

        Args:
            rules: Rule set to use (defaults to the tenant's configured rules)
            tenant_id: Tenant whose rules to load (defaults to TMS_TENANT_ID)
        """
        super().__init__(engine_name="workflow_engine", **kwargs)
        self.tenant_id = tenant_id or self.config_manager.tenant_id
        if rules is None:
            rules = self.config_manager.get_workflow_rules(self.tenant_id)
        self.rules: list[WorkflowRule] = list(rules)

    def evaluate(self, event: WorkflowEvent, subject: Subject = None) -> list[TaskRequest]:
        """Task requests for an event under the current rules."""
        start_time = time()
        requests = evaluate(self.rules, event, subject)
        fired = sorted({r.rule_id for r in requests if r.rule_id})

        self.logger.info(
            "workflow_evaluated",
            event_type=event.type.value,
            entity_id=event.entity_id,
            rules_fired=fired,
            requests=len(requests),
        )
        self.record_decision(
            decision_type="workflow_evaluation",
            input_data={"event_id": event.id, "event_type": event.type.value},
            reasoning=f"{len(fired)} rules matched {event.type.value}",
            output_data={"template_keys": [r.template_key for r in requests]},
            started_at=start_time,
            finished_at=time(),
        )
        return requests

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> None:
        self.rules = set_rule_enabled(self.rules, rule_id, enabled)
        self.logger.info("workflow_rule_toggled", rule_id=rule_id, enabled=enabled)

    def save_rules(self) -> None:
        """Persist the current rule set for this tenant."""
        path = self.config_manager.save_workflow_rules(self.rules, self.tenant_id)
        self.logger.info("workflow_rules_saved", path=str(path), rules=len(self.rules))

    def reset_to_defaults(self, persist: bool = False) -> None:
        """Replace the rule set with the built-in defaults."""
        if persist:
            self.rules = self.config_manager.reset_workflow_rules(self.tenant_id)
        else:
            self.rules = default_workflow_rules()
        self.logger.info("workflow_rules_reset", tenant_id=self.tenant_id, persisted=persist)

    def execute(self, *args: Any, **kwargs: Any) -> list[TaskRequest]:
        """Execute rule evaluation (delegates to evaluate)."""
        return self.evaluate(*args, **kwargs)
