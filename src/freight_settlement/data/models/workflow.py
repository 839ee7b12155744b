"""
Workflow events and rules.

An event records something that happened to a record; a rule says which
tasks should exist when an event of its type (and matching its filter) occurs.
"""

import hashlib
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import Field, computed_field

from freight_settlement.data.models.base import RecordModel
from freight_settlement.data.models.load import LoadStatus
from freight_settlement.data.models.task import EntityType, TaskPriority


class WorkflowEventType(str, Enum):
    LOAD_CREATED = "LOAD_CREATED"
    LOAD_STATUS_CHANGED = "LOAD_STATUS_CHANGED"
    LOAD_DELIVERED = "LOAD_DELIVERED"
    INVOICE_CREATED = "INVOICE_CREATED"
    INVOICE_OVERDUE = "INVOICE_OVERDUE"
    PAYMENT_POSTED = "PAYMENT_POSTED"
    DOCUMENT_UPLOADED = "DOCUMENT_UPLOADED"
    SETTLEMENT_CREATED = "SETTLEMENT_CREATED"


class WorkflowEvent(RecordModel):
    """
    Something that happened to a record.

    ``event_key`` and ``id`` are derived from the event's own fields, so
    replaying the same event produces the same identifiers.
    """

    tenant_id: str = "default"
    type: WorkflowEventType
    entity_type: EntityType
    entity_id: str
    occurred_at: datetime
    payload: dict[str, Any] = Field(default_factory=dict)

    @computed_field
    @property
    def event_key(self) -> str:
        return (
            f"{self.type.value}:{self.entity_type.value}:"
            f"{self.entity_id}:{self.occurred_at.isoformat()}"
        )

    @computed_field
    @property
    def id(self) -> str:
        digest = hashlib.sha256(self.event_key.encode("utf-8")).hexdigest()[:16]
        return f"event_{digest}"


class AssignTarget(str, Enum):
    """Who a rule-created task goes to."""

    DISPATCH = "DISPATCH"
    ACCOUNTING = "ACCOUNTING"
    OWNER = "OWNER"
    LOAD_DRIVER = "LOAD_DRIVER"
    CREATOR = "CREATOR"


class RuleFilter(RecordModel):
    """Optional conditions narrowing when a rule fires."""

    load_status_in: Optional[list[LoadStatus]] = None
    customer_id_in: Optional[list[str]] = None
    driver_type_in: Optional[list[str]] = Field(
        None, description="company and/or owner_operator"
    )
    requires_factoring: Optional[bool] = None


class TaskAction(RecordModel):
    """Template for a task a rule creates."""

    type: Literal["CREATE_TASK"] = "CREATE_TASK"
    template_key: str
    title: str
    description: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    due_offset_minutes: Optional[int] = Field(None, ge=0)
    assign_to: Optional[AssignTarget] = None
    tags: list[str] = Field(default_factory=list)
    blockers: list[str] = Field(default_factory=list)


class WorkflowRule(RecordModel):
    """An enable/disable-able mapping from an event type to task actions."""

    id: str
    tenant_id: Optional[str] = None
    name: str
    is_enabled: bool = True
    event_type: WorkflowEventType
    filter: Optional[RuleFilter] = None
    actions: list[TaskAction] = Field(default_factory=list)
