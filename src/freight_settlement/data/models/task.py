"""
Task data model - a unit of follow-up work attached to a record.

Tasks are identified by their dedupe key (tenant, entity and template), so the
same rule firing twice for the same record resolves to the same task.
"""

import hashlib
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import Field

from freight_settlement.data.models.base import RecordModel


class TaskStatus(str, Enum):
    """Task status enumeration."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class EntityType(str, Enum):
    """Record kinds a task or event can be attached to."""

    LOAD = "load"
    INVOICE = "invoice"
    SETTLEMENT = "settlement"
    DRIVER = "driver"
    EXPENSE = "expense"
    PAYMENT = "payment"


def make_dedupe_key(
    tenant_id: Optional[str], entity_type: str, entity_id: str, template_key: str
) -> str:
    """Build ``tenant:entity_type:entity_id:template_key``."""
    entity = entity_type.value if isinstance(entity_type, Enum) else entity_type
    return f"{tenant_id or 'default'}:{entity}:{entity_id}:{template_key}"


def task_id_from_dedupe_key(dedupe_key: str) -> str:
    """Stable task id for a dedupe key."""
    digest = hashlib.sha256(dedupe_key.encode("utf-8")).hexdigest()[:16]
    return f"task_{digest}"


class TaskRequest(RecordModel):
    """
    A task the workflow engine wants to exist.

    Requests carry no identity or timestamps of their own beyond what the
    event supplied; the task machine turns them into Tasks.
    """

    tenant_id: str = "default"
    entity_type: EntityType
    entity_id: str
    rule_id: Optional[str] = None
    template_key: str
    title: str
    description: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    due_at: Optional[datetime] = None
    assigned_to: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    blockers: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    requested_at: Optional[datetime] = None

    @property
    def dedupe_key(self) -> str:
        return make_dedupe_key(
            self.tenant_id, self.entity_type, self.entity_id, self.template_key
        )


class Task(RecordModel):
    """A persisted work item."""

    id: str
    tenant_id: str = "default"
    entity_type: EntityType
    entity_id: str
    rule_id: Optional[str] = None
    template_key: Optional[str] = None
    dedupe_key: str

    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    due_at: Optional[datetime] = None
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None

    tags: list[str] = Field(default_factory=list)
    blockers: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None

    # State a blocked task returns to once its blockers clear
    resume_status: Optional[TaskStatus] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_open(self) -> bool:
        return not self.is_terminal
