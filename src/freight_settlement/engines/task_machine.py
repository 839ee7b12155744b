"""
Task State Machine - Transitions for follow-up tasks.

    pending -> in_progress -> completed
    pending | in_progress -> blocked -> (back to where it was)
    any open state -> cancelled

Completed and cancelled are terminal. Every operation takes task snapshots
and returns new Task objects; nothing is stored here.
"""

from datetime import datetime
from time import time
from typing import Any, Iterable, Optional

from freight_settlement.core.exceptions import (
    BlockedTaskError,
    InvalidTaskTransitionError,
    TaskNotFoundError,
)
from freight_settlement.data.models.load import Load
from freight_settlement.data.models.task import (
    EntityType,
    Task,
    TaskRequest,
    TaskStatus,
    task_id_from_dedupe_key,
)
from freight_settlement.engines.base import BaseEngine
from freight_settlement.engines.checklist import condition_satisfied, is_condition


def find_task(tasks: Iterable[Task], task_id: str) -> Task:
    for task in tasks:
        if task.id == task_id:
            return task
    raise TaskNotFoundError(task_id)


def _subject_for(task: Task, subject: Optional[Load]) -> Optional[Load]:
    # Conditions only read the load the task is attached to
    if subject is None or task.entity_type != EntityType.LOAD:
        return None
    return subject if subject.id == task.entity_id else None


def blocker_resolved(
    blocker: str, task: Task, tasks: Iterable[Task], subject: Optional[Load] = None
) -> bool:
    """
    Whether one blocker is cleared.

    A blocker clears when it names a completed task (by id, or by template
    key on the same entity), or is a condition the subject load satisfies.
    """
    for other in tasks:
        if other.id == task.id or other.status != TaskStatus.COMPLETED:
            continue
        if other.id == blocker:
            return True
        if (
            other.template_key == blocker
            and other.tenant_id == task.tenant_id
            and other.entity_type == task.entity_type
            and other.entity_id == task.entity_id
        ):
            return True
    if is_condition(blocker):
        return condition_satisfied(blocker, _subject_for(task, subject))
    return False


def unresolved_blockers(
    task: Task, tasks: Iterable[Task], subject: Optional[Load] = None
) -> list[str]:
    tasks = list(tasks)
    return [b for b in task.blockers if not blocker_resolved(b, task, tasks, subject)]


def _ensure_open(task: Task, to_status: TaskStatus) -> None:
    if task.is_terminal:
        raise InvalidTaskTransitionError(task.id, task.status.value, to_status.value)


def create_from_request(
    request: TaskRequest,
    tasks: Iterable[Task] = (),
    subject: Optional[Load] = None,
    now: Optional[datetime] = None,
    created_by: Optional[str] = None,
) -> Task:
    """
    Turn a request into a Task.

    The task starts blocked only when some of its blockers are still
    unresolved; otherwise it starts in the requested (unblocked) state.
    """
    now = now or datetime.now()
    dedupe_key = request.dedupe_key
    wanted = request.status
    if wanted in (TaskStatus.BLOCKED, TaskStatus.COMPLETED, TaskStatus.CANCELLED):
        wanted = TaskStatus.PENDING

    task = Task(
        id=task_id_from_dedupe_key(dedupe_key),
        tenant_id=request.tenant_id,
        entity_type=request.entity_type,
        entity_id=request.entity_id,
        rule_id=request.rule_id,
        template_key=request.template_key,
        dedupe_key=dedupe_key,
        title=request.title,
        description=request.description,
        status=wanted,
        priority=request.priority,
        due_at=request.due_at,
        assigned_to=request.assigned_to,
        created_by=created_by or "system",
        tags=list(request.tags),
        blockers=list(request.blockers),
        metadata=dict(request.metadata),
        created_at=now,
        updated_at=now,
    )
    if task.blockers and unresolved_blockers(task, tasks, subject):
        task = task.model_copy(
            update={"status": TaskStatus.BLOCKED, "resume_status": wanted}
        )
    return task


def create_if_not_exists(
    tasks: Iterable[Task],
    request: TaskRequest,
    subject: Optional[Load] = None,
    now: Optional[datetime] = None,
    created_by: Optional[str] = None,
) -> tuple[Task, bool]:
    """
    Create the task unless one with the same dedupe key already exists.

    Returns:
        (task, created) where task is the existing one when created is False
    """
    tasks = list(tasks)
    dedupe_key = request.dedupe_key
    for task in tasks:
        if task.dedupe_key == dedupe_key:
            return task, False
    return create_from_request(request, tasks, subject, now, created_by), True


def start(task: Task, now: Optional[datetime] = None) -> Task:
    _ensure_open(task, TaskStatus.IN_PROGRESS)
    if task.status != TaskStatus.PENDING:
        raise InvalidTaskTransitionError(
            task.id, task.status.value, TaskStatus.IN_PROGRESS.value
        )
    return task.model_copy(
        update={"status": TaskStatus.IN_PROGRESS, "updated_at": now or datetime.now()}
    )


def assign(task: Task, assignee: str, now: Optional[datetime] = None) -> Task:
    """Assign an open task; a pending task moves to in_progress."""
    _ensure_open(task, TaskStatus.IN_PROGRESS)
    update: dict[str, Any] = {"assigned_to": assignee, "updated_at": now or datetime.now()}
    if task.status == TaskStatus.PENDING:
        update["status"] = TaskStatus.IN_PROGRESS
    elif task.status == TaskStatus.BLOCKED:
        update["resume_status"] = TaskStatus.IN_PROGRESS
    return task.model_copy(update=update)


def block(task: Task, blockers: Iterable[str], now: Optional[datetime] = None) -> Task:
    """Add blockers and move the task to blocked, remembering where it was."""
    _ensure_open(task, TaskStatus.BLOCKED)
    merged = list(task.blockers)
    for blocker in blockers:
        if blocker not in merged:
            merged.append(blocker)
    resume = task.resume_status if task.status == TaskStatus.BLOCKED else task.status
    return task.model_copy(
        update={
            "status": TaskStatus.BLOCKED,
            "blockers": merged,
            "resume_status": resume,
            "updated_at": now or datetime.now(),
        }
    )


def refresh_blockers(
    task: Task,
    tasks: Iterable[Task],
    subject: Optional[Load] = None,
    now: Optional[datetime] = None,
) -> Task:
    """
    Re-resolve a blocked task's blockers.

    Returns the unblocked task when all have cleared, else the task unchanged.
    """
    if task.status != TaskStatus.BLOCKED:
        return task
    if unresolved_blockers(task, tasks, subject):
        return task
    return task.model_copy(
        update={
            "status": task.resume_status or TaskStatus.PENDING,
            "resume_status": None,
            "updated_at": now or datetime.now(),
        }
    )


def complete(
    task: Task,
    tasks: Iterable[Task] = (),
    subject: Optional[Load] = None,
    now: Optional[datetime] = None,
    completed_by: Optional[str] = None,
) -> Task:
    """
    Complete a task.

    Raises:
        InvalidTaskTransitionError: The task is already completed or cancelled
        BlockedTaskError: The task is blocked and some blockers are unresolved
    """
    _ensure_open(task, TaskStatus.COMPLETED)
    if task.status == TaskStatus.BLOCKED:
        unresolved = unresolved_blockers(task, tasks, subject)
        if unresolved:
            raise BlockedTaskError(task.id, unresolved)
    now = now or datetime.now()
    return task.model_copy(
        update={
            "status": TaskStatus.COMPLETED,
            "resume_status": None,
            "completed_at": now,
            "completed_by": completed_by,
            "updated_at": now,
        }
    )


def cancel(task: Task, now: Optional[datetime] = None) -> Task:
    _ensure_open(task, TaskStatus.CANCELLED)
    return task.model_copy(
        update={
            "status": TaskStatus.CANCELLED,
            "resume_status": None,
            "updated_at": now or datetime.now(),
        }
    )


def delete(tasks: Iterable[Task], task_id: str) -> list[Task]:
    """Remove a task by id (operator deletion)."""
    tasks = list(tasks)
    find_task(tasks, task_id)
    return [task for task in tasks if task.id != task_id]


def filter_tasks(
    tasks: Iterable[Task],
    status: Optional[TaskStatus] = None,
    entity_type: Optional[EntityType] = None,
    entity_id: Optional[str] = None,
    assigned_to: Optional[str] = None,
    template_key: Optional[str] = None,
    open_only: bool = False,
) -> list[Task]:
    """Tasks matching every given criterion, ordered by due date (undated last)."""
    matched = [
        task for task in tasks
        if (status is None or task.status == status)
        and (entity_type is None or task.entity_type == entity_type)
        and (entity_id is None or task.entity_id == entity_id)
        and (assigned_to is None or task.assigned_to == assigned_to)
        and (template_key is None or task.template_key == template_key)
        and (not open_only or task.is_open)
    ]
    return sorted(matched, key=lambda t: (t.due_at is None, t.due_at or datetime.min))


class TaskMachine(BaseEngine):
    """
    Task State Machine engine.

    Wraps the transition functions with lookups by id and structured logging
    of every transition.
    """

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(engine_name="task_machine", **kwargs)

    def _log_transition(self, before: Task, after: Task) -> None:
        if before.status != after.status:
            self.logger.info(
                "task_transition",
                task_id=after.id,
                template_key=after.template_key,
                from_status=before.status.value,
                to_status=after.status.value,
            )

    def create_if_not_exists(
        self,
        tasks: Iterable[Task],
        request: TaskRequest,
        subject: Optional[Load] = None,
        now: Optional[datetime] = None,
    ) -> tuple[Task, bool]:
        task, created = create_if_not_exists(tasks, request, subject, now)
        if created:
            self.logger.info(
                "task_created",
                task_id=task.id,
                template_key=task.template_key,
                entity_id=task.entity_id,
                status=task.status.value,
            )
        else:
            self.logger.debug("task_exists", task_id=task.id, dedupe_key=task.dedupe_key)
        return task, created

    def create_many(
        self,
        tasks: Iterable[Task],
        requests: Iterable[TaskRequest],
        subject: Optional[Load] = None,
        now: Optional[datetime] = None,
    ) -> list[Task]:
        """Create every request not already present; returns only new tasks."""
        start_time = time()
        known = list(tasks)
        created_tasks = []
        requests = list(requests)
        for request in requests:
            task, created = self.create_if_not_exists(known, request, subject, now)
            if created:
                known.append(task)
                created_tasks.append(task)

        self.record_decision(
            decision_type="task_creation",
            input_data={"requests": [r.template_key for r in requests]},
            reasoning=f"Created {len(created_tasks)} of {len(requests)} requested tasks",
            output_data={"task_ids": [t.id for t in created_tasks]},
            started_at=start_time,
            finished_at=time(),
        )
        return created_tasks

    def start(self, tasks: Iterable[Task], task_id: str, now: Optional[datetime] = None) -> Task:
        task = find_task(tasks, task_id)
        updated = start(task, now)
        self._log_transition(task, updated)
        return updated

    def assign(
        self, tasks: Iterable[Task], task_id: str, assignee: str, now: Optional[datetime] = None
    ) -> Task:
        task = find_task(tasks, task_id)
        updated = assign(task, assignee, now)
        self.logger.info("task_assigned", task_id=task_id, assigned_to=assignee)
        self._log_transition(task, updated)
        return updated

    def block(
        self,
        tasks: Iterable[Task],
        task_id: str,
        blockers: Iterable[str],
        now: Optional[datetime] = None,
    ) -> Task:
        task = find_task(tasks, task_id)
        updated = block(task, blockers, now)
        self._log_transition(task, updated)
        return updated

    def refresh_blockers(
        self,
        tasks: Iterable[Task],
        subject: Optional[Load] = None,
        now: Optional[datetime] = None,
    ) -> list[Task]:
        """Unblock every blocked task whose blockers have cleared; returns the changed ones."""
        tasks = list(tasks)
        changed = []
        for task in tasks:
            if task.status != TaskStatus.BLOCKED:
                continue
            updated = refresh_blockers(task, tasks, subject, now)
            if updated is not task:
                self._log_transition(task, updated)
                changed.append(updated)
        return changed

    def complete(
        self,
        tasks: Iterable[Task],
        task_id: str,
        subject: Optional[Load] = None,
        now: Optional[datetime] = None,
        completed_by: Optional[str] = None,
    ) -> Task:
        tasks = list(tasks)
        task = find_task(tasks, task_id)
        try:
            updated = complete(task, tasks, subject, now, completed_by)
        except BlockedTaskError as e:
            self.logger.warning(
                "task_completion_blocked", task_id=e.task_id, unresolved=e.unresolved
            )
            raise
        self._log_transition(task, updated)
        return updated

    def cancel(self, tasks: Iterable[Task], task_id: str, now: Optional[datetime] = None) -> Task:
        task = find_task(tasks, task_id)
        updated = cancel(task, now)
        self._log_transition(task, updated)
        return updated

    def delete(self, tasks: Iterable[Task], task_id: str) -> list[Task]:
        remaining = delete(tasks, task_id)
        self.logger.info("task_deleted", task_id=task_id)
        return remaining

    def execute(self, *args: Any, **kwargs: Any) -> list[Task]:
        """Execute task creation for a batch of requests (delegates to create_many)."""
        return self.create_many(*args, **kwargs)
