"""
Tests for the Task State Machine.

Covers:
- Creation from requests with dedupe and initial blocked state
- Allowed and rejected transitions
- Blocker resolution by task id, template key and load condition
- Filtering and ordering
"""

from datetime import datetime, timedelta

import pytest

from freight_settlement.core.exceptions import (
    BlockedTaskError,
    InvalidTaskTransitionError,
    TaskNotFoundError,
)
from freight_settlement.data.models import EntityType, TaskStatus
from freight_settlement.engines.task_machine import (
    TaskMachine,
    assign,
    block,
    cancel,
    complete,
    create_from_request,
    create_if_not_exists,
    delete,
    filter_tasks,
    refresh_blockers,
    start,
    unresolved_blockers,
)


@pytest.fixture
def pending_task(make_request, now):
    return create_from_request(make_request(template_key="LOAD_CONFIRM_PICKUP"), now=now)


class TestCreation:
    def test_blocked_request_without_bol(self, make_request, make_load, now):
        request = make_request(status="blocked", blockers=["BOL_REQUIRED"])

        task = create_from_request(request, subject=make_load(), now=now)

        assert task.status == TaskStatus.BLOCKED
        assert task.resume_status == TaskStatus.PENDING
        assert task.created_by == "system"
        assert task.created_at == now
        assert task.dedupe_key == "default:load:L1:LOAD_COLLECT_BOL"
        assert task.id.startswith("task_")

    def test_blocker_already_satisfied(self, make_request, make_load, now):
        request = make_request(status="blocked", blockers=["BOL_REQUIRED"])

        task = create_from_request(request, subject=make_load(bol_number="B-1"), now=now)

        assert task.status == TaskStatus.PENDING
        assert task.resume_status is None

    def test_same_request_creates_once(self, make_request, now):
        request = make_request()
        tasks = []

        for _ in range(3):
            task, created = create_if_not_exists(tasks, request, now=now)
            if created:
                tasks.append(task)

        assert len(tasks) == 1

    def test_finished_task_still_dedupes(self, make_request, pending_task, now):
        completed = complete(pending_task, now=now)
        request = make_request(template_key="LOAD_CONFIRM_PICKUP")

        task, created = create_if_not_exists([completed], request, now=now)

        assert not created
        assert task.status == TaskStatus.COMPLETED

    def test_other_tenant_is_a_different_task(self, make_request, now):
        first, _ = create_if_not_exists([], make_request(), now=now)
        second, created = create_if_not_exists([first], make_request(tenant_id="acme"), now=now)

        assert created
        assert first.id != second.id


class TestTransitions:
    def test_start(self, pending_task, now):
        started = start(pending_task, now)
        assert started.status == TaskStatus.IN_PROGRESS
        assert pending_task.status == TaskStatus.PENDING

    def test_start_twice_rejected(self, pending_task, now):
        with pytest.raises(InvalidTaskTransitionError) as exc_info:
            start(start(pending_task, now), now)
        assert exc_info.value.from_status == "in_progress"

    def test_assign_moves_pending_to_in_progress(self, pending_task, now):
        assigned = assign(pending_task, "user_1", now)

        assert assigned.assigned_to == "user_1"
        assert assigned.status == TaskStatus.IN_PROGRESS

    def test_assign_blocked_task_stays_blocked(self, make_request, now):
        task = create_from_request(make_request(blockers=["BOL_REQUIRED"]), now=now)

        assigned = assign(task, "user_1", now)

        assert assigned.status == TaskStatus.BLOCKED
        assert assigned.resume_status == TaskStatus.IN_PROGRESS

    def test_block_remembers_state(self, pending_task, now):
        blocked = block(start(pending_task, now), ["POD_REQUIRED"], now)
        reblocked = block(blocked, ["POD_REQUIRED", "RATE_REQUIRED"], now)

        assert reblocked.status == TaskStatus.BLOCKED
        assert reblocked.resume_status == TaskStatus.IN_PROGRESS
        assert reblocked.blockers == ["POD_REQUIRED", "RATE_REQUIRED"]

    def test_complete(self, pending_task, now):
        done = complete(pending_task, now=now, completed_by="user_1")

        assert done.status == TaskStatus.COMPLETED
        assert done.completed_at == now
        assert done.completed_by == "user_1"

    @pytest.mark.parametrize("finish", [complete, cancel])
    def test_terminal_states_are_final(self, pending_task, now, finish):
        finished = finish(pending_task, now=now)

        with pytest.raises(InvalidTaskTransitionError):
            complete(finished, now=now)
        with pytest.raises(InvalidTaskTransitionError):
            cancel(finished, now=now)
        with pytest.raises(InvalidTaskTransitionError):
            block(finished, ["POD_REQUIRED"], now)

    def test_cancel_blocked_task(self, make_request, now):
        task = create_from_request(make_request(blockers=["BOL_REQUIRED"]), now=now)
        assert cancel(task, now).status == TaskStatus.CANCELLED


class TestBlockers:
    def test_complete_with_unresolved_blocker(self, make_request, make_load, now):
        task = create_from_request(make_request(blockers=["BOL_REQUIRED"]), now=now)

        with pytest.raises(BlockedTaskError) as exc_info:
            complete(task, [task], make_load(), now)

        assert exc_info.value.unresolved == ["BOL_REQUIRED"]
        assert exc_info.value.code == "TASK_BLOCKED"

    def test_complete_once_condition_holds(self, make_request, make_load, now):
        task = create_from_request(make_request(blockers=["BOL_REQUIRED"]), now=now)

        done = complete(task, [task], make_load(bol_number="B-1"), now)

        assert done.status == TaskStatus.COMPLETED

    def test_template_key_blocker(self, make_request, pending_task, now):
        task = create_from_request(
            make_request(template_key="LOAD_GENERATE_INVOICE", blockers=["LOAD_CONFIRM_PICKUP"]),
            [pending_task],
            now=now,
        )
        assert task.status == TaskStatus.BLOCKED

        done = complete(pending_task, now=now)
        refreshed = refresh_blockers(task, [done, task], now=now)

        assert refreshed.status == TaskStatus.PENDING

    def test_template_key_on_other_load_does_not_count(self, make_request, now):
        other = complete(
            create_from_request(
                make_request(entity_id="L2", template_key="LOAD_CONFIRM_PICKUP"), now=now
            ),
            now=now,
        )
        task = create_from_request(
            make_request(blockers=["LOAD_CONFIRM_PICKUP"]), [other], now=now
        )
        assert task.status == TaskStatus.BLOCKED

    def test_task_id_blocker(self, make_request, pending_task, now):
        task = create_from_request(
            make_request(blockers=[pending_task.id]), [pending_task], now=now
        )

        assert unresolved_blockers(task, [pending_task]) == [pending_task.id]
        assert unresolved_blockers(task, [complete(pending_task, now=now)]) == []

    def test_condition_reads_only_the_task_load(self, make_request, make_load, now):
        task = create_from_request(make_request(blockers=["BOL_REQUIRED"]), now=now)
        other_load = make_load(id="L2", bol_number="B-1")

        assert refresh_blockers(task, [task], other_load, now) is task

    def test_refresh_returns_to_resume_status(self, pending_task, make_load, now):
        blocked = block(start(pending_task, now), ["BOL_REQUIRED"], now)

        refreshed = refresh_blockers(blocked, [blocked], make_load(bol_number="B-1"), now)

        assert refreshed.status == TaskStatus.IN_PROGRESS
        assert refreshed.resume_status is None

    def test_refresh_leaves_unblocked_task(self, pending_task, make_load, now):
        assert refresh_blockers(pending_task, [pending_task], make_load(), now) is pending_task


class TestQueries:
    def test_filter_and_order(self, make_request, now):
        later = create_from_request(
            make_request(template_key="B", due_at=now + timedelta(hours=2)), now=now
        )
        sooner = create_from_request(
            make_request(template_key="A", due_at=now + timedelta(hours=1)), now=now
        )
        undated = create_from_request(make_request(template_key="C"), now=now)
        invoice_task = create_from_request(
            make_request(entity_type="invoice", entity_id="inv_1", template_key="D"), now=now
        )
        tasks = [undated, later, invoice_task, sooner]

        loads_only = filter_tasks(tasks, entity_type=EntityType.LOAD, entity_id="L1")

        assert [t.template_key for t in loads_only] == ["A", "B", "C"]
        assert filter_tasks(tasks, template_key="D") == [invoice_task]

    def test_open_only(self, pending_task, make_request, now):
        done = complete(create_from_request(make_request(template_key="X"), now=now), now=now)
        assert filter_tasks([pending_task, done], open_only=True) == [pending_task]

    def test_delete(self, pending_task):
        assert delete([pending_task], pending_task.id) == []

    def test_delete_unknown(self, pending_task):
        with pytest.raises(TaskNotFoundError):
            delete([pending_task], "task_missing")


class TestTaskMachineEngine:
    def test_create_many_skips_duplicates(self, make_request, now, config_manager):
        machine = TaskMachine(config_manager=config_manager)
        requests = [make_request(), make_request(), make_request(template_key="OTHER")]

        created = machine.execute([], requests, now=now)

        assert [t.template_key for t in created] == ["LOAD_COLLECT_BOL", "OTHER"]
        assert machine.decision_history[-1].decision_type == "task_creation"

    def test_refresh_returns_changed_only(self, make_request, make_load, now, config_manager):
        machine = TaskMachine(config_manager=config_manager)
        bol = create_from_request(make_request(blockers=["BOL_REQUIRED"]), now=now)
        pod = create_from_request(
            make_request(template_key="LOAD_COLLECT_POD", blockers=["POD_REQUIRED"]), now=now
        )

        changed = machine.refresh_blockers([bol, pod], make_load(bol_number="B-1"), now)

        assert [t.template_key for t in changed] == ["LOAD_COLLECT_BOL"]

    def test_complete_blocked_raises(self, make_request, make_load, now, config_manager):
        machine = TaskMachine(config_manager=config_manager)
        task = create_from_request(make_request(blockers=["BOL_REQUIRED"]), now=now)

        with pytest.raises(BlockedTaskError):
            machine.complete([task], task.id, make_load(), now)

    def test_unknown_task(self, config_manager, now):
        machine = TaskMachine(config_manager=config_manager)
        with pytest.raises(TaskNotFoundError):
            machine.start([], "task_missing", now)

    def test_assign_by_id(self, pending_task, now, config_manager):
        machine = TaskMachine(config_manager=config_manager)
        updated = machine.assign([pending_task], pending_task.id, "user_2", now)
        assert updated.assigned_to == "user_2"
