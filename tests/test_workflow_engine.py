"""
Tests for the Workflow Rule Engine.

Covers:
- Event type and filter matching
- Due dates, assignees and blockers on task requests
- Deterministic evaluation and event identity
- Rule set YAML parsing and persistence
"""

from datetime import datetime, timedelta

import pytest

from freight_settlement.core.config import ConfigManager
from freight_settlement.core.exceptions import WorkflowRuleConfigError
from freight_settlement.data.models import (
    EntityType,
    LoadStatus,
    TaskPriority,
    TaskStatus,
    WorkflowEvent,
    WorkflowEventType,
    WorkflowRule,
)
from freight_settlement.data.workflow_rules import (
    default_workflow_rules,
    dump_rules,
    load_rules,
    set_rule_enabled,
)
from freight_settlement.engines.workflow_engine import (
    WorkflowEngine,
    evaluate,
    invoice_event,
    load_created_event,
    load_status_changed_event,
    matches_filter,
)

OCCURRED_AT = datetime(2024, 1, 10, 9, 0, 0)


def _rule(**overrides) -> WorkflowRule:
    data = {
        "id": "rule_custom",
        "name": "Custom",
        "eventType": "LOAD_CREATED",
        "actions": [{"templateKey": "CUSTOM_TASK", "title": "Custom task"}],
    }
    data.update(overrides)
    return WorkflowRule.model_validate(data)


@pytest.fixture
def rules():
    return default_workflow_rules()


class TestEvaluate:
    def test_load_created(self, rules, make_load):
        event = load_created_event(make_load(status="available"), OCCURRED_AT)

        requests = evaluate(rules, event)

        assert [r.template_key for r in requests] == [
            "LOAD_ASSIGN_DRIVER",
            "LOAD_SEND_RATE_CONFIRMATION",
            "LOAD_CONFIRM_PICKUP_APPT",
        ]
        first = requests[0]
        assert first.priority == TaskPriority.HIGH
        assert first.due_at == OCCURRED_AT + timedelta(minutes=60)
        assert first.assigned_to is None
        assert first.rule_id == "rule_load_created"
        assert first.status == TaskStatus.PENDING

    def test_dispatched_status(self, rules, make_load):
        load = make_load(status="dispatched", driver_id="D1")
        event = load_status_changed_event(load, LoadStatus.AVAILABLE, OCCURRED_AT)

        requests = evaluate(rules, event, load)

        assert [r.template_key for r in requests] == ["LOAD_CONFIRM_PICKUP", "LOAD_COLLECT_BOL"]
        bol = requests[1]
        assert bol.status == TaskStatus.BLOCKED
        assert bol.blockers == ["BOL_REQUIRED"]
        assert bol.assigned_to == "D1"

    def test_in_transit_status(self, rules, make_load):
        load = make_load(status="in_transit")
        event = load_status_changed_event(load, LoadStatus.DISPATCHED, OCCURRED_AT)

        requests = evaluate(rules, event, load)

        assert [r.template_key for r in requests] == ["LOAD_TRACK_IN_TRANSIT"]
        assert requests[0].due_at == OCCURRED_AT + timedelta(days=1)

    def test_disabled_rule_does_not_fire(self, rules, make_load):
        rules = set_rule_enabled(rules, "rule_load_created", False)
        event = load_created_event(make_load(), OCCURRED_AT)
        assert evaluate(rules, event) == []

    def test_no_offset_means_no_due_date(self, rules, make_invoice):
        event = invoice_event(WorkflowEventType.INVOICE_OVERDUE, make_invoice(), OCCURRED_AT)

        requests = evaluate(rules, event)

        assert [r.template_key for r in requests] == ["INVOICE_FOLLOWUP_OVERDUE"]
        assert requests[0].due_at is None
        assert requests[0].priority == TaskPriority.URGENT
        assert requests[0].entity_type == EntityType.INVOICE

    def test_zero_offset_is_due_immediately(self, make_load):
        rule = _rule(actions=[{"templateKey": "NOW", "title": "Now", "dueOffsetMinutes": 0}])
        event = load_created_event(make_load(), OCCURRED_AT)
        assert evaluate([rule], event)[0].due_at == OCCURRED_AT

    def test_evaluation_is_deterministic(self, rules, make_load):
        load = make_load(status="dispatched", driver_id="D1")
        event = load_status_changed_event(load, LoadStatus.AVAILABLE, OCCURRED_AT)

        assert evaluate(rules, event, load) == evaluate(rules, event, load)

    def test_request_metadata(self, rules, make_load):
        event = load_created_event(make_load(), OCCURRED_AT, tenant_id="acme")

        request = evaluate(rules, event)[0]

        assert request.metadata["eventId"] == event.id
        assert request.metadata["eventType"] == "LOAD_CREATED"
        assert request.tenant_id == "acme"
        assert request.dedupe_key == "acme:load:L1:LOAD_ASSIGN_DRIVER"

    def test_creator_assignment(self, make_load):
        rule = _rule(
            actions=[{"templateKey": "FOLLOW_UP", "title": "Follow up", "assignTo": "CREATOR"}]
        )
        load = make_load(created_by="user_7")

        request = evaluate([rule], load_created_event(load, OCCURRED_AT))[0]

        assert request.assigned_to == "user_7"


class TestFilters:
    def _event(self, payload):
        return WorkflowEvent(
            type=WorkflowEventType.LOAD_CREATED,
            entity_type=EntityType.LOAD,
            entity_id="L1",
            occurred_at=OCCURRED_AT,
            payload=payload,
        )

    def test_no_filter(self):
        assert matches_filter(None, self._event({}))

    def test_customer_filter(self):
        rule = _rule(filter={"customerIdIn": ["C1"]})

        assert matches_filter(rule.filter, self._event({"customerId": "C1"}))
        assert not matches_filter(rule.filter, self._event({"customerId": "C2"}))
        assert matches_filter(rule.filter, self._event({}))

    @pytest.mark.parametrize(
        "driver_type,expected",
        [("OwnerOperator", True), ("owner_operator", True), ("Company", False)],
    )
    def test_driver_type_filter(self, driver_type, expected):
        rule = _rule(filter={"driverTypeIn": ["owner_operator"]})
        event = self._event({"driverType": driver_type})
        assert matches_filter(rule.filter, event) is expected

    def test_factoring_filter_reads_subject(self, make_load):
        rule = _rule(filter={"requiresFactoring": True})
        event = self._event({})

        assert matches_filter(rule.filter, event, make_load(is_factored=True))
        assert not matches_filter(rule.filter, event, make_load(is_factored=False))

    def test_status_filter_prefers_new_status(self, make_load):
        rule = _rule(filter={"loadStatusIn": ["dispatched"]})
        event = self._event({"newStatus": "Dispatched"})

        assert matches_filter(rule.filter, event, make_load(status="in_transit"))


class TestEventIdentity:
    def test_same_event_same_id(self, make_load):
        first = load_created_event(make_load(), OCCURRED_AT)
        second = load_created_event(make_load(), OCCURRED_AT)

        assert first.id == second.id
        assert first.id.startswith("event_")
        assert first.event_key == f"LOAD_CREATED:load:L1:{OCCURRED_AT.isoformat()}"

    def test_different_time_different_id(self, make_load):
        first = load_created_event(make_load(), OCCURRED_AT)
        later = load_created_event(make_load(), OCCURRED_AT + timedelta(seconds=1))
        assert first.id != later.id

    def test_status_change_payload(self, make_load):
        event = load_status_changed_event(
            make_load(status="dispatched"), LoadStatus.AVAILABLE, OCCURRED_AT
        )
        assert event.payload["oldStatus"] == "available"
        assert event.payload["newStatus"] == "dispatched"
        assert event.payload["loadNumber"] == "LN-1"


class TestRuleConfiguration:
    def test_yaml_round_trip(self, rules):
        assert load_rules(dump_rules(rules)) == rules

    def test_bare_list_accepted(self):
        text = "- id: r1\n  name: One\n  eventType: LOAD_CREATED\n"
        assert [r.id for r in load_rules(text)] == ["r1"]

    @pytest.mark.parametrize("text", ["", "rules:\n", "rules: null\n"])
    def test_empty_documents(self, text):
        assert load_rules(text) == []

    @pytest.mark.parametrize(
        "text",
        [
            "rules: [",
            "rules: 5\n",
            "rules:\n  - id: r1\n    eventType: LOAD_CREATED\n",
            "rules:\n  - id: r1\n    name: One\n    eventType: NOT_AN_EVENT\n",
            (
                "rules:\n"
                "  - {id: r1, name: One, eventType: LOAD_CREATED}\n"
                "  - {id: r1, name: Two, eventType: LOAD_CREATED}\n"
            ),
        ],
    )
    def test_invalid_documents(self, text):
        with pytest.raises(WorkflowRuleConfigError):
            load_rules(text)

    def test_unknown_rule_toggle(self, rules):
        with pytest.raises(WorkflowRuleConfigError):
            set_rule_enabled(rules, "rule_missing", False)

    def test_toggle_leaves_input_untouched(self, rules):
        toggled = set_rule_enabled(rules, "rule_load_created", False)
        assert rules[0].is_enabled
        assert not toggled[0].is_enabled


class TestWorkflowEngine:
    def test_defaults_without_stored_rules(self, config_manager):
        engine = WorkflowEngine(config_manager=config_manager)
        assert [r.id for r in engine.rules] == [r.id for r in default_workflow_rules()]

    def test_evaluate_records_decision(self, config_manager, make_load):
        engine = WorkflowEngine(config_manager=config_manager)
        event = load_created_event(make_load(), OCCURRED_AT)

        requests = engine.execute(event)

        assert len(requests) == 3
        decision = engine.decision_history[-1]
        assert decision.decision_type == "workflow_evaluation"
        assert decision.input_data["event_id"] == event.id

    def test_save_and_reload_toggle(self, config_manager, make_load):
        engine = WorkflowEngine(config_manager=config_manager)
        engine.set_rule_enabled("rule_load_created", False)
        engine.save_rules()

        reloaded = WorkflowEngine(config_manager=ConfigManager(config_manager.config_dir))

        event = load_created_event(make_load(), OCCURRED_AT)
        assert reloaded.evaluate(event) == []

    def test_tenant_rules_are_separate(self, config_manager):
        engine = WorkflowEngine(tenant_id="acme", config_manager=config_manager)
        engine.set_rule_enabled("rule_load_created", False)
        engine.save_rules()

        assert (config_manager.config_dir / "tenants" / "acme" / "workflow_rules.yaml").exists()
        assert config_manager.get_workflow_rules("default")[0].is_enabled

    def test_reset_to_defaults_persisted(self, config_manager):
        engine = WorkflowEngine(config_manager=config_manager)
        engine.set_rule_enabled("rule_load_created", False)
        engine.save_rules()

        engine.reset_to_defaults(persist=True)

        assert engine.rules[0].is_enabled
        assert config_manager.get_workflow_rules()[0].is_enabled

    def test_explicit_rules(self, config_manager, make_load):
        engine = WorkflowEngine(rules=[_rule()], config_manager=config_manager)
        requests = engine.evaluate(load_created_event(make_load(), OCCURRED_AT))
        assert [r.template_key for r in requests] == ["CUSTOM_TASK"]
