"""
Tests for configuration, logging setup and engine decision export.
"""

import json
from decimal import Decimal

import pytest
import structlog

from freight_settlement.core.config import ConfigManager, get_config, reset_config
from freight_settlement.core.exceptions import ConfigurationError, WorkflowRuleConfigError
from freight_settlement.core.logging import configure_logging
from freight_settlement.data.workflow_rules import default_workflow_rules, set_rule_enabled
from freight_settlement.engines.pay_calculator import PayCalculator


class TestBusinessSettings:
    def test_defaults_without_config_file(self, config_manager):
        assert config_manager.get_invoice_settings().prefix == "INV"
        assert config_manager.get_invoice_settings().due_days == 30
        assert config_manager.get_invoice_settings().sequence_start == 1000
        assert config_manager.get_factoring_settings().default_fee_percent == Decimal("2.5")
        assert "fuel" in config_manager.get_expense_settings().pass_through_types

    def test_values_from_yaml(self, isolated_config, config_manager):
        (isolated_config / "config.yaml").write_text(
            "invoice:\n"
            "  prefix: AR\n"
            "  due_days: 45\n"
            "factoring:\n"
            "  default_fee_percent: 3.25\n"
        )

        assert config_manager.get_invoice_settings().prefix == "AR"
        assert config_manager.get_invoice_settings().due_days == 45
        assert config_manager.get_factoring_settings().default_fee_percent == Decimal("3.25")
        assert config_manager.get_expense_settings().pass_through_types[0] == "fuel"

    def test_empty_file(self, isolated_config, config_manager):
        (isolated_config / "config.yaml").write_text("")
        assert config_manager.get_invoice_settings().prefix == "INV"

    def test_invalid_values(self, isolated_config, config_manager):
        (isolated_config / "config.yaml").write_text("invoice:\n  due_days: -1\n")

        with pytest.raises(ConfigurationError) as exc_info:
            config_manager.get_invoice_settings()
        assert exc_info.value.code == "CONFIGURATION_ERROR"


class TestEnvironment:
    def test_tenant_from_env(self, isolated_config, monkeypatch):
        monkeypatch.setenv("TMS_TENANT_ID", "acme")
        assert ConfigManager(isolated_config).tenant_id == "acme"

    def test_config_dir_from_env(self, isolated_config):
        assert ConfigManager().config_dir == isolated_config

    def test_global_instance(self, isolated_config):
        first = get_config()

        assert get_config() is first
        assert first.config_dir == isolated_config

        reset_config()
        assert get_config() is not first


class TestWorkflowRuleStorage:
    def test_defaults_when_nothing_stored(self, config_manager):
        rules = config_manager.get_workflow_rules()
        assert [r.id for r in rules] == [r.id for r in default_workflow_rules()]

    def test_paths(self, isolated_config, config_manager):
        assert config_manager.workflow_rules_path("default") == isolated_config / "workflow_rules.yaml"
        assert (
            config_manager.workflow_rules_path("acme")
            == isolated_config / "tenants" / "acme" / "workflow_rules.yaml"
        )

    def test_saved_rules_survive_reload(self, isolated_config, config_manager):
        rules = set_rule_enabled(default_workflow_rules(), "rule_invoice_overdue", False)

        path = config_manager.save_workflow_rules(rules)

        assert path.exists()
        reloaded = ConfigManager(isolated_config).get_workflow_rules()
        overdue = next(r for r in reloaded if r.id == "rule_invoice_overdue")
        assert not overdue.is_enabled

    def test_returned_list_is_a_copy(self, config_manager):
        rules = config_manager.get_workflow_rules()
        rules.clear()
        assert config_manager.get_workflow_rules()

    def test_reset(self, isolated_config, config_manager):
        config_manager.save_workflow_rules([], "acme")

        rules = config_manager.reset_workflow_rules("acme")

        assert len(rules) == len(default_workflow_rules())
        assert len(ConfigManager(isolated_config).get_workflow_rules("acme")) == len(rules)

    def test_corrupt_rule_file(self, isolated_config, config_manager):
        (isolated_config / "workflow_rules.yaml").write_text("rules:\n  - id: broken\n")

        with pytest.raises(ConfigurationError) as exc_info:
            config_manager.get_workflow_rules()
        assert isinstance(exc_info.value, WorkflowRuleConfigError)


class TestLoggingAndDecisions:
    def test_configure_logging(self, capsys):
        try:
            configure_logging("DEBUG", json_output=True)
            structlog.get_logger().info("config_test_event", value=1)
        finally:
            structlog.reset_defaults()

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "config_test_event"
        assert record["level"] == "info"

    def test_export_decisions(self, tmp_path, config_manager, make_load, make_driver):
        calculator = PayCalculator(config_manager=config_manager)
        calculator.calculate([make_load(driver_id="D1")], [make_driver()])
        output = tmp_path / "decisions.json"

        calculator.export_decisions(str(output))

        exported = json.loads(output.read_text())
        assert len(exported) == 1
        assert exported[0]["engine_name"] == "pay_calculator"
        assert exported[0]["decision_type"] == "pay_split"

    def test_engine_repr(self, config_manager):
        assert repr(PayCalculator(config_manager=config_manager)) == (
            "PayCalculator(engine_name='pay_calculator')"
        )
