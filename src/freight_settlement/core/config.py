"""
Configuration management for the settlement engine.

Handles loading and accessing:
- Business configuration (config.yaml)
- Workflow rule sets (workflow_rules.yaml, per tenant)
- Environment variables
"""

from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from freight_settlement.core.exceptions import ConfigurationError
from freight_settlement.data.models.workflow import WorkflowRule
from freight_settlement.data.workflow_rules import (
    default_workflow_rules,
    dump_rules,
    load_rules,
)

DEFAULT_TENANT = "default"


class InvoiceSettings(BaseModel):
    """Invoice numbering and terms."""

    prefix: str = "INV"
    due_days: int = Field(30, ge=0)
    sequence_start: int = Field(1000, ge=0)


class FactoringSettings(BaseModel):
    """Factoring fee fallbacks."""

    default_fee_percent: Decimal = Decimal("2.5")


class ExpenseSettings(BaseModel):
    """Expense classification."""

    pass_through_types: list[str] = Field(
        default_factory=lambda: ["fuel", "insurance", "toll", "maintenance", "eld"]
    )


class BusinessSettings(BaseModel):
    """Validated business configuration (config.yaml)."""

    invoice: InvoiceSettings = Field(default_factory=InvoiceSettings)
    factoring: FactoringSettings = Field(default_factory=FactoringSettings)
    expenses: ExpenseSettings = Field(default_factory=ExpenseSettings)


class EnvironmentSettings(BaseSettings):
    """Environment variables configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    tenant_id: str = Field(DEFAULT_TENANT, alias="TMS_TENANT_ID")
    config_dir: Optional[Path] = Field(None, alias="TMS_CONFIG_DIR")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(True, alias="LOG_JSON")


class ConfigManager:
    """
    Central configuration manager for the settlement engine.

    Loads and provides access to:
    - Business configuration from config/config.yaml
    - Workflow rules from config/workflow_rules.yaml (or a tenant override)
    - Environment variables from .env

    Missing files fall back to built-in defaults so the engines can run
    without any configuration on disk.
    """

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        """
        Initialize the configuration manager.

        Args:
            config_dir: Optional path to config directory. Defaults to
                TMS_CONFIG_DIR, then project root/config.
        """
        self._env_settings: Optional[EnvironmentSettings] = None

        if config_dir is None:
            config_dir = self.env.config_dir
        if config_dir is None:
            # Default to config/ directory in project root
            project_root = Path(__file__).resolve().parents[3]
            config_dir = project_root / "config"

        self.config_dir = Path(config_dir)
        self._business_config: Optional[dict[str, Any]] = None
        self._settings: Optional[BusinessSettings] = None
        self._workflow_rules: dict[str, list[WorkflowRule]] = {}

    @property
    def business_config(self) -> dict[str, Any]:
        """Load and return business configuration from config.yaml."""
        if self._business_config is None:
            config_path = self.config_dir / "config.yaml"
            if config_path.exists():
                with open(config_path, "r") as f:
                    self._business_config = yaml.safe_load(f) or {}
            else:
                self._business_config = {}
        return self._business_config

    @property
    def settings(self) -> BusinessSettings:
        """Business configuration validated into typed settings."""
        if self._settings is None:
            try:
                self._settings = BusinessSettings(**self.business_config)
            except ValueError as e:
                raise ConfigurationError(f"Invalid config.yaml: {e}") from e
        return self._settings

    @property
    def env(self) -> EnvironmentSettings:
        """Load and return environment settings."""
        if self._env_settings is None:
            self._env_settings = EnvironmentSettings()
        return self._env_settings

    @property
    def tenant_id(self) -> str:
        return self.env.tenant_id

    def workflow_rules_path(self, tenant_id: Optional[str] = None) -> Path:
        """Location of the stored rule set for a tenant."""
        tenant_id = tenant_id or self.tenant_id
        if tenant_id == DEFAULT_TENANT:
            return self.config_dir / "workflow_rules.yaml"
        return self.config_dir / "tenants" / tenant_id / "workflow_rules.yaml"

    def get_workflow_rules(self, tenant_id: Optional[str] = None) -> list[WorkflowRule]:
        """
        Get the workflow rule set for a tenant.

        Args:
            tenant_id: Tenant identifier (defaults to TMS_TENANT_ID)

        Returns:
            Stored rules, or the default rule set if none are stored
        """
        tenant_id = tenant_id or self.tenant_id
        if tenant_id not in self._workflow_rules:
            path = self.workflow_rules_path(tenant_id)
            if path.exists():
                with open(path, "r") as f:
                    self._workflow_rules[tenant_id] = load_rules(f.read())
            else:
                self._workflow_rules[tenant_id] = default_workflow_rules()
        return list(self._workflow_rules[tenant_id])

    def save_workflow_rules(
        self, rules: list[WorkflowRule], tenant_id: Optional[str] = None
    ) -> Path:
        """Persist a tenant's rule set as YAML and return the file path."""
        tenant_id = tenant_id or self.tenant_id
        path = self.workflow_rules_path(tenant_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            f.write(dump_rules(rules))
        self._workflow_rules[tenant_id] = list(rules)
        return path

    def reset_workflow_rules(self, tenant_id: Optional[str] = None) -> list[WorkflowRule]:
        """Replace a tenant's stored rules with the defaults."""
        rules = default_workflow_rules()
        self.save_workflow_rules(rules, tenant_id)
        return rules

    def get_invoice_settings(self) -> InvoiceSettings:
        return self.settings.invoice

    def get_factoring_settings(self) -> FactoringSettings:
        return self.settings.factoring

    def get_expense_settings(self) -> ExpenseSettings:
        return self.settings.expenses


# Global config instance
_config_manager: Optional[ConfigManager] = None


def get_config() -> ConfigManager:
    """
    Get the global configuration manager instance.

    Returns:
        ConfigManager singleton instance
    """
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def reset_config() -> None:
    """Drop the global instance so the next get_config() reloads."""
    global _config_manager
    _config_manager = None
