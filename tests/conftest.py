"""
Shared fixtures for the settlement engine tests.

Every test runs against an empty, isolated config directory so engines fall
back to built-in defaults and never touch the repository's config/.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

import pytest

from freight_settlement.core.config import ConfigManager, reset_config
from freight_settlement.data.models import Driver, Invoice, Load, TaskRequest


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point TMS_CONFIG_DIR at an empty directory for the test."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    monkeypatch.setenv("TMS_CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("TMS_TENANT_ID", "default")
    reset_config()
    yield config_dir
    reset_config()


@pytest.fixture
def config_manager(isolated_config) -> ConfigManager:
    return ConfigManager(isolated_config)


@pytest.fixture
def make_load():
    """Factory for loads; keyword arguments override the defaults."""

    def _make(**overrides: Any) -> Load:
        data: dict[str, Any] = {
            "id": "L1",
            "load_number": "LN-1",
            "status": "delivered",
            "customer_name": "Acme Foods",
            "rate": Decimal("2000"),
            "miles": Decimal("1000"),
            "pickup_date": date(2024, 1, 8),
            "delivery_date": date(2024, 1, 10),
        }
        data.update(overrides)
        return Load.model_validate(data)

    return _make


@pytest.fixture
def make_driver():
    """Factory for drivers; defaults to a company driver at $0.55/mile."""

    def _make(**overrides: Any) -> Driver:
        data: dict[str, Any] = {
            "id": "D1",
            "first_name": "Dana",
            "last_name": "Reyes",
            "type": "Company",
            "payment": {"type": "per_mile", "rate": "0.55"},
        }
        data.update(overrides)
        return Driver.model_validate(data)

    return _make


@pytest.fixture
def make_invoice():
    def _make(**overrides: Any) -> Invoice:
        data: dict[str, Any] = {
            "id": "inv_1",
            "invoice_number": "INV-2024-1001",
            "customer_name": "Acme Foods",
            "load_ids": ["L1"],
            "amount": Decimal("2000"),
            "status": "pending",
            "invoice_date": date(2023, 12, 2),
            "due_date": date(2024, 1, 1),
        }
        data.update(overrides)
        return Invoice.model_validate(data)

    return _make


@pytest.fixture
def make_request():
    def _make(**overrides: Any) -> TaskRequest:
        data: dict[str, Any] = {
            "tenant_id": "default",
            "entity_type": "load",
            "entity_id": "L1",
            "template_key": "LOAD_COLLECT_BOL",
            "title": "Collect BOL",
        }
        data.update(overrides)
        return TaskRequest.model_validate(data)

    return _make


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 1, 10, 9, 0, 0)
