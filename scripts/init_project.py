#!/usr/bin/env python3
"""
Initialize the freight settlement engine.

This script checks the project by:
- Verifying the Python version
- Loading .env and reading the environment settings
- Validating config/config.yaml against the business settings
- Loading the tenant's workflow rule set
- Checking that required packages import
"""

import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def check_python_version() -> bool:
    """Verify Python version is 3.12 or higher."""
    if sys.version_info < (3, 12):
        print(f"❌ Python 3.12+ required. Current version: {sys.version}")
        return False
    print(f"✅ Python version: {sys.version_info.major}.{sys.version_info.minor}")
    return True


def check_env_file() -> bool:
    """Load .env if present (optional: every setting has a default)."""
    env_path = PROJECT_ROOT / ".env"
    if not env_path.exists():
        print("⚠️  .env file not found, using defaults")
        print("   Run: cp .env.example .env")
        return True
    load_dotenv(env_path)
    print("✅ .env file loaded")
    return True


def check_environment() -> bool:
    """Read environment settings."""
    from freight_settlement.core.config import EnvironmentSettings
    from freight_settlement.core.logging import configure_logging

    try:
        env = EnvironmentSettings()
    except ValueError as e:
        print(f"❌ Invalid environment settings: {e}")
        return False
    configure_logging(env.log_level, env.log_json)
    print(f"✅ Tenant: {env.tenant_id}")
    print(f"✅ Log level: {env.log_level} ({'json' if env.log_json else 'console'})")
    if env.config_dir:
        print(f"✅ Config dir: {env.config_dir}")
    return True


def check_config_files(config_dir: Path) -> bool:
    """Validate config.yaml exists, parses and matches the business settings."""
    from freight_settlement.core.config import BusinessSettings

    config_path = config_dir / "config.yaml"
    if not config_path.exists():
        print(f"⚠️  {config_path} not found, using built-in defaults")
        return True

    try:
        with open(config_path) as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        print(f"❌ Error parsing config.yaml: {e}")
        return False

    try:
        settings = BusinessSettings(**config)
    except ValueError as e:
        print(f"❌ config.yaml does not match business settings: {e}")
        return False

    print("✅ config.yaml is valid")
    print(
        f"   Invoices: {settings.invoice.prefix}-YYYY-NNNN, "
        f"net {settings.invoice.due_days} days"
    )
    print(f"   Default factoring fee: {settings.factoring.default_fee_percent}%")
    return True


def check_workflow_rules(config_dir: Path) -> bool:
    """Load the tenant's workflow rules (stored or built-in)."""
    from freight_settlement.core.config import ConfigManager
    from freight_settlement.core.exceptions import ConfigurationError

    manager = ConfigManager(config_dir)
    source = manager.workflow_rules_path()
    try:
        rules = manager.get_workflow_rules()
    except ConfigurationError as e:
        print(f"❌ {e}")
        return False

    enabled = [rule for rule in rules if rule.is_enabled]
    origin = str(source) if source.exists() else "built-in defaults"
    print(f"✅ {len(rules)} workflow rules ({len(enabled)} enabled) from {origin}")
    return True


def test_imports() -> bool:
    """Test that critical packages can be imported."""
    required_packages = [
        "pydantic",
        "pydantic_settings",
        "structlog",
        "yaml",
        "dotenv",
    ]

    missing = []
    for package in required_packages:
        try:
            __import__(package)
        except ImportError:
            missing.append(package)

    if missing:
        print(f"❌ Missing packages: {', '.join(missing)}")
        print("   Run: pip install -e .")
        return False

    print("✅ All required packages installed")
    return True


def display_next_steps():
    """Show user what to do next."""
    print("\n" + "=" * 60)
    print("🎉 Project initialization complete!")
    print("=" * 60)
    print("\nNext steps:")
    print("\n1. Review config/config.yaml for invoice terms and fees")
    print("2. Save a tenant rule set to config/workflow_rules.yaml to override the defaults")
    print("3. Run the tests:")
    print("   pip install -e '.[test]' && pytest")
    print("\n" + "=" * 60)


def main():
    """Run all initialization checks."""
    print("=" * 60)
    print("Freight Settlement Engine - Initialization")
    print("=" * 60)
    print()

    config_dir = PROJECT_ROOT / "config"
    checks = [
        ("Python version", check_python_version),
        (".env file", check_env_file),
        ("Package imports", test_imports),
        ("Environment settings", check_environment),
        ("Configuration files", lambda: check_config_files(config_dir)),
        ("Workflow rules", lambda: check_workflow_rules(config_dir)),
    ]

    passed = 0
    failed = 0

    for name, check_func in checks:
        print(f"\nChecking {name}...")
        if check_func():
            passed += 1
        else:
            failed += 1

    print("\n" + "=" * 60)
    print(f"Results: {passed} passed, {failed} failed")
    print("=" * 60)

    if failed == 0:
        display_next_steps()
        return 0
    else:
        print("\n❌ Some checks failed. Please fix the issues above.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
