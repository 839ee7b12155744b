"""
Core infrastructure for the settlement engine.

This module provides:
- Config: Configuration management
- Exceptions: Typed error hierarchy
- Logging: structlog setup
"""

from .config import ConfigManager, get_config
from .exceptions import FreightSettlementError
from .logging import configure_logging

__all__ = ["ConfigManager", "get_config", "FreightSettlementError", "configure_logging"]
