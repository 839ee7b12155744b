"""
Freight settlement and workflow automation engine.

Turns operational records (loads, drivers, expenses, factoring agreements)
into money (company revenue, driver pay, profit) and watches the same records
for lifecycle transitions to keep invoices and follow-up tasks in step.
"""

from freight_settlement.core import ConfigManager, FreightSettlementError, get_config

__version__ = "0.1.0"

__all__ = ["ConfigManager", "FreightSettlementError", "get_config", "__version__"]
