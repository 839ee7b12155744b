"""
Settlement and workflow engines.

This module contains:
- Pay Calculator: Per-load driver pay and company revenue
- Settlement Aggregator: Period P&L from loads, settlements and expenses
- Settlement Builder: Driver settlements with deductions
- Invoice Guard: At-most-once invoicing and invoice status
- Workflow Engine: Rules that turn events into task requests
- Task Machine: Task transitions and blocker resolution
- Lifecycle Coordinator: Record changes to events, tasks and invoices
"""

from .base import BaseEngine, EngineDecision
from .guardrails import check_can_dispatch, check_can_invoice, validate_invoice_requirements
from .invoice_guard import InvoiceGuard, ReconcileResult
from .lifecycle import LifecycleCoordinator, LifecycleOutcome
from .pay_calculator import LoadPaySplit, PayCalculator
from .settlement_aggregator import PeriodSummary, SettlementAggregator
from .settlement_builder import SettlementBuilder, SettlementDraft
from .task_machine import TaskMachine
from .workflow_engine import WorkflowEngine

__all__ = [
    "BaseEngine",
    "EngineDecision",
    "InvoiceGuard",
    "LifecycleCoordinator",
    "LifecycleOutcome",
    "LoadPaySplit",
    "PayCalculator",
    "PeriodSummary",
    "ReconcileResult",
    "SettlementAggregator",
    "SettlementBuilder",
    "SettlementDraft",
    "TaskMachine",
    "WorkflowEngine",
    "check_can_dispatch",
    "check_can_invoice",
    "validate_invoice_requirements",
]
