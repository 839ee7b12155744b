"""
Typed exceptions for the settlement engine.

Every exception carries a machine-readable ``code`` class attribute and keeps
its context as attributes, so callers catch by type and read structured data
instead of parsing messages.

    FreightSettlementError
    |
    +-- ConfigurationError
    |   +-- WorkflowRuleConfigError
    |
    +-- InvariantViolationError
    |   +-- InvoiceError
    |   |   +-- DuplicateInvoiceError
    |   |   +-- InvoiceEligibilityError
    |   |   +-- InvalidInvoiceTransitionError
    |   |
    |   +-- TaskError
    |       +-- TaskNotFoundError
    |       +-- BlockedTaskError
    |       +-- InvalidTaskTransitionError
    |
    +-- SettlementValidationError

Configuration gaps on a single record (missing payment type, unknown driver)
are not errors: the calculators degrade to a safe default and log a warning.
"""


class FreightSettlementError(Exception):
    """Base exception for all settlement engine errors."""

    code: str = "FREIGHT_SETTLEMENT_ERROR"


# Configuration


class ConfigurationError(FreightSettlementError):
    """Configuration file or setting is invalid."""

    code: str = "CONFIGURATION_ERROR"


class WorkflowRuleConfigError(ConfigurationError):
    """A stored workflow rule set could not be parsed."""

    code: str = "WORKFLOW_RULE_CONFIG_ERROR"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Invalid workflow rule configuration: {detail}")


# Invariant violations


class InvariantViolationError(FreightSettlementError):
    """An operation would break a record invariant."""

    code: str = "INVARIANT_VIOLATION"


class InvoiceError(InvariantViolationError):
    """Base exception for invoice lifecycle errors."""

    code: str = "INVOICE_ERROR"


class DuplicateInvoiceError(InvoiceError):
    """The load is already referenced by an invoice."""

    code: str = "DUPLICATE_INVOICE"

    def __init__(self, load_id: str, invoice_id: str):
        self.load_id = load_id
        self.invoice_id = invoice_id
        super().__init__(f"Load {load_id} is already invoiced on {invoice_id}")


class InvoiceEligibilityError(InvoiceError):
    """The load cannot be invoiced in its current state."""

    code: str = "INVOICE_NOT_ELIGIBLE"

    def __init__(self, load_id: str, reasons: list[str]):
        self.load_id = load_id
        self.reasons = reasons
        super().__init__(f"Load {load_id} cannot be invoiced: {', '.join(reasons)}")


class InvalidInvoiceTransitionError(InvoiceError):
    """Invoice status change is not allowed."""

    code: str = "INVALID_INVOICE_TRANSITION"

    def __init__(self, invoice_id: str, from_status: str, to_status: str):
        self.invoice_id = invoice_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invoice {invoice_id} cannot move from {from_status} to {to_status}"
        )


class TaskError(InvariantViolationError):
    """Base exception for task lifecycle errors."""

    code: str = "TASK_ERROR"


class TaskNotFoundError(TaskError):
    """Task with given ID was not found."""

    code: str = "TASK_NOT_FOUND"

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class BlockedTaskError(TaskError):
    """Task still has blockers that are not completed."""

    code: str = "TASK_BLOCKED"

    def __init__(self, task_id: str, unresolved: list[str]):
        self.task_id = task_id
        self.unresolved = unresolved
        super().__init__(
            f"Task {task_id} is blocked by: {', '.join(unresolved) or 'unknown'}"
        )


class InvalidTaskTransitionError(TaskError):
    """Task status change is not allowed."""

    code: str = "INVALID_TASK_TRANSITION"

    def __init__(self, task_id: str, from_status: str, to_status: str):
        self.task_id = task_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Task {task_id} cannot move from {from_status} to {to_status}")


# Settlement


class SettlementValidationError(FreightSettlementError):
    """Settlement input failed validation."""

    code: str = "SETTLEMENT_VALIDATION_FAILED"

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Settlement validation failed: {', '.join(errors)}")
