"""
Built-in workflow rule set and its YAML form.

The default rules walk a load through its lifecycle checklist (driver,
rate confirmation, pickup, BOL, in transit, POD, invoice) and the invoice
through accounts receivable. Tenants override them by storing their own
rule file; see ConfigManager.get_workflow_rules.
"""

from typing import Any

import yaml
from pydantic import ValidationError

from freight_settlement.core.exceptions import WorkflowRuleConfigError
from freight_settlement.data.models.workflow import WorkflowRule

DEFAULT_RULES: list[dict[str, Any]] = [
    {
        "id": "rule_load_created",
        "name": "Load Created - Initial Tasks",
        "eventType": "LOAD_CREATED",
        "actions": [
            {
                "templateKey": "LOAD_ASSIGN_DRIVER",
                "title": "Assign driver to load",
                "description": "A new load has been created and needs a driver assignment.",
                "priority": "high",
                "dueOffsetMinutes": 60,
                "assignTo": "DISPATCH",
                "tags": ["load", "dispatch"],
            },
            {
                "templateKey": "LOAD_SEND_RATE_CONFIRMATION",
                "title": "Send rate confirmation",
                "description": "Rate confirmation document needs to be sent to customer.",
                "priority": "medium",
                "dueOffsetMinutes": 120,
                "assignTo": "DISPATCH",
                "tags": ["load", "document"],
            },
            {
                "templateKey": "LOAD_CONFIRM_PICKUP_APPT",
                "title": "Confirm pickup appointment",
                "description": "Confirm pickup appointment time with shipper.",
                "priority": "medium",
                "dueOffsetMinutes": 240,
                "assignTo": "DISPATCH",
                "tags": ["load", "pickup"],
            },
        ],
    },
    {
        "id": "rule_load_dispatched",
        "name": "Load Dispatched - Follow-up Tasks",
        "eventType": "LOAD_STATUS_CHANGED",
        "filter": {"loadStatusIn": ["dispatched"]},
        "actions": [
            {
                "templateKey": "LOAD_CONFIRM_PICKUP",
                "title": "Confirm pickup (same day)",
                "description": "Follow up to confirm pickup has occurred.",
                "priority": "high",
                "dueOffsetMinutes": 30,
                "assignTo": "DISPATCH",
                "tags": ["load", "pickup"],
            },
            {
                "templateKey": "LOAD_COLLECT_BOL",
                "title": "Collect BOL",
                "description": "Bill of lading should be uploaded once the load is picked up.",
                "priority": "medium",
                "dueOffsetMinutes": 240,
                "assignTo": "LOAD_DRIVER",
                "tags": ["load", "bol", "document"],
                "blockers": ["BOL_REQUIRED"],
            },
        ],
    },
    {
        "id": "rule_load_in_transit",
        "name": "Load In Transit - Tracking",
        "eventType": "LOAD_STATUS_CHANGED",
        "filter": {"loadStatusIn": ["in_transit"]},
        "actions": [
            {
                "templateKey": "LOAD_TRACK_IN_TRANSIT",
                "title": "Track in-transit update",
                "description": "Monitor load progress while in transit.",
                "priority": "medium",
                "dueOffsetMinutes": 1440,
                "assignTo": "DISPATCH",
                "tags": ["load", "tracking"],
            },
        ],
    },
    {
        "id": "rule_load_delivered",
        "name": "Load Delivered - Post-Delivery Tasks",
        "eventType": "LOAD_DELIVERED",
        "actions": [
            {
                "templateKey": "LOAD_COLLECT_POD",
                "title": "Collect POD",
                "description": "Proof of Delivery document is required for invoicing.",
                "priority": "high",
                "dueOffsetMinutes": 60,
                "assignTo": "DISPATCH",
                "tags": ["load", "pod", "document"],
                "blockers": ["POD_REQUIRED"],
            },
            {
                "templateKey": "LOAD_GENERATE_INVOICE",
                "title": "Generate invoice",
                "description": "Invoice should be generated for this delivered load.",
                "priority": "medium",
                "dueOffsetMinutes": 120,
                "assignTo": "ACCOUNTING",
                "tags": ["load", "invoice", "ar"],
                "blockers": ["POD_REQUIRED"],
            },
        ],
    },
    {
        "id": "rule_document_uploaded",
        "name": "Document Uploaded - Review",
        "eventType": "DOCUMENT_UPLOADED",
        "actions": [
            {
                "templateKey": "DOCUMENT_VERIFY",
                "title": "Verify uploaded document",
                "description": "Check the uploaded document is legible and matches the load.",
                "priority": "low",
                "dueOffsetMinutes": 240,
                "assignTo": "DISPATCH",
                "tags": ["document"],
            },
        ],
    },
    {
        "id": "rule_invoice_created",
        "name": "Invoice Created - AR Tasks",
        "eventType": "INVOICE_CREATED",
        "actions": [
            {
                "templateKey": "INVOICE_SEND_TO_CUSTOMER",
                "title": "Send invoice to customer",
                "description": "Invoice has been created and should be sent to customer.",
                "priority": "medium",
                "dueOffsetMinutes": 30,
                "assignTo": "ACCOUNTING",
                "tags": ["invoice", "ar"],
            },
            {
                "templateKey": "INVOICE_START_AR_FOLLOWUP",
                "title": "Start AR follow-up cycle",
                "description": "Begin accounts receivable follow-up process.",
                "priority": "low",
                "dueOffsetMinutes": 43200,
                "assignTo": "ACCOUNTING",
                "tags": ["invoice", "ar", "followup"],
            },
        ],
    },
    {
        "id": "rule_invoice_overdue",
        "name": "Invoice Overdue - Escalation",
        "eventType": "INVOICE_OVERDUE",
        "actions": [
            {
                "templateKey": "INVOICE_FOLLOWUP_OVERDUE",
                "title": "Follow up overdue invoice",
                "description": "Invoice is past due date and requires immediate attention.",
                "priority": "urgent",
                "assignTo": "ACCOUNTING",
                "tags": ["invoice", "ar", "overdue", "urgent"],
            },
        ],
    },
    {
        "id": "rule_payment_posted",
        "name": "Payment Posted - Reconcile",
        "eventType": "PAYMENT_POSTED",
        "actions": [
            {
                "templateKey": "PAYMENT_RECONCILE",
                "title": "Reconcile payment",
                "description": "Match the posted payment against the invoice and close it out.",
                "priority": "medium",
                "dueOffsetMinutes": 1440,
                "assignTo": "ACCOUNTING",
                "tags": ["invoice", "ar", "payment"],
            },
        ],
    },
]


def default_workflow_rules() -> list[WorkflowRule]:
    """Fresh copy of the built-in rule set."""
    return [WorkflowRule.model_validate(rule) for rule in DEFAULT_RULES]


def load_rules(text: str) -> list[WorkflowRule]:
    """
    Parse a YAML rule set.

    The document is either a list of rules or a mapping with a ``rules`` key.

    Raises:
        WorkflowRuleConfigError: The YAML or a rule in it is invalid
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise WorkflowRuleConfigError(f"unreadable YAML: {e}") from e

    if isinstance(data, dict):
        data = data.get("rules")
    if data is None:
        return []
    if not isinstance(data, list):
        raise WorkflowRuleConfigError("expected a list of rules")

    rules = []
    for position, raw in enumerate(data):
        try:
            rules.append(WorkflowRule.model_validate(raw))
        except ValidationError as e:
            raise WorkflowRuleConfigError(f"rule #{position}: {e}") from e

    ids = [rule.id for rule in rules]
    duplicates = sorted({rule_id for rule_id in ids if ids.count(rule_id) > 1})
    if duplicates:
        raise WorkflowRuleConfigError(f"duplicate rule ids: {', '.join(duplicates)}")
    return rules


def dump_rules(rules: list[WorkflowRule]) -> str:
    """Serialize a rule set to YAML (camelCase keys, as stored)."""
    payload = {
        "rules": [
            rule.model_dump(mode="json", by_alias=True, exclude_none=True)
            for rule in rules
        ]
    }
    return yaml.safe_dump(payload, sort_keys=False)


def set_rule_enabled(
    rules: list[WorkflowRule], rule_id: str, enabled: bool
) -> list[WorkflowRule]:
    """
    Return the rule set with one rule toggled.

    Raises:
        WorkflowRuleConfigError: No rule has ``rule_id``
    """
    if not any(rule.id == rule_id for rule in rules):
        raise WorkflowRuleConfigError(f"unknown rule id: {rule_id}")
    return [
        rule.model_copy(update={"is_enabled": enabled}) if rule.id == rule_id else rule
        for rule in rules
    ]
