"""
Load lifecycle checklist and the condition blockers derived from it.

A condition blocker (e.g. POD_REQUIRED) is a task blocker that names a fact
about the load rather than another task; it clears as soon as the load's
checklist shows the fact.
"""

from typing import Callable, Optional

from pydantic import BaseModel, computed_field

from freight_settlement.data.models.load import (
    REVENUE_ELIGIBLE_STATUSES,
    DocumentType,
    Load,
    LoadStatus,
)

DISPATCHED_STATUSES = frozenset(
    {LoadStatus.DISPATCHED, LoadStatus.IN_TRANSIT, LoadStatus.DELIVERED, LoadStatus.COMPLETED}
)
IN_TRANSIT_STATUSES = frozenset(
    {LoadStatus.IN_TRANSIT, LoadStatus.DELIVERED, LoadStatus.COMPLETED}
)


class ChecklistItem(BaseModel):
    id: str
    label: str
    completed: bool
    required: bool


class LoadChecklist(BaseModel):
    """Lifecycle checklist for one load."""

    load_id: str
    items: list[ChecklistItem]

    @computed_field
    @property
    def completed_count(self) -> int:
        return sum(1 for item in self.items if item.completed)

    @computed_field
    @property
    def required_count(self) -> int:
        return sum(1 for item in self.items if item.required)

    @property
    def missing_required(self) -> list[str]:
        return [item.id for item in self.items if item.required and not item.completed]

    def item(self, item_id: str) -> Optional[ChecklistItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None


def load_checklist(load: Load) -> LoadChecklist:
    """
    Build the eight-item lifecycle checklist.

    POD and invoiced are required only once the load is delivered or
    completed; everything else is always required.
    """
    delivered = load.status in REVENUE_ELIGIBLE_STATUSES
    items = [
        ChecklistItem(
            id="assigned", label="Driver Assigned",
            completed=bool(load.driver_id), required=True,
        ),
        ChecklistItem(
            id="dispatched", label="Dispatched",
            completed=load.status in DISPATCHED_STATUSES, required=True,
        ),
        ChecklistItem(
            id="rate_con", label="Rate Confirmation",
            completed=load.has_document(DocumentType.RATE_CON), required=True,
        ),
        ChecklistItem(
            id="bol", label="Bill of Lading",
            completed=load.has_document(DocumentType.BOL), required=True,
        ),
        ChecklistItem(
            id="in_transit", label="In Transit",
            completed=load.status in IN_TRANSIT_STATUSES, required=True,
        ),
        ChecklistItem(
            id="pod", label="Proof of Delivery",
            completed=load.has_document(DocumentType.POD), required=delivered,
        ),
        ChecklistItem(
            id="delivered", label="Delivered",
            completed=delivered, required=True,
        ),
        ChecklistItem(
            id="invoiced", label="Invoiced",
            completed=bool(load.invoice_id), required=delivered,
        ),
    ]
    return LoadChecklist(load_id=load.id, items=items)


# Condition key -> checklist item that satisfies it
CHECKLIST_CONDITIONS = {
    "POD_REQUIRED": "pod",
    "BOL_REQUIRED": "bol",
    "RATECON_REQUIRED": "rate_con",
    "DRIVER_REQUIRED": "assigned",
}

# Conditions on load fields rather than checklist items
FIELD_CONDITIONS: dict[str, Callable[[Load], bool]] = {
    "DELIVERY_DATE_REQUIRED": lambda load: load.effective_date is not None,
    "CUSTOMER_REQUIRED": lambda load: bool(load.customer_name or load.broker_name),
    "RATE_REQUIRED": lambda load: load.rate > 0,
    "PICKUP_DATE_REQUIRED": lambda load: load.pickup_date is not None,
}


def is_condition(blocker: str) -> bool:
    return blocker in CHECKLIST_CONDITIONS or blocker in FIELD_CONDITIONS


def condition_satisfied(blocker: str, load: Optional[Load]) -> bool:
    """Whether a condition blocker holds for ``load`` (False without a load)."""
    if load is None:
        return False
    if blocker in CHECKLIST_CONDITIONS:
        item = load_checklist(load).item(CHECKLIST_CONDITIONS[blocker])
        return item is not None and item.completed
    check = FIELD_CONDITIONS.get(blocker)
    return check is not None and check(load)
