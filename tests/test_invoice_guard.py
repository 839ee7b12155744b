"""
Tests for the Invoice Lifecycle Guard.

Covers:
- At-most-once auto-invoicing across repeated reconciles
- Invoice numbering and collisions
- Overdue sweep and its idempotence
- Manual payment transitions
- Manual multi-load invoices
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from freight_settlement.core.exceptions import (
    DuplicateInvoiceError,
    InvalidInvoiceTransitionError,
    InvoiceEligibilityError,
)
from freight_settlement.data.models import InvoiceStatus
from freight_settlement.engines.invoice_guard import (
    InvoiceGuard,
    create_invoice,
    invoice_id_for_loads,
    mark_paid,
    next_invoice_number,
    reconcile,
    sweep_overdue,
)

TODAY = date(2024, 3, 10)


class TestReconcile:
    """Auto-invoicing of delivered loads."""

    def test_delivered_load_gets_one_invoice(self, make_load):
        load = make_load(rate=Decimal("500"))

        result = reconcile([load], [], TODAY)

        assert len(result.new_invoices) == 1
        invoice = result.new_invoices[0]
        assert invoice.invoice_number == "INV-2024-1001"
        assert invoice.status == InvoiceStatus.PENDING
        assert invoice.amount == Decimal("500")
        assert invoice.invoice_date == TODAY
        assert invoice.due_date == date(2024, 4, 9)
        assert invoice.load_ids == ["L1"]
        assert result.load_links[0].invoice_id == invoice.id

    def test_repeated_reconcile_invoices_once(self, make_load):
        load = make_load(rate=Decimal("500"))
        invoices = []

        for _ in range(5):
            result = reconcile([load], invoices, TODAY)
            invoices.extend(result.new_invoices)

        assert len(invoices) == 1

    def test_invoice_id_is_deterministic(self, make_load):
        load = make_load()
        first = reconcile([load], [], TODAY).new_invoices[0]
        second = reconcile([load], [], TODAY).new_invoices[0]
        assert first.id == second.id == invoice_id_for_loads(["L1"])

    def test_load_with_invoice_id_is_left_alone(self, make_load):
        result = reconcile([make_load(invoice_id="inv_old")], [], TODAY)
        assert result.is_empty
        assert result.skipped == []

    def test_legacy_single_load_reference_counts(self, make_load, make_invoice):
        legacy = make_invoice(load_ids=[], load_id="L1", due_date=date(2024, 4, 1))
        result = reconcile([make_load()], [legacy], TODAY)
        assert result.new_invoices == []

    @pytest.mark.parametrize(
        "overrides,reason",
        [
            ({"customer_name": None, "broker_name": "Broker Co"}, "missing customer name"),
            ({"customer_name": "  "}, "missing customer name"),
            ({"rate": Decimal("0")}, "rate must be greater than 0"),
        ],
    )
    def test_ineligible_loads_are_skipped(self, make_load, overrides, reason):
        result = reconcile([make_load(**overrides)], [], TODAY)

        assert result.new_invoices == []
        assert reason in result.skipped[0].reasons

    def test_undelivered_load_not_considered(self, make_load):
        result = reconcile([make_load(status="in_transit")], [], TODAY)
        assert result.is_empty
        assert result.skipped == []

    def test_numbers_stay_unique_within_a_pass(self, make_load):
        loads = [make_load(id="L1"), make_load(id="L2"), make_load(id="L3")]

        result = reconcile(loads, [], TODAY)

        numbers = [i.invoice_number for i in result.new_invoices]
        assert numbers == ["INV-2024-1001", "INV-2024-1002", "INV-2024-1003"]

    def test_factored_load_carries_factoring(self, make_load):
        load = make_load(is_factored=True, factoring_company_id="F1")
        invoice = reconcile([load], [], TODAY).new_invoices[0]
        assert invoice.is_factored
        assert invoice.factoring_company_id == "F1"

    def test_billable_total_is_invoiced(self, make_load):
        load = make_load(rate=Decimal("2000"), grand_total=Decimal("2150"))
        assert reconcile([load], [], TODAY).new_invoices[0].amount == Decimal("2150")


class TestInvoiceNumbering:
    def test_first_number_of_year(self):
        assert next_invoice_number([], 2024) == "INV-2024-1001"

    def test_continues_past_highest(self):
        existing = ["INV-2024-1001", "INV-2024-1005", "INV-2023-1999"]
        assert next_invoice_number(existing, 2024) == "INV-2024-1006"

    def test_other_years_ignored(self):
        assert next_invoice_number(["INV-2023-1042"], 2024) == "INV-2024-1001"

    def test_custom_prefix_and_start(self):
        assert next_invoice_number(["BILL-2024-0007"], 2024, "BILL", 0) == "BILL-2024-0008"


class TestOverdueSweep:
    def test_past_due_pending_becomes_overdue(self, make_invoice):
        invoice = make_invoice(due_date=date(2024, 1, 1))

        updates = sweep_overdue([invoice], date(2024, 1, 5))

        assert [u.status for u in updates] == [InvoiceStatus.OVERDUE]

    def test_second_sweep_changes_nothing(self, make_invoice):
        invoice = make_invoice(due_date=date(2024, 1, 1))
        swept = sweep_overdue([invoice], date(2024, 1, 5))

        assert sweep_overdue(swept, date(2024, 1, 5)) == []

    def test_due_today_is_not_overdue(self, make_invoice):
        invoice = make_invoice(due_date=date(2024, 1, 5))
        assert sweep_overdue([invoice], date(2024, 1, 5)) == []

    @pytest.mark.parametrize("status", ["paid", "draft", "overdue"])
    def test_only_pending_is_swept(self, make_invoice, status):
        invoice = make_invoice(status=status, due_date=date(2024, 1, 1))
        assert sweep_overdue([invoice], date(2024, 1, 5)) == []

    def test_missing_due_date_is_skipped(self, make_invoice):
        invoice = make_invoice(due_date=None)
        assert sweep_overdue([invoice], date(2024, 1, 5)) == []

    def test_reconcile_reports_overdue(self, make_invoice):
        result = reconcile([], [make_invoice()], date(2024, 1, 5))
        assert [u.id for u in result.status_updates] == ["inv_1"]


class TestMarkPaid:
    @pytest.mark.parametrize("status", ["pending", "overdue"])
    def test_open_invoice_is_paid(self, make_invoice, status):
        paid_at = datetime(2024, 2, 1, 12, 0)

        paid = mark_paid(make_invoice(status=status), paid_at, "ach", "REF-1")

        assert paid.status == InvoiceStatus.PAID
        assert paid.paid_at == paid_at
        assert paid.payment_method == "ach"
        assert paid.payment_reference == "REF-1"

    @pytest.mark.parametrize("status", ["paid", "draft"])
    def test_closed_invoice_rejects_payment(self, make_invoice, status):
        with pytest.raises(InvalidInvoiceTransitionError) as exc_info:
            mark_paid(make_invoice(status=status))
        assert exc_info.value.to_status == "paid"

    def test_default_paid_at(self, make_invoice):
        assert mark_paid(make_invoice()).paid_at is not None


class TestCreateInvoice:
    def test_multi_load_invoice(self, make_load):
        loads = [
            make_load(id="L1", rate=Decimal("500")),
            make_load(id="L2", rate=Decimal("700")),
        ]

        draft = create_invoice(loads, [], TODAY)

        assert draft.invoice.amount == Decimal("1200")
        assert draft.invoice.load_ids == ["L1", "L2"]
        assert {link.load_id for link in draft.load_links} == {"L1", "L2"}
        assert draft.invoice.id == invoice_id_for_loads(["L2", "L1"])

    def test_broker_name_fallback(self, make_load):
        load = make_load(customer_name=None, broker_name="Broker Co")
        assert create_invoice([load], [], TODAY).invoice.customer_name == "Broker Co"

    def test_duplicate_rejected(self, make_load, make_invoice):
        with pytest.raises(DuplicateInvoiceError) as exc_info:
            create_invoice([make_load()], [make_invoice()], TODAY)
        assert exc_info.value.load_id == "L1"

    def test_undelivered_rejected(self, make_load):
        with pytest.raises(InvoiceEligibilityError):
            create_invoice([make_load(status="dispatched")], [], TODAY)

    def test_empty_selection_rejected(self):
        with pytest.raises(InvoiceEligibilityError):
            create_invoice([], [], TODAY)


class TestInvoiceGuardEngine:
    def test_configured_numbering_and_terms(self, isolated_config, config_manager, make_load):
        (isolated_config / "config.yaml").write_text(
            "invoice:\n  prefix: BILL\n  due_days: 15\n"
        )
        guard = InvoiceGuard(config_manager=config_manager)

        result = guard.reconcile([make_load()], [], TODAY)

        invoice = result.new_invoices[0]
        assert invoice.invoice_number == "BILL-2024-1001"
        assert invoice.due_date == date(2024, 3, 25)
        assert guard.decision_history[-1].decision_type == "invoice_reconcile"

    def test_mark_paid_rejection_propagates(self, make_invoice, config_manager):
        guard = InvoiceGuard(config_manager=config_manager)
        with pytest.raises(InvalidInvoiceTransitionError):
            guard.mark_paid(make_invoice(status="paid"))
