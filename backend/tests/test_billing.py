from datetime import timedelta

import pytest

from freshroute.errors import InvoiceNotFound, StateConflict, ValidationError
from freshroute.models import Notification, Payment, PaymentReminder
from freshroute.services import (
    invoice_service,
    order_service,
    payment_service,
    reminder_service,
    return_service,
    store_service,
)
from freshroute.time_utils import utctoday


@pytest.fixture
def returned(approved_order, deliver, product_a):
    """Approved 10 x SKU-A, delivered, 4 returned: invoice total 30.00."""
    deliver(approved_order.delivery.id)
    return_service.process_returns(
        approved_order.delivery.id,
        [{"product_id": product_a.id, "quantity": 4, "expiry_date": (utctoday() - timedelta(days=3)).isoformat()}],
    )
    return approved_order


class TestInvoiceStatus:
    def test_total_formula(self):
        assert invoice_service.compute_invoice_total(5000, 500, 2000) == 2500
        assert invoice_service.compute_invoice_total(5000, 0, 6000) == 0

    def test_derivation(self, approved_order):
        invoice = approved_order.invoice
        today = utctoday()
        assert invoice_service.derive_payment_status(invoice, today=today) == "pending"
        assert invoice_service.derive_payment_status(invoice, today=invoice.due_date + timedelta(days=1)) == "overdue"

    def test_zero_total_invoice_is_paid(self, approved_order, db_session):
        invoice = approved_order.invoice
        invoice_service.apply_return_amount(invoice, invoice.subtotal_cents)
        db_session.commit()
        assert invoice.total_amount_cents == 0
        assert invoice.payment_status == "paid"

    def test_generation_is_idempotent(self, approved_order):
        again = invoice_service.generate_invoice(approved_order.order.id)
        assert again.id == approved_order.invoice.id

    def test_not_invoiced_before_approval(self, stocked, product_a):
        order = order_service.create_order(stocked.id, [{"product_id": product_a.id, "quantity": 1}])
        with pytest.raises(StateConflict):
            invoice_service.generate_invoice(order.id)
        with pytest.raises(InvoiceNotFound):
            invoice_service.get_invoice_for_order(order.id)


class TestPayments:
    def test_full_payment_after_return(self, returned):
        store_id = returned.order.store_id
        assert store_service.get_store(store_id).current_balance_cents == 3000

        payment = payment_service.record_payment(3000, "direct_debit", invoice_id=returned.invoice.id, reference="DD-1")

        assert payment.invoice.payment_status == "paid"
        assert payment.store_id == store_id
        assert store_service.get_store(store_id).current_balance_cents == 0

    def test_partial_then_paid(self, approved_order):
        invoice_id = approved_order.invoice.id

        payment_service.record_payment(2000, "bank_transfer", invoice_id=invoice_id)
        assert invoice_service.get_invoice(invoice_id).payment_status == "partial"

        payment_service.record_payment(3000, "card", order_id=approved_order.order.id)
        assert invoice_service.get_invoice(invoice_id).payment_status == "paid"
        assert invoice_service.invoice_balance(invoice_id)["remaining_cents"] == 0

    def test_overpayment_rejected_without_writing(self, approved_order, db_session):
        invoice_id = approved_order.invoice.id
        payment_service.record_payment(4000, "cash", invoice_id=invoice_id)

        with pytest.raises(ValidationError) as exc:
            payment_service.record_payment(1001, "cash", invoice_id=invoice_id)

        assert exc.value.details["remaining_cents"] == 1000
        assert db_session.query(Payment).count() == 1
        assert invoice_service.get_invoice(invoice_id).payment_status == "partial"

    @pytest.mark.parametrize("amount,method", [(0, "cash"), (-5, "cash"), (100, "cheque")])
    def test_invalid_payment(self, approved_order, amount, method):
        with pytest.raises(ValidationError):
            payment_service.record_payment(amount, method, invoice_id=approved_order.invoice.id)

    def test_unknown_invoice(self, db_session):
        with pytest.raises(InvoiceNotFound):
            payment_service.record_payment(100, "cash", invoice_id=12345)

    def test_delivery_payment_needs_delivered(self, approved_order, deliver):
        delivery_id = approved_order.delivery.id
        with pytest.raises(StateConflict):
            payment_service.collect_delivery_payment(delivery_id, 1000, "cash")

        deliver(delivery_id)
        payment = payment_service.collect_delivery_payment(delivery_id, 1000, "cash", collected_by="driver-7")
        assert payment.delivery_id == delivery_id
        assert payment.collected_by == "driver-7"

    def test_reconcile_balance(self, returned, db_session):
        store = store_service.get_store(returned.order.store_id)
        store.current_balance_cents = 12345
        db_session.commit()

        report = payment_service.reconcile_store_balance(store.id)

        assert report["balance_cents"] == 3000
        assert report["drift_cents"] == 12345 - 3000
        assert store_service.get_store(store.id).current_balance_cents == 3000


class TestReminders:
    def test_reminder_tiers(self):
        assert reminder_service.reminder_type_for(1) == "first"
        assert reminder_service.reminder_type_for(7) == "first"
        assert reminder_service.reminder_type_for(8) == "second"
        assert reminder_service.reminder_type_for(14) == "second"
        assert reminder_service.reminder_type_for(15) == "final"

    def test_mark_overdue_leaves_partial_alone(self, approved_order, db_session):
        invoice = approved_order.invoice
        later = invoice.due_date + timedelta(days=1)

        flagged = reminder_service.mark_overdue_invoices(later)
        assert [i.id for i in flagged] == [invoice.id]
        assert invoice_service.get_invoice(invoice.id).payment_status == "overdue"

        # A payment re-derives the status from the rows
        payment_service.record_payment(100, "cash", invoice_id=invoice.id)
        assert invoice_service.get_invoice(invoice.id).payment_status == "partial"
        assert reminder_service.mark_overdue_invoices(later) == []

    def test_one_reminder_per_invoice_per_day(self, approved_order, db_session):
        invoice = approved_order.invoice
        day = invoice.due_date + timedelta(days=10)

        sent = reminder_service.send_payment_reminders(day)
        assert len(sent) == 1
        assert sent[0].reminder_type == "second"
        assert sent[0].days_overdue == 10

        assert reminder_service.send_payment_reminders(day) == []
        assert len(reminder_service.send_payment_reminders(day + timedelta(days=1))) == 1
        assert db_session.query(PaymentReminder).count() == 2

        reminders = db_session.query(Notification).filter_by(type="payment_reminder").all()
        assert len(reminders) == 2
