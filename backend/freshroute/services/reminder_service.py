# Overview: Service-layer operations for overdue invoices and payment reminders.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Invoice, PaymentReminder
from freshroute.time_utils import utctoday
from . import invoice_service, notification_service
from .invoice_service import PAYMENT_STATUS_OVERDUE, PAYMENT_STATUS_PENDING


REMINDER_FIRST = "first"
REMINDER_SECOND = "second"
REMINDER_FINAL = "final"


def reminder_type_for(days_overdue: int) -> str:
    if days_overdue <= 7:
        return REMINDER_FIRST
    if days_overdue <= 14:
        return REMINDER_SECOND
    return REMINDER_FINAL


def mark_overdue_invoices(today=None) -> list[Invoice]:
    """Flag unpaid pending invoices whose due date has passed."""
    today = today or utctoday()
    invoices = (
        db.session.query(Invoice)
        .filter(Invoice.payment_status == PAYMENT_STATUS_PENDING, Invoice.due_date < today)
        .order_by(Invoice.id.asc())
        .all()
    )
    flagged = []
    for invoice in invoices:
        if invoice_service.refresh_payment_status(invoice, today=today) == PAYMENT_STATUS_OVERDUE:
            flagged.append(invoice)
    db.session.commit()
    if flagged:
        current_app.logger.info("Marked %d invoice(s) overdue", len(flagged))
    return flagged


def send_payment_reminders(today=None) -> list[PaymentReminder]:
    """
    One reminder per overdue invoice per day.

    Runs mark_overdue_invoices first so newly overdue invoices are included.
    """
    today = today or utctoday()
    mark_overdue_invoices(today)

    overdue = (
        db.session.query(Invoice)
        .filter(Invoice.payment_status == PAYMENT_STATUS_OVERDUE)
        .order_by(Invoice.id.asc())
        .all()
    )

    sent = []
    for invoice in overdue:
        already = (
            db.session.query(PaymentReminder.id)
            .filter_by(invoice_id=invoice.id, sent_on=today)
            .first()
        )
        if already is not None:
            continue

        days = (today - invoice.due_date).days
        reminder = PaymentReminder(
            invoice_id=invoice.id,
            store_id=invoice.store_id,
            reminder_type=reminder_type_for(days),
            days_overdue=days,
            sent_on=today,
        )
        db.session.add(reminder)
        notification_service.notify(
            None,
            notification_service.TYPE_PAYMENT_REMINDER,
            f"Invoice {invoice.invoice_number} is {days} day(s) overdue "
            f"({invoice.total_amount_cents / 100:.2f} outstanding).",
            {
                "invoice_id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "days_overdue": days,
                "reminder_type": reminder.reminder_type,
            },
            store_id=invoice.store_id,
        )
        sent.append(reminder)

    db.session.commit()
    return sent
