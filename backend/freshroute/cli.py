# Overview: Flask CLI command groups for bootstrap and scheduled maintenance.

# backend/freshroute/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Scheduled jobs (cron):
# - python -m flask replenishment run [--actor scheduler]
#   Create draft orders for every store that has products below minimum stock.
# - python -m flask invoices mark-overdue [--today 2026-10-18]
#   Flag pending invoices past their due date as overdue.
# - python -m flask invoices send-reminders [--today 2026-10-18]
#   Send one payment reminder per overdue invoice per day.
#
# Repair:
# - python -m flask orders regenerate-documents [--order-id 12]
#   Fill in kitchen sheets, deliveries and invoices that an approval failed to create.
# - python -m flask stores reconcile-balance [--store-id 3]
#   Rebuild store running balances from orders, returns and payments.

import click
from flask.cli import with_appcontext

from .errors import FulfillmentError
from .extensions import db
from .models import Store
from .services import approval_service, payment_service, reminder_service, replenishment_service
from .time_utils import parse_iso_date


def _parse_today(value):
    try:
        return parse_iso_date(value)
    except ValueError:
        raise click.BadParameter("expected YYYY-MM-DD", param_hint="--today")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('replenishment')
def replenishment_group():
    """Automatic replenishment orders."""


@replenishment_group.command('run')
@click.option('--actor', default='scheduler', help='Recorded as created_by on generated orders')
@with_appcontext
def run_replenishment(actor):
    """
    Sweep all active stores.

    Example:
        flask replenishment run
    """
    run = replenishment_service.generate_all_orders(actor=actor)

    for order in run.orders:
        click.echo(f"PASS Created {order.order_number} for store {order.store_id} ({len(order.items)} items)")
    if run.skipped_store_ids:
        click.echo(f"SKIP Stores with nothing to order: {', '.join(str(s) for s in run.skipped_store_ids)}")
    for failure in run.failures:
        click.echo(f"FAIL Store {failure['store_id']}: {failure['error']}", err=True)

    click.echo(f"\nCreated {len(run.orders)} order(s), {len(run.failures)} failure(s)")


@click.group('invoices')
def invoices_group():
    """Invoice maintenance."""


@invoices_group.command('mark-overdue')
@click.option('--today', help='Override the current date (YYYY-MM-DD)')
@with_appcontext
def mark_overdue(today):
    flagged = reminder_service.mark_overdue_invoices(_parse_today(today))
    for invoice in flagged:
        click.echo(f"OVERDUE {invoice.invoice_number} (due {invoice.due_date.isoformat()})")
    click.echo(f"PASS {len(flagged)} invoice(s) marked overdue")


@invoices_group.command('send-reminders')
@click.option('--today', help='Override the current date (YYYY-MM-DD)')
@with_appcontext
def send_reminders(today):
    sent = reminder_service.send_payment_reminders(_parse_today(today))
    for reminder in sent:
        click.echo(
            f"SENT {reminder.reminder_type} reminder for invoice {reminder.invoice_id} "
            f"({reminder.days_overdue} days overdue)"
        )
    click.echo(f"PASS {len(sent)} reminder(s) sent")


@click.group('orders')
def orders_group():
    """Order repair commands."""


@orders_group.command('regenerate-documents')
@click.option('--order-id', type=int, help='Single order; default is every order missing documents')
@with_appcontext
def regenerate_documents(order_id):
    """
    Re-run the document steps of the approval for approved orders.

    Example:
        flask orders regenerate-documents
        flask orders regenerate-documents --order-id 12
    """
    order_ids = [order_id] if order_id else approval_service.find_orders_missing_documents()
    if not order_ids:
        click.echo("PASS No orders are missing documents.")
        return

    for oid in order_ids:
        try:
            result = approval_service.regenerate_documents(oid)
        except FulfillmentError as e:
            click.echo(f"FAIL Order {oid}: {e.message}", err=True)
            continue
        if result.warnings:
            steps = ", ".join(w["step"] for w in result.warnings)
            click.echo(f"WARN Order {result.order.order_number}: still failing ({steps})")
        else:
            click.echo(f"PASS Order {result.order.order_number}: documents complete")


@click.group('stores')
def stores_group():
    """Store maintenance."""


@stores_group.command('reconcile-balance')
@click.option('--store-id', type=int, help='Single store; default is every store')
@with_appcontext
def reconcile_balance(store_id):
    """Rebuild running balances from the order/return/payment rows."""
    if store_id:
        store_ids = [store_id]
    else:
        store_ids = [s.id for s in db.session.query(Store).order_by(Store.id).all()]

    for sid in store_ids:
        try:
            report = payment_service.reconcile_store_balance(sid)
        except FulfillmentError as e:
            click.echo(f"FAIL Store {sid}: {e.message}", err=True)
            continue
        marker = "FIX " if report["drift_cents"] else "PASS"
        click.echo(
            f"{marker} Store {sid}: balance {report['balance_cents']} "
            f"(was {report['previous_balance_cents']}, drift {report['drift_cents']})"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(replenishment_group)
    app.cli.add_command(invoices_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(stores_group)
