# Overview: Flask CLI command groups for bootstrap, scheduled jobs, and cache repair.

# backend/dairyflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Idempotent bootstrap: creates tables (if missing) and one default user per role.
#
# Users:
# - python -m flask users list
# - python -m flask users create --name "Ana" --email ana@dairyflow.local --password "Password123" --role manager
#
# Scheduled jobs (wire to cron or any scheduler):
# - python -m flask jobs sweep-overdue
#   Flip sent invoices past due to overdue and notify payment-due.
# - python -m flask jobs low-stock-alert
#   Notify low-stock for every product below normal.
# - python -m flask jobs expiring-batches --days 7
#   Notify batch-expiring for batches whose produce expires soon.
# - python -m flask jobs production-report [--date 2026-01-31]
#   Notify production-report with the day's completed batches.
#
# Client counters:
# - python -m flask clients rebuild-counters [--client-id 3]
#   Recompute cached client counters from orders.

import click
from flask.cli import with_appcontext

from .errors import DomainError
from .extensions import db
from .models import User
from .models.auth import USER_ROLES
from .services import batch_service, client_service, invoice_service, stock_service
from .services.auth_service import create_user
from .services.notification_service import KIND_BATCH_EXPIRING, KIND_PRODUCTION_REPORT, notify
from .time_utils import parse_iso_datetime


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--password', default='Password123', help='Password for the default users')
@with_appcontext
def init_system(password):
    """
    Initialize DairyFlow: tables and one default user per role.

    Users: <role>@dairyflow.local for admin, manager, operator, driver, viewer.

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing DairyFlow...")
    db.create_all()
    click.echo("PASS Tables ready")

    for role in ("admin", "manager", "operator", "driver", "viewer"):
        email = f"{role}@dairyflow.local"
        if db.session.query(User).filter_by(email=email).first():
            click.echo(f"WARN  User '{email}' already exists, skipping...")
            continue
        try:
            create_user(name=role.capitalize(), email=email, password=password, role=role)
            click.echo(f"PASS Created user: {email} with role '{role}'")
        except DomainError as e:
            db.session.rollback()
            click.echo(f"FAIL Failed to create user '{email}': {e.message}")

    click.echo("DONE DairyFlow initialized (CHANGE DEFAULT PASSWORDS IN PRODUCTION!)")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users_cli():
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        state = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.email:<32} {user.role:<9} {state}")


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(USER_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(name, email, password, role):
    """
    Create a new user.

    Password: minimum 8 characters with at least one letter and one digit.
    """
    try:
        user = create_user(name=name, email=email, password=password, role=role)
    except DomainError as e:
        db.session.rollback()
        raise click.ClickException(e.message)
    click.echo(f"PASS Created user {user.email} (ID: {user.id}) with role '{user.role}'")


@click.group('jobs')
def jobs_group():
    """Scheduled sweeps and reports."""


@jobs_group.command('sweep-overdue')
@with_appcontext
def sweep_overdue_cli():
    overdue = invoice_service.sweep_overdue_invoices()
    click.echo(f"PASS {len(overdue)} invoice(s) marked overdue")
    for invoice in overdue:
        click.echo(f"  {invoice.invoice_number}  {invoice.client_name}  {invoice.total_cents} cents")


@jobs_group.command('low-stock-alert')
@with_appcontext
def low_stock_alert_cli():
    products = stock_service.list_low_stock()
    sent = stock_service.notify_low_stock(products)
    click.echo(f"PASS {sent} low-stock notification(s) dispatched")
    for product in products:
        click.echo(f"  {product.sku:<16} {product.status:<13} {product.current_stock} {product.unit}")


@jobs_group.command('expiring-batches')
@click.option('--days', default=7, show_default=True, type=int, help='Look-ahead window in days')
@with_appcontext
def expiring_batches_cli(days):
    try:
        expiring = batch_service.find_expiring_batches(within_days=days)
    except DomainError as e:
        raise click.ClickException(e.message)
    for entry in expiring:
        notify(KIND_BATCH_EXPIRING, entry)
        click.echo(f"  {entry['batch_number']}  {entry['product_name']}  expires {entry['expires_at']}")
    click.echo(f"PASS {len(expiring)} batch-expiring notification(s) dispatched")


@jobs_group.command('production-report')
@click.option('--date', 'day', default=None, help='UTC day (YYYY-MM-DD); defaults to today')
@with_appcontext
def production_report_cli(day):
    try:
        parsed = parse_iso_datetime(day) if day else None
    except ValueError:
        raise click.BadParameter("expected YYYY-MM-DD", param_hint="--date")
    summary = batch_service.daily_production_summary(parsed)
    notify(KIND_PRODUCTION_REPORT, summary)
    click.echo(
        f"PASS {summary['date']}: {summary['completed_batches']} batch(es) completed, "
        f"{summary['total_quantity']} total"
    )


@click.group('clients')
def clients_group():
    """Client counters maintenance."""


@clients_group.command('rebuild-counters')
@click.option('--client-id', type=int, default=None, help='Only rebuild this client')
@with_appcontext
def rebuild_counters_cli(client_id):
    try:
        clients = client_service.rebuild_client_counters(client_id)
    except DomainError as e:
        raise click.ClickException(e.message)
    for client in clients:
        click.echo(
            f"  {client.id:>4}  {client.name:<32} orders={client.total_orders} "
            f"revenue={client.total_revenue_cents}"
        )
    click.echo(f"PASS Rebuilt counters for {len(clients)} client(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(jobs_group)
    app.cli.add_command(clients_group)
