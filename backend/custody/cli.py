# Overview: Flask CLI command groups for bootstrap, master data and ledger maintenance.

# backend/custody/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Master data:
# - python -m flask master add-warehouse --title "Main Store" --stock 10
#   Create a warehouse with an opening stock count.
# - python -m flask master add-person --title "Jane Doe" --email jane@example.com
#   Create an active person.
#
# Maintenance:
# - python -m flask maintenance reconcile-locations
#   Repair item custody fields from active transfer records.
# - python -m flask maintenance unassign-orphans
#   Return person-held items that have no active transfer record to warehouse custody.
# - python -m flask maintenance integrity
#   Print ledger vs counter drift (read-only).

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Person, Warehouse
from .services.audit_service import Actor
from .services.factory import build_ledger_services


def _services():
    return build_ledger_services(db.session, current_app.config)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Tables created.")


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


@click.group('master')
def master_group():
    """Master data bootstrap (warehouses, people)."""


@master_group.command('add-warehouse')
@click.option('--title', required=True)
@click.option('--location', default=None)
@click.option('--stock', 'stock_qty', type=int, default=0, show_default=True)
@with_appcontext
def add_warehouse(title, location, stock_qty):
    if stock_qty < 0:
        raise click.BadParameter("stock must be >= 0", param_hint="--stock")
    if db.session.query(Warehouse).filter_by(title=title).first():
        raise click.ClickException(f"Warehouse '{title}' already exists")
    warehouse = Warehouse(title=title, location=location, stock_qty=stock_qty)
    db.session.add(warehouse)
    db.session.commit()
    click.echo(f"Created warehouse {warehouse.id} '{title}' (stock {stock_qty})")


@master_group.command('add-person')
@click.option('--title', required=True, help='Full name')
@click.option('--email', default=None)
@click.option('--department', default=None)
@with_appcontext
def add_person(title, email, department):
    if email and db.session.query(Person).filter_by(email=email).first():
        raise click.ClickException(f"Person with email {email} already exists")
    person = Person(title=title, email=email, department=department)
    db.session.add(person)
    db.session.commit()
    click.echo(f"Created person {person.id} '{title}'")


@click.group('maintenance')
def maintenance_group():
    """Ledger maintenance commands."""


@maintenance_group.command('reconcile-locations')
@with_appcontext
def reconcile_locations_cli():
    """Repair Item custody from the latest active transfer record."""
    summary = _services().engine.reconcile_locations(actor=Actor(name="cli"))
    click.echo(f"Total items:          {summary.total_items}")
    click.echo(f"Updated to person:    {summary.updated_to_person}")
    click.echo(f"Updated to warehouse: {summary.updated_to_warehouse}")
    click.echo(f"Already correct:      {summary.already_correct}")
    if summary.failed_item_ids:
        click.echo(f"FAIL Items not fixed: {summary.failed_item_ids}", err=True)


@maintenance_group.command('unassign-orphans')
@with_appcontext
def unassign_orphans_cli():
    """Return person-held items with no active transfer record to warehouse custody."""
    summary = _services().engine.unassign_without_ledger_record(actor=Actor(name="cli"))
    click.echo(f"Person-held items:         {summary.total_assigned_items}")
    click.echo(f"With transfer records:     {summary.items_with_transfer_records}")
    click.echo(f"Items unassigned:          {summary.items_unassigned}")
    click.echo(f"People updated:            {summary.people_updated}")
    click.echo(f"Warehouses updated:        {summary.warehouses_updated}")
    if summary.items_without_warehouse:
        click.echo(f"WARN No home warehouse:   {summary.items_without_warehouse}")
    if summary.failed_item_ids:
        click.echo(f"FAIL Items not fixed: {summary.failed_item_ids}", err=True)


@maintenance_group.command('integrity')
@click.option('--json', 'as_json', is_flag=True, help='Print the full report as JSON')
@with_appcontext
def integrity_cli(as_json):
    """Report ledger vs counter drift without changing anything."""
    report = _services().engine.integrity_report()
    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return
    click.echo(f"Items checked:                  {report.total_items}")
    click.echo(f"Person-held, no active record:  {len(report.person_held_without_transfer)}")
    click.echo(f"Warehouse-held, active record:  {len(report.warehouse_held_with_transfer)}")
    click.echo(f"Multiple active records:        {len(report.multiple_active_transfers)}")
    click.echo(f"Assignee mismatch:              {len(report.assignee_mismatch)}")
    click.echo(f"Person counter drift:           {len(report.person_counter_drift)}")
    click.echo("PASS Ledger consistent." if report.is_consistent else "WARN Ledger drift found.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(master_group)
    app.cli.add_command(maintenance_group)
