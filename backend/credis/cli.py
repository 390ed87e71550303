# Overview: Flask CLI command groups for bootstrap, ledger repair, and maintenance.

# backend/credis/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: flask --app credis <group> <command> [options]
#
# System bootstrap/repair:
# - flask --app credis system init-db
#   Create all tables (idempotent).
# - flask --app credis system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stores and owners:
# - flask --app credis stores create --name "Corner Shop" --address "1 Main St" --phone "0800"
# - flask --app credis owners create --name "Ada" --phone "0700000000" --password "secret1" --store-id 1
#
# Ledger repair:
# - flask --app credis ledger rebuild --customer-id 1 --store-id 1
#   Recompute one balance row from its entries.
# - flask --app credis ledger rebuild-all
#   Recompute every balance row.
# - flask --app credis ledger verify [--repair]
#   Report (and optionally repair) balance rows that drifted from their entries.
#
# Maintenance:
# - flask --app credis maintenance cleanup-tokens --older-than-days 30
#   Delete expired or revoked tokens.

import click
from flask.cli import with_appcontext

from .errors import CredisError
from .extensions import db
from .services import auth_service, balance_service, store_service, token_service


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


@click.group('stores')
def stores_group():
    """Store management commands."""


@stores_group.command('create')
@click.option('--name', required=True, help='Store name')
@click.option('--address', default=None, help='Street address')
@click.option('--phone', default=None, help='Store phone number')
@with_appcontext
def create_store_cli(name, address, phone):
    """Create a new store (tenant)."""
    try:
        store = store_service.create_store(db.session, name=name, address=address, phone=phone)
    except CredisError as exc:
        click.echo(f"FAIL {exc.message}")
        raise SystemExit(1)
    click.echo(f"PASS Created store: {store.name} (ID: {store.id})")


@click.group('owners')
def owners_group():
    """Store owner bootstrap commands."""


@owners_group.command('create')
@click.option('--name', prompt=True, help='Owner name')
@click.option('--phone', prompt=True, help='Login phone number')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--store-id', type=int, default=None, help='Store ID to assign')
@with_appcontext
def create_owner_cli(name, phone, password, store_id):
    """Create a store owner account."""
    try:
        owner = auth_service.register(db.session, name=name, phone=phone, password=password, store_id=store_id)
    except CredisError as exc:
        click.echo(f"FAIL {exc.message}")
        raise SystemExit(1)
    store_str = f"store {owner.store_id}" if owner.store_id else "no store"
    click.echo(f"PASS Created owner: {owner.name} (ID: {owner.id}, {store_str})")


@click.group('ledger')
def ledger_group():
    """Balance rebuild and consistency commands."""


@ledger_group.command('rebuild')
@click.option('--customer-id', type=int, required=True)
@click.option('--store-id', type=int, required=True)
@with_appcontext
def rebuild_cli(customer_id, store_id):
    """Recompute one pair's balance row from its ledger entries."""
    try:
        balance = balance_service.rebuild_balance(db.session, customer_id, store_id)
    except CredisError as exc:
        click.echo(f"FAIL {exc.message}")
        raise SystemExit(1)
    click.echo(
        f"PASS Rebuilt balance customer={customer_id} store={store_id}: "
        f"outstanding={balance.outstanding_balance_cents}"
    )


@ledger_group.command('rebuild-all')
@with_appcontext
def rebuild_all_cli():
    """Recompute every balance row from its ledger entries."""
    rebuilt = 0
    for customer_id, store_id in balance_service.known_pairs(db.session):
        try:
            balance_service.rebuild_balance(db.session, customer_id, store_id)
        except CredisError as exc:
            click.echo(f"WARN customer={customer_id} store={store_id}: {exc.message}")
            continue
        rebuilt += 1
    click.echo(f"PASS Rebuilt {rebuilt} balance row(s).")


@ledger_group.command('verify')
@click.option('--repair', is_flag=True, help='Rebuild divergent rows')
@with_appcontext
def verify_cli(repair):
    """
    Compare every balance row against the fold of its entries.

    Exits non-zero when divergence is found and --repair was not given.
    """
    report = balance_service.verify_all_balances(db.session, repair=repair)
    if not report:
        click.echo("PASS All balances match their ledger entries.")
        return

    for item in report:
        status = "REPAIRED" if item.get("repaired") else "DIVERGED"
        stored = item.get("stored") or {}
        expected = item.get("expected") or {}
        click.echo(
            f"{status} customer={item['customer_id']} store={item['store_id']} "
            f"stored={stored.get('outstanding_balance_cents')} "
            f"expected={expected.get('outstanding_balance_cents')}"
        )

    if not repair:
        click.echo(f"FAIL {len(report)} balance row(s) diverged. Re-run with --repair.")
        raise SystemExit(1)
    click.echo(f"PASS Repaired {len(report)} balance row(s).")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-tokens')
@click.option('--older-than-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_tokens_cli(older_than_days):
    """
    Delete expired or revoked tokens.

    Default retention: 30 days.
    """
    deleted = token_service.cleanup_expired_tokens(db.session, older_than_days=older_than_days)
    click.echo(f"Deleted {deleted} refresh tokens older than {older_than_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(owners_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(maintenance_group)
