# Overview: Flask CLI command groups for user bootstrap and ledger maintenance.

# backend/freightdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Users:
# - python -m flask users create --email admin@freightdesk.local --type admin
#   Create a user. The first active admin acts as the ledger supervisor.
# - python -m flask users create --email acme@example.com --type customer --ratio 25 --company "Acme"
#   Create a customer priced at base cost + 25%.
# - python -m flask users set-ratio 7 30
#   Change a customer's price ratio (clamped to [-50, 500]).
# - python -m flask users issue-token 7 [--ttl-hours 72]
#   Issue a bearer token. It is printed once and only its hash is stored.
# - python -m flask users revoke-token <token>
#   Revoke a bearer token.
# - python -m flask users set-active 7 --inactive
#   Deactivate (or --active to re-enable) an account.
# - python -m flask users list
#   List users with type, ratio and active status.
#
# Ledger maintenance:
# - python -m flask ledger reconcile [--order-id 12]
#   Report dual-ledger rows missing their counterpart. Exit code 1 if any.
# - python -m flask ledger refresh-balances
#   Recompute every cached user balance from the ledger rows.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .services import balance_service, identity_service, user_service
from .services.concurrency import run_with_retry
from .services.errors import LedgerError
from .services.refund_service import find_unpaired_transactions


@click.group('users')
def users_group():
    """User bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--type', 'user_type', type=click.Choice(['admin', 'customer']), prompt=True, help='User type')
@click.option('--name', 'full_name', default=None, help='Full name')
@click.option('--company', 'company_name', default=None, help='Company name')
@click.option('--ratio', 'price_ratio', type=float, default=0.0, help='Customer price ratio in percent')
@with_appcontext
def create_user_cli(email, user_type, full_name, company_name, price_ratio):
    """Create an admin or customer user."""
    try:
        user = user_service.create_user(
            email,
            user_type,
            full_name=full_name,
            company_name=company_name,
            price_ratio=price_ratio,
        )
        db.session.commit()
        click.echo(f"PASS Created {user.user_type} {user.email} (ID: {user.id}, ratio: {float(user.price_ratio):.2f})")
    except LedgerError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")


@users_group.command('set-ratio')
@click.argument('user_id', type=int)
@click.argument('ratio')
@with_appcontext
def set_ratio_cli(user_id, ratio):
    """Set a customer's price ratio."""
    try:
        normalization = user_service.set_price_ratio(user_id, ratio)
        db.session.commit()
    except LedgerError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")
        return

    if normalization.clamped:
        click.echo(f"WARN Ratio {ratio} clamped to {normalization.ratio:.2f}")
    click.echo(f"PASS User {user_id} price ratio is now {normalization.ratio:.2f}")


@users_group.command('issue-token')
@click.argument('user_id', type=int)
@click.option('--ttl-hours', type=int, default=None, help='Token lifetime (default: no expiry)')
@with_appcontext
def issue_token_cli(user_id, ttl_hours):
    """Issue a bearer token for a user."""
    try:
        user_service.get_user(user_id)
        token = identity_service.issue_token(user_id, ttl_hours=ttl_hours)
        db.session.commit()
    except LedgerError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")
        return
    click.echo(token)


@users_group.command('revoke-token')
@click.argument('token')
@with_appcontext
def revoke_token_cli(token):
    """Revoke a bearer token."""
    if identity_service.revoke_token(token):
        db.session.commit()
        click.echo("PASS Token revoked")
    else:
        click.echo("FAIL Token unknown or already revoked")


@users_group.command('set-active')
@click.argument('user_id', type=int)
@click.option('--active/--inactive', default=True, help='Enable or deactivate the account')
@with_appcontext
def set_active_cli(user_id, active):
    """Activate or deactivate a user. Deactivated users get 403 on every route."""
    try:
        user = user_service.set_active(user_id, active)
        db.session.commit()
    except LedgerError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")
        return
    click.echo(f"PASS User {user.id} is now {'active' if user.is_active else 'inactive'}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Type':<10} {'Email':<35} {'Ratio':>8} {'Active':<8}")
    click.echo("="*90)
    for user in users:
        click.echo(
            f"{user.id:<5} {user.user_type:<10} {user.email:<35} "
            f"{float(user.price_ratio or 0):>8.2f} {str(user.is_active):<8}"
        )
    click.echo("="*90 + "\n")


@click.group('ledger')
def ledger_group():
    """Ledger maintenance commands."""


@ledger_group.command('reconcile')
@click.option('--order-id', type=int, default=None, help='Limit the sweep to one order')
@with_appcontext
def reconcile_cli(order_id):
    """Report dual-ledger rows missing their counterpart."""
    unpaired = find_unpaired_transactions(order_id)
    if not unpaired:
        click.echo("PASS All dual-ledger rows are paired")
        return

    click.echo(f"FAIL {len(unpaired)} unpaired row(s):")
    for item in unpaired:
        side = "supervisor" if item["is_supervisor_transaction"] else "customer"
        click.echo(
            f"  {item['transaction_id']} ({side}, {item['transaction_type']}, {item['amount']:.2f}) "
            f"order={item['order_id']} reference={item['reference_id']} missing={item['missing']}"
        )
    click.get_current_context().exit(1)


@ledger_group.command('refresh-balances')
@with_appcontext
def refresh_balances_cli():
    """Recompute all cached balances."""
    def refresh():
        user_ids = [row.id for row in db.session.query(User.id).all()]
        balance_service.refresh_balances(user_ids)
        db.session.commit()
        return user_ids

    user_ids = run_with_retry(refresh)
    click.echo(f"PASS Refreshed balances for {len(user_ids)} user(s)")


def register_commands(app):
    app.cli.add_command(users_group)
    app.cli.add_command(ledger_group)
