# Overview: Flask CLI command groups for bootstrap, reward maintenance, and inspection.

# backend/tabpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--register-number "REG-01"]
#   Idempotent bootstrap: default register plus loyalty and cashback configuration rows.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Rewards maintenance:
# - python -m flask rewards expire [--now 2027-01-01T00:00:00Z] [--program loyalty|cashback|coupons|all]
#   Expire due loyalty points, cashback and past-window coupons (run daily from cron).
# - python -m flask rewards verify --customer-id 3
#   Replay a customer's ledgers and compare against the stored balances.
#
# Till inspection:
# - python -m flask tills list
#   List registers and their open session, if any.

import click
from flask.cli import with_appcontext

from .errors import CheckoutError
from .extensions import db
from .models import LoyaltyConfig, CashbackConfig, Register
from .services import cashback_service, coupon_service, loyalty_service, reward_config_service, till_service
from .time_utils import parse_iso_datetime


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--register-number', default='REG-01', help='Number of the default register')
@click.option('--register-name', default='Front Counter', help='Name of the default register')
@with_appcontext
def init_system(register_number, register_name):
    """
    Initialize a fresh tabpos database.

    Creates:
    - A default register (if none exists)
    - Loyalty configuration with program defaults (if absent)
    - Cashback configuration with program defaults (if absent)
    """
    click.echo("START Initializing tabpos...")

    register = db.session.query(Register).first()
    if not register:
        register = till_service.create_register(register_number, register_name)
        click.echo(f"PASS Created register: {register.register_number} (ID: {register.id})")
    else:
        click.echo(f"PASS Using existing register: {register.register_number} (ID: {register.id})")

    if db.session.query(LoyaltyConfig).first() is None:
        reward_config_service.update_loyalty_config({})
        click.echo("PASS Created loyalty configuration with defaults")
    else:
        click.echo("WARN  Loyalty configuration already exists, skipping...")

    if db.session.query(CashbackConfig).first() is None:
        reward_config_service.update_cashback_config({})
        click.echo("PASS Created cashback configuration with defaults")
    else:
        click.echo("WARN  Cashback configuration already exists, skipping...")

    click.echo("DONE tabpos initialized.")


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
    click.echo("BUILD Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete. Run 'flask system init' to bootstrap.")


@click.group('rewards')
def rewards_group():
    """Loyalty and cashback maintenance."""


@rewards_group.command('expire')
@click.option('--now', 'now_value', default=None, help='ISO-8601 instant to expire against (default: now)')
@click.option('--program', type=click.Choice(['loyalty', 'cashback', 'coupons', 'all']), default='all')
@with_appcontext
def expire_rewards(now_value, program):
    """Expire EARN entries and coupons whose validity has passed."""
    try:
        now = parse_iso_datetime(now_value)
    except ValueError:
        raise click.BadParameter("must be an ISO-8601 datetime", param_hint="--now")

    if program in ('loyalty', 'all'):
        result = loyalty_service.expire_due(now)
        click.echo(
            f"loyalty:  expired={result['expired']} skipped={result['skipped']} "
            f"points={result['points_expired']}"
        )
    if program in ('cashback', 'all'):
        result = cashback_service.expire_due(now)
        click.echo(
            f"cashback: expired={result['expired']} skipped={result['skipped']} "
            f"amount_cents={result['amount_expired_cents']}"
        )
    if program in ('coupons', 'all'):
        click.echo(f"coupons:  expired={coupon_service.expire_coupons(now)}")


@rewards_group.command('verify')
@click.option('--customer-id', type=int, required=True)
@with_appcontext
def verify_rewards(customer_id):
    """Replay the ledgers of one customer."""
    try:
        reports = [
            ("loyalty", loyalty_service.verify_ledger(customer_id)),
            ("cashback", cashback_service.verify_ledger(customer_id)),
        ]
    except CheckoutError as e:
        raise click.ClickException(e.message)

    failed = False
    for name, report in reports:
        status = "PASS" if report["consistent"] else "FAIL"
        click.echo(
            f"{status} {name}: entries={report['entries']} ledger={report['ledger_balance']} "
            f"stored={report['stored_balance']}"
        )
        if report["mismatched_entry_ids"]:
            click.echo(f"     mismatched entries: {report['mismatched_entry_ids']}")
        failed = failed or not report["consistent"]

    if failed:
        raise SystemExit(1)


@click.group('tills')
def tills_group():
    """Register and till session inspection."""


@tills_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive registers')
@with_appcontext
def list_tills(include_inactive):
    """List registers with their open session."""
    registers = till_service.list_registers(active_only=not include_inactive)
    if not registers:
        click.echo("No registers found.")
        return

    for register in registers:
        session = till_service.get_open_session(register.id)
        state = f"OPEN session {session.id} since {session.opened_at}" if session else "closed"
        click.echo(f"{register.id:>4}  {register.register_number:<10} {register.name:<24} {state}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(rewards_group)
    app.cli.add_command(tills_group)
