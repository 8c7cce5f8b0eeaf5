# Overview: Flask CLI command groups for bootstrap and settlement jobs.

# backend/lilium/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent). Use `flask db upgrade` for migrations.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User bootstrap:
# - python -m flask users create --username admin --email admin@lilium.local --password "Password123!" --role SUPER_ADMIN
#   Create a user (prompts if options are omitted).
# - python -m flask users create --username karkh --email karkh@lilium.local --role LOCATION_ADMIN --zone KARKH
# - python -m flask users create --username acme --email acme@lilium.local --role COMPANY_MANAGER --company-id 1
#
# Settlements:
# - python -m flask settlements daily --company-id 1 [--day 2024-05-01]
#   Create the settlement for one company and one UTC day (default: today).

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import ServiceError
from .extensions import db
from .models.catalog import ZONES
from .permissions import ALL_ROLES
from .services.auth_service import create_user, PasswordValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm dropping all data')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(ALL_ROLES, case_sensitive=False), prompt=True)
@click.option('--zone', 'zones', multiple=True, type=click.Choice(ZONES, case_sensitive=False),
              help='Zone for LOCATION_ADMIN users (repeatable)')
@click.option('--company-id', type=int, default=None, help='Company for COMPANY_MANAGER / VENDOR users')
@click.option('--name', default=None)
@with_appcontext
def create_user_command(username, email, password, role, zones, company_id, name):
    """Create a user with a hashed password."""
    try:
        user = create_user(
            username,
            email,
            password,
            role.upper(),
            zones=[z.upper() for z in zones],
            company_id=company_id,
            name=name,
        )
    except (PasswordValidationError, ValueError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role: {user.role})")


@click.group('settlements')
def settlements_group():
    """Settlement jobs."""


@settlements_group.command('daily')
@click.option('--company-id', type=int, required=True)
@click.option('--day', type=click.DateTime(formats=['%Y-%m-%d']), default=None,
              help='UTC day to settle (default: today)')
@with_appcontext
def daily_settlement(company_id, day):
    """Create the settlement for one company and one day."""
    service = current_app.extensions["settlement_service"]
    try:
        settlement = service.process_daily_settlement(company_id, day)
    except ServiceError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    click.echo(
        f"PASS Settlement {settlement.id}: {settlement.total_orders} orders, "
        f"revenue {settlement.total_revenue}, commission {settlement.total_commission}, "
        f"payout {settlement.total_payout}"
    )


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(settlements_group)
