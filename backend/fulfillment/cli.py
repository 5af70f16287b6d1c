# Overview: Flask CLI command groups for bootstrap and scheduled maintenance.

# backend/fulfillment/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrations).
#
# Payment accounts (schedule daily / monthly):
# - python -m flask accounts reset-daily [--date 2026-01-31]
#   Zero daily running totals last reset before the given day (default today, UTC).
# - python -m flask accounts reset-monthly [--date 2026-02-01]
#   Zero monthly running totals last reset in an earlier month.
#
# Maintenance:
# - python -m flask maintenance release-stale-orders [--hours 72]
#   Cancel PENDING orders with no payment proof after N hours and release their stock.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import account_rotation_service, maintenance_service


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    from . import models  # noqa: F401
    db.create_all()
    click.echo("PASS Database tables created")


@click.group('accounts')
def accounts_group():
    """Payment account rotation commands."""


@accounts_group.command('reset-daily')
@click.option('--date', 'on_date', type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help='Reset as of this UTC day (YYYY-MM-DD), default today')
@with_appcontext
def reset_daily(on_date):
    count = account_rotation_service.reset_daily_counters(on_date.date() if on_date else None)
    click.echo(f"PASS Daily counters reset on {count} account(s)")


@accounts_group.command('reset-monthly')
@click.option('--date', 'on_date', type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help='Reset as of this UTC day (YYYY-MM-DD), default today')
@with_appcontext
def reset_monthly(on_date):
    count = account_rotation_service.reset_monthly_counters(on_date.date() if on_date else None)
    click.echo(f"PASS Monthly counters reset on {count} account(s)")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('release-stale-orders')
@click.option('--hours', type=int, default=None, help='Age threshold in hours (default STALE_ORDER_HOURS)')
@with_appcontext
def release_stale_orders(hours):
    cancelled = maintenance_service.cancel_stale_pending_orders(hours=hours)
    click.echo(f"PASS Cancelled {cancelled} stale pending order(s)")


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(accounts_group)
    app.cli.add_command(maintenance_group)
