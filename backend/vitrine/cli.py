# Overview: Flask CLI command groups for bootstrap and stock ledger inspection.

# backend/vitrine/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# Tenant management:
# - python -m flask tenants create --name "Acme Store" --slug acme
#   Create a new tenant; the slug is its storefront address.
# - python -m flask tenants list
#
# Users:
# - python -m flask users create --tenant-id 1 --username admin --email admin@acme.local --password "Password123!"
#
# Stock ledger:
# - python -m flask stock verify [--tenant-id 1]
#   Replay every product's ledger; exits 1 when any integrity warning is found.
# - python -m flask stock low [--tenant-id 1]
#   List active products at or below their low-stock threshold.

import re

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, Tenant, User
from .services.auth_service import create_user, PasswordValidationError
from .services.stock_ledger_service import low_stock_products, verify_tenant_stock

SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9-]{0,63}$")


@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    """List all tenants."""
    tenants = db.session.query(Tenant).order_by(Tenant.id).all()

    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Slug':<20} {'Active':<8} {'Products':<9} {'Users'}")
    click.echo("="*80)

    for tenant in tenants:
        product_count = db.session.query(Product).filter_by(owner_id=tenant.id).count()
        user_count = db.session.query(User).filter_by(owner_id=tenant.id).count()
        active_str = "Yes" if tenant.is_active else "No"

        click.echo(f"{tenant.id:<5} {tenant.name:<30} {tenant.slug:<20} {active_str:<8} {product_count:<9} {user_count}")

    click.echo("="*80 + "\n")


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant (store) name')
@click.option('--slug', required=True, help='Storefront address, lowercase letters, digits and dashes')
@with_appcontext
def create_tenant_cli(name, slug):
    """Create a new tenant."""
    slug = slug.strip().lower()
    if not SLUG_RE.match(slug):
        click.echo(f"FAIL Invalid slug '{slug}'")
        return

    existing = db.session.query(Tenant).filter_by(slug=slug).first()
    if existing:
        click.echo(f"FAIL Tenant with slug '{slug}' already exists")
        return

    tenant = Tenant(name=name, slug=slug, is_active=True)
    db.session.add(tenant)
    db.session.commit()

    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Slug: {tenant.slug})")


@click.group('users')
def users_group():
    """Admin user commands."""


@users_group.command('create')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--username', required=True)
@click.option('--email', required=True)
@click.option('--password', required=True, help='8+ chars, upper, lower, digit and special char')
@click.option('--name', default=None, help='Display name recorded on stock changes')
@with_appcontext
def create_user_cli(tenant_id, username, email, password, name):
    """Create an admin user inside a tenant."""
    try:
        user = create_user(owner_id=tenant_id, username=username, email=email, password=password, name=name)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
        return
    except ValueError as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Created user: {user.username} ({user.email}) in tenant {tenant_id}")


@click.group('stock')
def stock_group():
    """Stock ledger inspection commands."""


@stock_group.command('verify')
@click.option('--tenant-id', type=int, default=None, help='Limit to one tenant')
@with_appcontext
def verify_stock_cli(tenant_id):
    """Replay stock ledgers and report inconsistencies."""
    warnings = verify_tenant_stock(tenant_id)

    if not warnings:
        click.echo("PASS Stock ledger consistent")
        return

    for w in warnings:
        entry = f" entry={w.entry_id}" if w.entry_id is not None else ""
        click.echo(f"WARN product={w.product_id}{entry} [{w.code}] {w.message}")
    click.echo(f"FAIL {len(warnings)} integrity warning(s) found")
    raise SystemExit(1)


@stock_group.command('low')
@click.option('--tenant-id', type=int, default=None, help='Limit to one tenant')
@with_appcontext
def low_stock_cli(tenant_id):
    """List products at or below their low-stock threshold."""
    if tenant_id is not None:
        tenant_ids = [tenant_id]
    else:
        tenant_ids = [t.id for t in db.session.query(Tenant).order_by(Tenant.id).all()]

    rows = []
    for owner_id in tenant_ids:
        rows.extend(low_stock_products(owner_id))

    if not rows:
        click.echo("No low-stock products.")
        return

    click.echo(f"{'Tenant':<7} {'ID':<6} {'Name':<30} {'Stock':<6} {'Threshold'}")
    for p in rows:
        click.echo(f"{p.owner_id:<7} {p.id:<6} {p.name[:30]:<30} {p.stock:<6} {p.low_stock_threshold}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(tenants_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
