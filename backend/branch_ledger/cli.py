# Overview: Flask CLI command groups for bootstrap, seeding, and ledger checks.

# backend/branch_ledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Seeding:
# - python -m flask branches create --name "Main" --opening-balance 100000
# - python -m flask branches list
# - python -m flask users create --username cashier1 --branch-id 1
# - python -m flask users issue-token --user-id 1
#   Prints a bearer token for API calls and the stress test.
# - python -m flask products create --branch-id 1 --name "Phone" --model "X1" --price 250000 --quantity 10
# - python -m flask products list --branch-id 1
#
# Ledger checks:
# - python -m flask ledger reconcile [--branch-id 1]
#   Compare branch cash balances with condition logs + cash repayments.

import click
from flask.cli import with_appcontext
from sqlalchemy.exc import IntegrityError

from .extensions import db
from .models import Branch, Product, User
from .services import reconciliation_service, session_service
from .errors import LedgerError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (idempotent)."""
    db.create_all()
    click.echo("OK  Tables created")


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

    click.echo("OK  Database reset")


@click.group('branches')
def branches_group():
    """Branch seeding and inspection."""


@branches_group.command('create')
@click.option('--name', required=True)
@click.option('--address', default=None)
@click.option('--opening-balance', 'opening_balance', type=int, default=0, show_default=True,
              help='Opening cash balance in cents')
@with_appcontext
def create_branch_cli(name, address, opening_balance):
    branch = Branch(
        name=name.strip(),
        address=address,
        opening_balance_cents=opening_balance,
        cash_balance_cents=opening_balance,
    )
    db.session.add(branch)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise click.ClickException(f"Branch {name!r} already exists")
    click.echo(f"OK  Created branch {branch.id} ({branch.name})")


@branches_group.command('list')
@with_appcontext
def list_branches_cli():
    branches = db.session.query(Branch).order_by(Branch.id).all()
    if not branches:
        click.echo("No branches found.")
        return

    click.echo("\n" + "="*60)
    click.echo(f"{'ID':<5} {'Name':<30} {'Cash (cents)':>15}")
    click.echo("="*60)
    for branch in branches:
        click.echo(f"{branch.id:<5} {branch.name:<30} {branch.cash_balance_cents:>15}")
    click.echo("="*60)


@click.group('users')
def users_group():
    """Actor seeding and token issuance."""


@users_group.command('create')
@click.option('--username', required=True)
@click.option('--full-name', 'full_name', default=None)
@click.option('--branch-id', 'branch_id', type=int, default=None, help='Home branch for cash repayments')
@with_appcontext
def create_user_cli(username, full_name, branch_id):
    if branch_id is not None and db.session.get(Branch, branch_id) is None:
        raise click.ClickException(f"Branch {branch_id} not found")

    user = User(username=username.strip(), full_name=full_name, branch_id=branch_id, is_active=True)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise click.ClickException(f"User {username!r} already exists")
    click.echo(f"OK  Created user {user.id} ({user.username})")


@users_group.command('issue-token')
@click.option('--user-id', 'user_id', type=int, required=True)
@with_appcontext
def issue_token_cli(user_id):
    try:
        session, token = session_service.create_session(user_id)
    except LedgerError as e:
        raise click.ClickException(str(e))
    click.echo(f"Token (expires {session.expires_at:%Y-%m-%d %H:%M} UTC):")
    click.echo(token)


@click.group('products')
def products_group():
    """Product seeding and inspection."""


@products_group.command('create')
@click.option('--branch-id', 'branch_id', type=int, required=True)
@click.option('--name', required=True)
@click.option('--model', 'model_name', default="", show_default=True)
@click.option('--price', type=int, required=True, help='Unit price in cents')
@click.option('--quantity', type=int, default=0, show_default=True)
@click.option('--barcode', default=None)
@with_appcontext
def create_product_cli(branch_id, name, model_name, price, quantity, barcode):
    if db.session.get(Branch, branch_id) is None:
        raise click.ClickException(f"Branch {branch_id} not found")
    if price < 0 or quantity < 0:
        raise click.ClickException("price and quantity must be >= 0")

    product = Product(
        branch_id=branch_id,
        name=name.strip(),
        model=model_name.strip(),
        price_cents=price,
        quantity=quantity,
        barcode=barcode,
    )
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise click.ClickException(f"Product {name!r} {model_name!r} already exists in branch {branch_id}")
    click.echo(f"OK  Created product {product.id} ({product.name} {product.model})")


@products_group.command('list')
@click.option('--branch-id', 'branch_id', type=int, default=None)
@with_appcontext
def list_products_cli(branch_id):
    query = db.session.query(Product)
    if branch_id is not None:
        query = query.filter_by(branch_id=branch_id)
    products = query.order_by(Product.branch_id, Product.name).all()

    if not products:
        click.echo("No products found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Branch':<7} {'Name':<25} {'Model':<15} {'Qty':>5} {'Def':>5} {'Status':<12}")
    click.echo("="*90)
    for p in products:
        click.echo(
            f"{p.id:<5} {p.branch_id:<7} {p.name[:25]:<25} {p.model[:15]:<15} "
            f"{p.quantity:>5} {p.defective_quantity:>5} {p.status:<12}"
        )
    click.echo("="*90)


@click.group('ledger')
def ledger_group():
    """Ledger consistency checks."""


@ledger_group.command('reconcile')
@click.option('--branch-id', 'branch_id', type=int, default=None)
@with_appcontext
def reconcile_cli(branch_id):
    """
    Rebuild each branch's expected cash from the ledgers and compare.

    Exits with status 1 when any branch is out of balance.
    """
    try:
        if branch_id is not None:
            reports = [reconciliation_service.reconcile_branch_cash(branch_id)]
        else:
            reports = reconciliation_service.reconcile_all_branches()
    except LedgerError as e:
        raise click.ClickException(str(e))

    if not reports:
        click.echo("No branches found.")
        return

    out_of_balance = 0
    for report in reports:
        marker = "OK  " if report.balanced else "FAIL"
        if not report.balanced:
            out_of_balance += 1
        click.echo(
            f"{marker} branch {report.branch_id} ({report.branch_name}): "
            f"actual={report.actual_balance_cents} expected={report.expected_balance_cents} "
            f"difference={report.difference_cents}"
        )

    if out_of_balance:
        raise click.exceptions.Exit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(branches_group)
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
    app.cli.add_command(ledger_group)
