# Overview: Flask CLI command groups for bootstrap, inspection, imports and document maintenance.

# backend/efacture/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` in production).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Company management (MULTI-TENANT):
# - python -m flask companies list
# - python -m flask companies create --name "Acme SARL" --tax-id 001234567000089 --email admin@acme.ma --password "Password123"
#   Create a company together with its ADMIN user.
#
# User inspection:
# - python -m flask users list [--company-id 1]
#
# Invoices:
# - python -m flask invoices import-csv --company-id 1 --user-id 1 invoices.csv
#   Import a CSV file as the given user (same rules as the API).
#
# Documents:
# - python -m flask documents retry-failed [--limit 100]
#   Re-render and re-archive invoice documents left FAILED or PENDING.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Company, Invoice, User
from .services import auth_service
from .services.document_service import retry_failed_documents
from .services.import_service import ImportValidationError, import_invoices_csv
from .services.tenant_service import TenantAccessError, TenantContext, validate_company_active
from .validation import ValidationError


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


@click.group('companies')
def companies_group():
    """Company (tenant) management."""


@companies_group.command('list')
@with_appcontext
def list_companies():
    companies = db.session.query(Company).order_by(Company.id.asc()).all()

    if not companies:
        click.echo("No companies found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Tax Id':<18} {'Active':<8} {'Users':<7} {'Invoices'}")
    click.echo("="*80)

    for company in companies:
        user_count = db.session.query(User).filter_by(company_id=company.id).count()
        invoice_count = db.session.query(Invoice).filter_by(company_id=company.id).count()
        active_str = "Yes" if company.is_active else "No"
        click.echo(
            f"{company.id:<5} {company.name[:30]:<30} {company.tax_id:<18} {active_str:<8} {user_count:<7} {invoice_count}"
        )

    click.echo("="*80 + "\n")


@companies_group.command('create')
@click.option('--name', required=True, help='Company name')
@click.option('--tax-id', required=True, help='15-digit tax identifier (ICE)')
@click.option('--address', default=None, help='Postal address')
@click.option('--email', required=True, help='E-mail of the ADMIN user')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='ADMIN password')
@click.option('--timezone', default='UTC', help='IANA timezone used for "today"')
@with_appcontext
def create_company(name, tax_id, address, email, password, timezone):
    """Create a company and its ADMIN user."""
    try:
        company, user = auth_service.register_company(
            company_name=name,
            tax_id=tax_id,
            address=address,
            email=email,
            password=password,
            timezone=timezone,
        )
    except ValidationError as e:
        for error in e.errors:
            click.echo(f"FAIL {error.field}: {error.message}")
        raise SystemExit(1)

    click.echo(f"PASS Created company {company.name} (ID: {company.id}) with ADMIN {user.email}")


@click.group('users')
def users_group():
    """User inspection."""


@users_group.command('list')
@click.option('--company-id', type=int, default=None, help='Filter by company')
@with_appcontext
def list_users(company_id):
    query = db.session.query(User)
    if company_id is not None:
        query = query.filter_by(company_id=company_id)
    users = query.order_by(User.company_id.asc(), User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Company':<8} {'Email':<40} {'Role':<9} {'Active'}")
    click.echo("="*80)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.company_id:<8} {user.email[:40]:<40} {user.role:<9} {active_str}")
    click.echo("="*80 + "\n")


@click.group('invoices')
def invoices_group():
    """Invoice commands."""


@invoices_group.command('import-csv')
@click.option('--company-id', type=int, required=True)
@click.option('--user-id', type=int, required=True, help='User the import is attributed to')
@click.argument('csv_file', type=click.File('rb'))
@with_appcontext
def import_csv(company_id, user_id, csv_file):
    """Import a CSV file of invoice lines as DRAFT invoices."""
    user = db.session.query(User).filter_by(id=user_id, company_id=company_id, is_active=True).first()
    if not user:
        click.echo(f"FAIL No active user {user_id} in company {company_id}")
        raise SystemExit(1)

    try:
        validate_company_active(company_id)
        ctx = TenantContext.for_user(user)
        result = import_invoices_csv(csv_file.name, csv_file.read(), ctx)
    except TenantAccessError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    except ImportValidationError as e:
        for message in e.file_errors:
            click.echo(f"FAIL {message}")
        for row in e.row_errors:
            click.echo(f"FAIL row {row.row_number}: {'; '.join(row.errors)}")
        raise SystemExit(1)

    click.echo(
        f"PASS Imported {result.imported_record_count} rows into {result.created_invoice_count} invoices"
    )
    for number in result.conflicts:
        click.echo(f"WARN  Skipped {number}: invoice number already taken")
    for warning in result.document_warnings:
        click.echo(f"WARN  {warning}")


@click.group('documents')
def documents_group():
    """Invoice document maintenance."""


@documents_group.command('retry-failed')
@click.option('--limit', type=int, default=100, show_default=True)
@with_appcontext
def retry_failed(limit):
    """Re-publish documents left FAILED or PENDING."""
    counts = retry_failed_documents(limit=limit)
    click.echo(
        f"PASS Attempted {counts['attempted']}: {counts['archived']} archived, {counts['failed']} failed"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(companies_group)
    app.cli.add_command(users_group)
    app.cli.add_command(invoices_group)
    app.cli.add_command(documents_group)
