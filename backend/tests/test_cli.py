# Overview: Pytest coverage for the flask CLI command groups.

from efacture.models import Company, Invoice, InvoiceDocument, User
from efacture.services.invoice_service import create_invoice
from efacture.services.document_service import PIPELINE_EXTENSION_KEY
from conftest import StubRenderer, invoice_payload


def test_companies_create_and_list(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=[
        "companies", "create",
        "--name", "Gamma SARL",
        "--tax-id", "001122334455667",
        "--email", "owner@gamma.ma",
        "--password", "Password123",
    ])
    assert result.exit_code == 0, result.output
    assert "PASS Created company Gamma SARL" in result.output

    user = db_session.query(User).filter_by(email="owner@gamma.ma").one()
    assert user.role == "ADMIN"

    result = runner.invoke(args=["companies", "list"])
    assert "001122334455667" in result.output


def test_companies_create_reports_errors(app, db_session):
    result = app.test_cli_runner().invoke(args=[
        "companies", "create", "--name", "Bad", "--tax-id", "12", "--email", "x@y.ma", "--password", "Password123",
    ])
    assert result.exit_code == 1
    assert "FAIL tax_id" in result.output
    assert db_session.query(Company).count() == 0


def test_users_list(app, admin_a, admin_b):
    result = app.test_cli_runner().invoke(args=["users", "list", "--company-id", str(admin_a.company_id)])
    assert admin_a.email in result.output
    assert admin_b.email not in result.output


def test_import_csv(app, db_session, admin_a, tmp_path):
    path = tmp_path / "invoices.csv"
    path.write_text(
        "InvoiceNumber,Date,CustomerName,Description,Quantity,UnitPrice\n"
        "INV-1,2026-10-01,Acme,Widget,2,10.00\n"
        "INV-1,2026-10-01,Acme,Bolt,1,5.50\n",
        encoding="utf-8",
    )
    result = app.test_cli_runner().invoke(args=[
        "invoices", "import-csv", "--company-id", str(admin_a.company_id), "--user-id", str(admin_a.id), str(path),
    ])
    assert result.exit_code == 0, result.output
    assert "Imported 2 rows into 1 invoices" in result.output
    assert db_session.query(Invoice).filter_by(company_id=admin_a.company_id).count() == 1


def test_import_csv_row_errors(app, db_session, admin_a, tmp_path):
    path = tmp_path / "invoices.csv"
    path.write_text(
        "InvoiceNumber,Date,CustomerName,Description,Quantity,UnitPrice\n"
        "INV-1,2026-10-01,Acme,Widget,0,10.00\n",
        encoding="utf-8",
    )
    result = app.test_cli_runner().invoke(args=[
        "invoices", "import-csv", "--company-id", str(admin_a.company_id), "--user-id", str(admin_a.id), str(path),
    ])
    assert result.exit_code == 1
    assert "FAIL row 2: Quantity must be greater than zero." in result.output


def test_import_csv_user_must_belong_to_company(app, admin_a, admin_b, tmp_path):
    path = tmp_path / "invoices.csv"
    path.write_text("InvoiceNumber\n", encoding="utf-8")
    result = app.test_cli_runner().invoke(args=[
        "invoices", "import-csv", "--company-id", str(admin_a.company_id), "--user-id", str(admin_b.id), str(path),
    ])
    assert result.exit_code == 1


def test_documents_retry_failed(app, db_session, admin_ctx, failing_renderer):
    invoice = create_invoice(invoice_payload(), admin_ctx).invoice
    app.extensions[PIPELINE_EXTENSION_KEY].renderer = StubRenderer()

    result = app.test_cli_runner().invoke(args=["documents", "retry-failed"])
    assert result.exit_code == 0, result.output
    assert "Attempted 1: 1 archived, 0 failed" in result.output
    assert db_session.query(InvoiceDocument).filter_by(invoice_id=invoice.id).one().status == "ARCHIVED"
