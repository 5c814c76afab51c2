"""
Authorization tests for the invoice API.

Verifies:
- Unauthenticated requests return 401
- Role rules for lifecycle transitions return 403 with the forbidden body
- SUBMITTED invoices are locked for every role
- Error bodies are distinct per failure kind
"""

import io

import pytest

from efacture.models import SecurityEvent
from conftest import invoice_payload


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/invoices"),
            ("POST", "/api/invoices"),
            ("GET", "/api/invoices/1"),
            ("PUT", "/api/invoices/1"),
            ("DELETE", "/api/invoices/1"),
            ("POST", "/api/invoices/1/ready"),
            ("POST", "/api/invoices/1/submit"),
            ("GET", "/api/invoices/1/history"),
            ("GET", "/api/invoices/1/document-url"),
            ("POST", "/api/invoices/import-csv"),
            ("GET", "/api/users"),
            ("POST", "/api/users"),
            ("GET", "/api/auth/me"),
            ("POST", "/api/auth/logout"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"
        assert resp.json["error"] == "unauthenticated"

    def test_garbage_token(self, client, db_session):
        resp = client.get("/api/invoices", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401


# =============================================================================
# LIFECYCLE ROLE GATES (403)
# =============================================================================


def create(client, headers, number="INV-001"):
    resp = client.post("/api/invoices", json=invoice_payload(number), headers=headers)
    assert resp.status_code == 201, resp.json
    return resp.json["invoice"]["id"]


class TestLifecycleRoutes:
    def test_any_role_can_create(self, client, clerk_headers, manager_headers, admin_headers):
        for i, headers in enumerate((clerk_headers, manager_headers, admin_headers)):
            create(client, headers, f"INV-{i}")

    def test_clerk_cannot_mark_ready(self, client, clerk_headers):
        invoice_id = create(client, clerk_headers)
        resp = client.post(f"/api/invoices/{invoice_id}/ready", headers=clerk_headers)
        assert resp.status_code == 403
        assert resp.json["error"] == "forbidden"

    def test_clerk_cannot_change_status_via_put(self, client, clerk_headers):
        invoice_id = create(client, clerk_headers)
        resp = client.put(f"/api/invoices/{invoice_id}", json={"status": "READY"}, headers=clerk_headers)
        assert resp.status_code == 403

    def test_manager_ready_but_not_submit(self, client, manager_headers):
        invoice_id = create(client, manager_headers)

        resp = client.post(f"/api/invoices/{invoice_id}/ready", headers=manager_headers)
        assert resp.status_code == 200
        assert resp.json["invoice"]["status"] == "READY"

        resp = client.post(f"/api/invoices/{invoice_id}/submit", headers=manager_headers)
        assert resp.status_code == 403

    def test_admin_cannot_submit_a_draft(self, client, admin_headers):
        invoice_id = create(client, admin_headers)
        resp = client.post(f"/api/invoices/{invoice_id}/submit", headers=admin_headers)
        assert resp.status_code == 403

    def test_admin_full_path(self, client, admin_headers):
        invoice_id = create(client, admin_headers)
        assert client.post(f"/api/invoices/{invoice_id}/ready", headers=admin_headers).status_code == 200
        resp = client.post(f"/api/invoices/{invoice_id}/submit", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["invoice"]["status"] == "SUBMITTED"

    def test_submitted_locked_for_every_role(self, client, admin_headers, manager_headers, clerk_headers):
        invoice_id = create(client, admin_headers)
        client.post(f"/api/invoices/{invoice_id}/ready", headers=admin_headers)
        client.post(f"/api/invoices/{invoice_id}/submit", headers=admin_headers)

        for headers in (admin_headers, manager_headers, clerk_headers):
            resp = client.put(f"/api/invoices/{invoice_id}", json={"customer_name": "x"}, headers=headers)
            assert resp.status_code == 403
            resp = client.delete(f"/api/invoices/{invoice_id}", headers=headers)
            assert resp.status_code == 403

        assert client.get(f"/api/invoices/{invoice_id}", headers=clerk_headers).status_code == 200

    def test_delete_ready_invoice(self, client, admin_headers, clerk_headers):
        invoice_id = create(client, admin_headers)
        client.post(f"/api/invoices/{invoice_id}/ready", headers=admin_headers)

        resp = client.delete(f"/api/invoices/{invoice_id}", headers=clerk_headers)
        assert resp.status_code == 200
        assert client.get(f"/api/invoices/{invoice_id}", headers=admin_headers).status_code == 404

    def test_request_details_are_logged(self, client, db_session, clerk_headers):
        invoice_id = create(client, clerk_headers)
        client.post(
            f"/api/invoices/{invoice_id}/ready",
            headers={**clerk_headers, "User-Agent": "pytest-agent"},
        )
        event = db_session.query(SecurityEvent).filter_by(event_type="TRANSITION_DENIED").one()
        assert event.resource == f"/api/invoices/{invoice_id}/ready"
        assert event.user_agent == "pytest-agent"


# =============================================================================
# RESPONSE SHAPES
# =============================================================================


class TestErrorShapes:
    def test_validation_body(self, client, admin_headers):
        resp = client.post("/api/invoices", json={"invoice_number": "bad number"}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["error"] == "validation_failed"
        fields = {e["field"] for e in resp.json["errors"]}
        assert {"invoice_number", "date", "customer_name", "lines"} <= fields

    def test_duplicate_number_body(self, client, admin_headers):
        create(client, admin_headers, "INV-1")
        resp = client.post("/api/invoices", json=invoice_payload("INV-1"), headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["errors"] == [{"field": "invoice_number", "message": "InvoiceNumber already exists"}]

    def test_invalid_json_body(self, client, admin_headers):
        resp = client.post("/api/invoices", data="not json", headers=admin_headers, content_type="application/json")
        assert resp.status_code == 400
        assert resp.json["error"] == "validation_failed"

    def test_out_of_range_amount_body(self, client, admin_headers):
        payload = invoice_payload(lines=[{"description": "A", "quantity": "2", "unit_price": "1e30"}])
        resp = client.post("/api/invoices", json=payload, headers=admin_headers)
        assert resp.status_code == 400
        assert {"field": "lines[0].unit_price", "message": "UnitPrice is out of range"} in resp.json["errors"]

    def test_out_of_range_csv_body(self, client, admin_headers):
        content = b"InvoiceNumber,Date,CustomerName,Description,Quantity,UnitPrice\nINV-1,2026-10-01,Acme,Widget,2,1e30\n"
        resp = client.post(
            "/api/invoices/import-csv",
            data={"file": (io.BytesIO(content), "invoices.csv")},
            headers=admin_headers,
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400
        assert resp.json["row_errors"] == [{"row_number": 2, "errors": ["UnitPrice is out of range."]}]

    def test_create_returns_document_warnings(self, client, admin_headers, failing_renderer):
        resp = client.post("/api/invoices", json=invoice_payload(), headers=admin_headers)
        assert resp.status_code == 201
        assert len(resp.json["document_warnings"]) == 1

    def test_list_bad_status(self, client, admin_headers):
        resp = client.get("/api/invoices?status=PAID", headers=admin_headers)
        assert resp.status_code == 400

    def test_history_route(self, client, manager_headers):
        invoice_id = create(client, manager_headers)
        client.post(f"/api/invoices/{invoice_id}/ready", headers=manager_headers)

        resp = client.get(f"/api/invoices/{invoice_id}/history", headers=manager_headers)
        assert resp.status_code == 200
        assert [(h["old_status"], h["new_status"]) for h in resp.json["history"]] == [
            (None, "DRAFT"),
            ("DRAFT", "READY"),
        ]
