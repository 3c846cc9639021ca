"""Integration tests for API endpoints"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from fastapi.testclient import TestClient
from sqlalchemy.exc import SQLAlchemyError

from bisyaroh_gateway.infrastructure.database.repositories import CreditLedger


TIMELINE_BODY = {
    "id": "tl_2025",
    "name": "Bisyaroh 2025",
    "mode": "manual",
    "simulation_date": "2025-02-15",
    "periods": [
        {"number": 1, "label": "Januari 2025", "amount": 40000, "due_date": "2025-01-10"},
        {"number": 2, "label": "Februari 2025", "amount": 40000, "due_date": "2025-02-10"},
        {"number": 3, "label": "Maret 2025", "amount": 40000, "due_date": "2025-03-10"},
    ],
}


@pytest.fixture
def seeded(client: TestClient) -> TestClient:
    """Active timeline plus one student"""
    assert client.post("/v1/timelines", json=TIMELINE_BODY).status_code == 201
    response = client.post(
        "/v1/students",
        json={"id": "santri_001", "name": "Ahmad Fauzi", "guardian_name": "Bapak Fauzi"},
    )
    assert response.status_code == 201
    return client


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "bisyaroh_payments_total" in response.text


def test_request_id_header(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_create_and_get_active_timeline(seeded: TestClient):
    response = seeded.get("/v1/timelines/active")

    assert response.status_code == 200
    data = response.json()
    assert data["id"] == "tl_2025"
    assert [p["key"] for p in data["periods"]] == ["period_1", "period_2", "period_3"]


def test_duplicate_timeline_rejected(seeded: TestClient):
    response = seeded.post("/v1/timelines", json=TIMELINE_BODY)
    assert response.status_code == 422


def test_no_active_timeline(client: TestClient):
    assert client.get("/v1/timelines/active").status_code == 404


def test_payment_allocates_and_carries_credit(seeded: TestClient):
    response = seeded.post("/v1/payments", json={"student_id": "santri_001", "payment_amount": 50000})

    assert response.status_code == 200
    data = response.json()
    assert data["timeline_id"] == "tl_2025"
    assert [a["period_key"] for a in data["allocations"]] == ["period_1"]
    assert data["summary"]["final_credit_balance"] == 10000

    credit = seeded.get("/v1/students/santri_001/credit").json()
    assert credit["balance"] == 10000


def test_student_payments_show_derived_status(seeded: TestClient):
    seeded.post("/v1/payments", json={"student_id": "santri_001", "payment_amount": 40000})

    response = seeded.get("/v1/students/santri_001/payments")

    assert response.status_code == 200
    data = response.json()
    # Simulated now is 15 Feb: January paid, February overdue, March not yet due
    assert [p["status"] for p in data["payments"]] == ["lunas", "terlambat", "belum_bayar"]
    assert data["summary"]["lunas"] == 1
    assert data["summary"]["paid_amount"] == 40000
    assert data["summary"]["progress_percentage"] == 33


def test_simulation_date_change_is_visible_immediately(seeded: TestClient):
    # Warm the cache first
    seeded.get("/v1/students/santri_001/payments")

    response = seeded.put("/v1/timelines/active/simulation-date", json={"simulation_date": "2025-01-01"})
    assert response.status_code == 200

    statuses = [p["status"] for p in seeded.get("/v1/students/santri_001/payments").json()["payments"]]
    assert statuses == ["belum_bayar", "belum_bayar", "belum_bayar"]


def test_simulation_date_rejected_in_real_time_mode(client: TestClient):
    client.post("/v1/timelines", json={**TIMELINE_BODY, "mode": "real_time"})

    response = client.put("/v1/timelines/active/simulation-date", json={"simulation_date": "2025-01-01"})
    assert response.status_code == 422


def test_preview_does_not_commit(seeded: TestClient):
    response = seeded.post("/v1/payments/preview", json={"student_id": "santri_001", "payment_amount": 90000})

    assert response.status_code == 200
    data = response.json()
    assert data["summary"]["affected_periods"] == ["period_1", "period_2"]
    assert data["summary"]["final_credit_balance"] == 10000

    payments = seeded.get("/v1/students/santri_001/payments").json()["payments"]
    assert all(p["status"] != "lunas" for p in payments)


def test_zero_amount_rejected(seeded: TestClient):
    response = seeded.post("/v1/payments", json={"student_id": "santri_001", "payment_amount": 0})
    assert response.status_code == 422


def test_unknown_student_payment(seeded: TestClient):
    response = seeded.post("/v1/payments", json={"student_id": "santri_404", "payment_amount": 40000})
    assert response.status_code == 404


def test_store_failure_returns_retry_prompt(seeded: TestClient):
    with patch.object(CreditLedger, "set_balance", side_effect=SQLAlchemyError("write failed")):
        response = seeded.post("/v1/payments", json={"student_id": "santri_001", "payment_amount": 40000})

    assert response.status_code == 503
    assert "coba lagi" in response.json()["detail"]

    payments = seeded.get("/v1/students/santri_001/payments").json()["payments"]
    assert all(p["status"] != "lunas" for p in payments)


def test_credit_history(seeded: TestClient):
    seeded.post("/v1/payments", json={"student_id": "santri_001", "payment_amount": 50000})
    seeded.post("/v1/payments", json={"student_id": "santri_001", "payment_amount": 30000})

    response = seeded.get("/v1/students/santri_001/credit/history")

    assert response.status_code == 200
    transactions = response.json()["transactions"]
    assert [t["type"] for t in transactions] == ["usage", "earned"]
    assert transactions[0]["balance_after"] == 0


def test_admin_payment_status(seeded: TestClient):
    seeded.post("/v1/students", json={"id": "santri_002", "name": "Budi Santoso"})
    seeded.post("/v1/payments", json={"student_id": "santri_002", "payment_amount": 120000})

    response = seeded.get("/v1/admin/payment-status")

    assert response.status_code == 200
    students = response.json()["students"]
    assert [s["name"] for s in students] == ["Ahmad Fauzi", "Budi Santoso"]
    assert students[0]["status_label"] == "Ada Tunggakan"
    assert students[1]["status_label"] == "Lunas Semua"


def test_reset_clears_payments(seeded: TestClient):
    seeded.post("/v1/payments", json={"student_id": "santri_001", "payment_amount": 40000})

    response = seeded.post("/v1/timelines/active/reset")

    assert response.status_code == 200
    assert response.json()["removed_payments"] == 1
    payments = seeded.get("/v1/students/santri_001/payments").json()["payments"]
    assert all(p["status"] != "lunas" for p in payments)


def test_delete_active_timeline(seeded: TestClient):
    response = seeded.delete("/v1/timelines/active")

    assert response.status_code == 200
    assert response.json()["timeline_id"] == "tl_2025"
    assert seeded.get("/v1/timelines/active").status_code == 404


def _create_session(client: TestClient, **overrides) -> dict:
    body = {
        "student_id": "santri_001",
        "amount": 40000,
        "payment_type": "timeline",
        "timeline_id": "tl_2025",
        "period_key": "period_1",
    }
    body.update(overrides)
    response = client.post("/v1/digital-payments", json=body)
    assert response.status_code == 201
    return response.json()


def test_digital_settlement_applies_payment_once(seeded: TestClient):
    session = _create_session(seeded)
    notification = {
        "order_id": session["order_id"],
        "transaction_status": "settlement",
        "gross_amount": "40000.00",
        "transaction_id": "mt-123",
    }

    first = seeded.post("/v1/digital-payments/notifications", json=notification)
    again = seeded.post("/v1/digital-payments/notifications", json=notification)

    assert first.status_code == 200
    assert first.json()["session_status"] == "completed"
    assert first.json()["periods_completed"] == 1
    assert again.json()["already_processed"] is True

    payments = seeded.get("/v1/students/santri_001/payments").json()["payments"]
    assert payments[0]["status"] == "lunas"
    assert payments[0]["payment_method"] == "digital"
    assert seeded.get("/v1/students/santri_001/credit").json()["balance"] == 0


def test_digital_custom_payment_goes_to_credit(seeded: TestClient):
    session = _create_session(seeded, payment_type="custom", timeline_id=None, period_key=None, amount=15000)

    response = seeded.post(
        "/v1/digital-payments/notifications",
        json={"order_id": session["order_id"], "transaction_status": "settlement", "gross_amount": "15000.00"},
    )

    assert response.json()["credit_added"] == 15000
    assert seeded.get("/v1/students/santri_001/credit").json()["balance"] == 15000


def test_digital_failed_payment_changes_nothing(seeded: TestClient):
    session = _create_session(seeded)

    response = seeded.post(
        "/v1/digital-payments/notifications",
        json={"order_id": session["order_id"], "transaction_status": "deny", "gross_amount": "40000.00"},
    )

    assert response.json()["session_status"] == "failed"
    assert seeded.get("/v1/students/santri_001/credit").json()["balance"] == 0


def test_digital_pending_notification_keeps_session_open(seeded: TestClient):
    session = _create_session(seeded)

    response = seeded.post(
        "/v1/digital-payments/notifications",
        json={"order_id": session["order_id"], "transaction_status": "pending", "gross_amount": "40000.00"},
    )

    assert response.json()["session_status"] == "pending_payment"


def test_digital_amount_out_of_range(seeded: TestClient):
    response = seeded.post(
        "/v1/digital-payments",
        json={"student_id": "santri_001", "amount": 500, "payment_type": "custom"},
    )
    assert response.status_code == 422


def test_digital_session_for_paid_period_rejected(seeded: TestClient):
    seeded.post("/v1/payments", json={"student_id": "santri_001", "payment_amount": 40000})

    response = seeded.post(
        "/v1/digital-payments",
        json={
            "student_id": "santri_001",
            "amount": 40000,
            "timeline_id": "tl_2025",
            "period_key": "period_1",
        },
    )
    assert response.status_code == 422


def test_unknown_order_notification(seeded: TestClient):
    response = seeded.post(
        "/v1/digital-payments/notifications",
        json={"order_id": "TPQ-UNKNOWN", "transaction_status": "settlement", "gross_amount": "1000"},
    )
    assert response.status_code == 404


def test_expire_sessions(seeded: TestClient):
    _create_session(seeded)
    later = datetime.now(timezone.utc) + timedelta(days=2)

    with patch("bisyaroh_gateway.services.digital_payments.utcnow", return_value=later):
        response = seeded.post("/v1/digital-payments/expire")

    assert response.json()["expired"] == 1


def test_fractional_settlement_amount_rejected(seeded: TestClient):
    session = _create_session(seeded)

    response = seeded.post(
        "/v1/digital-payments/notifications",
        json={"order_id": session["order_id"], "transaction_status": "settlement", "gross_amount": "40000.50"},
    )

    assert response.status_code == 422
    payments = seeded.get("/v1/students/santri_001/payments").json()["payments"]
    assert all(p["status"] != "lunas" for p in payments)


def test_timeline_key_without_number_rejected(client: TestClient):
    body = {
        **TIMELINE_BODY,
        "periods": [{"key": "januari", "number": 1, "label": "Januari 2025", "amount": 40000}],
    }

    response = client.post("/v1/timelines", json=body)

    assert response.status_code == 422
    assert client.get("/v1/timelines/active").status_code == 404


def test_timeline_key_disagreeing_with_number_rejected(client: TestClient):
    body = {
        **TIMELINE_BODY,
        "periods": [
            {"key": "period_2", "number": 1, "label": "Januari 2025", "amount": 40000},
            {"key": "period_1", "number": 2, "label": "Februari 2025", "amount": 40000},
        ],
    }

    response = client.post("/v1/timelines", json=body)

    assert response.status_code == 422


def test_payment_to_archived_timeline_rejected(seeded: TestClient):
    seeded.post("/v1/timelines", json={**TIMELINE_BODY, "id": "tl_2026"})

    response = seeded.post(
        "/v1/payments",
        json={"student_id": "santri_001", "payment_amount": 40000, "timeline_id": "tl_2025"},
    )
    preview = seeded.post(
        "/v1/payments/preview",
        json={"student_id": "santri_001", "payment_amount": 40000, "timeline_id": "tl_2025"},
    )

    assert response.status_code == 404
    assert preview.status_code == 404
