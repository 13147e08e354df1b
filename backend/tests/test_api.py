from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from backend.backend import app
from backend.fees_module.calculator import DEFAULT_POLICY
from backend.fees_module.database import get_db_session
from backend.fees_module.repository import FeeRepository
from backend.fees_module.security import create_access_token
from conftest import approving_gateway, declining_gateway


def auth(user_id: str, role: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


ADMIN = auth("user-admin", "Admin")
DEV = auth("user-dev", "DevAuth")
STUDENT = auth("user-student", "Student")
PARENT = auth("user-parent", "Parent")
FACULTY = auth("user-faculty", "Faculty")
OTHER_PARENT = auth("user-other-parent", "Parent")


@pytest.fixture
def client(session_factory, codec):
    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.state.codec = codec
    app.state.gateway = approving_gateway()
    app.state.late_fee_policy = DEFAULT_POLICY
    app.dependency_overrides[get_db_session] = override_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def fee_json(client, student):
    response = client.post(
        "/api/v1/student-fees",
        json={
            "student_id": student.id,
            "category": "Tuition",
            "term": "2025-T1",
            "total_amount": "5000",
            "due_date": (date.today() + timedelta(days=30)).isoformat(),
        },
        headers=ADMIN,
    )
    assert response.status_code == 201
    return response.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_missing_or_bad_token_is_rejected(client):
    assert client.get("/api/v1/student-fees").status_code == 401
    bad = {"Authorization": "Bearer not-a-jwt"}
    assert client.get("/api/v1/student-fees", headers=bad).status_code == 401
    assert client.get("/api/v1/student-fees", headers={"Authorization": "Token abc"}).status_code == 401


def test_unknown_role_is_rejected(client):
    assert client.get("/api/v1/student-fees", headers=auth("someone", "Janitor")).status_code == 401


def test_create_requires_admin(client, student):
    payload = {
        "student_id": student.id,
        "category": "Exam",
        "term": "2025-T1",
        "total_amount": "100",
        "due_date": (date.today() + timedelta(days=3)).isoformat(),
    }
    assert client.post("/api/v1/student-fees", json=payload, headers=STUDENT).status_code == 403
    assert client.post("/api/v1/student-fees", json=payload, headers=DEV).status_code == 201


def test_created_fee_body(fee_json):
    assert fee_json["payment_status"] == "Pending"
    assert Decimal(fee_json["amount_due"]) == Decimal("5000")
    assert fee_json["student_roll_number"] == "R-001"
    assert fee_json["is_overdue"] is False


def test_create_rejects_past_due_date(client, student):
    response = client.post(
        "/api/v1/student-fees",
        json={
            "student_id": student.id,
            "category": "Exam",
            "term": "2025-T1",
            "total_amount": "100",
            "due_date": (date.today() - timedelta(days=1)).isoformat(),
        },
        headers=ADMIN,
    )
    assert response.status_code == 400


def test_create_for_unknown_student(client):
    response = client.post(
        "/api/v1/student-fees",
        json={
            "student_id": "missing",
            "category": "Exam",
            "term": "2025-T1",
            "total_amount": "100",
            "due_date": (date.today() + timedelta(days=3)).isoformat(),
        },
        headers=ADMIN,
    )
    assert response.status_code == 400


def test_listing_is_scoped_by_role(client, fee_json):
    for headers in (ADMIN, STUDENT, PARENT, FACULTY):
        response = client.get("/api/v1/student-fees", headers=headers)
        assert [fee["id"] for fee in response.json()] == [fee_json["id"]]
    assert client.get("/api/v1/student-fees", headers=OTHER_PARENT).json() == []


def test_listing_filters(client, fee_json):
    response = client.get("/api/v1/student-fees", params={"category": "Library"}, headers=ADMIN)
    assert response.json() == []
    response = client.get("/api/v1/student-fees", params={"term": "2025-t1", "payment_status": "Pending"}, headers=ADMIN)
    assert len(response.json()) == 1


def test_get_fee_access(client, fee_json):
    url = f"/api/v1/student-fees/{fee_json['id']}"
    assert client.get(url, headers=FACULTY).status_code == 200
    assert client.get(url, headers=OTHER_PARENT).status_code == 403
    assert client.get("/api/v1/student-fees/missing", headers=ADMIN).status_code == 404


def test_pay_fee(client, fee_json):
    response = client.post(f"/api/v1/student-fees/{fee_json['id']}/pay", json={"amount": "1000"}, headers=STUDENT)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["new_payment_status"] == "Partial"
    assert Decimal(body["new_amount_due"]) == Decimal("4000")


def test_pay_requires_payer_role_and_access(client, fee_json):
    url = f"/api/v1/student-fees/{fee_json['id']}/pay"
    assert client.post(url, json={"amount": "10"}, headers=ADMIN).status_code == 403
    assert client.post(url, json={"amount": "10"}, headers=OTHER_PARENT).status_code == 403
    assert client.post(url, json={"amount": "10"}, headers=PARENT).status_code == 200


def test_pay_more_than_due(client, fee_json):
    response = client.post(f"/api/v1/student-fees/{fee_json['id']}/pay", json={"amount": "5000.01"}, headers=STUDENT)
    assert response.status_code == 400


def test_declined_payment_returns_400(client, fee_json):
    app.state.gateway = declining_gateway()
    response = client.post(f"/api/v1/student-fees/{fee_json['id']}/pay", json={"amount": "100"}, headers=STUDENT)
    assert response.status_code == 400
    assert client.get(f"/api/v1/student-fees/{fee_json['id']}", headers=ADMIN).json()["payment_status"] == "Pending"


def test_unrecorded_payment_returns_502(client, fee_json, monkeypatch):
    def broken_update(self, fee):
        raise OperationalError("UPDATE student_fees", {}, Exception("database is locked"))

    monkeypatch.setattr(FeeRepository, "update", broken_update)
    response = client.post(f"/api/v1/student-fees/{fee_json['id']}/pay", json={"amount": "100"}, headers=STUDENT)

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["transaction_id"]
    assert detail["refunded"] is True


def test_update_and_delete(client, fee_json):
    url = f"/api/v1/student-fees/{fee_json['id']}"
    response = client.put(url, json={"total_amount": "4500", "notes": "Scholarship"}, headers=ADMIN)
    assert response.status_code == 200
    assert Decimal(response.json()["amount_due"]) == Decimal("4500")
    assert client.put(url, json={"notes": "x"}, headers=STUDENT).status_code == 403

    assert client.delete(url, headers=ADMIN).status_code == 204
    assert client.get(url, headers=ADMIN).status_code == 404
    assert client.delete(url, headers=ADMIN).status_code == 404


def test_statistics(client, student, fee_json):
    response = client.get(f"/api/v1/student-fees/statistics/{student.id}", headers=PARENT)
    assert response.status_code == 200
    assert response.json()["total_fees"] == 1
    assert client.get(f"/api/v1/student-fees/statistics/{student.id}", headers=OTHER_PARENT).status_code == 403
    assert client.get("/api/v1/student-fees/statistics/missing", headers=ADMIN).status_code == 404


def test_admin_only_maintenance_endpoints(client, fee_json):
    response = client.post("/api/v1/student-fees/calculate-late-fees", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["updated_count"] == 0
    assert client.post("/api/v1/student-fees/calculate-late-fees", headers=STUDENT).status_code == 403
    assert client.get("/api/v1/student-fees/overdue", headers=ADMIN).json() == []
    assert client.get("/api/v1/student-fees/overdue", headers=FACULTY).status_code == 403


def test_pay_rejects_sub_cent_amount(client, fee_json):
    response = client.post(f"/api/v1/student-fees/{fee_json['id']}/pay", json={"amount": "10.005"}, headers=STUDENT)
    assert response.status_code == 422
    fee = client.get(f"/api/v1/student-fees/{fee_json['id']}", headers=ADMIN).json()
    assert Decimal(fee["amount_paid"]) == Decimal("0")
