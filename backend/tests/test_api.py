"""
Ledger HTTP API tests.
Testing: auth, role grants, agency isolation and status mapping, against an
app wired to a seeded in-memory store.
"""
import asyncio
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from auth import hash_password, create_access_token
from conftest import fixed_clock, TODAY_REF
from ledger.store import InMemoryEntityStore
from seed import seed_store, SEED_PASSWORD
from server import create_app


@pytest.fixture(scope="module")
def hashed_password():
    return hash_password(SEED_PASSWORD)


@pytest.fixture
def api(hashed_password):
    store = InMemoryEntityStore()
    asyncio.run(seed_store(store, hashed_password))
    with TestClient(create_app(store, clock=fixed_clock)) as client:
        yield client


def login(api, username):
    response = api.post("/api/auth/login", json={"username": username, "password": SEED_PASSWORD})
    assert response.status_code == 200, f"Login failed: {response.text}"
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


class TestHealthAndAuth:

    def test_health(self, api):
        response = api.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_login(self, api):
        response = api.post("/api/auth/login", json={"username": "dla.staff", "password": SEED_PASSWORD})
        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["user"]["role"] == "AGENCY_STAFF"
        assert data["user"]["agency_id"] == 2

    def test_wrong_password(self, api):
        response = api.post("/api/auth/login", json={"username": "dla.staff", "password": "nope"})
        assert response.status_code == 401

    def test_inactive_user(self, api):
        response = api.post("/api/auth/login", json={"username": "dla.former", "password": SEED_PASSWORD})
        assert response.status_code == 403

    def test_missing_token(self, api):
        response = api.get("/api/ledger/transactions/stats/simple")
        assert response.status_code in (401, 403)

    def test_garbage_token(self, api):
        response = api.get(
            "/api/ledger/transactions/stats/simple",
            headers={"Authorization": "Bearer not.a.token"}
        )
        assert response.status_code == 401

    def test_expired_token(self, api):
        token = create_access_token(
            {"user_id": 3, "role": "AGENCY_STAFF", "agency_id": 2},
            expires_delta=timedelta(minutes=-5)
        )
        response = api.get(
            "/api/ledger/transactions/stats/simple",
            headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401
        assert "expired" in response.json()["detail"]

    def test_token_of_deactivated_user(self, api):
        token = create_access_token({"user_id": 4, "role": "AGENCY_STAFF", "agency_id": 2})
        response = api.get(
            "/api/ledger/transactions/stats/simple",
            headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 403


class TestTransactionEndpoints:

    def test_staff_records_payment(self, api):
        headers = login(api, "dla.staff")
        response = api.post("/api/ledger/transactions", headers=headers, json={
            "contract_id": 1, "transaction_type": "PAYMENT", "amount": 50000
        })

        assert response.status_code == 201, response.text
        data = response.json()
        assert data["success"] is True
        assert data["reference"] == f"TXN-{TODAY_REF}-000001"
        assert data["contract_activated"] is True

    def test_unknown_contract_is_404_with_result_body(self, api):
        headers = login(api, "dla.staff")
        response = api.post("/api/ledger/transactions", headers=headers, json={
            "contract_id": 9999, "transaction_type": "PAYMENT", "amount": 100
        })

        assert response.status_code == 404
        detail = response.json()["detail"]
        assert detail["kind"] == "NOT_FOUND"
        assert detail["transaction_id"] == 0
        assert detail["message"] == "Contract ID 9999 does not exist"

    def test_missing_amount_is_400(self, api):
        headers = login(api, "dla.staff")
        response = api.post("/api/ledger/transactions", headers=headers, json={
            "contract_id": 2, "transaction_type": "DEPOSIT"
        })
        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "MISSING_FIELD"

    def test_oversized_amount_is_400(self, api):
        headers = login(api, "dla.staff")
        response = api.post("/api/ledger/transactions", headers=headers, json={
            "contract_id": 2, "transaction_type": "DEPOSIT", "amount": "1E+30"
        })
        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "INVALID_AMOUNT"

    def test_insufficient_balance_is_400(self, api):
        headers = login(api, "dla.staff")
        response = api.post("/api/ledger/transactions", headers=headers, json={
            "contract_id": 2, "transaction_type": "WITHDRAWAL", "amount": 1
        })
        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "INSUFFICIENT_BALANCE"

    def test_staff_cannot_post_for_other_agency(self, api):
        headers = login(api, "dla.staff")
        response = api.post("/api/ledger/transactions", headers=headers, json={
            "contract_id": 4, "transaction_type": "DEPOSIT", "amount": 100, "agency_id": 1
        })
        assert response.status_code == 403

    def test_ceo_cannot_record_transactions(self, api):
        headers = login(api, "ceo")
        response = api.post("/api/ledger/transactions", headers=headers, json={
            "contract_id": 2, "transaction_type": "DEPOSIT", "amount": 100, "agency_id": 2
        })
        assert response.status_code == 403

    def test_receipt_manager_only(self, api):
        body = {"contract_id": 2, "transaction_type": "DEPOSIT", "amount": 750}

        assert api.post(
            "/api/ledger/transactions/receipt", headers=login(api, "dla.staff"), json=body
        ).status_code == 403

        response = api.post("/api/ledger/transactions/receipt", headers=login(api, "dla.manager"), json=body)
        assert response.status_code == 201
        data = response.json()
        assert data["receipt_number"] == f"RC-{TODAY_REF}-000001"
        assert data["receipt_details"]["balance_after"] == 750.0

    def test_batch(self, api):
        headers = login(api, "dla.manager")
        response = api.post("/api/ledger/transactions/batch", headers=headers, json={
            "transactions": [
                {"contract_id": 2, "transaction_type": "DEPOSIT", "amount": 100},
                {"contract_id": 3, "transaction_type": "DEPOSIT", "amount": 100},
            ]
        })

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["success_count"] == 1
        assert data["failed_count"] == 1
        assert data["results"][1]["kind"] == "INVALID_STATE"

    def test_contract_balance(self, api):
        headers = login(api, "dla.staff")
        api.post("/api/ledger/transactions", headers=headers, json={
            "contract_id": 2, "transaction_type": "DEPOSIT", "amount": "1234.56"
        })

        response = api.get("/api/ledger/contracts/2/balance", headers=headers)
        assert response.status_code == 200
        assert response.json()["balance"] == 1234.56

        other_agency = api.get("/api/ledger/contracts/4/balance", headers=headers)
        missing = api.get("/api/ledger/contracts/9999/balance", headers=headers)
        assert other_agency.status_code == missing.status_code == 404

        assert api.get("/api/ledger/contracts/4/balance", headers=login(api, "auditor")).status_code == 200


class TestStatisticsEndpoints:

    def test_manager_sees_own_agency_only(self, api):
        api.post("/api/ledger/transactions", headers=login(api, "dla.staff"), json={
            "contract_id": 2, "transaction_type": "DEPOSIT", "amount": 100
        })
        api.post("/api/ledger/transactions", headers=login(api, "yde.staff"), json={
            "contract_id": 4, "transaction_type": "DEPOSIT", "amount": 900
        })

        manager = api.get("/api/ledger/transactions/stats", headers=login(api, "dla.manager"))
        assert manager.status_code == 200
        assert manager.json()["total_transactions"] == 1
        assert manager.json()["filters"]["agency_id"] == 2

        ceo = api.get("/api/ledger/transactions/stats", headers=login(api, "ceo"))
        assert ceo.json()["total_transactions"] == 2
        assert set(ceo.json()["by_agency"]) == {"Douala Akwa", "Yaoundé Centre"}

    def test_manager_cannot_request_other_agency(self, api):
        response = api.get("/api/ledger/transactions/stats?agency_id=1", headers=login(api, "dla.manager"))
        assert response.status_code == 403

    def test_date_range(self, api):
        response = api.get(
            "/api/ledger/transactions/stats?start_date=2024-03-16&end_date=2024-03-01",
            headers=login(api, "auditor")
        )
        assert response.status_code == 400

    def test_role_grants(self, api):
        staff = login(api, "dla.staff")
        auditor = login(api, "auditor")
        manager = login(api, "dla.manager")

        assert api.get("/api/ledger/transactions/stats", headers=staff).status_code == 403
        assert api.get("/api/ledger/transactions/stats/simple", headers=staff).status_code == 200
        assert api.get("/api/ledger/transactions/stats/by-period", headers=manager).status_code == 403

        by_period = api.get("/api/ledger/transactions/stats/by-period?period=DAY", headers=auditor)
        assert by_period.status_code == 200
        assert by_period.json() == []


class TestClientEndpoints:

    def test_add_client_and_duplicate(self, api):
        headers = login(api, "dla.staff")
        body = {"national_id": "123456789012", "full_name": "john doe", "email": "john@example.com"}

        first = api.post("/api/ledger/clients", headers=headers, json=body)
        assert first.status_code == 201
        assert first.json()["message"] == f"Client created successfully with ID: {first.json()['client_id']}"

        second = api.post("/api/ledger/clients", headers=headers, json=body)
        assert second.status_code == 409
        assert second.json()["detail"]["kind"] == "DUPLICATE"

    def test_invalid_email_is_400(self, api):
        response = api.post("/api/ledger/clients", headers=login(api, "dla.staff"), json={
            "national_id": "CM999", "full_name": "Jane Roe", "email": "not-an-email"
        })
        assert response.status_code == 400
        assert response.json()["detail"]["message"] == "Invalid email format"

    def test_list_clients(self, api):
        response = api.get(
            "/api/ledger/agencies/2/clients?status=ACTIVE&sort_by=registration_date&sort_order=DESC",
            headers=login(api, "auditor")
        )
        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert [c["full_name"] for c in data["clients"]] == ["Aminatou Bello", "Jean Mbarga"]
        assert data["clients"][1]["registration_date"] == "2024-01-10"

    def test_list_clients_of_other_agency_forbidden(self, api):
        response = api.get("/api/ledger/agencies/1/clients", headers=login(api, "dla.staff"))
        assert response.status_code == 403

    def test_list_clients_bad_sort_order(self, api):
        response = api.get("/api/ledger/agencies/2/clients?sort_order=UP", headers=login(api, "ceo"))
        assert response.status_code == 400

    def test_client_stats(self, api):
        ceo = login(api, "ceo")

        response = api.get("/api/ledger/agencies/2/client-stats", headers=ceo)
        assert response.status_code == 200
        assert response.json()["total_clients"] == 3
        assert response.json()["oldest_registration"] == "2023-09-15"

        assert api.get("/api/ledger/agencies/42/client-stats", headers=ceo).status_code == 404
        assert api.get(
            "/api/ledger/agencies/2/client-stats", headers=login(api, "dla.manager")
        ).status_code == 403
