"""Tests for the HTTP API."""

import logging

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from irutomo.auth import create_access_token, get_password_hash
from irutomo.config import DEFAULT_JWT_SECRET
from irutomo.server import Services, create_app
from irutomo.services.pricing_service import PricingResolver
from tests.conftest import declined, make_config, make_form, make_plans


def form_json(**overrides) -> dict:
    return make_form(**overrides).model_dump(mode="json")


class TestServer:
    """Tests for the FastAPI application."""

    @pytest.fixture
    def cfg(self, tmp_path):
        return make_config(
            admin_password_hash=get_password_hash("s3cret"),
            rate_limit_db_path=str(tmp_path / "rate_limits.db"),
        )

    @pytest.fixture
    def services(self, cfg, store, notifier, gateway, workflow):
        return Services(
            config=cfg,
            store=store,
            pricing=workflow.pricing,
            gateway=gateway,
            notifier=notifier,
            attempts=workflow.attempts,
            workflow=workflow,
        )

    @pytest.fixture
    def client(self, services):
        with TestClient(create_app(services)) as client:
            yield client

    @pytest.fixture
    def auth_headers(self, cfg):
        return {"Authorization": f"Bearer {create_access_token(cfg, 'admin')}"}

    def checkout(self, client, **overrides):
        return client.post("/checkout", json={"form": form_json(**overrides), "locale": "en"})

    def paid_reservation(self, client) -> str:
        attempt = self.checkout(client).json()
        response = client.post(f"/checkout/{attempt['attempt_id']}/capture")
        return response.json()["reservation_id"]

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_connection(self, client):
        data = client.get("/test-connection").json()

        assert data["store"] is True
        assert data["payment"] == "reachable"
        assert data["payment_provider"] == "fake"

    def test_fees(self, client):
        """Test the offline fee for a party of six."""
        data = client.get("/fees", params={"party_size": 6}).json()

        assert data["amount"] == 2000
        assert data["source"] == "offline"

    def test_price_plans(self, client, store):
        store.plans = make_plans()

        data = client.get("/price-plans", params={"locale": "en"}).json()

        assert [p["id"] for p in data["plans"]] == ["plan-small", "plan-medium", "plan-large"]
        assert data["plans"][0]["description"] == "Basic reservation service"

    def test_checkout_opens_payment(self, client):
        response = self.checkout(client)

        data = response.json()
        assert response.status_code == 200
        assert data["state"] == "awaiting_payment"
        assert data["quote"]["amount"] == 1000
        assert data["client_secret"] == "ORDER-1_secret"
        assert data["provider"] == "fake"

    def test_checkout_field_errors(self, client):
        """Test invalid forms come back with every field error."""
        response = client.post(
            "/checkout",
            json={"form": form_json(email="nope", phone="")},
            headers={"Accept-Language": "ko-KR,ko;q=0.9"},
        )

        data = response.json()
        assert response.status_code == 422
        assert data["state"] == "collecting_input"
        assert set(data["field_errors"]) == {"email", "phone"}
        assert data["message"] == "입력 내용을 확인해주세요"
        assert data["action"] == "fix_input"

    def test_update_checkout(self, client):
        attempt = self.checkout(client, name="").json()

        response = client.put(
            f"/checkout/{attempt['attempt_id']}", json={"form": form_json(party_size=9)}
        )

        assert response.status_code == 200
        assert response.json()["quote"]["amount"] == 3000

    def test_capture_creates_reservation(self, client):
        attempt = self.checkout(client).json()

        response = client.post(f"/checkout/{attempt['attempt_id']}/capture")

        data = response.json()
        assert response.status_code == 200
        assert data["state"] == "done"
        assert data["email_sent"] is True
        reservation = client.get(f"/reservations/{data['reservation_id']}").json()
        assert reservation["payment_status"] == "completed"
        assert reservation["transaction_id"] == data["transaction_id"]

    def test_capture_declined(self, client, provider):
        provider.capture_errors = [declined()]
        attempt = self.checkout(client).json()

        response = client.post(
            f"/checkout/{attempt['attempt_id']}/capture", params={"locale": "en"}
        )

        data = response.json()
        assert response.status_code == 402
        assert data["error"] == "capture_error"
        assert data["action"] == "retry"
        assert data["message"] == "The payment was not approved. Please try again."

    def test_store_failure_after_capture(self, client, store, provider):
        """Test a lost reservation after payment is a 500 with the transaction id."""
        provider.transaction_ids = ["T1"]
        store.fail_reservation_insert = True
        attempt = self.checkout(client).json()

        response = client.post(
            f"/checkout/{attempt['attempt_id']}/capture", params={"locale": "en"}
        )

        data = response.json()
        assert response.status_code == 500
        assert data["reference"] == "T1"
        assert data["action"] == "contact_support"
        assert "reservation_id" not in data
        assert "T1" in data["message"]

    def test_cancel_then_capture_conflicts(self, client):
        attempt = self.checkout(client).json()

        cancel = client.post(f"/checkout/{attempt['attempt_id']}/cancel")
        capture = client.post(f"/checkout/{attempt['attempt_id']}/capture")

        assert cancel.json()["state"] == "cancelled"
        assert capture.status_code == 409
        assert capture.json()["error"] == "invalid_transition"

    def test_retry(self, client):
        attempt = self.checkout(client).json()
        client.post(f"/checkout/{attempt['attempt_id']}/cancel")

        response = client.post(f"/checkout/{attempt['attempt_id']}/retry")

        assert response.json()["state"] == "awaiting_payment"
        assert response.json()["order_id"] == "ORDER-2"

    def test_blocked_and_fallback(self, client, store, notifier):
        """Test the manual-contact path after the client reports a blocked SDK."""
        attempt = self.checkout(client).json()

        blocked = client.post(f"/checkout/{attempt['attempt_id']}/blocked")
        assert blocked.json()["state"] == "fallback_offer"
        assert blocked.json()["action"] == "alternative_payment"

        response = client.post(
            f"/checkout/{attempt['attempt_id']}/fallback", json={"message": "Call after 6pm"}
        )

        data = response.json()
        assert data["state"] == "manual_contact_requested"
        assert store.reservations[data["reservation_id"]]["payment_status"] == "pending_manual"
        assert notifier.sent[0][3]["message"] == "Call after 6pm"

    def test_unknown_checkout(self, client):
        response = client.get("/checkout/missing")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_checkout_rate_limited(self, tmp_path, store, notifier, gateway, workflow):
        """Test the hourly checkout limit per client."""
        cfg = make_config(
            checkout_hourly_limit=1, rate_limit_db_path=str(tmp_path / "limited.db")
        )
        services = Services(
            config=cfg,
            store=store,
            pricing=PricingResolver(store),
            gateway=gateway,
            notifier=notifier,
            attempts=workflow.attempts,
            workflow=workflow,
        )

        with TestClient(create_app(services)) as client:
            first = self.checkout(client)
            second = self.checkout(client)

        assert first.status_code == 200
        assert second.status_code == 429
        assert second.json()["error"] == "rate_limited"

    def test_qr_payload(self, client):
        reservation_id = self.paid_reservation(client)

        data = client.get(f"/reservations/{reservation_id}/qr", params={"locale": "ja"}).json()

        assert data["id"] == reservation_id
        assert data["restaurant"] == "寿司大"
        assert data["partySize"] == 3

    def test_resend_email(self, client, notifier):
        reservation_id = self.paid_reservation(client)

        ok = client.post(f"/reservations/{reservation_id}/resend-email")
        notifier.fail = True
        failed = client.post(f"/reservations/{reservation_id}/resend-email")

        assert ok.status_code == 200
        assert failed.status_code == 502
        assert failed.json()["success"] is False

    def test_unknown_reservation(self, client):
        assert client.get("/reservations/missing").status_code == 404

    def test_admin_login(self, client):
        response = client.post(
            "/admin/login", data={"username": "admin", "password": "s3cret"}
        )

        assert response.status_code == 200
        assert response.json()["token_type"] == "bearer"

    def test_admin_login_wrong_password(self, client):
        response = client.post(
            "/admin/login", data={"username": "admin", "password": "guess"}
        )

        assert response.status_code == 401

    def test_admin_requires_token(self, client):
        assert client.get("/admin/reservations").status_code == 401

    def test_admin_rejects_bad_token(self, client):
        response = client.get(
            "/admin/reservations", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401

    def test_tokens_refused_while_login_disabled(self, store, notifier, gateway, workflow):
        """Test a token signed with the default key is useless without a staff password."""
        cfg = make_config(admin_password_hash=None, jwt_secret=DEFAULT_JWT_SECRET)
        services = Services(
            config=cfg,
            store=store,
            pricing=PricingResolver(store),
            gateway=gateway,
            notifier=notifier,
            attempts=workflow.attempts,
            workflow=workflow,
        )
        forged = jwt.encode({"sub": "admin"}, DEFAULT_JWT_SECRET, algorithm="HS256")

        with TestClient(create_app(services)) as client:
            response = client.post(
                "/admin/reservations/res-1/status",
                json={"status": "confirmed"},
                headers={"Authorization": f"Bearer {forged}"},
            )

        assert response.status_code == 401
        assert store.audit_logs == []

    def test_default_jwt_secret_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="irutomo.config"):
            make_config(jwt_secret=DEFAULT_JWT_SECRET)

        assert "JWT_SECRET not set" in caplog.text

    def test_admin_list_reservations(self, client, auth_headers):
        reservation_id = self.paid_reservation(client)

        data = client.get(
            "/admin/reservations", params={"status": "pending"}, headers=auth_headers
        ).json()

        assert [r["id"] for r in data["reservations"]] == [reservation_id]

    def test_admin_confirm(self, client, auth_headers, store):
        reservation_id = self.paid_reservation(client)

        response = client.post(
            f"/admin/reservations/{reservation_id}/status",
            json={"status": "confirmed"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["reservation"]["status"] == "confirmed"
        assert store.audit_logs[0].actor == "admin"

    def test_admin_cancel_requires_reason(self, client, auth_headers):
        reservation_id = self.paid_reservation(client)

        response = client.post(
            f"/admin/reservations/{reservation_id}/status",
            json={"status": "cancelled", "locale": "en"},
            headers=auth_headers,
        )

        assert response.status_code == 422
        assert "reason" in response.json()["field_errors"]
