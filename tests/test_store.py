"""Tests for the Supabase-backed reservation store."""

import json
import logging

import httpx
import pytest

from irutomo.errors import NotFoundError, StoreError
from irutomo.models import ReservationStatus
from irutomo.services.store import ReservationStore
from tests.conftest import make_config

RESERVATION_ROW = {
    "id": "res-1",
    "restaurant_id": "rest-1",
    "reservation_date": "2030-06-15",
    "reservation_time": "19:00",
    "party_size": 3,
    "name": "Tanaka Yuki",
    "email": "yuki@example.com",
    "phone": "090-1234-5678",
    "status": "pending",
    "payment_status": "completed",
    "payment_amount": 1000,
    "transaction_id": "TX-1",
    "created_at": "2030-06-01T10:00:00+00:00",
}


class FakePostgrest:
    """Routes PostgREST requests to canned responses and records them."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: dict[tuple[str, str], httpx.Response] = {}

    def reply(self, method: str, table: str, status: int = 200, body=None) -> None:
        content = b"" if body is None else json.dumps(body).encode()
        self.responses[(method, table)] = httpx.Response(status, content=content)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        table = request.url.path.rsplit("/", 1)[-1]
        response = self.responses.get((request.method, table))
        if response is None:
            return httpx.Response(404, json={"message": "no route"})
        return response

    def sent(self, method: str, table: str) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and r.url.path.endswith(f"/{table}")
        ]


class TestReservationStore:
    """Tests for ReservationStore."""

    @pytest.fixture
    def api(self):
        return FakePostgrest()

    @pytest.fixture
    def store(self, api):
        client = httpx.AsyncClient(
            base_url="https://db.test/rest/v1", transport=httpx.MockTransport(api)
        )
        return ReservationStore(make_config(), client)

    def test_unconfigured_store(self):
        """Test a store without credentials has no client."""
        store = ReservationStore(make_config())

        assert not store.is_configured()

    async def test_unconfigured_store_raises(self):
        store = ReservationStore(make_config())

        with pytest.raises(StoreError):
            await store.list_price_plans()

    async def test_configured_store_headers(self):
        """Test the API key goes into both auth headers."""
        store = ReservationStore(
            make_config(supabase_url="https://proj.supabase.co/", supabase_key="anon")
        )

        assert str(store.client.base_url) == "https://proj.supabase.co/rest/v1/"
        assert store.client.headers["apikey"] == "anon"
        assert store.client.headers["Authorization"] == "Bearer anon"
        await store.aclose()

    async def test_connection(self, store, api):
        api.reply("GET", "restaurants", body=[{"id": "rest-1"}])

        assert await store.test_connection()

    async def test_connection_failure(self, store, api):
        api.reply("GET", "restaurants", status=500, body={"message": "down"})

        assert not await store.test_connection()

    async def test_list_price_plans(self, store, api):
        """Test only active plans are requested, ordered by size."""
        api.reply(
            "GET",
            "price_plans",
            body=[
                {
                    "id": "p1",
                    "name": "small",
                    "min_party_size": 1,
                    "max_party_size": 4,
                    "amount": 1000,
                    "is_active": True,
                }
            ],
        )

        plans = await store.list_price_plans()

        params = api.sent("GET", "price_plans")[0].url.params
        assert [p.id for p in plans] == ["p1"]
        assert params["is_active"] == "eq.true"
        assert params["order"] == "min_party_size.asc"

    async def test_create_reservation(self, store, api):
        """Test inserts ask for the created row back."""
        api.reply("POST", "reservations", status=201, body=[{"id": "res-9"}])

        reservation_id = await store.create_reservation({"name": "Tanaka Yuki"})

        request = api.sent("POST", "reservations")[0]
        assert reservation_id == "res-9"
        assert request.headers["Prefer"] == "return=representation"
        assert json.loads(request.content) == [{"name": "Tanaka Yuki"}]

    async def test_create_reservation_rejected(self, store, api):
        """Test constraint violations raise StoreError with the status."""
        api.reply("POST", "reservations", status=409, body={"message": "violates foreign key"})

        with pytest.raises(StoreError) as exc_info:
            await store.create_reservation({"name": "Tanaka Yuki"})

        assert exc_info.value.status_code == 409
        assert not exc_info.value.after_payment

    async def test_insert_without_id(self, store, api):
        api.reply("POST", "restaurants", status=201, body=[])

        with pytest.raises(StoreError):
            await store.create_restaurant({"name": "New Place"})

    async def test_network_failure(self, api):
        """Test transport errors become StoreError."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(
            base_url="https://db.test/rest/v1", transport=httpx.MockTransport(handler)
        )
        store = ReservationStore(make_config(), client)

        with pytest.raises(StoreError):
            await store.fetch_reservation("res-1")

    async def test_fetch_reservation(self, store, api):
        api.reply("GET", "reservations", body=[RESERVATION_ROW])

        reservation = await store.fetch_reservation("res-1")

        assert reservation.id == "res-1"
        assert reservation.payment_amount == 1000
        assert api.sent("GET", "reservations")[0].url.params["id"] == "eq.res-1"

    async def test_fetch_missing(self, store, api):
        api.reply("GET", "reservations", body=[])

        assert await store.fetch_reservation("res-x") is None

    async def test_fetch_restaurant(self, store, api):
        api.reply(
            "GET", "restaurants", body=[{"id": "rest-1", "name": "Sushi Dai", "rating": 4.5}]
        )

        restaurant = await store.fetch_restaurant("rest-1")

        assert restaurant.name == "Sushi Dai"

    async def test_list_reservations_filters(self, store, api):
        """Test status and date filters map to PostgREST operators."""
        api.reply("GET", "reservations", body=[RESERVATION_ROW])

        rows = await store.list_reservations(
            status=ReservationStatus.PENDING, reservation_date="2030-06-15"
        )

        params = api.sent("GET", "reservations")[0].url.params
        assert len(rows) == 1
        assert params["status"] == "eq.pending"
        assert params["reservation_date"] == "eq.2030-06-15"
        assert "restaurant_id" not in params

    async def test_update_status_writes_audit(self, store, api):
        """Test a status change patches the row and appends an audit entry."""
        api.reply("PATCH", "reservations", body=[{**RESERVATION_ROW, "status": "cancelled"}])
        api.reply("POST", "audit_logs", status=201)

        reservation = await store.update_status(
            "res-1", ReservationStatus.CANCELLED, "admin", reason="Restaurant closed"
        )

        patch = api.sent("PATCH", "reservations")[0]
        audit = json.loads(api.sent("POST", "audit_logs")[0].content)[0]
        assert reservation.status == ReservationStatus.CANCELLED
        assert json.loads(patch.content) == {
            "status": "cancelled",
            "cancellation_reason": "Restaurant closed",
        }
        assert audit["actor"] == "admin"
        assert audit["action"] == "cancelled_reservation"
        assert audit["target_id"] == "res-1"
        assert audit["details"]["reason"] == "Restaurant closed"

    async def test_update_status_never_touches_payment(self, store, api):
        api.reply("PATCH", "reservations", body=[{**RESERVATION_ROW, "status": "confirmed"}])
        api.reply("POST", "audit_logs", status=201)

        await store.update_status("res-1", ReservationStatus.CONFIRMED, "admin")

        patch = json.loads(api.sent("PATCH", "reservations")[0].content)
        assert patch == {"status": "confirmed"}

    async def test_update_missing_reservation(self, store, api):
        """Test updating an unknown reservation raises NotFoundError."""
        api.reply("PATCH", "reservations", body=[])

        with pytest.raises(NotFoundError):
            await store.update_status("res-x", ReservationStatus.CONFIRMED, "admin")

        assert api.sent("POST", "audit_logs") == []

    async def test_audit_failure_logged_with_actor(self, store, api, caplog):
        """Test an unwritten audit row is reported with who changed what."""
        api.reply("PATCH", "reservations", body=[{**RESERVATION_ROW, "status": "confirmed"}])
        api.reply("POST", "audit_logs", status=500, body={"message": "audit table locked"})

        with caplog.at_level(logging.ERROR, logger="irutomo.services.store"):
            with pytest.raises(StoreError):
                await store.update_status("res-1", ReservationStatus.CONFIRMED, "admin")

        assert "audit row was not written" in caplog.text
        assert "actor=admin" in caplog.text
        assert "action=confirmed_reservation" in caplog.text

    async def test_record_payment(self, store, api):
        api.reply("POST", "payments", status=201, body=[{"id": "pay-1"}])

        payment_id = await store.record_payment("res-1", "TX-1", 1000, "JPY", "stripe")

        body = json.loads(api.sent("POST", "payments")[0].content)[0]
        assert payment_id == "pay-1"
        assert body["status"] == "succeeded"
        assert body["transaction_id"] == "TX-1"
