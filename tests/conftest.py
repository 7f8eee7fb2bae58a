"""Shared fixtures and in-memory fakes for the reservation tests."""

import asyncio
import uuid
from datetime import date
from typing import Any

import pytest

from irutomo.config import Config
from irutomo.errors import CaptureError, FailureKind, GatewayError, NotFoundError, StoreError
from irutomo.models import (
    AuditLogEntry,
    CaptureResult,
    CaptureStatus,
    PaymentIntentContext,
    PricePlan,
    ProviderOrder,
    Reservation,
    ReservationForm,
    ReservationStatus,
    Restaurant,
)
from irutomo.services.attempt_manager import AttemptManager
from irutomo.services.notification_service import NotificationResult
from irutomo.services.payment_gateway import PaymentGateway
from irutomo.services.pricing_service import PricingResolver
from irutomo.services.workflow import ReservationWorkflow

TODAY = date(2030, 6, 1)


def make_config(**overrides) -> Config:
    """Config isolated from the environment, tuned for fast tests."""
    values: dict[str, Any] = {
        "supabase_url": None,
        "supabase_key": None,
        "payment_provider": "simulated",
        "stripe_secret_key": None,
        "paypal_client_id": None,
        "paypal_client_secret": None,
        "emailjs_service_id": None,
        "emailjs_template_id": None,
        "emailjs_user_id": None,
        "gateway_ready_timeout": 0.2,
        "gateway_request_timeout": 0.5,
        "gateway_probe_timeout": 0.2,
        "gateway_min_spacing": 0.0,
        "booking_window_start": TODAY,
        "booking_window_end": date(2030, 12, 31),
        "admin_password_hash": None,
        "jwt_secret": "test-secret",
    }
    values.update(overrides)
    return Config(_env_file=None, **values)


def make_form(**overrides) -> ReservationForm:
    values: dict[str, Any] = {
        "restaurant_id": "rest-1",
        "reservation_date": "2030-06-15",
        "reservation_time": "19:00",
        "party_size": 3,
        "name": "Tanaka Yuki",
        "email": "yuki@example.com",
        "phone": "090-1234-5678",
        "special_requests": "Window seat",
    }
    values.update(overrides)
    return ReservationForm(**values)


def make_plans() -> list[PricePlan]:
    return [
        PricePlan(id="plan-small", name="small", min_party_size=1, max_party_size=4, amount=1200),
        PricePlan(id="plan-medium", name="medium", min_party_size=5, max_party_size=8, amount=2400),
        PricePlan(id="plan-large", name="large", min_party_size=9, max_party_size=12, amount=3600),
    ]


class InMemoryStore:
    """Reservation store keeping rows in dictionaries."""

    def __init__(self, plans: list[PricePlan] | None = None) -> None:
        self.plans = plans or []
        self.restaurants: dict[str, dict[str, Any]] = {
            "rest-1": {"id": "rest-1", "name": "Sushi Dai", "japanese_name": "寿司大"},
        }
        self.reservations: dict[str, dict[str, Any]] = {}
        self.audit_logs: list[AuditLogEntry] = []
        self.payments: list[dict[str, Any]] = []
        self.fail_plans = False
        self.fail_reservation_insert = False
        self.fail_payments = False
        self.next_reservation_ids: list[str] = []

    async def test_connection(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None

    async def list_price_plans(self) -> list[PricePlan]:
        if self.fail_plans:
            msg = "Store unreachable"
            raise StoreError(msg)
        return list(self.plans)

    async def create_restaurant(self, fields: dict[str, Any]) -> str:
        restaurant_id = f"rest-{uuid.uuid4().hex[:6]}"
        self.restaurants[restaurant_id] = {"id": restaurant_id, **fields}
        return restaurant_id

    async def fetch_restaurant(self, restaurant_id: str) -> Restaurant | None:
        row = self.restaurants.get(restaurant_id)
        return Restaurant.model_validate(row) if row else None

    async def create_reservation(self, fields: dict[str, Any]) -> str:
        if self.fail_reservation_insert:
            msg = "insert or update on table violates constraint"
            raise StoreError(msg, status_code=409)
        reservation_id = (
            self.next_reservation_ids.pop(0)
            if self.next_reservation_ids
            else f"res-{uuid.uuid4().hex[:8]}"
        )
        self.reservations[reservation_id] = {"id": reservation_id, **fields}
        return reservation_id

    async def fetch_reservation(self, reservation_id: str) -> Reservation | None:
        row = self.reservations.get(reservation_id)
        return Reservation.model_validate(row) if row else None

    async def list_reservations(self, status=None, reservation_date=None, restaurant_id=None):
        rows = list(self.reservations.values())
        if status is not None:
            rows = [r for r in rows if r["status"] == status.value]
        if reservation_date:
            rows = [r for r in rows if r["reservation_date"] == reservation_date]
        if restaurant_id:
            rows = [r for r in rows if r["restaurant_id"] == restaurant_id]
        return [Reservation.model_validate(r) for r in rows]

    async def update_status(
        self, reservation_id: str, status: ReservationStatus, actor: str, reason=None
    ) -> Reservation:
        row = self.reservations.get(reservation_id)
        if row is None:
            msg = f"Reservation {reservation_id} not found"
            raise NotFoundError(msg, reference=reservation_id)
        row["status"] = status.value
        if reason is not None:
            row["cancellation_reason"] = reason
        self.audit_logs.append(
            AuditLogEntry(
                actor=actor,
                action=f"{status.value}_reservation",
                target_id=reservation_id,
                details={"status": status.value},
            )
        )
        return Reservation.model_validate(row)

    async def record_payment(self, reservation_id, transaction_id, amount, currency, provider):
        if self.fail_payments:
            msg = "payments table unavailable"
            raise StoreError(msg)
        self.payments.append(
            {
                "reservation_id": reservation_id,
                "transaction_id": transaction_id,
                "amount": amount,
                "currency": currency,
                "provider": provider,
            }
        )
        return f"pay-{len(self.payments)}"


class RecordingNotifier:
    """Notification dispatcher that records instead of sending."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, Reservation, Restaurant | None, dict[str, Any]]] = []
        self.fail = False

    def is_configured(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None

    def _result(self) -> NotificationResult:
        if self.fail:
            return NotificationResult(success=False, error="EmailJS rejected the e-mail (400)")
        return NotificationResult(success=True, message_id=f"msg-{len(self.sent)}")

    async def send_confirmation(self, reservation, restaurant, locale=None):
        self.sent.append(("confirmation", reservation, restaurant, {"locale": locale}))
        return self._result()

    async def send_cancellation(self, reservation, restaurant, locale=None):
        self.sent.append(("cancellation", reservation, restaurant, {"locale": locale}))
        return self._result()

    async def send_admin_alert(self, reservation, restaurant, reason="new_reservation", message=None):
        self.sent.append(("admin", reservation, restaurant, {"reason": reason, "message": message}))
        return self._result()

    def kinds(self) -> list[str]:
        return [kind for kind, *_ in self.sent]


class FakeProvider:
    """Scriptable payment provider."""

    name = "fake"

    def __init__(self) -> None:
        self.create_calls: list[tuple[PaymentIntentContext, str]] = []
        self.capture_calls: list[str] = []
        self.create_errors: list[GatewayError] = []
        self.capture_errors: list[CaptureError] = []
        self.capture_amount: int | None = None
        self.transaction_ids: list[str] = []
        self.ready_event: asyncio.Event | None = None
        self.create_delay = 0.0
        self.probe_result: bool | None = True
        self.probe_delay = 0.0
        self.orders: dict[str, int] = {}
        self.closed = False

    async def ensure_ready(self) -> None:
        if self.ready_event is not None:
            await self.ready_event.wait()

    async def create_order(self, ctx: PaymentIntentContext, idempotency_key: str) -> ProviderOrder:
        self.create_calls.append((ctx, idempotency_key))
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        if self.create_errors:
            raise self.create_errors.pop(0)
        order_id = f"ORDER-{len(self.create_calls)}"
        self.orders[order_id] = ctx.amount
        return ProviderOrder(order_id=order_id, client_secret=f"{order_id}_secret")

    async def capture_order(self, order_id: str) -> CaptureResult:
        self.capture_calls.append(order_id)
        if self.capture_errors:
            raise self.capture_errors.pop(0)
        amount = self.capture_amount if self.capture_amount is not None else self.orders[order_id]
        transaction_id = (
            self.transaction_ids.pop(0) if self.transaction_ids else f"TX-{order_id}"
        )
        return CaptureResult(
            transaction_id=transaction_id,
            captured_amount=amount,
            status=CaptureStatus.SUCCEEDED,
            provider=self.name,
        )

    async def probe(self) -> bool:
        if self.probe_delay:
            await asyncio.sleep(self.probe_delay)
        if self.probe_result is None:
            msg = "probe exploded"
            raise RuntimeError(msg)
        return self.probe_result

    async def aclose(self) -> None:
        self.closed = True


def declined() -> CaptureError:
    return CaptureError("capture rejected (402)", FailureKind.PROVIDER_REJECTED)


@pytest.fixture
def cfg(tmp_path) -> Config:
    return make_config(rate_limit_db_path=str(tmp_path / "rate_limits.db"))


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def gateway(provider, cfg) -> PaymentGateway:
    return PaymentGateway(provider=provider, cfg=cfg)


@pytest.fixture
def workflow(store, notifier, gateway, cfg) -> ReservationWorkflow:
    return ReservationWorkflow(
        store=store,
        pricing=PricingResolver(store),
        gateway=gateway,
        notifier=notifier,
        attempts=AttemptManager(),
        cfg=cfg,
    )
