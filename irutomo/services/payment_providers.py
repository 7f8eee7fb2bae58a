"""Card payment provider strategies (Stripe, PayPal, simulated)."""

import logging
import time
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

import httpx

from irutomo.config import Config, get_config
from irutomo.errors import CaptureError, FailureKind, GatewayError, GatewayUnavailable
from irutomo.models import (
    CaptureResult,
    CaptureStatus,
    PaymentIntentContext,
    ProviderOrder,
)

logger = logging.getLogger(__name__)


class PaymentProvider(Protocol):
    """Common interface for payment providers."""

    name: str

    async def ensure_ready(self) -> None:
        """Finish provider bootstrap (credentials, tokens)."""

    async def create_order(
        self, ctx: PaymentIntentContext, idempotency_key: str
    ) -> ProviderOrder:
        """Create a provider-side order for the context."""

    async def capture_order(self, order_id: str) -> CaptureResult:
        """Capture an approved order."""

    async def probe(self) -> bool:
        """Check that the provider API answers at all."""

    async def aclose(self) -> None:
        """Release network resources."""


def _transport_error(operation: str, e: httpx.HTTPError) -> GatewayError:
    logger.error(f"Payment provider {operation} failed: {e}")
    return GatewayError(f"{operation} failed: {e}", FailureKind.NETWORK_TIMEOUT)


def _rejected(operation: str, response: httpx.Response, capture: bool = False) -> GatewayError:
    logger.error(
        f"Payment provider rejected {operation} ({response.status_code}): {response.text}"
    )
    msg = f"{operation} rejected ({response.status_code})"
    if capture:
        return CaptureError(msg, FailureKind.PROVIDER_REJECTED)
    return GatewayError(msg, FailureKind.PROVIDER_REJECTED)


async def _probe(client: httpx.AsyncClient) -> bool:
    # Any HTTP answer, even 401/404, proves the API is reachable
    try:
        await client.get("/")
    except httpx.HTTPError as e:
        logger.warning(f"Payment provider probe failed: {e}")
        return False
    return True


class StripeProvider:
    """Stripe Payment Intents with manual capture.

    The browser confirms the card against ``client_secret``; the server then
    captures, so the amount is only charged once the reservation can follow.
    """

    name = "stripe"

    def __init__(self, cfg: Config | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.config = cfg or get_config()
        self.client = client or httpx.AsyncClient(
            base_url=self.config.stripe_api_base,
            headers={"Authorization": f"Bearer {self.config.stripe_secret_key}"},
            timeout=self.config.gateway_request_timeout,
        )

    async def ensure_ready(self) -> None:
        if not self.config.stripe_secret_key:
            msg = "Stripe is not configured"
            raise GatewayError(msg, FailureKind.PROVIDER_REJECTED)

    async def create_order(
        self, ctx: PaymentIntentContext, idempotency_key: str
    ) -> ProviderOrder:
        data: dict[str, Any] = {
            "amount": ctx.amount,
            "currency": ctx.currency.lower(),
            "capture_method": "manual",
            "automatic_payment_methods[enabled]": "true",
            "metadata[request_id]": ctx.request_id,
        }
        if ctx.description:
            data["description"] = ctx.description
        for key, value in ctx.metadata.items():
            data[f"metadata[{key}]"] = value

        try:
            response = await self.client.post(
                "/v1/payment_intents",
                data=data,
                headers={"Idempotency-Key": idempotency_key},
            )
        except httpx.HTTPError as e:
            raise _transport_error("create payment intent", e) from e

        if response.status_code >= 400:
            raise _rejected("create payment intent", response)

        intent = response.json()
        logger.info(f"Stripe payment intent created: {intent['id']}")
        return ProviderOrder(order_id=intent["id"], client_secret=intent.get("client_secret"))

    async def capture_order(self, order_id: str) -> CaptureResult:
        try:
            response = await self.client.post(f"/v1/payment_intents/{order_id}/capture")
        except httpx.HTTPError as e:
            logger.error(f"Stripe capture failed: {e}")
            msg = f"capture failed: {e}"
            raise CaptureError(msg, FailureKind.NETWORK_TIMEOUT) from e

        if response.status_code >= 400:
            raise _rejected("capture", response, capture=True)

        intent = response.json()
        status = (
            CaptureStatus.SUCCEEDED
            if intent.get("status") == "succeeded"
            else CaptureStatus.FAILED
        )
        return CaptureResult(
            transaction_id=intent["id"],
            captured_amount=int(intent.get("amount_received") or 0),
            status=status,
            provider=self.name,
            raw=intent,
        )

    async def probe(self) -> bool:
        return await _probe(self.client)

    async def aclose(self) -> None:
        await self.client.aclose()


class PayPalProvider:
    """PayPal Orders v2 with an OAuth client-credentials token."""

    name = "paypal"

    def __init__(self, cfg: Config | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.config = cfg or get_config()
        self.client = client or httpx.AsyncClient(
            base_url=self.config.paypal_api_base,
            timeout=self.config.gateway_request_timeout,
        )
        self._token: str | None = None
        self._token_expires_at = 0.0

    async def ensure_ready(self) -> None:
        """Fetch (or reuse) the OAuth access token."""
        if self._token and time.monotonic() < self._token_expires_at:
            return
        if not self.config.has_paypal_config():
            msg = "PayPal is not configured"
            raise GatewayError(msg, FailureKind.PROVIDER_REJECTED)

        try:
            response = await self.client.post(
                "/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(self.config.paypal_client_id, self.config.paypal_client_secret),
            )
        except httpx.HTTPError as e:
            raise _transport_error("token request", e) from e

        if response.status_code >= 400:
            raise _rejected("token request", response)

        body = response.json()
        self._token = body["access_token"]
        # Refresh a minute early
        self._token_expires_at = time.monotonic() + int(body.get("expires_in", 3600)) - 60
        logger.info("PayPal access token acquired")

    def _headers(self, request_id: str | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        return headers

    async def create_order(
        self, ctx: PaymentIntentContext, idempotency_key: str
    ) -> ProviderOrder:
        await self.ensure_ready()
        purchase_unit: dict[str, Any] = {
            "reference_id": ctx.request_id,
            "custom_id": ctx.metadata.get("reservation_ref", ctx.request_id),
            "amount": {"currency_code": ctx.currency, "value": str(ctx.amount)},
        }
        if ctx.description:
            purchase_unit["description"] = ctx.description

        try:
            response = await self.client.post(
                "/v2/checkout/orders",
                json={"intent": "CAPTURE", "purchase_units": [purchase_unit]},
                headers=self._headers(idempotency_key),
            )
        except httpx.HTTPError as e:
            raise _transport_error("create order", e) from e

        if response.status_code >= 400:
            raise _rejected("create order", response)

        order = response.json()
        approval_url = next(
            (
                link["href"]
                for link in order.get("links", [])
                if link.get("rel") in ("approve", "payer-action")
            ),
            None,
        )
        logger.info(f"PayPal order created: {order['id']}")
        return ProviderOrder(order_id=order["id"], approval_url=approval_url)

    async def capture_order(self, order_id: str) -> CaptureResult:
        await self.ensure_ready()
        try:
            response = await self.client.post(
                f"/v2/checkout/orders/{order_id}/capture",
                headers=self._headers(f"capture-{order_id}"),
            )
        except httpx.HTTPError as e:
            logger.error(f"PayPal capture failed: {e}")
            msg = f"capture failed: {e}"
            raise CaptureError(msg, FailureKind.NETWORK_TIMEOUT) from e

        if response.status_code >= 400:
            raise _rejected("capture", response, capture=True)

        order = response.json()
        captures = [
            capture
            for unit in order.get("purchase_units", [])
            for capture in unit.get("payments", {}).get("captures", [])
        ]
        if not captures:
            msg = f"PayPal order {order_id} returned no capture"
            raise CaptureError(msg, FailureKind.PROVIDER_REJECTED)

        capture = captures[0]
        try:
            amount = int(Decimal(capture["amount"]["value"]))
        except (KeyError, InvalidOperation) as e:
            msg = f"PayPal capture {capture.get('id')} has no readable amount"
            raise CaptureError(msg, FailureKind.PROVIDER_REJECTED) from e

        status = (
            CaptureStatus.SUCCEEDED
            if order.get("status") == "COMPLETED" and capture.get("status") == "COMPLETED"
            else CaptureStatus.FAILED
        )
        return CaptureResult(
            transaction_id=capture["id"],
            captured_amount=amount,
            status=status,
            provider=self.name,
            raw=order,
        )

    async def probe(self) -> bool:
        return await _probe(self.client)

    async def aclose(self) -> None:
        await self.client.aclose()


class SimulatedProvider:
    """In-process provider used when no card processor is configured."""

    name = "simulated"

    def __init__(self) -> None:
        self._orders: dict[str, int] = {}
        self.create_calls = 0

    async def ensure_ready(self) -> None:
        return None

    async def create_order(
        self, ctx: PaymentIntentContext, idempotency_key: str
    ) -> ProviderOrder:
        self.create_calls += 1
        order_id = f"SIMULATED-{uuid.uuid4().hex[:12]}"
        self._orders[order_id] = ctx.amount
        logger.warning(f"Simulated payment order {order_id} for {ctx.amount} {ctx.currency}")
        return ProviderOrder(order_id=order_id, client_secret=f"{order_id}_secret")

    async def capture_order(self, order_id: str) -> CaptureResult:
        amount = self._orders.get(order_id)
        if amount is None:
            msg = f"Unknown simulated order {order_id}"
            raise CaptureError(msg, FailureKind.PROVIDER_REJECTED)
        return CaptureResult(
            transaction_id=f"SIMTXN-{order_id.removeprefix('SIMULATED-')}",
            captured_amount=amount,
            status=CaptureStatus.SUCCEEDED,
            provider=self.name,
        )

    async def probe(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None


class UnconfiguredProvider:
    """Stands in for a card processor selected without credentials.

    Never takes an order, so checkouts go to the manual-contact fallback
    instead of being marked paid.
    """

    def __init__(self, name: str) -> None:
        self.name = name

    async def ensure_ready(self) -> None:
        msg = f"{self.name} credentials are not configured"
        raise GatewayUnavailable(msg)

    async def create_order(
        self, ctx: PaymentIntentContext, idempotency_key: str
    ) -> ProviderOrder:
        msg = f"{self.name} credentials are not configured"
        raise GatewayUnavailable(msg, reference=ctx.request_id)

    async def capture_order(self, order_id: str) -> CaptureResult:
        msg = f"{self.name} credentials are not configured"
        raise CaptureError(msg, FailureKind.BLOCKED, reference=order_id)

    async def probe(self) -> bool:
        return False

    async def aclose(self) -> None:
        return None


def build_provider(cfg: Config | None = None) -> PaymentProvider:
    """Select the provider strategy from configuration.

    The simulated provider is used only when explicitly selected. A card
    processor without credentials reports itself blocked.
    """
    cfg = cfg or get_config()
    if cfg.payment_provider == "simulated":
        return SimulatedProvider()
    if cfg.payment_provider == "stripe" and cfg.has_stripe_config():
        return StripeProvider(cfg)
    if cfg.payment_provider == "paypal" and cfg.has_paypal_config():
        return PayPalProvider(cfg)
    logger.error(
        f"{cfg.payment_provider} not configured - card payments unavailable, "
        f"checkouts will be offered manual contact"
    )
    return UnconfiguredProvider(cfg.payment_provider)
