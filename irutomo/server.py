"""FastAPI server exposing checkout, reservation and staff endpoints."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

import uvicorn
from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, Field

from irutomo.auth import (
    Token,
    authenticate_staff,
    create_access_token,
    get_current_staff,
)
from irutomo.config import Config, get_config, setup_logging
from irutomo.errors import (
    CaptureError,
    FormValidationError,
    GatewayError,
    GatewayUnavailable,
    NotFoundError,
    RateLimitError,
    ReservationError,
    StoreError,
    WorkflowError,
)
from irutomo.guardrails import check_checkout_rate
from irutomo.i18n import normalize_locale, translate
from irutomo.models import ReservationForm, ReservationStatus
from irutomo.services.attempt_manager import AttemptManager, CheckoutAttempt, CheckoutState
from irutomo.services.notification_service import NotificationDispatcher
from irutomo.services.payment_gateway import PaymentGateway
from irutomo.services.pricing_service import PricingResolver
from irutomo.services.store import ReservationStore
from irutomo.services.workflow import ReservationWorkflow

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the endpoints need, owned by the application."""

    config: Config
    store: ReservationStore
    pricing: PricingResolver
    gateway: PaymentGateway
    notifier: NotificationDispatcher
    attempts: AttemptManager
    workflow: ReservationWorkflow

    async def aclose(self) -> None:
        await self.gateway.aclose()
        await self.notifier.aclose()
        await self.store.aclose()


def build_services(cfg: Config | None = None) -> Services:
    """Wire the services from configuration."""
    cfg = cfg or get_config()
    store = ReservationStore(cfg)
    pricing = PricingResolver(store)
    gateway = PaymentGateway(cfg=cfg)
    notifier = NotificationDispatcher(cfg)
    attempts = AttemptManager()
    workflow = ReservationWorkflow(
        store=store,
        pricing=pricing,
        gateway=gateway,
        notifier=notifier,
        attempts=attempts,
        cfg=cfg,
        logger=logging.getLogger("irutomo.workflow"),
    )
    return Services(cfg, store, pricing, gateway, notifier, attempts, workflow)


# ========== Request bodies ==========
class CheckoutRequest(BaseModel):
    form: ReservationForm = Field(..., description="Reservation form")
    request_id: str | None = Field(None, description="Client idempotency token")
    plan_id: str | None = Field(None, description="Explicitly selected plan")
    locale: str | None = Field(None, description="Customer locale (ko/ja/en)")


class ManualContactRequest(BaseModel):
    message: str | None = Field(None, description="Note for the operators")


class StatusChangeRequest(BaseModel):
    status: ReservationStatus
    reason: str | None = Field(None, description="Cancellation reason")
    locale: str | None = Field(None, description="Locale of the customer e-mail")


# ========== Error mapping ==========
STATUS_BY_ERROR: list[tuple[type[ReservationError], int]] = [
    (FormValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (WorkflowError, status.HTTP_409_CONFLICT),
    (RateLimitError, status.HTTP_429_TOO_MANY_REQUESTS),
    (GatewayUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (CaptureError, status.HTTP_402_PAYMENT_REQUIRED),
    (GatewayError, status.HTTP_502_BAD_GATEWAY),
    (StoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def request_locale(request: Request) -> str:
    """Locale from the ``locale`` query parameter or the Accept-Language header."""
    return normalize_locale(
        request.query_params.get("locale") or request.headers.get("accept-language")
    )


def error_body(exc: ReservationError, locale: str) -> dict:
    body = {
        "success": False,
        "error": exc.code,
        "message": exc.user_message(locale),
        "action": exc.action.value if exc.action else None,
        "reference": exc.reference,
    }
    if isinstance(exc, FormValidationError):
        body["field_errors"] = exc.field_errors
    return body


def status_for(exc: ReservationError) -> int:
    if isinstance(exc, StoreError) and exc.after_payment:
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def attempt_body(attempt: CheckoutAttempt, services: Services) -> dict:
    """Serialize an attempt for the browser."""
    locale = attempt.locale
    body = {
        "success": not attempt.field_errors,
        "attempt_id": attempt.attempt_id,
        "request_id": attempt.request_id,
        "state": attempt.state.value,
        "quote": attempt.quote.model_dump(mode="json") if attempt.quote else None,
        "provider": services.gateway.provider_name,
        "order_id": attempt.order_id,
        "client_secret": attempt.client_secret,
        "approval_url": attempt.approval_url,
        "reservation_id": attempt.reservation_id,
        "transaction_id": attempt.transaction_id,
        "captured_amount": attempt.captured_amount,
        "email_sent": attempt.email_sent,
        "field_errors": attempt.field_errors,
        "message": None,
        "action": None,
    }
    if attempt.field_errors:
        body["message"] = translate("validation_failed", locale)
        body["action"] = "fix_input"
    elif attempt.state == CheckoutState.FALLBACK_OFFER:
        body["message"] = translate("gateway_blocked", locale)
        body["action"] = "alternative_payment"
    elif attempt.email_sent is False:
        body["message"] = translate("email_failed", locale)
        body["action"] = "retry"
    return body


# ========== Application ==========
def create_app(services: Services | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        services: Prebuilt services (tests); built from config when omitted
    """

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        owned = services is None
        svc = services or build_services()
        _app.state.services = svc
        _app.state.config = svc.config
        logger.info(
            f"Starting Irutomo reservation server on "
            f"{svc.config.server_host}:{svc.config.server_port}"
        )
        logger.info(f"Payment provider: {svc.gateway.provider_name}")

        yield

        if owned:
            await svc.aclose()
        logger.info("Shutting down Irutomo reservation server")

    app = FastAPI(
        title="Irutomo Reservation API",
        description="Restaurant reservations with up-front fee payment",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if services is not None:
        app.state.services = services
        app.state.config = services.config

    @app.exception_handler(ReservationError)
    async def reservation_error_handler(request: Request, exc: ReservationError):
        code = status_for(exc)
        if code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} refused: {exc}")
        return JSONResponse(status_code=code, content=error_body(exc, request_locale(request)))

    register_routes(app)
    return app


def get_services(request: Request) -> Services:
    """Dependency to get the services bundle from app state."""
    return request.app.state.services


def register_routes(app: FastAPI) -> None:
    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring."""
        return {"status": "healthy", "service": "irutomo-reservations"}

    @app.get("/test-connection")
    async def test_connection(services: Services = Depends(get_services)):
        """Check store and payment provider connectivity."""
        store_ok = await services.store.test_connection()
        payment = await services.gateway.self_test()
        return {
            "success": store_ok,
            "store": store_ok,
            "payment": payment.value,
            "payment_provider": services.gateway.provider_name,
            "email_configured": services.notifier.is_configured(),
        }

    @app.get("/price-plans")
    async def price_plans(request: Request, services: Services = Depends(get_services)):
        locale = request_locale(request)
        plans = await services.pricing.list_plans()
        return {
            "plans": [
                {**plan.model_dump(mode="json"), "description": plan.describe(locale)}
                for plan in plans
            ]
        }

    @app.get("/fees")
    async def fees(
        party_size: int = Query(..., description="Number of people"),
        plan_id: str | None = Query(None, description="Selected plan"),
        services: Services = Depends(get_services),
    ):
        quote = await services.pricing.resolve_fee(party_size, plan_id)
        return quote.model_dump(mode="json")

    # ========== Checkout ==========
    @app.post("/checkout")
    async def start_checkout(
        body: CheckoutRequest,
        request: Request,
        services: Services = Depends(get_services),
    ):
        """Submit the reservation form and open the payment step.

        Returns the checkout attempt; the browser uses ``client_secret`` or
        ``approval_url`` to let the customer approve the payment.
        """
        services.workflow.cleanup_attempts()
        client_id = request.client.host if request.client else None
        check_checkout_rate(client_id, services.config)
        attempt = await services.workflow.submit(
            body.form,
            locale=body.locale or request_locale(request),
            request_id=body.request_id,
            plan_id=body.plan_id,
            client_id=client_id,
        )
        return _attempt_response(attempt, services)

    @app.put("/checkout/{attempt_id}")
    async def update_checkout(
        attempt_id: str,
        body: CheckoutRequest,
        request: Request,
        services: Services = Depends(get_services),
    ):
        """Resubmit an edited form for an existing attempt."""
        attempt = await services.workflow.submit(
            body.form,
            locale=body.locale or request_locale(request),
            request_id=body.request_id,
            plan_id=body.plan_id,
            attempt_id=attempt_id,
        )
        return _attempt_response(attempt, services)

    @app.get("/checkout/{attempt_id}")
    async def get_checkout(attempt_id: str, services: Services = Depends(get_services)):
        attempt = services.workflow.get_attempt(attempt_id)
        return attempt_body(attempt, services)

    @app.post("/checkout/{attempt_id}/capture")
    async def capture_checkout(attempt_id: str, services: Services = Depends(get_services)):
        """Capture the approved payment and create the reservation."""
        attempt = await services.workflow.complete_payment(attempt_id)
        return attempt_body(attempt, services)

    @app.post("/checkout/{attempt_id}/cancel")
    async def cancel_checkout(attempt_id: str, services: Services = Depends(get_services)):
        attempt = await services.workflow.cancel_payment(attempt_id)
        return attempt_body(attempt, services)

    @app.post("/checkout/{attempt_id}/retry")
    async def retry_checkout(attempt_id: str, services: Services = Depends(get_services)):
        attempt = await services.workflow.retry(attempt_id)
        return attempt_body(attempt, services)

    @app.post("/checkout/{attempt_id}/blocked")
    async def report_blocked(attempt_id: str, services: Services = Depends(get_services)):
        """The browser could not load the payment SDK."""
        attempt = await services.workflow.report_blocked(attempt_id)
        return attempt_body(attempt, services)

    @app.post("/checkout/{attempt_id}/fallback")
    async def manual_contact(
        attempt_id: str,
        body: ManualContactRequest,
        services: Services = Depends(get_services),
    ):
        """Request manual contact instead of paying by card."""
        attempt = await services.workflow.request_manual_contact(attempt_id, body.message)
        return attempt_body(attempt, services)

    # ========== Reservations ==========
    @app.get("/reservations/{reservation_id}")
    async def get_reservation(reservation_id: str, services: Services = Depends(get_services)):
        reservation = await services.workflow.get_reservation(reservation_id)
        return reservation.model_dump(mode="json")

    @app.get("/reservations/{reservation_id}/qr")
    async def get_qr_payload(
        reservation_id: str,
        request: Request,
        services: Services = Depends(get_services),
    ):
        """Document to embed in the confirmation QR code."""
        payload = await services.workflow.qr_payload(reservation_id, request_locale(request))
        return payload.model_dump(mode="json", by_alias=True)

    @app.post("/reservations/{reservation_id}/resend-email")
    async def resend_email(
        reservation_id: str,
        request: Request,
        services: Services = Depends(get_services),
    ):
        locale = request_locale(request)
        result = await services.workflow.resend_confirmation(reservation_id, locale)
        body = result.model_dump()
        body["message"] = None if result.success else translate("email_failed", locale)
        return JSONResponse(
            status_code=status.HTTP_200_OK if result.success else status.HTTP_502_BAD_GATEWAY,
            content=body,
        )

    # ========== Staff ==========
    @app.post("/admin/login", response_model=Token)
    async def admin_login(
        form_data: OAuth2PasswordRequestForm = Depends(),
        services: Services = Depends(get_services),
    ):
        if not authenticate_staff(services.config, form_data.username, form_data.password):
            logger.warning(f"Failed staff login for {form_data.username}")
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Incorrect username or password"},
                headers={"WWW-Authenticate": "Bearer"},
            )
        logger.info(f"Staff login: {form_data.username}")
        return Token(access_token=create_access_token(services.config, form_data.username))

    @app.get("/admin/reservations")
    async def admin_list_reservations(
        status_filter: ReservationStatus | None = Query(None, alias="status"),
        reservation_date: str | None = Query(None, alias="date"),
        restaurant_id: str | None = Query(None),
        staff: str = Depends(get_current_staff),
        services: Services = Depends(get_services),
    ):
        reservations = await services.workflow.list_reservations(
            status_filter, reservation_date, restaurant_id
        )
        return {"reservations": [r.model_dump(mode="json") for r in reservations]}

    @app.post("/admin/reservations/{reservation_id}/status")
    async def admin_change_status(
        reservation_id: str,
        body: StatusChangeRequest,
        staff: str = Depends(get_current_staff),
        services: Services = Depends(get_services),
    ):
        reservation = await services.workflow.change_status(
            reservation_id, body.status, staff, body.reason, body.locale
        )
        return {"success": True, "reservation": reservation.model_dump(mode="json")}


def _attempt_response(attempt: CheckoutAttempt, services: Services):
    body = attempt_body(attempt, services)
    if attempt.field_errors:
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=body)
    return body


app = create_app()


def run_server():
    """Run the FastAPI server using uvicorn."""
    setup_logging()
    config = get_config()

    uvicorn.run(
        "irutomo.server:app",
        host=config.server_host,
        port=config.server_port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    run_server()
