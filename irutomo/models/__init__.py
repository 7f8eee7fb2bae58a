"""Data models for the Irutomo reservation service."""

from irutomo.models.payment import (
    CaptureResult,
    CaptureStatus,
    GatewayState,
    PaymentIntentContext,
    PaymentSession,
    ProviderOrder,
    Reachability,
)
from irutomo.models.pricing import FeeQuote, FeeSource, PlanName, PricePlan
from irutomo.models.reservation import (
    AuditLogEntry,
    DirectRestaurantRequest,
    PaymentStatus,
    QrPayload,
    Reservation,
    ReservationForm,
    ReservationStatus,
    Restaurant,
)

__all__ = [
    "AuditLogEntry",
    "CaptureResult",
    "CaptureStatus",
    "DirectRestaurantRequest",
    "FeeQuote",
    "FeeSource",
    "GatewayState",
    "PaymentIntentContext",
    "PaymentSession",
    "PaymentStatus",
    "PlanName",
    "PricePlan",
    "ProviderOrder",
    "QrPayload",
    "Reachability",
    "Reservation",
    "ReservationForm",
    "ReservationStatus",
    "Restaurant",
]
