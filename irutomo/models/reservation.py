"""Data models for restaurant reservations."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from irutomo.i18n import normalize_locale


class ReservationStatus(str, Enum):
    """Lifecycle status of a reservation."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentStatus(str, Enum):
    """Payment state recorded on a reservation.

    ``PENDING_MANUAL`` marks requests made through the manual-contact
    fallback: no card payment was captured and staff collect it later.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    PENDING_MANUAL = "pending_manual"


class Restaurant(BaseModel):
    """Restaurant information."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(..., description="Restaurant ID")
    name: str = Field(..., description="Restaurant name")
    japanese_name: str | None = Field(None, description="Name in Japanese")
    korean_name: str | None = Field(None, description="Name in Korean")
    address: str | None = Field(None, description="Restaurant address")
    phone: str | None = Field(None, description="Restaurant phone number")
    url: str | None = Field(None, description="Restaurant website")
    location: str | None = Field(None, description="City or area")

    def display_name(self, locale: str | None = None) -> str:
        """Name to show for the locale."""
        loc = normalize_locale(locale)
        if loc == "ko" and self.korean_name:
            return self.korean_name
        if loc == "ja" and self.japanese_name:
            return self.japanese_name
        return self.name


class DirectRestaurantRequest(BaseModel):
    """A restaurant the customer names that is not yet in the catalogue."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Restaurant name")
    url: str | None = Field(None, description="Restaurant website")
    address: str | None = Field(None, description="Restaurant address")
    notes: str | None = Field(None, description="Additional notes")


class ReservationForm(BaseModel):
    """Reservation details as submitted by the customer.

    Field checks live in the form validator so that every problem is reported
    at once instead of failing on the first one.
    """

    model_config = ConfigDict(frozen=True)

    restaurant_id: str | None = Field(None, description="Catalogue restaurant ID")
    direct_restaurant: DirectRestaurantRequest | None = Field(
        None, description="Restaurant named by the customer"
    )
    reservation_date: str = Field(default="", description="YYYY-MM-DD")
    reservation_time: str = Field(default="", description="HH:MM")
    party_size: int = Field(default=0, description="Number of people")
    name: str = Field(default="", description="Customer name")
    email: str = Field(default="", description="Customer e-mail")
    phone: str = Field(default="", description="Customer phone number")
    special_requests: str | None = Field(None, description="Special requests or notes")


class Reservation(BaseModel):
    """A row of the ``reservations`` table."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Reservation ID")
    restaurant_id: str | None = Field(None, description="Restaurant ID")
    reservation_date: str = Field(..., description="YYYY-MM-DD")
    reservation_time: str = Field(..., description="HH:MM")
    party_size: int = Field(..., gt=0, description="Number of people")
    name: str = Field(..., description="Customer name")
    email: str = Field(..., description="Customer e-mail")
    phone: str = Field(..., description="Customer phone number")
    special_requests: str | None = None
    status: ReservationStatus = Field(default=ReservationStatus.PENDING)
    payment_status: PaymentStatus = Field(default=PaymentStatus.PENDING)
    payment_amount: int = Field(default=0, ge=0, description="Fee copied at booking")
    transaction_id: str | None = Field(None, description="Captured transaction ID")
    cancellation_reason: str | None = None
    created_at: datetime | None = None


class AuditLogEntry(BaseModel):
    """A row of the ``audit_logs`` table."""

    actor: str = Field(..., description="Who performed the action")
    action: str = Field(..., description="What was done")
    target_id: str = Field(..., description="ID of the affected row")
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.now)


class QrPayload(BaseModel):
    """Document embedded in the confirmation QR code."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    restaurant: str
    date: str
    time: str
    party_size: int = Field(..., alias="partySize")
    status: ReservationStatus

    def to_json(self) -> str:
        """Serialize with the wire names used by the QR reader."""
        return self.model_dump_json(by_alias=True)
