"""Data models for the payment gateway."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class GatewayState(str, Enum):
    """State of one checkout attempt inside the gateway."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    CAPTURING = "capturing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    BLOCKED = "blocked"


class Reachability(str, Enum):
    """Result of the payment provider reachability probe."""

    REACHABLE = "reachable"
    BLOCKED = "blocked"
    UNKNOWN = "unknown"


class CaptureStatus(str, Enum):
    """Outcome of a capture."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PaymentIntentContext(BaseModel):
    """What one checkout attempt asks the provider to collect."""

    model_config = ConfigDict(frozen=True)

    request_id: str = Field(..., description="Client idempotency token")
    amount: int = Field(..., gt=0, description="Amount in JPY")
    currency: str = Field(default="JPY", description="Currency code")
    metadata: dict[str, str] = Field(default_factory=dict)
    description: str | None = Field(None, description="Order description")


class ProviderOrder(BaseModel):
    """An order created on the provider side."""

    model_config = ConfigDict(frozen=True)

    order_id: str = Field(..., description="Provider order / intent ID")
    client_secret: str | None = Field(
        None, description="Token the browser SDK needs to approve the order"
    )
    approval_url: str | None = Field(None, description="Redirect URL, if any")


class CaptureResult(BaseModel):
    """Result of capturing an approved order."""

    model_config = ConfigDict(frozen=True)

    transaction_id: str = Field(..., description="Provider transaction ID")
    captured_amount: int = Field(..., ge=0, description="Amount actually captured")
    status: CaptureStatus = Field(..., description="Capture outcome")
    provider: str = Field(default="simulated", description="Provider name")
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)


class PaymentSession(BaseModel):
    """Gateway-side state of one checkout attempt.

    ``session_id`` and ``order_id`` are regenerated/cleared on reset so a
    stale handle is never reused.
    """

    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    context: PaymentIntentContext
    client_id: str | None = None
    state: GatewayState = Field(default=GatewayState.IDLE)
    order: ProviderOrder | None = None
    capture: CaptureResult | None = None
    failure: str | None = None
    capture_attempts: int = 0
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def request_id(self) -> str:
        return self.context.request_id

    @property
    def order_id(self) -> str | None:
        return self.order.order_id if self.order else None

    @property
    def spacing_key(self) -> str:
        """Attempts sharing this key are spaced apart."""
        return self.client_id or self.request_id
