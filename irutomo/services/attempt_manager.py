"""In-memory state for checkout attempts."""

import logging
import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from irutomo.models import FeeQuote, ReservationForm

logger = logging.getLogger(__name__)


class CheckoutState(str, Enum):
    """Where a checkout attempt is in the reservation workflow."""

    COLLECTING_INPUT = "collecting_input"
    VALIDATING_INPUT = "validating_input"
    AWAITING_PAYMENT = "awaiting_payment"
    PERSISTING_RESERVATION = "persisting_reservation"
    NOTIFYING_CUSTOMER = "notifying_customer"
    DONE = "done"
    PAYMENT_BLOCKED = "payment_blocked"
    FALLBACK_OFFER = "fallback_offer"
    MANUAL_CONTACT_REQUESTED = "manual_contact_requested"
    PERSIST_FAILED = "persist_failed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = (
    CheckoutState.DONE,
    CheckoutState.MANUAL_CONTACT_REQUESTED,
    CheckoutState.PERSIST_FAILED,
    CheckoutState.FAILED,
)

# Only passed through while the workflow holds the attempt lock
IN_FLIGHT_STATES = (
    CheckoutState.VALIDATING_INPUT,
    CheckoutState.PERSISTING_RESERVATION,
    CheckoutState.NOTIFYING_CUSTOMER,
)


class CheckoutAttempt(BaseModel):
    """One customer's path from form submission to confirmation."""

    attempt_id: str = Field(description="Unique attempt identifier")
    request_id: str = Field(description="Client idempotency token for the payment")
    client_id: str | None = Field(None, description="Client address the attempt came from")
    locale: str = Field(default="ja", description="Customer locale")
    state: CheckoutState = Field(default=CheckoutState.COLLECTING_INPUT)
    form: ReservationForm = Field(description="Submitted form")
    field_errors: dict[str, str] = Field(default_factory=dict)
    quote: FeeQuote | None = Field(None, description="Fee for the payment step")
    selected_plan_id: str | None = Field(None, description="Explicitly chosen plan")
    session_id: str | None = Field(None, description="Current payment session")
    order_id: str | None = Field(None, description="Provider order ID")
    client_secret: str | None = Field(None, description="Browser SDK token")
    approval_url: str | None = Field(None, description="Provider redirect URL")
    capture_attempts: int = Field(default=0)
    transaction_id: str | None = Field(None, description="Captured transaction ID")
    captured_amount: int | None = Field(None, description="Amount actually captured")
    reservation_id: str | None = Field(None, description="Persisted reservation ID")
    restaurant_id: str | None = Field(None, description="Restaurant used for the booking")
    email_sent: bool | None = Field(None, description="Confirmation e-mail outcome")
    error_code: str | None = Field(None, description="Last error code")
    start_time: datetime = Field(default_factory=datetime.now)
    end_time: datetime | None = Field(None, description="When a terminal state was reached")

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class AttemptManager:
    """Tracks checkout attempts by attempt id and payment request id.

    State lives in memory for the life of the process.
    """

    def __init__(self) -> None:
        self._attempts: dict[str, CheckoutAttempt] = {}
        self._by_request: dict[str, str] = {}

    @staticmethod
    def generate_id() -> str:
        """Generate a unique identifier.

        Returns:
            UUID-based ID
        """
        return str(uuid.uuid4())

    def create_attempt(
        self,
        form: ReservationForm,
        locale: str,
        request_id: str | None = None,
        client_id: str | None = None,
    ) -> CheckoutAttempt:
        """Register a new checkout attempt.

        Args:
            form: Submitted reservation form
            locale: Customer locale
            request_id: Client idempotency token (generated if not provided)
            client_id: Client address

        Returns:
            CheckoutAttempt object
        """
        attempt = CheckoutAttempt(
            attempt_id=self.generate_id(),
            request_id=request_id or self.generate_id(),
            client_id=client_id,
            locale=locale,
            form=form,
        )
        self._attempts[attempt.attempt_id] = attempt
        self._by_request[attempt.request_id] = attempt.attempt_id
        logger.info(f"Created checkout attempt {attempt.attempt_id}")
        return attempt

    def get_attempt(self, attempt_id: str) -> CheckoutAttempt | None:
        return self._attempts.get(attempt_id)

    def find_by_request(self, request_id: str) -> CheckoutAttempt | None:
        """Get the attempt that owns a payment request id."""
        attempt_id = self._by_request.get(request_id)
        return self._attempts.get(attempt_id) if attempt_id else None

    def rebind_request(self, attempt: CheckoutAttempt, request_id: str) -> None:
        """Give an attempt a new payment request id (e.g. after the amount changed)."""
        self._by_request.pop(attempt.request_id, None)
        attempt.request_id = request_id
        self._by_request[request_id] = attempt.attempt_id

    def update_state(self, attempt: CheckoutAttempt, state: CheckoutState) -> None:
        """Move an attempt to a new state.

        Args:
            attempt: Attempt to update
            state: New state
        """
        previous = attempt.state
        attempt.state = state
        if attempt.is_terminal and attempt.end_time is None:
            attempt.end_time = datetime.now()
        logger.info(
            f"Attempt {attempt.attempt_id}: {previous.value} -> {state.value}"
        )

    def get_all_attempts(self) -> list[CheckoutAttempt]:
        return list(self._attempts.values())

    def cleanup_old_attempts(
        self, max_age_minutes: int = 60, idle_max_age_minutes: int = 180
    ) -> list[CheckoutAttempt]:
        """Remove finished attempts older than max_age_minutes.

        Attempts that were abandoned before finishing (awaiting payment,
        fallback offer, form errors) expire idle_max_age_minutes after they
        started. Attempts that failed to persist after payment are kept so
        staff can reconcile them.

        Args:
            max_age_minutes: Maximum age of finished attempts in minutes
            idle_max_age_minutes: Maximum age of unfinished attempts in minutes

        Returns:
            The removed attempts
        """
        now = datetime.now()
        to_remove = []

        for attempt_id, attempt in self._attempts.items():
            if attempt.state == CheckoutState.PERSIST_FAILED:
                continue
            if attempt.state in IN_FLIGHT_STATES:
                continue
            if attempt.end_time is not None:
                limit, since = max_age_minutes, attempt.end_time
            elif attempt.state == CheckoutState.CANCELLED:
                limit, since = max_age_minutes, attempt.start_time
            else:
                limit, since = idle_max_age_minutes, attempt.start_time
            age_minutes = (now - since).total_seconds() / 60
            if age_minutes > limit:
                to_remove.append(attempt_id)

        removed = []
        for attempt_id in to_remove:
            attempt = self._attempts.pop(attempt_id)
            self._by_request.pop(attempt.request_id, None)
            removed.append(attempt)
            logger.info(f"Cleaned up old attempt {attempt_id} ({attempt.state.value})")

        return removed
