"""Error taxonomy for the reservation and payment workflow."""

from enum import Enum

from irutomo.i18n import translate


class FailureKind(str, Enum):
    """Classification of payment gateway failures."""

    NETWORK_TIMEOUT = "network_timeout"
    PROVIDER_REJECTED = "provider_rejected"
    BLOCKED = "blocked"
    USER_CANCELLED = "user_cancelled"


class UserAction(str, Enum):
    """Follow-up offered to the user alongside an error message."""

    RETRY = "retry"
    ALTERNATIVE_PAYMENT = "alternative_payment"
    CONTACT_SUPPORT = "contact_support"
    FIX_INPUT = "fix_input"


class ReservationError(Exception):
    """Base class for all workflow errors.

    Attributes:
        code: Stable machine-readable error code
        message_key: Key into the localized message table
        reference: Identifier the user can quote to support
        action: Suggested follow-up for the user
    """

    code = "reservation_error"
    message_key = "store_failed"
    action: UserAction | None = UserAction.RETRY

    def __init__(self, message: str = "", reference: str | None = None) -> None:
        super().__init__(message or self.code)
        self.reference = reference

    def user_message(self, locale: str | None = None) -> str | None:
        """Return the localized message shown to the user."""
        return translate(self.message_key, locale, reference=self.reference or "")


class FormValidationError(ReservationError):
    """Field-level input errors; the user fixes them in place."""

    code = "validation_error"
    message_key = "validation_failed"
    action = UserAction.FIX_INPUT

    def __init__(self, field_errors: dict[str, str]) -> None:
        super().__init__(f"Invalid fields: {', '.join(sorted(field_errors))}")
        self.field_errors = field_errors


class GatewayError(ReservationError):
    """Payment gateway failure with a caller-visible classification."""

    code = "gateway_error"

    def __init__(
        self,
        message: str,
        kind: FailureKind,
        reference: str | None = None,
    ) -> None:
        super().__init__(message, reference)
        self.kind = kind

    @property
    def retryable(self) -> bool:
        """Only transport and provider-side failures are retried automatically."""
        return self.kind in (FailureKind.NETWORK_TIMEOUT, FailureKind.PROVIDER_REJECTED)

    @property
    def action(self) -> UserAction | None:  # type: ignore[override]
        if self.kind == FailureKind.BLOCKED:
            return UserAction.ALTERNATIVE_PAYMENT
        if self.kind == FailureKind.USER_CANCELLED:
            return None
        return UserAction.RETRY

    @property
    def message_key(self) -> str:  # type: ignore[override]
        return {
            FailureKind.NETWORK_TIMEOUT: "gateway_timeout",
            FailureKind.PROVIDER_REJECTED: "gateway_rejected",
            FailureKind.BLOCKED: "gateway_blocked",
        }.get(self.kind, "gateway_rejected")

    def user_message(self, locale: str | None = None) -> str | None:
        # Cancelling the payment dialog is silent
        if self.kind == FailureKind.USER_CANCELLED:
            return None
        return super().user_message(locale)


class GatewayUnavailable(GatewayError):
    """The payment provider never became ready (blocked or failed to load)."""

    code = "gateway_unavailable"

    def __init__(self, message: str, reference: str | None = None) -> None:
        super().__init__(message, FailureKind.BLOCKED, reference)


class CaptureError(GatewayError):
    """The provider declined the capture or the capture call failed."""

    code = "capture_error"

    @property
    def message_key(self) -> str:  # type: ignore[override]
        if self.kind == FailureKind.NETWORK_TIMEOUT:
            return "gateway_timeout"
        return "capture_failed"


class CaptureLimitExceeded(CaptureError):
    """The checkout used up its capture attempts."""

    code = "capture_limit"

    def __init__(self, message: str, reference: str | None = None) -> None:
        super().__init__(message, FailureKind.PROVIDER_REJECTED, reference)

    @property
    def action(self) -> UserAction:  # type: ignore[override]
        return UserAction.ALTERNATIVE_PAYMENT

    @property
    def message_key(self) -> str:  # type: ignore[override]
        return "capture_limit"


class StoreError(ReservationError):
    """The reservation store rejected or failed an operation.

    When raised after a captured payment, ``transaction_id`` is set and the
    payment needs manual reconciliation.
    """

    code = "store_error"
    message_key = "store_failed"

    def __init__(
        self,
        message: str,
        transaction_id: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, reference=transaction_id)
        self.transaction_id = transaction_id
        self.status_code = status_code

    @property
    def after_payment(self) -> bool:
        return self.transaction_id is not None

    @property
    def action(self) -> UserAction:  # type: ignore[override]
        return UserAction.CONTACT_SUPPORT if self.after_payment else UserAction.RETRY

    @property
    def message_key(self) -> str:  # type: ignore[override]
        return "store_failed_after_payment" if self.after_payment else "store_failed"


class NotFoundError(ReservationError):
    """A reservation or checkout attempt does not exist."""

    code = "not_found"
    message_key = "reservation_not_found"
    action = None


class NotificationError(ReservationError):
    """E-mail delivery failed; never blocks the reservation."""

    code = "notification_error"
    message_key = "email_failed"


class WorkflowError(ReservationError):
    """An operation was requested in a state that does not allow it."""

    code = "invalid_transition"
    message_key = "invalid_transition"
    action = None


class RateLimitError(ReservationError):
    """Too many checkout submissions from one client."""

    code = "rate_limited"
    message_key = "rate_limited"
    action = UserAction.RETRY
