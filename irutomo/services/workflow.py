"""Reservation workflow: form submission through payment, persistence and e-mail."""

import asyncio
import logging
from datetime import date
from typing import Any

from irutomo.config import Config, get_config
from irutomo.errors import (
    CaptureError,
    CaptureLimitExceeded,
    FormValidationError,
    GatewayError,
    GatewayUnavailable,
    NotFoundError,
    StoreError,
    WorkflowError,
)
from irutomo.guardrails import ReservationFormValidator
from irutomo.i18n import normalize_locale, translate
from irutomo.models import (
    CaptureResult,
    FeeQuote,
    PaymentSession,
    PaymentStatus,
    QrPayload,
    Reachability,
    Reservation,
    ReservationForm,
    ReservationStatus,
    Restaurant,
)
from irutomo.services.attempt_manager import (
    AttemptManager,
    CheckoutAttempt,
    CheckoutState,
)
from irutomo.services.notification_service import (
    NotificationDispatcher,
    NotificationResult,
)
from irutomo.services.payment_gateway import PaymentGateway
from irutomo.services.pricing_service import FeeSelection, PricingResolver
from irutomo.services.store import ReservationStore

# States from which a corrected form may be resubmitted
EDITABLE_STATES = (
    CheckoutState.COLLECTING_INPUT,
    CheckoutState.AWAITING_PAYMENT,
    CheckoutState.PAYMENT_BLOCKED,
    CheckoutState.FALLBACK_OFFER,
    CheckoutState.CANCELLED,
)

CANCELLABLE_STATES = (
    CheckoutState.COLLECTING_INPUT,
    CheckoutState.AWAITING_PAYMENT,
    CheckoutState.PAYMENT_BLOCKED,
    CheckoutState.FALLBACK_OFFER,
)

STAFF_STATUSES = (
    ReservationStatus.CONFIRMED,
    ReservationStatus.CANCELLED,
    ReservationStatus.COMPLETED,
)


class ReservationWorkflow:
    """Drives one checkout attempt at a time through the reservation states.

    CollectingInput -> ValidatingInput -> AwaitingPayment ->
    PersistingReservation -> NotifyingCustomer -> Done, with the escape
    hatch PaymentBlocked -> FallbackOffer -> ManualContactRequested.

    Side effects run in a fixed order: capture, then the reservation insert,
    then e-mail. Operations on the same attempt are serialized.
    """

    def __init__(
        self,
        store: ReservationStore,
        pricing: PricingResolver,
        gateway: PaymentGateway,
        notifier: NotificationDispatcher,
        attempts: AttemptManager | None = None,
        validator: ReservationFormValidator | None = None,
        cfg: Config | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the workflow.

        Args:
            store: Reservation store
            pricing: Fee resolver
            gateway: Payment gateway
            notifier: E-mail dispatcher
            attempts: Attempt registry (a new one if not provided)
            validator: Form validator
            cfg: Application configuration
            logger: Logger receiving workflow events
        """
        self.config = cfg or get_config()
        self.store = store
        self.pricing = pricing
        self.gateway = gateway
        self.notifier = notifier
        self.attempts = attempts or AttemptManager()
        self.validator = validator or ReservationFormValidator(self.config)
        self.log = logger or logging.getLogger(__name__)
        self._selections: dict[str, FeeSelection] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, attempt: CheckoutAttempt) -> asyncio.Lock:
        return self._locks.setdefault(attempt.attempt_id, asyncio.Lock())

    def cleanup_attempts(
        self, max_age_minutes: int = 60, idle_max_age_minutes: int = 180
    ) -> int:
        """Drop old attempts together with their locks, fee selections and
        payment sessions.

        Returns:
            Number of attempts removed
        """
        removed = self.attempts.cleanup_old_attempts(max_age_minutes, idle_max_age_minutes)
        for attempt in removed:
            self._locks.pop(attempt.attempt_id, None)
            self._selections.pop(attempt.attempt_id, None)
            session = self.gateway.get_session(attempt.request_id)
            if session is not None:
                self.gateway.release(session)
        if removed:
            self.log.info(f"Cleaned up {len(removed)} checkout attempts")
        return len(removed)

    def get_attempt(self, attempt_id: str) -> CheckoutAttempt:
        """Get a checkout attempt.

        Raises:
            NotFoundError: If the attempt does not exist (or was cleaned up)
        """
        attempt = self.attempts.get_attempt(attempt_id)
        if attempt is None:
            msg = f"Checkout attempt {attempt_id} not found"
            raise NotFoundError(msg, reference=attempt_id)
        return attempt

    # ========== Checkout ==========
    async def submit(
        self,
        form: ReservationForm,
        locale: str | None = None,
        request_id: str | None = None,
        plan_id: str | None = None,
        attempt_id: str | None = None,
        today: date | None = None,
        client_id: str | None = None,
    ) -> CheckoutAttempt:
        """Validate a form, price it and open the payment step.

        Field errors are returned on the attempt (state stays
        ``collecting_input``). A gateway that is blocked moves the attempt
        to ``fallback_offer`` instead of raising.

        Args:
            form: Submitted reservation form
            locale: Customer locale
            request_id: Client idempotency token for the payment
            plan_id: Explicitly selected price plan
            attempt_id: Existing attempt being resubmitted after an edit
            today: Reference date for the booking window
            client_id: Client address, used to space repeated payment attempts

        Returns:
            The checkout attempt

        Raises:
            GatewayError: If the payment order could not be created
            WorkflowError: If the attempt can no longer be edited
        """
        loc = normalize_locale(locale)
        if attempt_id is not None:
            attempt = self.get_attempt(attempt_id)
        else:
            if request_id is not None:
                existing = self.attempts.find_by_request(request_id)
                if existing is not None:
                    self.log.info(
                        f"Duplicate submit for request {request_id} joins attempt {existing.attempt_id}"
                    )
                    async with self._lock(existing):
                        return existing
            attempt = self.attempts.create_attempt(form, loc, request_id, client_id)

        async with self._lock(attempt):
            if attempt.state in (CheckoutState.DONE, CheckoutState.MANUAL_CONTACT_REQUESTED):
                self.log.info(f"Attempt {attempt.attempt_id} already finished - submit ignored")
                return attempt
            if attempt_id is not None and attempt.state not in EDITABLE_STATES:
                msg = f"Attempt {attempt.attempt_id} cannot be edited in state {attempt.state.value}"
                raise WorkflowError(msg, reference=attempt.attempt_id)

            resubmission = attempt_id is not None
            if resubmission:
                self._discard_session(attempt)
                self.attempts.rebind_request(
                    attempt,
                    request_id
                    if request_id and request_id != attempt.request_id
                    else self.attempts.generate_id(),
                )

            if (
                form.restaurant_id != attempt.form.restaurant_id
                or form.direct_restaurant != attempt.form.direct_restaurant
            ):
                attempt.restaurant_id = None
            attempt.form = form
            attempt.locale = loc
            if client_id is not None:
                attempt.client_id = client_id
            self.attempts.update_state(attempt, CheckoutState.VALIDATING_INPUT)

            errors = self.validator.validate(form, loc, today)
            attempt.field_errors = errors
            if errors:
                self.attempts.update_state(attempt, CheckoutState.COLLECTING_INPUT)
                return attempt

            attempt.quote = await self._resolve_quote(attempt, plan_id)
            await self._open_payment(attempt)
            return attempt

    async def _resolve_quote(self, attempt: CheckoutAttempt, plan_id: str | None) -> FeeQuote:
        party_size = attempt.form.party_size
        derived = await self.pricing.resolve_fee(party_size)

        selection = self._selections.get(attempt.attempt_id)
        size_changed = False
        if selection is None:
            selection = FeeSelection(party_size, derived)
            self._selections[attempt.attempt_id] = selection
        else:
            size_changed = selection.party_size != party_size
            selection.set_party_size(party_size, derived)

        # A plan chosen for the old party size does not survive a size change
        stale_choice = size_changed and plan_id == attempt.selected_plan_id
        if size_changed:
            attempt.selected_plan_id = None

        if plan_id and not stale_choice:
            plan = next(
                (p for p in await self.pricing.list_plans() if p.id == plan_id and p.is_active),
                None,
            )
            if plan is None:
                self.log.info(f"Plan {plan_id} not available - keeping size-based fee")
            else:
                selection.select_plan(plan)
                attempt.selected_plan_id = plan_id

        quote = selection.quote
        self.log.info(
            f"Attempt {attempt.attempt_id}: fee {quote.amount} {quote.currency} "
            f"({quote.source.value}, party of {party_size})"
        )
        return quote

    async def _open_payment(
        self, attempt: CheckoutAttempt, session: PaymentSession | None = None
    ) -> None:
        reachability = await self.gateway.self_test()
        if reachability == Reachability.BLOCKED:
            self.log.warning(f"Attempt {attempt.attempt_id}: payment provider unreachable")
            if session is not None:
                self.gateway.report_blocked(session)
            self._enter_fallback(attempt)
            return

        if session is None:
            session = await self.gateway.init_session(
                amount=attempt.quote.amount,
                currency=attempt.quote.currency,
                metadata=self._payment_metadata(attempt),
                request_id=attempt.request_id,
                description=f"Irutomo reservation fee ({attempt.quote.plan_name})",
                client_id=attempt.client_id,
            )
        attempt.session_id = session.session_id
        self.attempts.update_state(attempt, CheckoutState.AWAITING_PAYMENT)

        try:
            session = await self._create_order(attempt, session)
        except GatewayUnavailable:
            self._enter_fallback(attempt)
            return
        except GatewayError as e:
            attempt.error_code = e.kind.value
            raise

        attempt.order_id = session.order.order_id
        attempt.client_secret = session.order.client_secret
        attempt.approval_url = session.order.approval_url
        attempt.error_code = None

    async def _create_order(
        self, attempt: CheckoutAttempt, session: PaymentSession
    ) -> PaymentSession:
        try:
            await self.gateway.create_order(session)
        except GatewayUnavailable:
            raise
        except GatewayError as e:
            if not e.retryable:
                raise
            self.log.warning(
                f"Attempt {attempt.attempt_id}: order creation failed ({e.kind.value}) - retrying once"
            )
            session = self.gateway.reset(session)
            attempt.session_id = session.session_id
            await self.gateway.create_order(session)
        return session

    def _payment_metadata(self, attempt: CheckoutAttempt) -> dict[str, str]:
        form = attempt.form
        metadata = {
            "attempt_id": attempt.attempt_id,
            "reservation_date": form.reservation_date,
            "reservation_time": form.reservation_time,
            "party_size": str(form.party_size),
            "customer_email": form.email,
        }
        if form.restaurant_id:
            metadata["restaurant_id"] = form.restaurant_id
        return metadata

    def _enter_fallback(self, attempt: CheckoutAttempt) -> None:
        attempt.error_code = "blocked"
        self.attempts.update_state(attempt, CheckoutState.PAYMENT_BLOCKED)
        self.attempts.update_state(attempt, CheckoutState.FALLBACK_OFFER)

    def _discard_session(self, attempt: CheckoutAttempt) -> None:
        session = self.gateway.get_session(attempt.request_id)
        if session is not None:
            self.gateway.cancel(session)
            self.gateway.release(session)
        attempt.session_id = None
        attempt.order_id = None
        attempt.client_secret = None
        attempt.approval_url = None

    async def complete_payment(self, attempt_id: str) -> CheckoutAttempt:
        """Capture the approved payment, persist the reservation and notify.

        Calling this again after success returns the finished attempt.

        Raises:
            CaptureError: If the capture was declined or failed
            CaptureLimitExceeded: If the attempt used up its captures
            StoreError: If the reservation could not be saved after capture;
                ``transaction_id`` references the captured payment
            WorkflowError: If the attempt is not awaiting payment
        """
        attempt = self.get_attempt(attempt_id)
        async with self._lock(attempt):
            if attempt.state == CheckoutState.DONE:
                return attempt
            if attempt.state != CheckoutState.AWAITING_PAYMENT:
                msg = f"Cannot complete payment in state {attempt.state.value}"
                raise WorkflowError(msg, reference=attempt.transaction_id or attempt.attempt_id)

            session = self.gateway.get_session(attempt.request_id)
            if session is None or session.order is None:
                msg = f"Attempt {attempt.attempt_id} has no payment order"
                raise WorkflowError(msg, reference=attempt.attempt_id)

            try:
                capture = await self.gateway.capture_order(session)
            except CaptureError as e:
                attempt.capture_attempts += 1
                attempt.error_code = e.kind.value
                if attempt.capture_attempts >= self.config.max_capture_attempts:
                    self.attempts.update_state(attempt, CheckoutState.FAILED)
                    msg = f"Capture failed {attempt.capture_attempts} times"
                    raise CaptureLimitExceeded(msg, reference=attempt.attempt_id) from e
                raise

            attempt.capture_attempts += 1
            reservation = await self._persist_paid_reservation(attempt, capture)
            await self._notify_booked(attempt, reservation)

            self.attempts.update_state(attempt, CheckoutState.DONE)
            self.gateway.release(session)
            return attempt

    async def _persist_paid_reservation(
        self, attempt: CheckoutAttempt, capture: CaptureResult
    ) -> Reservation:
        self.attempts.update_state(attempt, CheckoutState.PERSISTING_RESERVATION)
        attempt.transaction_id = capture.transaction_id
        attempt.captured_amount = capture.captured_amount

        if capture.captured_amount != attempt.quote.amount:
            self.log.warning(
                f"Attempt {attempt.attempt_id}: captured {capture.captured_amount} "
                f"but requested {attempt.quote.amount} (transaction {capture.transaction_id}) "
                f"- recording the captured amount"
            )

        try:
            reservation = await self._insert_reservation(
                attempt,
                PaymentStatus.COMPLETED,
                capture.captured_amount,
                capture.transaction_id,
            )
        except StoreError as e:
            attempt.error_code = e.code
            self.attempts.update_state(attempt, CheckoutState.PERSIST_FAILED)
            self.log.error(
                f"Attempt {attempt.attempt_id}: payment {capture.transaction_id} captured "
                f"({capture.captured_amount}) but the reservation was not saved - "
                f"manual reconciliation required: {e}"
            )
            msg = f"Reservation not saved after payment {capture.transaction_id}"
            raise StoreError(
                msg, transaction_id=capture.transaction_id, status_code=e.status_code
            ) from e

        self.attempts.update_state(attempt, CheckoutState.NOTIFYING_CUSTOMER)

        try:
            await self.store.record_payment(
                reservation_id=attempt.reservation_id,
                transaction_id=capture.transaction_id,
                amount=capture.captured_amount,
                currency=attempt.quote.currency,
                provider=capture.provider,
            )
        except StoreError as e:
            self.log.warning(
                f"Payment ledger entry for {capture.transaction_id} not written: {e}"
            )
        return reservation

    async def _insert_reservation(
        self,
        attempt: CheckoutAttempt,
        payment_status: PaymentStatus,
        amount: int,
        transaction_id: str | None,
    ) -> Reservation:
        created_restaurant = False
        if attempt.form.direct_restaurant is not None and attempt.restaurant_id is None:
            attempt.restaurant_id = await self.store.create_restaurant(
                self._direct_restaurant_fields(attempt)
            )
            created_restaurant = True
        elif attempt.restaurant_id is None:
            attempt.restaurant_id = attempt.form.restaurant_id

        fields = self._reservation_fields(attempt, payment_status, amount, transaction_id)
        try:
            reservation_id = await self.store.create_reservation(fields)
        except StoreError:
            if created_restaurant:
                self.log.warning(
                    f"Restaurant {attempt.restaurant_id} left without a reservation"
                )
            raise

        attempt.reservation_id = reservation_id
        return Reservation(id=reservation_id, **fields)

    def _direct_restaurant_fields(self, attempt: CheckoutAttempt) -> dict[str, Any]:
        direct = attempt.form.direct_restaurant
        fields: dict[str, Any] = {"name": direct.name.strip()}
        if direct.url:
            fields["url"] = direct.url
        if direct.address:
            fields["address"] = direct.address
        if direct.notes:
            fields["description"] = direct.notes
        return fields

    def _reservation_fields(
        self,
        attempt: CheckoutAttempt,
        payment_status: PaymentStatus,
        amount: int,
        transaction_id: str | None,
    ) -> dict[str, Any]:
        form = attempt.form
        return {
            "restaurant_id": attempt.restaurant_id or form.restaurant_id,
            "reservation_date": form.reservation_date,
            "reservation_time": form.reservation_time,
            "party_size": form.party_size,
            "name": form.name.strip(),
            "email": form.email.strip(),
            "phone": form.phone.strip(),
            "special_requests": form.special_requests,
            "status": ReservationStatus.PENDING.value,
            "payment_status": payment_status.value,
            "payment_amount": amount,
            "transaction_id": transaction_id,
        }

    async def _notify_booked(self, attempt: CheckoutAttempt, reservation: Reservation) -> None:
        restaurant = await self._attempt_restaurant(attempt)

        result = await self.notifier.send_confirmation(reservation, restaurant, attempt.locale)
        attempt.email_sent = result.success
        if not result.success:
            self.log.warning(
                f"Confirmation e-mail for reservation {reservation.id} failed: {result.error}"
            )

        admin = await self.notifier.send_admin_alert(reservation, restaurant)
        if not admin.success:
            self.log.warning(f"Admin alert for reservation {reservation.id} failed: {admin.error}")

    async def _attempt_restaurant(self, attempt: CheckoutAttempt) -> Restaurant | None:
        direct = attempt.form.direct_restaurant
        if direct is not None:
            return Restaurant(
                id=attempt.restaurant_id or "",
                name=direct.name.strip(),
                url=direct.url,
                address=direct.address,
            )
        return await self._fetch_restaurant(attempt.form.restaurant_id)

    async def _fetch_restaurant(self, restaurant_id: str | None) -> Restaurant | None:
        if not restaurant_id:
            return None
        try:
            return await self.store.fetch_restaurant(restaurant_id)
        except StoreError as e:
            self.log.warning(f"Restaurant {restaurant_id} unavailable: {e}")
            return None

    async def cancel_payment(self, attempt_id: str) -> CheckoutAttempt:
        """Abandon the payment step; nothing has been written yet.

        Raises:
            WorkflowError: Once persistence has begun
        """
        attempt = self.get_attempt(attempt_id)
        async with self._lock(attempt):
            if attempt.state == CheckoutState.CANCELLED:
                return attempt
            if attempt.state not in CANCELLABLE_STATES:
                msg = f"Cannot cancel in state {attempt.state.value}"
                raise WorkflowError(msg, reference=attempt.attempt_id)

            self._discard_session(attempt)
            attempt.error_code = None
            self.attempts.update_state(attempt, CheckoutState.CANCELLED)
            return attempt

    async def retry(self, attempt_id: str) -> CheckoutAttempt:
        """Start the payment step over with fresh session identifiers.

        Raises:
            GatewayError: If the new payment order could not be created
            WorkflowError: If the attempt is finished or was never priced
        """
        attempt = self.get_attempt(attempt_id)
        async with self._lock(attempt):
            if attempt.is_terminal:
                msg = f"Cannot retry in state {attempt.state.value}"
                raise WorkflowError(msg, reference=attempt.attempt_id)
            if attempt.quote is None or attempt.field_errors:
                msg = "The form has to be submitted before payment can be retried"
                raise WorkflowError(msg, reference=attempt.attempt_id)

            session = self.gateway.get_session(attempt.request_id)
            if session is not None:
                session = self.gateway.reset(session)
            attempt.session_id = None
            attempt.order_id = None
            attempt.client_secret = None
            attempt.approval_url = None
            attempt.error_code = None
            self.log.info(f"Attempt {attempt.attempt_id}: payment retry requested")

            await self._open_payment(attempt, session)
            return attempt

    async def report_blocked(self, attempt_id: str) -> CheckoutAttempt:
        """Handle the browser reporting that the payment SDK failed to load."""
        attempt = self.get_attempt(attempt_id)
        async with self._lock(attempt):
            if attempt.state == CheckoutState.FALLBACK_OFFER:
                return attempt
            if attempt.state != CheckoutState.AWAITING_PAYMENT:
                msg = f"Cannot report a blocked payment in state {attempt.state.value}"
                raise WorkflowError(msg, reference=attempt.attempt_id)

            session = self.gateway.get_session(attempt.request_id)
            if session is not None:
                self.gateway.report_blocked(session)
            self._enter_fallback(attempt)
            return attempt

    async def request_manual_contact(
        self, attempt_id: str, message: str | None = None
    ) -> CheckoutAttempt:
        """Complete the fallback path without a card payment.

        With ``fallback_creates_reservation`` a reservation is written with
        ``payment_status=pending_manual``; otherwise only the operators are
        alerted. No payment is marked completed either way.

        Raises:
            StoreError: If the pending reservation could not be saved
            WorkflowError: If no fallback was offered
        """
        attempt = self.get_attempt(attempt_id)
        async with self._lock(attempt):
            if attempt.state == CheckoutState.MANUAL_CONTACT_REQUESTED:
                return attempt
            if attempt.state != CheckoutState.FALLBACK_OFFER:
                msg = f"Manual contact is not offered in state {attempt.state.value}"
                raise WorkflowError(msg, reference=attempt.attempt_id)

            amount = attempt.quote.amount
            if self.config.fallback_creates_reservation:
                reservation = await self._insert_reservation(
                    attempt, PaymentStatus.PENDING_MANUAL, amount, None
                )
            else:
                reservation = Reservation(
                    id=attempt.attempt_id,
                    **self._reservation_fields(
                        attempt, PaymentStatus.PENDING_MANUAL, amount, None
                    ),
                )

            restaurant = await self._attempt_restaurant(attempt)
            admin = await self.notifier.send_admin_alert(
                reservation, restaurant, reason="manual_contact", message=message
            )
            if not admin.success:
                self.log.error(
                    f"Manual contact alert for attempt {attempt.attempt_id} failed: {admin.error}"
                )

            if attempt.reservation_id is not None:
                result = await self.notifier.send_confirmation(
                    reservation, restaurant, attempt.locale
                )
                attempt.email_sent = result.success

            self.attempts.update_state(attempt, CheckoutState.MANUAL_CONTACT_REQUESTED)
            return attempt

    # ========== Reservations ==========
    async def get_reservation(self, reservation_id: str) -> Reservation:
        """Get a reservation.

        Raises:
            NotFoundError: If it does not exist
        """
        reservation = await self.store.fetch_reservation(reservation_id)
        if reservation is None:
            msg = f"Reservation {reservation_id} not found"
            raise NotFoundError(msg, reference=reservation_id)
        return reservation

    async def resend_confirmation(
        self, reservation_id: str, locale: str | None = None
    ) -> NotificationResult:
        """Send the confirmation e-mail again on request."""
        reservation = await self.get_reservation(reservation_id)
        restaurant = await self._fetch_restaurant(reservation.restaurant_id)
        return await self.notifier.send_confirmation(reservation, restaurant, locale)

    async def qr_payload(self, reservation_id: str, locale: str | None = None) -> QrPayload:
        """Build the QR document for a persisted reservation."""
        reservation = await self.get_reservation(reservation_id)
        restaurant = await self._fetch_restaurant(reservation.restaurant_id)
        return QrPayload(
            id=reservation.id,
            name=reservation.name,
            restaurant=restaurant.display_name(locale) if restaurant else "",
            date=reservation.reservation_date,
            time=reservation.reservation_time,
            party_size=reservation.party_size,
            status=reservation.status,
        )

    async def list_reservations(
        self,
        status: ReservationStatus | None = None,
        reservation_date: str | None = None,
        restaurant_id: str | None = None,
    ) -> list[Reservation]:
        return await self.store.list_reservations(status, reservation_date, restaurant_id)

    async def change_status(
        self,
        reservation_id: str,
        status: ReservationStatus,
        actor: str,
        reason: str | None = None,
        locale: str | None = None,
    ) -> Reservation:
        """Apply a staff status change.

        Cancelling requires a reason and e-mails the customer (best effort).

        Args:
            reservation_id: Reservation to change
            status: confirmed, cancelled or completed
            actor: Staff member recorded in the audit log
            reason: Cancellation reason
            locale: Locale of the cancellation e-mail

        Returns:
            The updated reservation

        Raises:
            FormValidationError: If a cancellation has no reason
            NotFoundError: If the reservation does not exist
            WorkflowError: If the status cannot be set by staff
        """
        if status not in STAFF_STATUSES:
            msg = f"Staff cannot set status {status.value}"
            raise WorkflowError(msg, reference=reservation_id)
        if status == ReservationStatus.CANCELLED and not (reason and reason.strip()):
            raise FormValidationError({"reason": translate("cancel_reason_required", locale)})

        reservation = await self.store.update_status(
            reservation_id, status, actor, reason.strip() if reason else None
        )

        if status == ReservationStatus.CANCELLED:
            restaurant = await self._fetch_restaurant(reservation.restaurant_id)
            result = await self.notifier.send_cancellation(reservation, restaurant, locale)
            if not result.success:
                self.log.warning(
                    f"Cancellation e-mail for reservation {reservation_id} failed: {result.error}"
                )
        return reservation
