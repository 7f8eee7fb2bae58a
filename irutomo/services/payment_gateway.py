"""Payment gateway adapter: one checkout attempt per session."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from irutomo.config import Config, get_config
from irutomo.errors import (
    CaptureError,
    FailureKind,
    GatewayError,
    GatewayUnavailable,
    WorkflowError,
)
from irutomo.models import (
    CaptureResult,
    CaptureStatus,
    GatewayState,
    PaymentIntentContext,
    PaymentSession,
    Reachability,
)
from irutomo.services.payment_providers import PaymentProvider, build_provider

logger = logging.getLogger(__name__)


class PaymentGateway:
    """Wraps a payment provider behind an idempotent session state machine.

    States: idle -> initializing -> ready -> capturing -> succeeded | failed,
    plus blocked when the provider never becomes ready. Concurrent calls
    for the same request id share one session and one provider order.
    """

    def __init__(
        self,
        provider: PaymentProvider | None = None,
        cfg: Config | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the gateway.

        Args:
            provider: Provider strategy (defaults to the configured one)
            cfg: Application configuration
            clock: Monotonic clock used for attempt spacing
            sleep: Coroutine used to wait out the spacing
        """
        self.config = cfg or get_config()
        self.provider = provider or build_provider(self.config)
        self._clock = clock
        self._sleep = sleep
        self.sessions: dict[str, PaymentSession] = {}
        self._start_tasks: dict[str, asyncio.Future] = {}
        self._ready_tasks: dict[str, asyncio.Future] = {}
        self._order_tasks: dict[str, asyncio.Future] = {}
        self._capture_tasks: dict[str, asyncio.Future] = {}
        # Earliest start of the next attempt, per client
        self._next_slot: dict[str, float] = {}

        logger.info(f"Payment gateway using provider: {self.provider.name}")

    @property
    def provider_name(self) -> str:
        return self.provider.name

    def get_session(self, request_id: str) -> PaymentSession | None:
        return self.sessions.get(request_id)

    async def init_session(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        request_id: str,
        description: str | None = None,
        client_id: str | None = None,
    ) -> PaymentSession:
        """Open (or join) the session for a checkout attempt.

        A repeated request id returns the existing session instead of
        starting a new one. Attempts from the same client are spaced at
        least ``gateway_min_spacing`` seconds apart; other clients are not
        held up.

        Args:
            amount: Amount to collect in minor units
            currency: Currency code
            metadata: Provider metadata
            request_id: Client idempotency token
            description: Order description shown by the provider
            client_id: Client address used to space repeated attempts

        Returns:
            The session for this request id

        Raises:
            WorkflowError: If the request id was already used for another amount
        """
        existing = self.sessions.get(request_id)
        if existing is not None:
            if (
                existing.context.amount != amount
                or existing.context.currency != currency
            ):
                msg = f"Request {request_id} already used for a different amount"
                raise WorkflowError(msg, reference=request_id)
            logger.info(f"Joining existing payment session for request {request_id}")
            return existing

        session = PaymentSession(
            context=PaymentIntentContext(
                request_id=request_id,
                amount=amount,
                currency=currency,
                metadata=metadata,
                description=description,
            ),
            client_id=client_id,
        )
        # Session and start task are registered before any await so
        # concurrent callers for the same request find both
        self.sessions[request_id] = session
        await asyncio.shield(self._start(session))
        return session

    def _start(self, session: PaymentSession) -> asyncio.Future:
        session.state = GatewayState.INITIALIZING
        wait = self._reserve_slot(session.spacing_key)
        started = asyncio.ensure_future(self._wait_turn(session, wait))
        self._start_tasks[session.session_id] = started
        self._ready_tasks[session.session_id] = asyncio.ensure_future(
            self.provider.ensure_ready()
        )
        logger.info(
            f"Payment session {session.session_id} initializing "
            f"(request {session.request_id}, {session.context.amount} {session.context.currency})"
        )
        return started

    def _reserve_slot(self, key: str) -> float:
        """Claim the next attempt slot for a client.

        Returns:
            Seconds to wait before the slot starts
        """
        now = self._clock()
        self._next_slot = {k: t for k, t in self._next_slot.items() if t > now}
        slot = max(now, self._next_slot.get(key, now))
        self._next_slot[key] = slot + self.config.gateway_min_spacing
        return slot - now

    async def _wait_turn(self, session: PaymentSession, wait: float) -> None:
        if wait > 0:
            logger.debug(
                f"Spacing payment attempts for {session.spacing_key}: waiting {wait:.2f}s"
            )
            await self._sleep(wait)

    async def create_order(self, session: PaymentSession) -> str:
        """Create the provider order for a session, at most once.

        Returns:
            The provider order id

        Raises:
            GatewayUnavailable: If the provider is not ready in time
            GatewayError: If the provider rejects or the request times out
        """
        if session.order is not None:
            return session.order.order_id
        if session.state == GatewayState.BLOCKED:
            msg = "Payment provider is blocked for this session"
            raise GatewayUnavailable(msg, reference=session.request_id)
        if session.state not in (
            GatewayState.IDLE,
            GatewayState.INITIALIZING,
            GatewayState.READY,
        ):
            msg = f"Cannot create an order in state {session.state.value}"
            raise WorkflowError(msg, reference=session.request_id)

        task = self._order_tasks.get(session.session_id)
        if task is None:
            if session.session_id not in self._start_tasks:
                self._start(session)
            task = asyncio.ensure_future(self._create_order(session))
            self._order_tasks[session.session_id] = task
        return await asyncio.shield(task)

    async def _create_order(self, session: PaymentSession) -> str:
        await asyncio.shield(self._start_tasks[session.session_id])

        ready = self._ready_tasks[session.session_id]
        try:
            await asyncio.wait_for(
                asyncio.shield(ready), timeout=self.config.gateway_ready_timeout
            )
        except asyncio.TimeoutError as e:
            session.state = GatewayState.BLOCKED
            session.failure = FailureKind.BLOCKED.value
            logger.warning(
                f"Payment provider not ready after {self.config.gateway_ready_timeout}s "
                f"- session {session.session_id} blocked"
            )
            msg = "Payment provider did not become ready"
            raise GatewayUnavailable(msg, reference=session.request_id) from e
        except GatewayUnavailable:
            session.state = GatewayState.BLOCKED
            session.failure = FailureKind.BLOCKED.value
            logger.warning(f"Payment provider unavailable - session {session.session_id} blocked")
            raise
        except GatewayError as e:
            self._fail(session, e.kind)
            raise

        try:
            order = await asyncio.wait_for(
                self.provider.create_order(
                    session.context, f"{session.request_id}:{session.session_id}"
                ),
                timeout=self.config.gateway_request_timeout,
            )
        except asyncio.TimeoutError as e:
            self._fail(session, FailureKind.NETWORK_TIMEOUT)
            msg = "Order creation timed out"
            raise GatewayError(
                msg, FailureKind.NETWORK_TIMEOUT, reference=session.request_id
            ) from e
        except GatewayError as e:
            self._fail(session, e.kind)
            raise

        session.order = order
        session.state = GatewayState.READY
        logger.info(f"Payment session {session.session_id} ready with order {order.order_id}")
        return order.order_id

    async def capture_order(self, session: PaymentSession) -> CaptureResult:
        """Capture the approved order of a session.

        Capturing an already captured session returns the same result.

        Raises:
            CaptureError: If the provider declines or the call fails
            WorkflowError: If the session has no order ready to capture
        """
        if session.state == GatewayState.SUCCEEDED and session.capture is not None:
            return session.capture

        task = self._capture_tasks.get(session.session_id)
        if task is None:
            if session.state != GatewayState.READY or session.order is None:
                msg = f"Cannot capture in state {session.state.value}"
                raise WorkflowError(msg, reference=session.request_id)
            task = asyncio.ensure_future(self._capture(session))
            self._capture_tasks[session.session_id] = task
        return await asyncio.shield(task)

    async def _capture(self, session: PaymentSession) -> CaptureResult:
        session.state = GatewayState.CAPTURING
        session.capture_attempts += 1
        order_id = session.order_id
        try:
            result = await asyncio.wait_for(
                self.provider.capture_order(order_id),
                timeout=self.config.gateway_request_timeout,
            )
        except asyncio.TimeoutError as e:
            self._fail(session, FailureKind.NETWORK_TIMEOUT)
            msg = f"Capture of {order_id} timed out"
            raise CaptureError(
                msg, FailureKind.NETWORK_TIMEOUT, reference=session.request_id
            ) from e
        except CaptureError:
            self._fail(session, FailureKind.PROVIDER_REJECTED)
            raise
        except GatewayError as e:
            self._fail(session, e.kind)
            raise CaptureError(str(e), e.kind, reference=session.request_id) from e
        finally:
            self._capture_tasks.pop(session.session_id, None)

        if result.status != CaptureStatus.SUCCEEDED:
            self._fail(session, FailureKind.PROVIDER_REJECTED)
            msg = f"Capture of {order_id} was not completed"
            raise CaptureError(
                msg, FailureKind.PROVIDER_REJECTED, reference=result.transaction_id
            )

        session.capture = result
        session.state = GatewayState.SUCCEEDED
        logger.info(
            f"Captured {result.captured_amount} {session.context.currency} "
            f"(transaction {result.transaction_id})"
        )
        return result

    def _fail(self, session: PaymentSession, kind: FailureKind) -> None:
        session.state = GatewayState.FAILED
        session.failure = kind.value
        logger.warning(f"Payment session {session.session_id} failed: {kind.value}")

    def cancel(self, session: PaymentSession) -> None:
        """Abandon a session after the user dismissed the payment dialog.

        Nothing is sent to the provider and nothing is retried.
        """
        if session.state in (GatewayState.CAPTURING, GatewayState.SUCCEEDED):
            msg = f"Cannot cancel in state {session.state.value}"
            raise WorkflowError(msg, reference=session.request_id)
        self._drop_tasks(session)
        session.state = GatewayState.IDLE
        session.failure = FailureKind.USER_CANCELLED.value
        logger.info(f"Payment session {session.session_id} cancelled by user")

    def report_blocked(self, session: PaymentSession) -> None:
        """Mark a session blocked after the browser failed to load the provider."""
        if session.state in (GatewayState.CAPTURING, GatewayState.SUCCEEDED):
            msg = f"Cannot block a session in state {session.state.value}"
            raise WorkflowError(msg, reference=session.request_id)
        self._drop_tasks(session)
        session.state = GatewayState.BLOCKED
        session.failure = FailureKind.BLOCKED.value
        logger.warning(f"Payment session {session.session_id} reported blocked by client")

    def reset(self, session: PaymentSession) -> PaymentSession:
        """Replace a session with a fresh one for the same payment context.

        The new session gets a new id and no order, so stale handles are
        never reused.
        """
        if session.state in (GatewayState.CAPTURING, GatewayState.SUCCEEDED):
            msg = f"Cannot reset a session in state {session.state.value}"
            raise WorkflowError(msg, reference=session.request_id)
        self._drop_tasks(session)
        fresh = PaymentSession(context=session.context, client_id=session.client_id)
        self.sessions[session.request_id] = fresh
        logger.info(f"Payment session {session.session_id} reset to {fresh.session_id}")
        return fresh

    def release(self, session: PaymentSession) -> None:
        """Forget a finished session."""
        self._drop_tasks(session)
        if self.sessions.get(session.request_id) is session:
            del self.sessions[session.request_id]

    def _drop_tasks(self, session: PaymentSession) -> None:
        for tasks in (self._start_tasks, self._ready_tasks, self._order_tasks):
            task = tasks.pop(session.session_id, None)
            if task is not None and not task.done():
                task.cancel()

    async def self_test(self) -> Reachability:
        """Probe whether the provider API is reachable from here."""
        try:
            reachable = await asyncio.wait_for(
                self.provider.probe(), timeout=self.config.gateway_probe_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Payment provider probe timed out")
            return Reachability.BLOCKED
        except Exception:
            logger.exception("Payment provider probe failed unexpectedly")
            return Reachability.UNKNOWN
        return Reachability.REACHABLE if reachable else Reachability.BLOCKED

    async def aclose(self) -> None:
        for session in list(self.sessions.values()):
            self._drop_tasks(session)
        await self.provider.aclose()
