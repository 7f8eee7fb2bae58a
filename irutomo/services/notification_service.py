"""Transactional e-mail through the EmailJS REST API."""

import logging
from typing import Any

import httpx
from pydantic import BaseModel, Field

from irutomo.config import Config, get_config
from irutomo.errors import NotificationError
from irutomo.i18n import EMAIL_GREETINGS, EMAIL_SUBJECTS, normalize_locale
from irutomo.models import Reservation, Restaurant

logger = logging.getLogger(__name__)


class NotificationResult(BaseModel):
    """Outcome of one e-mail send."""

    success: bool = Field(..., description="Whether the provider accepted the e-mail")
    message_id: str | None = Field(None, description="Provider message ID, if returned")
    error: str | None = Field(None, description="Failure description")


def _localized(table: dict[str, dict[str, str]], kind: str, locale: str, **params) -> str:
    return table[kind][locale].format(**params)


class NotificationDispatcher:
    """Sends confirmation, cancellation and admin e-mails.

    Sending never raises: every failure comes back as a
    ``NotificationResult`` with ``success=False`` so that a reservation is
    never blocked by e-mail.
    """

    def __init__(
        self,
        cfg: Config | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            cfg: Application configuration
            client: Preconfigured HTTP client, mainly for tests
        """
        self.config = cfg or get_config()
        self.client = client or httpx.AsyncClient(timeout=self.config.email_timeout)

        if not self.config.has_email_config():
            logger.warning("EmailJS not configured - e-mails will not be sent")

    def is_configured(self) -> bool:
        """Check if EmailJS is configured."""
        return self.config.has_email_config()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _send(self, template_id: str, params: dict[str, Any]) -> NotificationResult:
        if not self.is_configured():
            return NotificationResult(success=False, error="E-mail is not configured")

        payload: dict[str, Any] = {
            "service_id": self.config.emailjs_service_id,
            "template_id": template_id,
            "user_id": self.config.emailjs_user_id,
            "template_params": params,
        }
        if self.config.emailjs_access_token:
            payload["accessToken"] = self.config.emailjs_access_token

        try:
            try:
                response = await self.client.post(self.config.emailjs_api_url, json=payload)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                msg = f"EmailJS unreachable: {e}"
                raise NotificationError(msg) from e
            if response.status_code >= 400:
                msg = f"EmailJS rejected the e-mail ({response.status_code}): {response.text}"
                raise NotificationError(msg)
        except NotificationError as e:
            logger.error(f"Failed to send e-mail to {params.get('to_email')}: {e}")
            return NotificationResult(success=False, error=str(e))

        logger.info(f"E-mail sent to {params.get('to_email')} ({template_id})")
        return NotificationResult(
            success=True, message_id=response.headers.get("x-request-id")
        )

    def _reservation_params(
        self, reservation: Reservation, restaurant_name: str
    ) -> dict[str, Any]:
        return {
            "reservation_id": reservation.id,
            "restaurant_name": restaurant_name,
            "reservation_date": reservation.reservation_date,
            "reservation_time": reservation.reservation_time,
            "party_size": reservation.party_size,
            "customer_name": reservation.name,
            "customer_email": reservation.email,
            "customer_phone": reservation.phone,
            "special_requests": reservation.special_requests or "",
            "payment_amount": reservation.payment_amount,
            "payment_status": reservation.payment_status.value,
        }

    async def send_confirmation(
        self,
        reservation: Reservation,
        restaurant: Restaurant | None,
        locale: str | None = None,
    ) -> NotificationResult:
        """Send the booking confirmation to the customer.

        Args:
            reservation: Persisted reservation
            restaurant: Its restaurant, if it could be loaded
            locale: Customer locale (ko/ja/en)

        Returns:
            NotificationResult
        """
        loc = normalize_locale(locale)
        restaurant_name = restaurant.display_name(loc) if restaurant else ""
        params = self._reservation_params(reservation, restaurant_name)
        params.update(
            {
                "to_email": reservation.email,
                "to_name": reservation.name,
                "subject": _localized(
                    EMAIL_SUBJECTS, "confirmation", loc, restaurant=restaurant_name
                ),
                "greeting": _localized(
                    EMAIL_GREETINGS, "confirmation", loc, name=reservation.name
                ),
                "language": loc,
            }
        )
        return await self._send(self.config.emailjs_template_id or "", params)

    async def send_cancellation(
        self,
        reservation: Reservation,
        restaurant: Restaurant | None,
        locale: str | None = None,
    ) -> NotificationResult:
        """Tell the customer their reservation was cancelled."""
        loc = normalize_locale(locale)
        restaurant_name = restaurant.display_name(loc) if restaurant else ""
        params = self._reservation_params(reservation, restaurant_name)
        params.update(
            {
                "to_email": reservation.email,
                "to_name": reservation.name,
                "subject": _localized(
                    EMAIL_SUBJECTS, "cancellation", loc, restaurant=restaurant_name
                ),
                "greeting": _localized(
                    EMAIL_GREETINGS, "cancellation", loc, name=reservation.name
                ),
                "cancellation_reason": reservation.cancellation_reason or "",
                "language": loc,
            }
        )
        return await self._send(self.config.emailjs_template_id or "", params)

    async def send_admin_alert(
        self,
        reservation: Reservation,
        restaurant: Restaurant | None,
        reason: str = "new_reservation",
        message: str | None = None,
    ) -> NotificationResult:
        """Notify the operators about a booking or a manual-contact request.

        Args:
            reservation: Reservation details (persisted or not)
            restaurant: Its restaurant, if known
            reason: Why the alert is sent, e.g. ``manual_contact``
            message: Free-form note from the customer
        """
        params = self._reservation_params(
            reservation, restaurant.name if restaurant else ""
        )
        params.update(
            {
                "to_email": self.config.admin_email,
                "to_name": "Irutomo",
                "subject": f"[{reason}] {reservation.name} {reservation.reservation_date}",
                "alert_reason": reason,
                "customer_message": message or "",
            }
        )
        return await self._send(self.config.emailjs_admin_template_id, params)
