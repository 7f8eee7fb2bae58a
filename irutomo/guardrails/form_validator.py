"""Reservation form validation."""

import logging
import re
from datetime import date

from irutomo.config import Config, get_config
from irutomo.i18n import translate
from irutomo.models import ReservationForm

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")

# Patterns that indicate script injection in free-text fields
BLOCKED_PATTERNS = [
    r"<script",
    r"javascript:",
    r"onclick",
    r"onerror",
    r"eval\(",
    r"exec\(",
]

MAX_TEXT_LENGTH = 1000


def available_time_slots(cfg: Config | None = None) -> list[str]:
    """Bookable time slots, one per hour: 11:00 ... 24:00."""
    cfg = cfg or get_config()
    return [f"{hour:02d}:00" for hour in range(cfg.first_time_slot, cfg.last_time_slot + 1)]


def _is_suspicious(text: str) -> bool:
    lowered = text.lower()
    return any(re.search(pattern, lowered) for pattern in BLOCKED_PATTERNS)


def _normalize_slot(value: str) -> str | None:
    match = re.fullmatch(r"(\d{1,2}):(\d{2})", value.strip())
    if not match:
        return None
    return f"{int(match.group(1)):02d}:{match.group(2)}"


class ReservationFormValidator:
    """Checks a reservation form and reports every problem at once."""

    def __init__(self, cfg: Config | None = None) -> None:
        self.config = cfg or get_config()

    def validate(
        self,
        form: ReservationForm,
        locale: str | None = None,
        today: date | None = None,
    ) -> dict[str, str]:
        """Validate a submitted form.

        Args:
            form: Submitted reservation form
            locale: Locale for the error messages
            today: Reference date for the booking window

        Returns:
            Mapping of field name to localized error; empty when valid
        """
        errors: dict[str, str] = {}

        self._check_restaurant(form, locale, errors)
        self._check_date(form, locale, today, errors)

        if not form.reservation_time.strip():
            errors["reservation_time"] = translate("time_required", locale)
        elif _normalize_slot(form.reservation_time) not in available_time_slots(self.config):
            errors["reservation_time"] = translate("time_invalid", locale)

        if not self.config.min_party_size <= form.party_size <= self.config.max_party_size:
            errors["party_size"] = translate(
                "party_size_invalid",
                locale,
                min=self.config.min_party_size,
                max=self.config.max_party_size,
            )

        if not form.name.strip():
            errors["name"] = translate("name_required", locale)
        if not form.phone.strip():
            errors["phone"] = translate("phone_required", locale)
        if not form.email.strip():
            errors["email"] = translate("email_required", locale)
        elif not EMAIL_PATTERN.match(form.email.strip()):
            errors["email"] = translate("email_invalid", locale)

        for field in ("name", "special_requests"):
            value = getattr(form, field) or ""
            if field in errors:
                continue
            if len(value) > MAX_TEXT_LENGTH:
                errors[field] = translate("input_too_long", locale, max=MAX_TEXT_LENGTH)
            elif _is_suspicious(value):
                logger.warning(f"Suspicious content rejected in field {field}")
                errors[field] = translate("input_suspicious", locale)

        if errors:
            logger.info(f"Form rejected: {', '.join(sorted(errors))}")
        return errors

    def _check_restaurant(
        self, form: ReservationForm, locale: str | None, errors: dict[str, str]
    ) -> None:
        direct = form.direct_restaurant
        if direct is None:
            if not form.restaurant_id:
                errors["restaurant"] = translate("restaurant_required", locale)
            return

        if not direct.name.strip():
            errors["restaurant_name"] = translate("restaurant_required", locale)
        if direct.url and not direct.url.startswith("http"):
            errors["restaurant_url"] = translate("restaurant_url_invalid", locale)

    def _check_date(
        self,
        form: ReservationForm,
        locale: str | None,
        today: date | None,
        errors: dict[str, str],
    ) -> None:
        if not form.reservation_date.strip():
            errors["reservation_date"] = translate("date_required", locale)
            return

        start, end = self.config.booking_window(today)
        try:
            requested = date.fromisoformat(form.reservation_date.strip())
        except ValueError:
            requested = None

        if requested is None or not start <= requested <= end:
            errors["reservation_date"] = translate(
                "date_out_of_window",
                locale,
                start=start.isoformat(),
                end=end.isoformat(),
            )
