"""Guardrails applied to customer input before checkout."""

from irutomo.guardrails.form_validator import (
    ReservationFormValidator,
    available_time_slots,
)
from irutomo.guardrails.rate_limiter import check_checkout_rate

__all__ = [
    "ReservationFormValidator",
    "available_time_slots",
    "check_checkout_rate",
]
