"""Configuration management for the Irutomo reservation service using Pydantic."""

import logging
from datetime import date, timedelta
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_JWT_SECRET = "change-this-secret-in-production"


class Config(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Supabase (hosted Postgres) Configuration
    supabase_url: str | None = Field(None, description="Supabase project URL")
    supabase_key: str | None = Field(None, description="Supabase API key")
    store_timeout: float = Field(default=10.0, description="Store request timeout (s)")

    # Payment Configuration
    payment_provider: Literal["stripe", "paypal", "simulated"] = Field(
        default="stripe", description="Card payment provider strategy"
    )
    payment_currency: str = Field(default="JPY", description="Settlement currency")
    stripe_secret_key: str | None = Field(None, description="Stripe secret key")
    stripe_api_base: str = Field(
        default="https://api.stripe.com", description="Stripe API base URL"
    )
    paypal_client_id: str | None = Field(None, description="PayPal client ID")
    paypal_client_secret: str | None = Field(None, description="PayPal client secret")
    paypal_api_base: str = Field(
        default="https://api-m.sandbox.paypal.com", description="PayPal API base URL"
    )
    gateway_ready_timeout: float = Field(
        default=5.5,
        description="Seconds before an unready payment provider counts as blocked",
    )
    gateway_request_timeout: float = Field(
        default=10.0, description="Timeout for order create/capture calls (s)"
    )
    gateway_probe_timeout: float = Field(
        default=3.0, description="Timeout for the payment reachability probe (s)"
    )
    gateway_min_spacing: float = Field(
        default=1.0, description="Minimum seconds between distinct payment attempts"
    )
    max_capture_attempts: int = Field(
        default=3, description="Capture attempts allowed per checkout"
    )

    # EmailJS Configuration
    emailjs_service_id: str | None = Field(None, description="EmailJS service ID")
    emailjs_template_id: str | None = Field(
        None, description="EmailJS customer template ID"
    )
    emailjs_admin_template_id: str = Field(
        default="template_admin_notification",
        description="EmailJS admin notification template ID",
    )
    emailjs_user_id: str | None = Field(None, description="EmailJS public key")
    emailjs_access_token: str | None = Field(None, description="EmailJS private key")
    emailjs_api_url: str = Field(
        default="https://api.emailjs.com/api/v1.0/email/send",
        description="EmailJS send endpoint",
    )
    admin_email: str = Field(
        default="support@irutomo.com", description="Address for admin alerts"
    )
    email_timeout: float = Field(default=10.0, description="E-mail send timeout (s)")

    # Booking Rules
    booking_window_start: date | None = Field(
        None, description="First bookable date (defaults to today)"
    )
    booking_window_end: date | None = Field(
        None, description="Last bookable date (defaults to start + window days)"
    )
    booking_window_days: int = Field(default=90, description="Default window length")
    min_party_size: int = Field(default=1, description="Smallest party accepted")
    max_party_size: int = Field(default=12, description="Largest party accepted")
    first_time_slot: int = Field(default=11, description="First bookable hour")
    last_time_slot: int = Field(default=24, description="Last bookable hour")

    # Checkout rate limits per client
    checkout_hourly_limit: int = Field(default=10, description="Checkouts per hour")
    checkout_daily_limit: int = Field(default=30, description="Checkouts per day")
    rate_limit_db_path: str = Field(
        default="rate_limits.db", description="SQLite file for rate limit records"
    )

    # Fallback policy when the payment provider is unreachable
    fallback_creates_reservation: bool = Field(
        default=True,
        description="Write a pending_manual reservation for manual-contact requests",
    )

    # Staff Authentication
    admin_username: str = Field(default="admin", description="Staff login name")
    admin_password_hash: str | None = Field(
        None, description="passlib hash of the staff password"
    )
    jwt_secret: str = Field(
        default=DEFAULT_JWT_SECRET, description="JWT signing key"
    )
    jwt_algorithm: str = Field(default="HS256", description="JWT algorithm")
    access_token_expire_minutes: int = Field(
        default=60 * 24, description="Staff token lifetime"
    )

    # Server Configuration
    server_host: str = Field(default="0.0.0.0", description="Server host")
    server_port: int = Field(default=8080, description="Server port")
    server_url: str = Field(
        default="http://localhost:8080",
        description="Server URL for the admin CLI to connect to",
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")

    def has_supabase_config(self) -> bool:
        """Check if the Supabase store is configured."""
        return bool(self.supabase_url and self.supabase_key)

    def has_stripe_config(self) -> bool:
        """Check if Stripe is configured."""
        return bool(self.stripe_secret_key)

    def has_paypal_config(self) -> bool:
        """Check if PayPal is configured."""
        return bool(self.paypal_client_id and self.paypal_client_secret)

    def has_email_config(self) -> bool:
        """Check if EmailJS is properly configured."""
        return bool(
            self.emailjs_service_id
            and self.emailjs_template_id
            and self.emailjs_user_id
        )

    def booking_window(self, today: date | None = None) -> tuple[date, date]:
        """Return the inclusive (start, end) range of bookable dates.

        Args:
            today: Reference date, defaults to the current date

        Returns:
            Tuple of first and last bookable date
        """
        start = self.booking_window_start or today or date.today()
        end = self.booking_window_end or start + timedelta(
            days=self.booking_window_days
        )
        return start, end

    def model_post_init(self, __context) -> None:
        """Validate configuration after initialization."""
        if not self.has_supabase_config():
            logger.warning("SUPABASE_URL/SUPABASE_KEY not set - store unavailable")

        if self.payment_provider == "stripe" and not self.has_stripe_config():
            logger.warning("STRIPE_SECRET_KEY not set - card payments unavailable")

        if self.payment_provider == "paypal" and not self.has_paypal_config():
            logger.warning("PAYPAL credentials not set - card payments unavailable")

        if not self.has_email_config():
            logger.warning("EMAILJS settings not set - e-mail sending disabled")

        if not self.admin_password_hash:
            logger.warning("ADMIN_PASSWORD_HASH not set - staff login disabled")

        if self.jwt_secret == DEFAULT_JWT_SECRET:
            logger.warning("JWT_SECRET not set - staff tokens use the public default key")


# Global config instance
config: Config | None = None


def get_config() -> Config:
    """Get or create the global configuration instance."""
    global config
    if config is None:
        config = Config()
    return config


def setup_logging(cfg: Config | None = None) -> None:
    """Configure logging for the application."""
    if cfg is None:
        cfg = get_config()

    log_level = getattr(logging, cfg.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from external libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
