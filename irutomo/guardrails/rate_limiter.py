"""Checkout rate limiting backed by SQLite."""

import logging
import sqlite3
from contextlib import closing
from datetime import datetime, timedelta
from pathlib import Path

from irutomo.config import Config, get_config
from irutomo.errors import RateLimitError

logger = logging.getLogger(__name__)

# Records older than this are never counted
RETENTION = timedelta(hours=24)


def init_rate_limit_db(db_path: Path) -> None:
    """Create the checkout log table and its index if missing."""
    with closing(sqlite3.connect(db_path)) as conn, conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS rate_limits (
                client_id TEXT NOT NULL,
                timestamp TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_rate_limits_client
            ON rate_limits (client_id, timestamp)
        """)
    logger.info(f"Rate limit database initialized at {db_path}")


def _connect(db_path: Path) -> sqlite3.Connection:
    if not db_path.exists():
        init_rate_limit_db(db_path)
    return sqlite3.connect(db_path)


def get_request_count(db_path: Path, client_id: str, hours: int) -> int:
    """Count a client's checkouts in the last N hours.

    Args:
        db_path: SQLite database file
        client_id: Client identifier (usually the remote address)
        hours: Size of the window

    Returns:
        Number of checkouts in the window
    """
    since = (datetime.now() - timedelta(hours=hours)).isoformat()
    with closing(_connect(db_path)) as conn:
        row = conn.execute(
            "SELECT COUNT(*) FROM rate_limits WHERE client_id = ? AND timestamp > ?",
            (client_id, since),
        ).fetchone()
    return row[0]


def record_request(db_path: Path, client_id: str) -> None:
    """Log one checkout for a client."""
    timestamp = datetime.now().isoformat()
    with closing(_connect(db_path)) as conn, conn:
        conn.execute(
            "INSERT INTO rate_limits (client_id, timestamp) VALUES (?, ?)",
            (client_id, timestamp),
        )
    logger.debug(f"Checkout by {client_id} logged at {timestamp}")


def cleanup_old_records(db_path: Path) -> None:
    """Purge checkout records past the retention window."""
    if not db_path.exists():
        return

    cutoff = (datetime.now() - RETENTION).isoformat()
    with closing(sqlite3.connect(db_path)) as conn, conn:
        deleted = conn.execute(
            "DELETE FROM rate_limits WHERE timestamp < ?", (cutoff,)
        ).rowcount

    if deleted > 0:
        logger.info(f"Purged {deleted} expired rate limit records")


def check_checkout_rate(client_id: str | None, cfg: Config | None = None) -> None:
    """Enforce the hourly and daily checkout limits for a client.

    Args:
        client_id: Client identifier; unknown clients are not limited
        cfg: Application configuration

    Raises:
        RateLimitError: If a limit is exceeded
    """
    if not client_id:
        logger.warning("No client address for rate limiting - allowing checkout")
        return

    cfg = cfg or get_config()
    db_path = Path(cfg.rate_limit_db_path)
    cleanup_old_records(db_path)

    limits = (
        ("Hourly", 1, cfg.checkout_hourly_limit),
        ("Daily", 24, cfg.checkout_daily_limit),
    )
    for label, hours, limit in limits:
        count = get_request_count(db_path, client_id, hours)
        if count >= limit:
            logger.warning(f"{label} checkout limit hit by {client_id} ({count}/{limit})")
            msg = f"{label} checkout limit of {limit} exceeded"
            raise RateLimitError(msg)

    record_request(db_path, client_id)
