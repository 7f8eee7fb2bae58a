"""Reservation store backed by Supabase's PostgREST interface."""

import logging
from typing import Any

import httpx

from irutomo.config import Config, get_config
from irutomo.errors import NotFoundError, StoreError
from irutomo.models import (
    AuditLogEntry,
    PricePlan,
    Reservation,
    ReservationStatus,
    Restaurant,
)

logger = logging.getLogger(__name__)


class ReservationStore:
    """Structured insert/select/update operations on the hosted store.

    Tables: ``restaurants``, ``reservations``, ``price_plans``, ``payments``
    and ``audit_logs``. There are no multi-table transactions; each method is
    one independent request.
    """

    def __init__(
        self,
        cfg: Config | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            cfg: Application configuration (defaults to the process config)
            client: Preconfigured HTTP client, mainly for tests
        """
        self.config = cfg or get_config()
        if client is None and self.config.has_supabase_config():
            client = httpx.AsyncClient(
                base_url=f"{self.config.supabase_url.rstrip('/')}/rest/v1",
                headers={
                    "apikey": self.config.supabase_key,
                    "Authorization": f"Bearer {self.config.supabase_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.config.store_timeout,
            )
        self.client = client
        if self.client is None:
            logger.warning("Supabase not configured - store will not be functional")

    def is_configured(self) -> bool:
        """Check if the store has an HTTP client."""
        return self.client is not None

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self.client is not None:
            await self.client.aclose()

    async def _request(
        self,
        method: str,
        table: str,
        params: dict[str, str] | None = None,
        json: Any = None,
        returning: bool = False,
    ) -> list[dict[str, Any]]:
        if self.client is None:
            msg = "Supabase is not configured"
            raise StoreError(msg)

        headers = {"Prefer": "return=representation"} if returning else None
        try:
            response = await self.client.request(
                method, f"/{table}", params=params, json=json, headers=headers
            )
        except httpx.HTTPError as e:
            logger.error(f"Store request {method} {table} failed: {e}")
            msg = f"Store unreachable: {e}"
            raise StoreError(msg) from e

        if response.status_code >= 400:
            logger.error(
                f"Store rejected {method} {table} ({response.status_code}): {response.text}"
            )
            msg = f"Store rejected {method} {table}: {response.text}"
            raise StoreError(msg, status_code=response.status_code)

        if not response.content:
            return []
        data = response.json()
        return data if isinstance(data, list) else [data]

    async def _insert(self, table: str, fields: dict[str, Any]) -> dict[str, Any]:
        rows = await self._request("POST", table, json=[fields], returning=True)
        if not rows or "id" not in rows[0]:
            msg = f"Insert into {table} returned no id"
            raise StoreError(msg)
        return rows[0]

    async def test_connection(self) -> bool:
        """Test the store connection with a single-row select.

        Returns:
            True if the store answered, False otherwise
        """
        try:
            await self._request(
                "GET", "restaurants", params={"select": "id", "limit": "1"}
            )
        except StoreError:
            logger.exception("Store connection test failed")
            return False
        logger.info("Store connection test succeeded")
        return True

    # ========== Price plans ==========
    async def list_price_plans(self) -> list[PricePlan]:
        """Get the active price plans ordered by party size.

        Raises:
            StoreError: If the store is unreachable
        """
        rows = await self._request(
            "GET",
            "price_plans",
            params={
                "select": "*",
                "is_active": "eq.true",
                "order": "min_party_size.asc",
            },
        )
        return [PricePlan.model_validate(row) for row in rows]

    # ========== Restaurants ==========
    async def create_restaurant(self, fields: dict[str, Any]) -> str:
        """Insert a restaurant and return its generated id."""
        row = await self._insert("restaurants", fields)
        logger.info(f"Restaurant created: {row['id']}")
        return str(row["id"])

    async def fetch_restaurant(self, restaurant_id: str) -> Restaurant | None:
        """Get a restaurant by id, or None if it does not exist."""
        rows = await self._request(
            "GET",
            "restaurants",
            params={"select": "*", "id": f"eq.{restaurant_id}"},
        )
        if not rows:
            return None
        return Restaurant.model_validate(rows[0])

    # ========== Reservations ==========
    async def create_reservation(self, fields: dict[str, Any]) -> str:
        """Insert a reservation and return its generated id.

        The reservation only exists once this returns.

        Raises:
            StoreError: On constraint violation or connectivity failure
        """
        row = await self._insert("reservations", fields)
        logger.info(f"Reservation created: {row['id']}")
        return str(row["id"])

    async def fetch_reservation(self, reservation_id: str) -> Reservation | None:
        """Get a reservation by id, or None if it does not exist."""
        rows = await self._request(
            "GET",
            "reservations",
            params={"select": "*", "id": f"eq.{reservation_id}"},
        )
        if not rows:
            return None
        return Reservation.model_validate(rows[0])

    async def list_reservations(
        self,
        status: ReservationStatus | None = None,
        reservation_date: str | None = None,
        restaurant_id: str | None = None,
    ) -> list[Reservation]:
        """List reservations, newest booking date first, with optional filters."""
        params = {"select": "*", "order": "reservation_date.desc"}
        if status is not None:
            params["status"] = f"eq.{status.value}"
        if reservation_date:
            params["reservation_date"] = f"eq.{reservation_date}"
        if restaurant_id:
            params["restaurant_id"] = f"eq.{restaurant_id}"

        rows = await self._request("GET", "reservations", params=params)
        return [Reservation.model_validate(row) for row in rows]

    async def update_status(
        self,
        reservation_id: str,
        status: ReservationStatus,
        actor: str,
        reason: str | None = None,
    ) -> Reservation:
        """Apply a staff status change and record it in the audit log.

        Every call writes one audit row, even when the status is unchanged.
        ``payment_status`` is never touched.

        Args:
            reservation_id: Reservation to update
            status: New status
            actor: Staff member performing the change
            reason: Cancellation reason, if any

        Returns:
            The updated reservation

        Raises:
            NotFoundError: If the reservation does not exist
            StoreError: If the store rejects the update or the audit row;
                an audit failure is logged with the actor after the status
                change was applied
        """
        changes: dict[str, Any] = {"status": status.value}
        if reason is not None:
            changes["cancellation_reason"] = reason

        rows = await self._request(
            "PATCH",
            "reservations",
            params={"id": f"eq.{reservation_id}"},
            json=changes,
            returning=True,
        )
        if not rows:
            msg = f"Reservation {reservation_id} not found"
            raise NotFoundError(msg, reference=reservation_id)

        details: dict[str, Any] = {"status": status.value}
        if reason is not None:
            details["reason"] = reason
        entry = AuditLogEntry(
            actor=actor,
            action=f"{status.value}_reservation",
            target_id=reservation_id,
            details=details,
        )
        try:
            await self.insert_audit_log(entry)
        except StoreError:
            logger.error(
                f"Reservation {reservation_id} set to {status.value} but the audit row "
                f"was not written (actor={actor}, action={entry.action}, details={details})"
            )
            raise
        logger.info(f"Reservation {reservation_id} status set to {status.value} by {actor}")
        return Reservation.model_validate(rows[0])

    # ========== Ledger ==========
    async def insert_audit_log(self, entry: AuditLogEntry) -> None:
        """Append an audit log row."""
        await self._request(
            "POST", "audit_logs", json=[entry.model_dump(mode="json")]
        )

    async def record_payment(
        self,
        reservation_id: str,
        transaction_id: str,
        amount: int,
        currency: str,
        provider: str,
    ) -> str:
        """Append a captured payment to the ``payments`` ledger."""
        row = await self._insert(
            "payments",
            {
                "reservation_id": reservation_id,
                "transaction_id": transaction_id,
                "amount": amount,
                "currency": currency,
                "provider": provider,
                "status": "succeeded",
            },
        )
        return str(row["id"])
