"""Party-size fee resolution with an offline fallback."""

import logging
from collections.abc import Sequence

from irutomo.errors import StoreError
from irutomo.models import FeeQuote, FeeSource, PricePlan

logger = logging.getLogger(__name__)

# (min, max, amount, tier) used when no plan data is available
OFFLINE_TIERS: tuple[tuple[int, int, int, str], ...] = (
    (1, 4, 1000, "small"),
    (5, 8, 2000, "medium"),
    (9, 12, 3000, "large"),
)


def offline_quote(party_size: int) -> FeeQuote:
    """Resolve the fee without the store.

    Sizes outside every tier resolve to the lowest tier; the input form
    already limits party size to 1-12.
    """
    for low, high, amount, tier in OFFLINE_TIERS:
        if low <= party_size <= high:
            return FeeQuote(amount=amount, plan_name=tier, source=FeeSource.OFFLINE)
    _, _, amount, tier = OFFLINE_TIERS[0]
    return FeeQuote(amount=amount, plan_name=tier, source=FeeSource.OFFLINE)


def calculate_fee_offline(party_size: int) -> int:
    """Offline fee for a party size: 1-4 -> 1000, 5-8 -> 2000, 9-12 -> 3000, else 1000."""
    return offline_quote(party_size).amount


def match_plan(plans: Sequence[PricePlan], party_size: int) -> PricePlan | None:
    """Find the active plan whose range contains the party size."""
    for plan in plans:
        if plan.is_active and plan.covers(party_size):
            return plan
    return None


def quote_from_plan(plan: PricePlan, source: FeeSource = FeeSource.PLAN) -> FeeQuote:
    return FeeQuote(
        amount=plan.amount,
        plan_name=plan.name.value,
        plan_id=plan.id,
        currency=plan.currency,
        source=source,
    )


class PricingResolver:
    """Maps a party size to a fee tier.

    Plans come from the store; any store problem degrades to the offline
    tiers so that resolution never fails.
    """

    def __init__(self, store) -> None:
        """Initialize the resolver.

        Args:
            store: Object exposing ``async list_price_plans()``
        """
        self.store = store

    async def list_plans(self) -> list[PricePlan]:
        """Get the active plans, or an empty list if the store is unreachable."""
        try:
            return await self.store.list_price_plans()
        except StoreError as e:
            logger.warning(f"Price plans unavailable: {e}")
            return []

    async def resolve_fee(
        self, party_size: int, plan_id: str | None = None
    ) -> FeeQuote:
        """Resolve the fee for a party size.

        Args:
            party_size: Number of people
            plan_id: Plan explicitly chosen by the customer, if any

        Returns:
            FeeQuote for the payment step
        """
        plans = await self.list_plans()

        if plan_id:
            chosen = next((p for p in plans if p.id == plan_id and p.is_active), None)
            if chosen is not None:
                return quote_from_plan(chosen, FeeSource.EXPLICIT)
            logger.info(f"Plan {plan_id} not available - resolving by party size")

        plan = match_plan(plans, party_size)
        if plan is not None:
            return quote_from_plan(plan)

        if plans:
            logger.info(f"No active plan covers party size {party_size} - using offline tiers")
        return offline_quote(party_size)


class FeeSelection:
    """Tracks the fee for one checkout as the customer edits the form.

    An explicitly selected plan takes precedence over the size-derived fee
    until the party size changes.
    """

    def __init__(self, party_size: int, quote: FeeQuote) -> None:
        self.party_size = party_size
        self._derived = quote
        self._explicit: FeeQuote | None = None

    @property
    def quote(self) -> FeeQuote:
        """The authoritative fee for the next payment step."""
        return self._explicit or self._derived

    @property
    def has_explicit_choice(self) -> bool:
        return self._explicit is not None

    def select_plan(self, plan: PricePlan) -> FeeQuote:
        """Override the derived fee with an explicitly chosen plan."""
        self._explicit = quote_from_plan(plan, FeeSource.EXPLICIT)
        return self._explicit

    def set_party_size(self, party_size: int, quote: FeeQuote) -> FeeQuote:
        """Record a party size and its freshly resolved fee.

        A real change of size drops any explicit selection.
        """
        if party_size != self.party_size:
            self._explicit = None
        self.party_size = party_size
        self._derived = quote
        return self.quote
