"""Expiry calculator: paid amount → access window.

The price table is the single source of truth for plan durations. Adding a
tier means adding a row to PRICE_TIERS; callers never branch on amounts.

Unmatched amounts fall back to the shortest tier (1 day). This is a
fail-safe-short default, not an error: a customer who paid an unexpected
amount still gets online. Whether unmatched amounts should instead be
rejected is pending product confirmation; the reconciler reports every
fallback through the payment.unmatched_amount metric.
"""

from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import NamedTuple, Optional, Union

Money = Union[int, float, str, Decimal]


class PriceTier(NamedTuple):
    """A fixed price-to-duration mapping."""

    amount: Decimal
    duration: timedelta
    plan: str


# Amounts are in the unit the gateway reports for the transaction.
PRICE_TIERS: tuple[PriceTier, ...] = (
    PriceTier(amount=Decimal("500"), duration=timedelta(days=1), plan="daily"),
    PriceTier(amount=Decimal("11000"), duration=timedelta(days=30), plan="monthly"),
    PriceTier(amount=Decimal("25000"), duration=timedelta(days=90), plan="quarterly"),
)

# Longest window any payment can open; paid_on must leave room for it.
LONGEST_DURATION: timedelta = max(tier.duration for tier in PRICE_TIERS)


def _to_decimal(amount: Money) -> Optional[Decimal]:
    try:
        return Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return None


def match_tier(amount: Money, tiers: tuple[PriceTier, ...] = PRICE_TIERS) -> Optional[PriceTier]:
    """Return the tier whose price equals ``amount`` exactly, or None."""
    value = _to_decimal(amount)
    if value is None:
        return None
    for tier in tiers:
        if tier.amount == value:
            return tier
    return None


def resolve_tier(amount: Money, tiers: tuple[PriceTier, ...] = PRICE_TIERS) -> PriceTier:
    """Return the matching tier, falling back to the shortest one."""
    tier = match_tier(amount, tiers)
    if tier is not None:
        return tier
    return min(tiers, key=lambda t: t.duration)


def compute_expiry(
    amount: Money,
    paid_on: datetime,
    tiers: tuple[PriceTier, ...] = PRICE_TIERS,
) -> datetime:
    """Compute ``expires_on`` for a payment.

    Args:
        amount: Paid amount (gateway units)
        paid_on: Payment timestamp

    Returns:
        paid_on + duration of the matched tier (1 day when unmatched)
    """
    return paid_on + resolve_tier(amount, tiers).duration
