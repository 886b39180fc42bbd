"""
Static product configuration: subscription tiers, quotas and enums.

TIER_LIMITS is the single source for admission quotas.
A monthly cap of -1 means unlimited (the monthly check is skipped).
"""

from __future__ import annotations

from dataclasses import dataclass

# ── Tiers ───────────────────────────────────────────────────
TIER_FREE = "free"
TIER_PRO = "pro"
TIER_ENTERPRISE = "enterprise"

TIERS = (TIER_FREE, TIER_PRO, TIER_ENTERPRISE)

# Higher level can read everything a lower level can.
TIER_HIERARCHY: dict[str, int] = {
    TIER_FREE: 0,
    TIER_PRO: 1,
    TIER_ENTERPRISE: 2,
}

UNLIMITED = -1


@dataclass(frozen=True, slots=True)
class TierLimits:
    """Quotas attached to one subscription tier."""

    per_minute: int
    monthly: int
    max_api_keys: int


TIER_LIMITS: dict[str, TierLimits] = {
    TIER_FREE: TierLimits(per_minute=10, monthly=1_000, max_api_keys=1),
    TIER_PRO: TierLimits(per_minute=100, monthly=50_000, max_api_keys=3),
    TIER_ENTERPRISE: TierLimits(per_minute=500, monthly=UNLIMITED, max_api_keys=10),
}


def allowed_tiers(tier: str) -> list[str]:
    """Tiers whose content a caller on `tier` may access."""
    level = TIER_HIERARCHY.get(tier, 0)
    return [name for name, rank in TIER_HIERARCHY.items() if rank <= level]


# ── Subscription status ─────────────────────────────────────
STATUS_ACTIVE = "active"
STATUS_PAST_DUE = "past_due"
STATUS_CANCELED = "canceled"
STATUS_INCOMPLETE = "incomplete"
STATUS_TRIALING = "trialing"

SUBSCRIPTION_STATUSES = (
    STATUS_ACTIVE,
    STATUS_PAST_DUE,
    STATUS_CANCELED,
    STATUS_INCOMPLETE,
    STATUS_TRIALING,
)
LIVE_STATUSES = (STATUS_ACTIVE, STATUS_TRIALING)

# ── Workouts ────────────────────────────────────────────────
DIFFICULTY_LEVELS = ("beginner", "intermediate", "advanced")

# ── API keys ────────────────────────────────────────────────
API_KEY_PREFIX = "wa_"
API_KEY_LOOKUP_LENGTH = 12
DEFAULT_KEY_NAME = "Default API Key"
