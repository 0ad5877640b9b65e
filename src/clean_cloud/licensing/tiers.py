"""Subscription tiers and their entitlement limits.

This table is the only source of tier limits. License tokens embed
``max_repos``/``max_users`` from it, and request-time quota checks compare
live counts against it.

Enforcement philosophy:
- Known tier → that tier's limits
- Unknown or legacy label → free limits (fail closed, never unlimited)
"""

from dataclasses import dataclass
from enum import Enum

from clean_cloud.common.exceptions import InvalidTierError, QuotaExceededError

# Stand-in for "unbounded". Limits travel inside signed numeric claims,
# so infinity is not representable.
UNLIMITED = 999_999


class Tier(str, Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


@dataclass(frozen=True)
class TierLimits:
    max_repos: int
    max_users: int
    max_api_keys: int

    def limit_for(self, resource: str) -> int:
        try:
            return getattr(self, f"max_{resource}")
        except AttributeError:
            raise ValueError(f"Unknown quota resource: {resource}") from None


TIER_LIMITS: dict[Tier, TierLimits] = {
    Tier.FREE: TierLimits(max_repos=3, max_users=1, max_api_keys=2),
    Tier.PRO: TierLimits(max_repos=25, max_users=10, max_api_keys=20),
    Tier.ENTERPRISE: TierLimits(max_repos=UNLIMITED, max_users=UNLIMITED, max_api_keys=UNLIMITED),
}


def parse_tier(raw: str | Tier) -> Tier:
    """Convert external input to a Tier, once, at the boundary.

    Raises:
        InvalidTierError: If ``raw`` is not one of free, pro, enterprise.
    """
    if isinstance(raw, Tier):
        return raw
    try:
        return Tier(raw)
    except ValueError:
        raise InvalidTierError(str(raw)) from None


def limits_for_tier(tier: str | Tier | None) -> TierLimits:
    """Get entitlement limits for a tier; unknown tiers get free limits."""
    try:
        return TIER_LIMITS[Tier(tier)]
    except ValueError:
        return TIER_LIMITS[Tier.FREE]


def is_unlimited(value: int) -> bool:
    return value >= UNLIMITED


def check_quota(tier: str | Tier | None, resource: str, current: int) -> int:
    """Ensure one more ``resource`` fits under the tier's limit.

    Args:
        tier: Organization tier (unknown values are treated as free).
        resource: ``repos``, ``users`` or ``api_keys``.
        current: How many the organization already has.

    Returns:
        Remaining headroom after adding one.

    Raises:
        QuotaExceededError: If ``current`` already meets the limit.
    """
    limit = limits_for_tier(tier).limit_for(resource)
    if current >= limit:
        raise QuotaExceededError(resource, current, limit)
    return limit - current - 1
