"""Clean Cloud: license issuance and per-organization tunnel provisioning."""

from clean_cloud.licensing.codec import LicenseClaims, LicenseCodec, generate_signing_key
from clean_cloud.licensing.tiers import TIER_LIMITS, Tier, TierLimits, limits_for_tier

__all__ = [
    "LicenseClaims",
    "LicenseCodec",
    "generate_signing_key",
    "TIER_LIMITS",
    "Tier",
    "TierLimits",
    "limits_for_tier",
]
__version__ = "0.1.0"
