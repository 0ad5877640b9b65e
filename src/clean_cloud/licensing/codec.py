"""Signed license tokens for self-hosted deployments.

A license is an ES256 JWT whose claims carry the customer's identity, tier
and entitlement limits:

    {"sub": "<org slug>", "tier": "pro", "max_repos": 25, "max_users": 10,
     "iat": <unix seconds>, "exp": <unix seconds>}

Tokens are verified with the public half of the same P-256 key that signs
them, and only ES256 is accepted, so a token signed with HS256 (or ``none``)
is rejected even if its claims are well formed.

Expiry is ``months * 30`` days after issuance. This is a 30-day-month
approximation, not calendar arithmetic.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from clean_cloud.common.config import CleanSettings
from clean_cloud.common.exceptions import (
    ConfigurationError,
    ExpiredLicenseError,
    InvalidLicenseError,
    InvalidSignatureError,
)
from clean_cloud.licensing.tiers import Tier, limits_for_tier, parse_tier

LICENSE_ALGORITHM = "ES256"
DAYS_PER_MONTH = 30
PRIVATE_KEY_ENV = "CLEAN_LICENSE_PRIVATE_KEY"

_REQUIRED_CLAIMS = ("sub", "tier", "max_repos", "max_users", "iat", "exp")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_pem(raw: str) -> str:
    """Restore real newlines in a PEM stored with literal ``\\n`` sequences."""
    return raw.replace("\\n", "\n").strip() + "\n"


def load_signing_key(raw: str) -> ec.EllipticCurvePrivateKey:
    """Parse a PEM P-256 private key, tolerating escaped newlines.

    Raises:
        ConfigurationError: If the key is missing, unparsable or not P-256.
    """
    if not raw or not raw.strip():
        raise ConfigurationError(f"{PRIVATE_KEY_ENV} is not set")
    try:
        key = serialization.load_pem_private_key(normalize_pem(raw).encode(), password=None)
    except (ValueError, TypeError) as exc:
        raise ConfigurationError(f"{PRIVATE_KEY_ENV} is not a valid PEM private key") from exc
    if not isinstance(key, ec.EllipticCurvePrivateKey) or not isinstance(key.curve, ec.SECP256R1):
        raise ConfigurationError(f"{PRIVATE_KEY_ENV} must be a P-256 (prime256v1) EC key")
    return key


def generate_signing_key() -> str:
    """Generate a new P-256 private key as PEM text."""
    key = ec.generate_private_key(ec.SECP256R1())
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


def expires_at(months: int, now: datetime | None = None) -> datetime:
    """Expiry instant for a license issued at ``now`` for ``months`` months."""
    now = now or _utcnow()
    return now + timedelta(days=months * DAYS_PER_MONTH)


@dataclass(frozen=True)
class LicenseClaims:
    sub: str
    tier: Tier
    max_repos: int
    max_users: int
    iat: int
    exp: int

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "LicenseClaims":
        missing = [name for name in _REQUIRED_CLAIMS if name not in data]
        if missing:
            raise InvalidLicenseError(f"License is missing claims: {', '.join(missing)}")
        try:
            return cls(
                sub=str(data["sub"]),
                tier=Tier(data["tier"]),
                max_repos=int(data["max_repos"]),
                max_users=int(data["max_users"]),
                iat=int(data["iat"]),
                exp=int(data["exp"]),
            )
        except (TypeError, ValueError) as exc:
            raise InvalidLicenseError("License claims are malformed") from exc

    def to_dict(self) -> dict[str, Any]:
        return {
            "sub": self.sub,
            "tier": self.tier.value,
            "max_repos": self.max_repos,
            "max_users": self.max_users,
            "iat": self.iat,
            "exp": self.exp,
        }


class LicenseCodec:
    """Issues and verifies ES256 license tokens."""

    def __init__(
        self,
        private_key_pem: str,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._private_key = load_signing_key(private_key_pem)
        self._public_key = self._private_key.public_key()
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: CleanSettings, **kwargs: Any) -> "LicenseCodec":
        # Reloaded on every call so a rotated secret is picked up.
        return cls(settings.license_private_key, **kwargs)

    def issue(self, customer_id: str, tier: str | Tier, months: int = 12) -> str:
        """Mint a fresh license token.

        Raises:
            InvalidTierError: If ``tier`` is not free, pro or enterprise.
        """
        tier = parse_tier(tier)
        if months < 0:
            raise ValueError("months must be >= 0")
        limits = limits_for_tier(tier)
        now = self._clock()
        issued = int(now.timestamp())
        payload = {
            "sub": customer_id,
            "tier": tier.value,
            "max_repos": limits.max_repos,
            "max_users": limits.max_users,
            "iat": issued,
            "exp": issued + months * DAYS_PER_MONTH * 86400,
        }
        return jwt.encode(payload, self._private_key, algorithm=LICENSE_ALGORITHM)

    def verify(self, token: str) -> LicenseClaims:
        """Verify signature, algorithm and expiry; return the claims.

        Raises:
            InvalidSignatureError: Tampered, malformed or wrongly-signed token.
            ExpiredLicenseError: Valid signature but ``exp`` has passed.
        """
        try:
            payload = jwt.decode(
                token,
                self._public_key,
                algorithms=[LICENSE_ALGORITHM],
                # Expiry is checked below against the injected clock.
                options={"verify_exp": False, "verify_iat": False, "require": ["exp", "iat", "sub"]},
            )
        except jwt.InvalidTokenError as exc:
            raise InvalidSignatureError(f"License rejected: {type(exc).__name__}") from exc

        claims = LicenseClaims.from_mapping(payload)
        if claims.exp <= int(self._clock().timestamp()):
            raise ExpiredLicenseError()
        return claims

    def peek(self, token: str) -> dict[str, Any]:
        """Decode claims without verification (diagnostics only)."""
        try:
            return jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError as exc:
            raise InvalidSignatureError("License is not a well-formed token") from exc
