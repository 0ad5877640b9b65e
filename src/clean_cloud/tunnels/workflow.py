"""Tunnel provisioning workflow — licenses, tunnels and their lifecycle.

Per organization a tunnel moves through:

    (none) ──create──▶ active ──rotate phase 1──▶ rotating ──phase 2──▶ active
                          └─────────────── delete ──────────────▶ (none)

Every check-then-act sequence runs under the registry's per-org lock, and
the UNIQUE ``tunnels.org_id`` column catches races between processes.

Composite operations return result objects that say how far they got
instead of raising after part of the work is already committed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from clean_cloud.common.config import CleanSettings
from clean_cloud.common.exceptions import (
    CleanError,
    ConflictError,
    InvalidLicenseError,
    NotFoundError,
    ProviderRequestError,
)
from clean_cloud.licensing.codec import LicenseClaims, LicenseCodec, expires_at
from clean_cloud.licensing.tiers import Tier
from clean_cloud.orgs.service import OrganizationService
from clean_cloud.tunnels.cloudflare import CloudflareTunnelClient, TunnelCreateResult
from clean_cloud.tunnels.models import TunnelModel
from clean_cloud.tunnels.registry import TunnelRegistry

logger = logging.getLogger(__name__)

SUPPORT_MESSAGE = "Tunnel provisioning failed — contact support"


def _public_error(exc: Exception) -> str:
    """Client-safe text for a provisioning failure."""
    if isinstance(exc, CleanError):
        return exc.public_message or SUPPORT_MESSAGE
    return SUPPORT_MESSAGE


@dataclass
class TunnelInfo:
    tunnel_id: str
    dns_record_id: str
    hostname: str
    token: str
    status: str
    created_at: Optional[datetime] = None

    @property
    def url(self) -> str:
        return f"https://{self.hostname}"

    @classmethod
    def from_model(cls, tunnel: TunnelModel) -> "TunnelInfo":
        return cls(
            tunnel_id=tunnel.provider_tunnel_id,
            dns_record_id=tunnel.dns_record_id,
            hostname=tunnel.hostname,
            token=tunnel.token,
            status=tunnel.status,
            created_at=tunnel.created_at,
        )


@dataclass
class TunnelView:
    tunnel: TunnelInfo
    # None when the provider could not be asked.
    live_status: Optional[str]
    connected: bool


class ProvisionStatus(str, Enum):
    COMPLETE = "complete"
    # License stored, tunnel step failed; retrying only redoes the tunnel.
    LICENSE_ONLY = "license_only"


@dataclass
class ProvisionResult:
    status: ProvisionStatus
    license_key: Optional[str] = None
    tier: Optional[Tier] = None
    license_expires_at: Optional[datetime] = None
    tunnel: Optional[TunnelInfo] = None
    tunnel_created: bool = False
    error: Optional[str] = None


@dataclass
class EnsureResult:
    tunnel: Optional[TunnelInfo] = None
    created: bool = False
    error: Optional[str] = None


@dataclass
class DeleteResult:
    deleted: bool
    # Provider-side failure while the local record was still removed.
    provider_error: Optional[str] = None


@dataclass
class HandshakeResult:
    org_slug: str
    claims: LicenseClaims
    tunnel: TunnelInfo


class TunnelWorkflow:
    """Orchestrates license issuance and tunnel lifecycle per organization."""

    def __init__(
        self,
        settings: CleanSettings,
        provider: CloudflareTunnelClient,
        registry: TunnelRegistry,
        orgs: OrganizationService,
        codec_factory: Optional[Callable[[], LicenseCodec]] = None,
    ):
        self.settings = settings
        self.provider = provider
        self.registry = registry
        self.orgs = orgs
        self._codec_factory = codec_factory or (lambda: LicenseCodec.from_settings(settings))

    def codec(self) -> LicenseCodec:
        return self._codec_factory()

    # ── Licenses ──

    async def issue_license_and_provision(
        self,
        session: AsyncSession,
        org_id: str,
        tier: Tier,
        months: int,
    ) -> ProvisionResult:
        """Issue a license for the org, store it, then make sure it has a tunnel.

        The caller is responsible for the owner-permission check. The license
        half is committed before the tunnel half starts; a tunnel failure
        yields ``LICENSE_ONLY`` rather than undoing the license.

        Raises:
            NotFoundError: If the organization does not exist.
            ConfigurationError: If no signing key is configured.
        """
        org = await self.orgs.get_by_id(session, org_id)
        if org is None:
            raise NotFoundError("Organization not found")
        slug = org.slug

        license_key = self.codec().issue(slug, tier, months)
        license_expires_at = expires_at(months)
        await self.orgs.store_license(session, org, license_key, tier, license_expires_at)
        await session.commit()
        logger.info(
            "Issued license",
            extra={"org_id": org_id, "tier": tier.value, "months": months},
        )

        result = ProvisionResult(
            status=ProvisionStatus.COMPLETE,
            license_key=license_key,
            tier=tier,
            license_expires_at=license_expires_at,
        )
        try:
            async with self.registry.org_lock(org_id):
                tunnel, result.tunnel_created = await self._get_or_create(session, org_id, slug)
        except Exception as exc:
            logger.exception("Tunnel provisioning failed after license issuance", extra={"org_id": org_id})
            result.status = ProvisionStatus.LICENSE_ONLY
            result.error = _public_error(exc)
            return result

        result.tunnel = TunnelInfo.from_model(tunnel)
        return result

    async def handshake(self, session: AsyncSession, license_key: str) -> HandshakeResult:
        """Resolve an installer's license to its org and tunnel.

        The token must verify *and* be the org's currently stored license.

        Raises:
            InvalidLicenseError: Bad token, or no org holds this exact token.
            NotFoundError: The org has no tunnel yet.
        """
        claims = self.codec().verify(license_key)
        org = await self.orgs.get_by_license_key(session, license_key)
        if org is None:
            raise InvalidLicenseError("No organization holds this license")
        tunnel = await self.registry.get_by_org(session, org.id)
        if tunnel is None:
            raise NotFoundError("No tunnel provisioned for this organization — contact support")
        return HandshakeResult(org_slug=org.slug, claims=claims, tunnel=TunnelInfo.from_model(tunnel))

    async def issue_dev_license(
        self,
        session: AsyncSession,
        slug: str,
        tier: Tier,
        months: int,
    ) -> str:
        """Find or create an org by slug and store a fresh license on it."""
        license_key = self.codec().issue(slug, tier, months)
        org = await self.orgs.get_by_slug(session, slug)
        if org is None:
            org = await self.orgs.create_org(session, name=slug, slug=slug, tier=tier)
        await self.orgs.store_license(session, org, license_key, tier, expires_at(months))
        return license_key

    # ── Tunnels ──

    async def ensure_tunnel(
        self, session: AsyncSession, org_id: str, org_slug: str
    ) -> EnsureResult:
        """Return the org's tunnel, creating it if needed. Never raises."""
        try:
            async with self.registry.org_lock(org_id):
                tunnel, created = await self._get_or_create(session, org_id, org_slug)
                return EnsureResult(tunnel=TunnelInfo.from_model(tunnel), created=created)
        except Exception:
            logger.exception("ensure_tunnel failed", extra={"org_id": org_id})
            return EnsureResult(error=SUPPORT_MESSAGE)

    async def create_tunnel(
        self, session: AsyncSession, org_id: str, org_slug: str
    ) -> TunnelInfo:
        """Create the org's tunnel.

        Raises:
            ConflictError: If the org already has one.
            ProviderRequestError: If the provider rejects a step.
        """
        async with self.registry.org_lock(org_id):
            if await self.registry.get_by_org(session, org_id) is not None:
                raise ConflictError("Tunnel already exists")
            tunnel = await self._create_and_record(session, org_id, org_slug)
            return TunnelInfo.from_model(tunnel)

    async def get_tunnel(self, session: AsyncSession, org_id: str) -> Optional[TunnelView]:
        tunnel = await self.registry.get_by_org(session, org_id)
        if tunnel is None:
            return None
        status = await self.provider.get_tunnel_status(tunnel.provider_tunnel_id)
        return TunnelView(
            tunnel=TunnelInfo.from_model(tunnel),
            live_status=status.status if status else None,
            connected=bool(status and status.connected),
        )

    async def rotate(
        self,
        session: AsyncSession,
        org_id: str,
        org_slug: str,
        tunnel_id: str,
        dns_record_id: str,
    ) -> TunnelInfo:
        """Replace the org's tunnel with a fresh one on the same hostname.

        The caller passes the ids it last read; if the stored row no longer
        matches, someone else rotated first and this call is rejected.

        Phase 1 tears the old tunnel down and commits the row as
        ``rotating``. Phase 2 creates the replacement and rewrites the row.
        If phase 2 fails the row stays ``rotating`` and the same call can be
        retried, since deleting an already-deleted tunnel succeeds.

        Raises:
            NotFoundError: The org has no tunnel.
            ConflictError: Supplied ids are stale.
            ProviderRequestError: A provider step failed.
        """
        async with self.registry.org_lock(org_id):
            tunnel = await self.registry.get_by_org(session, org_id)
            if tunnel is None:
                raise NotFoundError("Tunnel not found")
            if tunnel.provider_tunnel_id != tunnel_id or tunnel.dns_record_id != dns_record_id:
                raise ConflictError("Tunnel changed since it was read — reload and retry")

            # Phase 1: old tunnel gone, hostname unrouted.
            await self.provider.delete_tunnel(tunnel_id, dns_record_id)
            await self.registry.mark_rotating(session, tunnel)
            await session.commit()
            logger.info("Rotation: old tunnel removed", extra={"org_id": org_id, "tunnel_id": tunnel_id})

            # Phase 2: replacement.
            created = await self.provider.create_tunnel(org_slug)
            await self.registry.replace_endpoint(session, tunnel, created)
            await session.commit()
            logger.info(
                "Rotation complete",
                extra={"org_id": org_id, "tunnel_id": created.tunnel_id},
            )
            return TunnelInfo.from_model(tunnel)

    async def delete(
        self,
        session: AsyncSession,
        org_id: str,
        tunnel_id: str,
        dns_record_id: str,
    ) -> DeleteResult:
        """Tear down the org's tunnel and drop its record.

        The record is removed even when the provider's final delete fails,
        so the registry never points at a half-deleted tunnel.

        Raises:
            NotFoundError: The ids do not belong to this org's tunnel.
        """
        async with self.registry.org_lock(org_id):
            tunnel = await self.registry.get_by_org(session, org_id)
            if (
                tunnel is None
                or tunnel.provider_tunnel_id != tunnel_id
                or tunnel.dns_record_id != dns_record_id
            ):
                raise NotFoundError("Tunnel not found")

            provider_error = None
            try:
                await self.provider.delete_tunnel(tunnel_id, dns_record_id)
            except ProviderRequestError as exc:
                logger.error(
                    "Provider delete failed; removing record anyway",
                    extra={"org_id": org_id, "tunnel_id": tunnel_id, "error": exc.message},
                )
                provider_error = exc.message

            await self.registry.remove(session, tunnel)
            await session.commit()
            return DeleteResult(deleted=True, provider_error=provider_error)

    # ── Internal helpers ──

    async def _get_or_create(
        self, session: AsyncSession, org_id: str, org_slug: str
    ) -> tuple[TunnelModel, bool]:
        """Existing tunnel, or a new one. Returns (tunnel, created_now)."""
        tunnel = await self.registry.get_by_org(session, org_id)
        if tunnel is not None:
            return tunnel, False
        try:
            return await self._create_and_record(session, org_id, org_slug), True
        except ConflictError:
            winner = await self.registry.get_by_org(session, org_id)
            if winner is None:
                raise
            return winner, False

    async def _create_and_record(
        self, session: AsyncSession, org_id: str, org_slug: str
    ) -> TunnelModel:
        """Create at the provider and insert the row. Caller holds the org lock."""
        created = await self.provider.create_tunnel(org_slug)
        try:
            tunnel = await self.registry.add(session, org_id, created)
        except ConflictError:
            # Another process recorded a tunnel first; ours would be orphaned.
            await self._discard(created)
            raise
        await session.commit()
        logger.info(
            "Provisioned tunnel",
            extra={"org_id": org_id, "tunnel_id": created.tunnel_id, "hostname": created.hostname},
        )
        return tunnel

    async def _discard(self, created: TunnelCreateResult) -> None:
        try:
            await self.provider.delete_tunnel(created.tunnel_id, created.dns_record_id)
        except Exception:
            logger.exception(
                "Could not remove orphaned tunnel",
                extra={"tunnel_id": created.tunnel_id, "hostname": created.hostname},
            )

