"""Licensing API router — license issuance and the CLI provisioning handshake."""

import hashlib
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from clean_cloud.common.exceptions import (
    CleanError,
    InvalidLicenseError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitExceeded,
    UnauthorizedError,
)
from clean_cloud.common.logging import token_hint
from clean_cloud.common.security import AuthContext, parse_bearer, require_session
from clean_cloud.licensing.schemas import (
    CliProvisionResponse,
    DevLicenseResponse,
    LicenseIssueRequest,
    LicenseIssueResponse,
    LicenseTunnel,
)
from clean_cloud.licensing.tiers import parse_tier
from clean_cloud.orgs.slugs import validate_slug

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_workflow():
    from clean_cloud.deps import get_tunnel_workflow
    return get_tunnel_workflow()


def _get_db():
    from clean_cloud.deps import get_db
    return get_db()


def _get_limiter():
    from clean_cloud.deps import get_provision_limiter
    return get_provision_limiter()


@router.post("/license", response_model=LicenseIssueResponse)
async def issue_license(body: LicenseIssueRequest, ctx: AuthContext = Depends(require_session)):
    """Issue a license for the caller's org and auto-provision its tunnel."""
    if not ctx.is_owner:
        raise PermissionDeniedError("Only organization owners can generate licenses")
    tier = parse_tier(body.tier)
    from clean_cloud.common.config import get_settings
    months = body.months if body.months is not None else get_settings().default_license_months

    wf = _get_workflow()
    db = _get_db()
    async with db.get_session() as session:
        result = await wf.issue_license_and_provision(session, ctx.org_id, tier, months)

    return LicenseIssueResponse(
        license_key=result.license_key,
        license_expires_at=result.license_expires_at,
        tunnel=LicenseTunnel.from_info(result.tunnel) if result.tunnel else None,
        status=result.status.value,
        error=result.error,
    )


@router.post("/cli/provision", response_model=CliProvisionResponse)
async def cli_provision(authorization: str | None = Header(None)):
    """Installer handshake: the license token is the only credential."""
    token = parse_bearer(authorization)
    if token is None:
        raise UnauthorizedError("Missing or invalid Authorization header")

    # Keyed by digest so raw licenses are not held in the limiter.
    decision = _get_limiter().allow(hashlib.sha256(token.encode()).hexdigest())
    if not decision:
        raise RateLimitExceeded(retry_after=decision.retry_after)

    wf = _get_workflow()
    db = _get_db()
    try:
        async with db.get_session() as session:
            result = await wf.handshake(session, token)
    except InvalidLicenseError as exc:
        logger.info(
            "CLI provision rejected",
            extra={"reason": exc.message, "license": token_hint(token)},
        )
        raise InvalidLicenseError() from None
    except NotFoundError:
        raise
    except Exception:
        logger.exception("CLI provision failed")
        raise CleanError("Internal server error", code="INTERNAL") from None

    return CliProvisionResponse(
        tunnel_token=result.tunnel.token,
        tunnel_url=result.tunnel.url,
        org_slug=result.org_slug,
        tier=result.claims.tier.value,
        max_repos=result.claims.max_repos,
        max_users=result.claims.max_users,
    )


@router.get("/dev/test-license", response_model=DevLicenseResponse)
async def dev_test_license(
    slug: str = Query("test-org"),
    tier: str = Query("enterprise"),
    months: int = Query(120, ge=0, le=1200),
):
    """Mint and store a license for a local org. Only with CLEAN_DEV_MODE=true."""
    from clean_cloud.common.config import get_settings

    if not get_settings().dev_mode:
        raise NotFoundError()
    parsed_tier = parse_tier(tier)
    problem = validate_slug(slug)
    if problem:
        raise HTTPException(status_code=400, detail=problem)

    wf = _get_workflow()
    db = _get_db()
    async with db.get_session() as session:
        license_key = await wf.issue_dev_license(session, slug, parsed_tier, months)

    return DevLicenseResponse(
        license_key=license_key,
        tier=parsed_tier.value,
        months=months,
        slug=slug,
        usage=f"npx create-clean --license {license_key[:30]}...",
    )
