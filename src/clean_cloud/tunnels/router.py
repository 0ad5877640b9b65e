"""Tunnel API router — dashboard-facing, session-authenticated."""

from fastapi import APIRouter, Depends

from clean_cloud.common.exceptions import NotFoundError, PermissionDeniedError
from clean_cloud.common.security import AuthContext, require_session
from clean_cloud.orgs.models import ROLE_ADMIN, ROLE_OWNER
from clean_cloud.tunnels.schemas import (
    TunnelCreateRequest,
    TunnelDeleteRequest,
    TunnelDeleteResponse,
    TunnelDetail,
    TunnelEnvelope,
    TunnelRotateRequest,
)

router = APIRouter(prefix="/tunnel", tags=["tunnels"])

_MANAGE_ROLES = (ROLE_OWNER, ROLE_ADMIN)


def _get_workflow():
    from clean_cloud.deps import get_tunnel_workflow
    return get_tunnel_workflow()


def _get_db():
    from clean_cloud.deps import get_db
    return get_db()


def _require_manager(ctx: AuthContext) -> None:
    if ctx.role not in _MANAGE_ROLES:
        raise PermissionDeniedError("Only organization owners and admins can manage tunnels")


async def _check_slug(session, ctx: AuthContext, org_slug: str) -> None:
    """The slug in the body must be the caller's own organization."""
    from clean_cloud.deps import get_org_service

    org = await get_org_service().get_by_id(session, ctx.org_id)
    if org is None:
        raise NotFoundError("Organization not found")
    if org.slug != org_slug:
        raise PermissionDeniedError("orgSlug does not match your organization")


@router.get("", response_model=TunnelEnvelope)
async def get_tunnel(ctx: AuthContext = Depends(require_session)):
    wf = _get_workflow()
    db = _get_db()
    async with db.get_session() as session:
        view = await wf.get_tunnel(session, ctx.org_id)
    if view is None:
        return TunnelEnvelope(tunnel=None)
    return TunnelEnvelope(tunnel=TunnelDetail.from_info(view.tunnel, connected=view.connected))


@router.post("", response_model=TunnelEnvelope, status_code=201)
async def create_tunnel(body: TunnelCreateRequest, ctx: AuthContext = Depends(require_session)):
    _require_manager(ctx)
    wf = _get_workflow()
    db = _get_db()
    async with db.get_session() as session:
        await _check_slug(session, ctx, body.org_slug)
        info = await wf.create_tunnel(session, ctx.org_id, body.org_slug)
    return TunnelEnvelope(tunnel=TunnelDetail.from_info(info))


@router.delete("", response_model=TunnelDeleteResponse)
async def delete_tunnel(body: TunnelDeleteRequest, ctx: AuthContext = Depends(require_session)):
    _require_manager(ctx)
    wf = _get_workflow()
    db = _get_db()
    async with db.get_session() as session:
        result = await wf.delete(session, ctx.org_id, body.tunnel_id, body.dns_record_id)
    return TunnelDeleteResponse(success=result.deleted, warning=result.provider_error)


@router.patch("", response_model=TunnelEnvelope)
async def rotate_tunnel(body: TunnelRotateRequest, ctx: AuthContext = Depends(require_session)):
    _require_manager(ctx)
    wf = _get_workflow()
    db = _get_db()
    async with db.get_session() as session:
        await _check_slug(session, ctx, body.org_slug)
        info = await wf.rotate(
            session, ctx.org_id, body.org_slug, body.tunnel_id, body.dns_record_id
        )
    return TunnelEnvelope(tunnel=TunnelDetail.from_info(info))
