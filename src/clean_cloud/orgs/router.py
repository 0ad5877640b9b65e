"""Organization admin router — requires super-admin authentication.

Organizations and memberships normally arrive from the identity provider's
sync; these endpoints let operators seed and inspect them directly.
"""

from fastapi import APIRouter, Depends, HTTPException

from clean_cloud.common.security import create_session_token, require_super_admin
from clean_cloud.licensing.tiers import parse_tier
from clean_cloud.orgs.schemas import (
    MemberCreate,
    MemberResponse,
    OrgCreate,
    OrgResponse,
    SessionCreate,
    SessionResponse,
)
from clean_cloud.orgs.slugs import generate_slug, validate_slug

router = APIRouter(prefix="/orgs", tags=["orgs"])


def _get_service():
    from clean_cloud.deps import get_org_service
    return get_org_service()


def _get_db():
    from clean_cloud.deps import get_db
    return get_db()


@router.post("", response_model=OrgResponse, status_code=201)
async def create_org(body: OrgCreate, _=Depends(require_super_admin)):
    slug = body.slug or generate_slug(body.name)
    problem = validate_slug(slug)
    if problem:
        raise HTTPException(status_code=400, detail=problem)
    tier = parse_tier(body.tier)

    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        org = await svc.create_org(
            session,
            name=body.name,
            slug=slug,
            tier=tier,
            owner_user_id=body.owner_user_id,
        )
        return OrgResponse.from_model(org)


@router.get("", response_model=list[OrgResponse])
async def list_orgs(_=Depends(require_super_admin)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        orgs = await svc.list_orgs(session)
        return [OrgResponse.from_model(o) for o in orgs]


@router.get("/{org_id}", response_model=OrgResponse)
async def get_org(org_id: str, _=Depends(require_super_admin)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        org = await svc.get_by_id(session, org_id)
        if org is None:
            raise HTTPException(status_code=404, detail="Organization not found")
        return OrgResponse.from_model(org)


@router.post("/{org_id}/members", response_model=MemberResponse, status_code=201)
async def add_member(org_id: str, body: MemberCreate, _=Depends(require_super_admin)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        if await svc.get_by_id(session, org_id) is None:
            raise HTTPException(status_code=404, detail="Organization not found")
        member = await svc.add_member(session, org_id, body.user_id, body.role)
        return MemberResponse.model_validate(member)


@router.post("/{org_id}/sessions", response_model=SessionResponse, status_code=201)
async def create_session(org_id: str, body: SessionCreate, _=Depends(require_super_admin)):
    """Mint a dashboard session token for an existing member."""
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        role = await svc.get_member_role(session, org_id, body.user_id)
    if role is None:
        raise HTTPException(status_code=404, detail="Membership not found")
    return SessionResponse(session_token=create_session_token(body.user_id, org_id))
