"""Organization persistence used by the licensing and tunnel workflows."""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clean_cloud.common.exceptions import ConflictError
from clean_cloud.licensing.tiers import Tier
from clean_cloud.orgs.models import ROLE_OWNER, OrganizationModel, OrgMemberModel


class OrganizationService:
    """Organization and membership operations."""

    async def create_org(
        self,
        session: AsyncSession,
        name: str,
        slug: str,
        tier: Tier = Tier.FREE,
        owner_user_id: str | None = None,
    ) -> OrganizationModel:
        org = OrganizationModel(name=name, slug=slug, tier=tier.value)
        session.add(org)
        try:
            await session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Organization slug {slug!r} is already taken") from exc
        if owner_user_id:
            await self.add_member(session, org.id, owner_user_id, ROLE_OWNER)
        return org

    async def get_by_id(
        self, session: AsyncSession, org_id: str
    ) -> OrganizationModel | None:
        return await session.get(OrganizationModel, org_id)

    async def get_by_slug(
        self, session: AsyncSession, slug: str
    ) -> OrganizationModel | None:
        result = await session.execute(
            select(OrganizationModel).where(OrganizationModel.slug == slug)
        )
        return result.scalar_one_or_none()

    async def get_by_license_key(
        self, session: AsyncSession, license_key: str
    ) -> OrganizationModel | None:
        """Exact match on the last-issued license token."""
        result = await session.execute(
            select(OrganizationModel)
            .where(OrganizationModel.license_key == license_key)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_orgs(self, session: AsyncSession) -> list[OrganizationModel]:
        result = await session.execute(select(OrganizationModel))
        return list(result.scalars().all())

    async def store_license(
        self,
        session: AsyncSession,
        org: OrganizationModel,
        license_key: str,
        tier: Tier,
        license_expires_at: datetime | None,
    ) -> OrganizationModel:
        org.license_key = license_key
        org.tier = tier.value
        org.license_expires_at = license_expires_at
        await session.flush()
        return org

    # ── Members ──

    async def add_member(
        self, session: AsyncSession, org_id: str, user_id: str, role: str
    ) -> OrgMemberModel:
        member = await session.get(OrgMemberModel, (org_id, user_id))
        if member is None:
            member = OrgMemberModel(org_id=org_id, user_id=user_id, role=role)
            session.add(member)
        else:
            member.role = role
        await session.flush()
        return member

    async def get_member_role(
        self, session: AsyncSession, org_id: str, user_id: str
    ) -> str | None:
        member = await session.get(OrgMemberModel, (org_id, user_id))
        return member.role if member else None
