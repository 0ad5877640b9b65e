"""Pydantic schemas for organization admin endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from clean_cloud.orgs.models import ROLE_MEMBER


class OrgCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    # Derived from name when omitted.
    slug: Optional[str] = None
    tier: str = "free"
    owner_user_id: Optional[str] = None


class OrgResponse(BaseModel):
    id: str
    name: str
    slug: str
    tier: str
    has_license: bool
    license_expires_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_model(cls, org) -> "OrgResponse":
        return cls(
            id=org.id,
            name=org.name,
            slug=org.slug,
            tier=org.tier,
            has_license=org.license_key is not None,
            license_expires_at=org.license_expires_at,
            created_at=org.created_at,
        )


class MemberCreate(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=255)
    role: str = Field(default=ROLE_MEMBER, pattern="^(OWNER|ADMIN|MEMBER)$")


class MemberResponse(BaseModel):
    org_id: str
    user_id: str
    role: str

    model_config = {"from_attributes": True}


class SessionCreate(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=255)


class SessionResponse(BaseModel):
    session_token: str
