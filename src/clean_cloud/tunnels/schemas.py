"""Pydantic schemas for tunnel endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from clean_cloud.common.schemas import CamelModel
from clean_cloud.tunnels.workflow import TunnelInfo

ORG_SLUG_PATTERN = r"^[a-z0-9-]+$"


class TunnelDetail(CamelModel):
    hostname: str
    url: str
    token: str
    tunnel_id: str
    dns_record_id: str
    status: str
    connected: Optional[bool] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_info(cls, info: TunnelInfo, connected: Optional[bool] = None) -> "TunnelDetail":
        return cls(
            hostname=info.hostname,
            url=info.url,
            token=info.token,
            tunnel_id=info.tunnel_id,
            dns_record_id=info.dns_record_id,
            status=info.status,
            connected=connected,
            created_at=info.created_at,
        )


class TunnelEnvelope(CamelModel):
    tunnel: Optional[TunnelDetail] = None


class TunnelCreateRequest(CamelModel):
    org_slug: str = Field(..., min_length=1, max_length=63, pattern=ORG_SLUG_PATTERN)


class TunnelDeleteRequest(CamelModel):
    tunnel_id: str = Field(..., min_length=1)
    dns_record_id: str = Field(..., min_length=1)


class TunnelRotateRequest(CamelModel):
    org_slug: str = Field(..., min_length=1, max_length=63, pattern=ORG_SLUG_PATTERN)
    tunnel_id: str = Field(..., min_length=1)
    dns_record_id: str = Field(..., min_length=1)


class TunnelDeleteResponse(CamelModel):
    success: bool
    warning: Optional[str] = None
