"""Pydantic schemas for license issuance and the CLI handshake."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from clean_cloud.common.schemas import CamelModel
from clean_cloud.tunnels.workflow import TunnelInfo


class LicenseIssueRequest(CamelModel):
    # Validated against the tier enum in the handler so bad values get a 400.
    tier: str = "pro"
    # Falls back to CLEAN_DEFAULT_LICENSE_MONTHS when omitted.
    months: Optional[int] = Field(default=None, ge=0, le=1200)


class LicenseTunnel(CamelModel):
    hostname: str
    url: str
    token: str
    tunnel_id: str

    @classmethod
    def from_info(cls, info: TunnelInfo) -> "LicenseTunnel":
        return cls(hostname=info.hostname, url=info.url, token=info.token, tunnel_id=info.tunnel_id)


class LicenseIssueResponse(CamelModel):
    license_key: str
    license_expires_at: Optional[datetime] = None
    tunnel: Optional[LicenseTunnel] = None
    # "complete" or "license_only"
    status: str
    error: Optional[str] = None


class CliProvisionResponse(CamelModel):
    tunnel_token: str
    tunnel_url: str
    org_slug: str
    tier: str
    max_repos: int
    max_users: int


class DevLicenseResponse(CamelModel):
    license_key: str
    tier: str
    months: int
    slug: str
    usage: str
