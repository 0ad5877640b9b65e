"""Cloudflare Tunnel API client.

Runs on the control plane; the Cloudflare API token never leaves it. Each
organization gets one remotely-managed tunnel named ``clean-{slug}`` and a
proxied CNAME ``{slug}.{tunnel_domain}`` pointing at it.

Required settings (resolved on every call):
    CLEAN_CLOUDFLARE_API_TOKEN  — API token with Tunnel + DNS edit permissions
    CLEAN_CLOUDFLARE_ACCOUNT_ID — account that owns the tunnels
    CLEAN_CLOUDFLARE_ZONE_ID    — zone for the tunnel domain
"""

import base64
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any

import httpx

from clean_cloud.common.config import CleanSettings
from clean_cloud.common.exceptions import ConfigurationError, ProviderRequestError

logger = logging.getLogger(__name__)


@dataclass
class TunnelCreateResult:
    tunnel_id: str
    token: str
    hostname: str
    dns_record_id: str


@dataclass
class TunnelStatus:
    id: str
    name: str = ""
    status: str = ""
    connections: list[dict[str, Any]] = field(default_factory=list)

    @property
    def connected(self) -> bool:
        return len(self.connections) > 0


def generate_tunnel_secret() -> str:
    return base64.b64encode(secrets.token_bytes(32)).decode()


def _error_message(resp: httpx.Response) -> str:
    """First provider error message, or the HTTP reason if the body is unusable."""
    try:
        return resp.json()["errors"][0]["message"]
    except (ValueError, KeyError, IndexError, TypeError):
        return resp.reason_phrase or f"HTTP {resp.status_code}"


class CloudflareTunnelClient:
    """Create, inspect and tear down per-organization tunnels."""

    def __init__(self, settings: CleanSettings, http_client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._http_client = http_client

    def _get_http_client(self) -> httpx.AsyncClient:
        """Lazy-init httpx.AsyncClient."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.settings.provider_timeout)
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    # ── Configuration ──

    def _require(self, name: str) -> str:
        value = getattr(self.settings, name)
        if not value:
            raise ConfigurationError(f"Missing env var: CLEAN_{name.upper()}")
        return value

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._require('cloudflare_api_token')}",
            "Content-Type": "application/json",
        }

    def _account_url(self, path: str = "") -> str:
        base = self.settings.cloudflare_api_url.rstrip("/")
        return f"{base}/accounts/{self._require('cloudflare_account_id')}/cfd_tunnel{path}"

    def _zone_url(self, path: str = "") -> str:
        base = self.settings.cloudflare_api_url.rstrip("/")
        return f"{base}/zones/{self._require('cloudflare_zone_id')}/dns_records{path}"

    def hostname_for(self, org_slug: str) -> str:
        return f"{org_slug}.{self.settings.tunnel_domain}"

    async def _request(self, method: str, url: str, action: str, **kwargs: Any) -> httpx.Response:
        """Send a request; transport failures become ProviderRequestError."""
        try:
            return await self._get_http_client().request(
                method, url, headers=self._headers(), **kwargs
            )
        except httpx.HTTPError as exc:
            raise ProviderRequestError(f"Failed to {action}: {exc}") from exc

    @staticmethod
    def _result(resp: httpx.Response, action: str) -> Any:
        if not resp.is_success:
            raise ProviderRequestError(
                f"Failed to {action}: {_error_message(resp)}",
                provider_status=resp.status_code,
            )
        try:
            return resp.json()["result"]
        except (ValueError, KeyError, TypeError) as exc:
            raise ProviderRequestError(f"Failed to {action}: malformed provider response") from exc

    # ── Tunnel lifecycle ──

    async def create_tunnel(self, org_slug: str) -> TunnelCreateResult:
        """Create tunnel, route ingress, publish DNS.

        Steps run in order and are not rolled back: if ingress or DNS fails,
        the tunnel created in step 1 is left at the provider.
        """
        hostname = self.hostname_for(org_slug)

        # 1. Create the tunnel
        resp = await self._request(
            "POST", self._account_url(), "create tunnel",
            json={
                "name": f"clean-{org_slug}",
                "tunnel_secret": generate_tunnel_secret(),
                "config_src": "cloudflare",
            },
        )
        tunnel = self._result(resp, "create tunnel")
        tunnel_id = tunnel["id"]
        token = tunnel.get("token") or await self._fetch_token(tunnel_id)
        logger.info("Created tunnel", extra={"tunnel_id": tunnel_id, "hostname": hostname})

        # 2. Route engine path to the engine, everything else to the dashboard
        await self._configure_ingress(tunnel_id, hostname)

        # 3. CNAME hostname -> tunnel
        dns_record_id = await self._create_dns_record(tunnel_id, hostname)

        return TunnelCreateResult(
            tunnel_id=tunnel_id,
            token=token,
            hostname=hostname,
            dns_record_id=dns_record_id,
        )

    async def delete_tunnel(self, tunnel_id: str, dns_record_id: str) -> None:
        """Remove DNS first, then live connections, then the tunnel.

        DNS goes first so the hostname never resolves to a missing tunnel.
        The first two steps are best effort; a 404 anywhere means already
        gone. Only a failing final delete raises.
        """
        # 1. DNS record
        await self._best_effort_delete(self._zone_url(f"/{dns_record_id}"), "delete DNS record")

        # 2. Force-close connections
        await self._best_effort_delete(
            self._account_url(f"/{tunnel_id}/connections"), "clean up tunnel connections"
        )

        # 3. The tunnel itself
        resp = await self._request("DELETE", self._account_url(f"/{tunnel_id}"), "delete tunnel")
        if resp.status_code == 404:
            logger.info("Tunnel already deleted", extra={"tunnel_id": tunnel_id})
            return
        if not resp.is_success:
            raise ProviderRequestError(
                f"Failed to delete tunnel: {_error_message(resp)}",
                provider_status=resp.status_code,
            )
        logger.info("Deleted tunnel", extra={"tunnel_id": tunnel_id})

    async def get_tunnel_status(self, tunnel_id: str) -> TunnelStatus | None:
        """Live tunnel state, or None if the provider could not be asked."""
        url = self._account_url(f"/{tunnel_id}")
        headers = self._headers()
        try:
            resp = await self._get_http_client().get(url, headers=headers)
            if not resp.is_success:
                logger.warning(
                    "Tunnel status unavailable",
                    extra={"tunnel_id": tunnel_id, "status_code": resp.status_code},
                )
                return None
            result = resp.json()["result"]
            return TunnelStatus(
                id=result.get("id", tunnel_id),
                name=result.get("name", ""),
                status=result.get("status", ""),
                connections=list(result.get("connections") or []),
            )
        except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError):
            logger.warning("Tunnel status lookup failed", extra={"tunnel_id": tunnel_id}, exc_info=True)
            return None

    async def rotate_tunnel(
        self, org_slug: str, old_tunnel_id: str, old_dns_record_id: str
    ) -> TunnelCreateResult:
        """Replace a tunnel with a new one on the same hostname.

        Cloudflare cannot regenerate a tunnel token in place, so this is a
        delete followed by a create; between the two no tunnel exists.
        """
        await self.delete_tunnel(old_tunnel_id, old_dns_record_id)
        return await self.create_tunnel(org_slug)

    # ── Internal helpers ──

    async def _fetch_token(self, tunnel_id: str) -> str:
        resp = await self._request("GET", self._account_url(f"/{tunnel_id}/token"), "fetch tunnel token")
        return self._result(resp, "fetch tunnel token")

    async def _configure_ingress(self, tunnel_id: str, hostname: str) -> None:
        resp = await self._request(
            "PUT", self._account_url(f"/{tunnel_id}/configurations"), "configure tunnel",
            json={
                "config": {
                    "ingress": [
                        {
                            "hostname": hostname,
                            "path": self.settings.engine_path,
                            "service": self.settings.engine_service,
                        },
                        {
                            "hostname": hostname,
                            "service": self.settings.dashboard_service,
                        },
                        # Catch-all rule is mandatory
                        {"service": "http_status:404"},
                    ],
                },
            },
        )
        if not resp.is_success:
            raise ProviderRequestError(
                f"Failed to configure tunnel: {_error_message(resp)}",
                provider_status=resp.status_code,
            )

    async def _create_dns_record(self, tunnel_id: str, hostname: str) -> str:
        resp = await self._request(
            "POST", self._zone_url(), "create DNS record",
            json={
                "type": "CNAME",
                "name": hostname,
                "content": f"{tunnel_id}.cfargotunnel.com",
                "proxied": True,
            },
        )
        return self._result(resp, "create DNS record")["id"]

    async def _best_effort_delete(self, url: str, action: str) -> None:
        try:
            resp = await self._request("DELETE", url, action)
        except ProviderRequestError:
            logger.warning("Could not %s", action, exc_info=True)
            return
        if not resp.is_success and resp.status_code != 404:
            logger.warning("Could not %s: %s", action, _error_message(resp))
