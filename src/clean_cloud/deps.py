"""Dependency injection singletons for the Clean control plane."""

from clean_cloud.common.config import get_settings
from clean_cloud.common.database import DatabaseManager
from clean_cloud.common.ratelimit import InMemoryRateLimiter, RateLimiter
from clean_cloud.orgs.service import OrganizationService
from clean_cloud.tunnels.cloudflare import CloudflareTunnelClient
from clean_cloud.tunnels.registry import TunnelRegistry
from clean_cloud.tunnels.workflow import TunnelWorkflow

_db: DatabaseManager | None = None
_orgs: OrganizationService | None = None
_provider: CloudflareTunnelClient | None = None
_registry: TunnelRegistry | None = None
_workflow: TunnelWorkflow | None = None
_provision_limiter: RateLimiter | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_org_service() -> OrganizationService:
    global _orgs
    if _orgs is None:
        _orgs = OrganizationService()
    return _orgs


def get_tunnel_provider() -> CloudflareTunnelClient:
    global _provider
    if _provider is None:
        _provider = CloudflareTunnelClient(get_settings())
    return _provider


def get_tunnel_registry() -> TunnelRegistry:
    global _registry
    if _registry is None:
        _registry = TunnelRegistry()
    return _registry


def get_tunnel_workflow() -> TunnelWorkflow:
    global _workflow
    if _workflow is None:
        _workflow = TunnelWorkflow(
            get_settings(),
            provider=get_tunnel_provider(),
            registry=get_tunnel_registry(),
            orgs=get_org_service(),
        )
    return _workflow


def get_provision_limiter() -> RateLimiter:
    global _provision_limiter
    if _provision_limiter is None:
        settings = get_settings()
        _provision_limiter = InMemoryRateLimiter(
            limit=settings.provision_rate_limit,
            window_seconds=settings.provision_rate_window,
        )
    return _provision_limiter


def set_tunnel_provider(provider) -> None:
    """Swap the tunnel provider (tests, alternative providers)."""
    global _provider, _workflow
    _provider = provider
    _workflow = None


def set_provision_limiter(limiter: RateLimiter) -> None:
    """Swap the handshake rate limiter, e.g. for a shared store."""
    global _provision_limiter
    _provision_limiter = limiter


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _orgs, _provider, _registry, _workflow, _provision_limiter
    _db = None
    _orgs = None
    _provider = None
    _registry = None
    _workflow = None
    _provision_limiter = None
