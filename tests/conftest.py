"""Shared test fixtures for Clean Cloud."""

import itertools
import os

import pytest
from httpx import ASGITransport, AsyncClient

from clean_cloud.common.exceptions import ProviderRequestError
from clean_cloud.licensing.codec import generate_signing_key
from clean_cloud.tunnels.cloudflare import TunnelCreateResult, TunnelStatus


SECRET_KEY = "test-secret-key-for-unit-tests"
SUPER_ADMIN_KEY = "test-super-admin-key"
TUNNEL_DOMAIN = "tryclean.ai"

# One key per run; generating P-256 keys per test is wasted work.
SIGNING_KEY = generate_signing_key()


class FakeTunnelProvider:
    """In-memory tunnel provider that records every call."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.live: dict[str, str] = {}
        self.connected: set[str] = set()
        self.fail_create: Exception | None = None
        self.fail_delete: Exception | None = None
        self.status_unavailable = False
        self._ids = itertools.count(1)

    async def create_tunnel(self, org_slug: str) -> TunnelCreateResult:
        self.calls.append(("create", org_slug))
        if self.fail_create is not None:
            raise self.fail_create
        n = next(self._ids)
        tunnel_id = f"tun-{n}"
        self.live[tunnel_id] = f"dns-{n}"
        return TunnelCreateResult(
            tunnel_id=tunnel_id,
            token=f"token-{n}",
            hostname=f"{org_slug}.{TUNNEL_DOMAIN}",
            dns_record_id=f"dns-{n}",
        )

    async def delete_tunnel(self, tunnel_id: str, dns_record_id: str) -> None:
        self.calls.append(("delete", tunnel_id, dns_record_id))
        if self.fail_delete is not None:
            raise self.fail_delete
        self.live.pop(tunnel_id, None)

    async def get_tunnel_status(self, tunnel_id: str) -> TunnelStatus | None:
        self.calls.append(("status", tunnel_id))
        if self.status_unavailable:
            return None
        connections = [{"id": "conn-1"}] if tunnel_id in self.connected else []
        return TunnelStatus(
            id=tunnel_id,
            name="clean-test",
            status="healthy" if connections else "inactive",
            connections=connections,
        )

    def count(self, kind: str) -> int:
        return sum(1 for call in self.calls if call[0] == kind)


def _set_env(**overrides):
    env = {
        "CLEAN_DB_URL": "sqlite+aiosqlite://",
        "CLEAN_SECRET_KEY": SECRET_KEY,
        "CLEAN_SUPER_ADMIN_KEY": SUPER_ADMIN_KEY,
        "CLEAN_LICENSE_PRIVATE_KEY": SIGNING_KEY,
        "CLEAN_TUNNEL_DOMAIN": TUNNEL_DOMAIN,
        "CLEAN_DEV_MODE": "false",
    }
    env.update(overrides)
    for key, value in env.items():
        os.environ[key] = value


@pytest.fixture
def signing_key():
    return SIGNING_KEY


@pytest.fixture
def provider():
    return FakeTunnelProvider()


@pytest.fixture
def provider_error():
    return ProviderRequestError("Failed to create tunnel: quota exceeded", provider_status=400)


@pytest.fixture
def env_overrides():
    """Override per test module to tweak CLEAN_* settings."""
    return {}


@pytest.fixture
def app(provider, env_overrides):
    """Create a test app with in-memory DB and a fake tunnel provider."""
    _set_env(**env_overrides)

    # Clear caches and singletons so new env vars take effect
    from clean_cloud.common.config import get_settings
    get_settings.cache_clear()

    from clean_cloud.deps import reset_singletons, set_tunnel_provider
    reset_singletons()
    set_tunnel_provider(provider)

    from clean_cloud.app import create_app
    return create_app()


@pytest.fixture
async def client(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    from clean_cloud.deps import get_db
    db = get_db()
    await db.init()
    await db.create_all()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await db.close()


@pytest.fixture
def super_admin_headers():
    return {"X-Clean-Api-Key": SUPER_ADMIN_KEY}


@pytest.fixture
def make_org(client, super_admin_headers):
    """Create an org with one member and return (org, session headers)."""

    async def _make(name="Acme Corp", slug="acme-corp", role="OWNER", user_id="user-1"):
        resp = await client.post(
            "/orgs",
            json={"name": name, "slug": slug},
            headers=super_admin_headers,
        )
        assert resp.status_code == 201, resp.text
        org = resp.json()
        resp = await client.post(
            f"/orgs/{org['id']}/members",
            json={"user_id": user_id, "role": role},
            headers=super_admin_headers,
        )
        assert resp.status_code == 201, resp.text
        resp = await client.post(
            f"/orgs/{org['id']}/sessions",
            json={"user_id": user_id},
            headers=super_admin_headers,
        )
        assert resp.status_code == 201, resp.text
        return org, {"X-Clean-Session": resp.json()["session_token"]}

    return _make


@pytest.fixture
async def owner(make_org):
    return await make_org()
