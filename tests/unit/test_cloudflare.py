"""Tests for the Cloudflare tunnel client against a mocked HTTP transport."""

import json

import httpx
import pytest

from clean_cloud.common.config import CleanSettings
from clean_cloud.common.exceptions import ConfigurationError, ProviderRequestError
from clean_cloud.tunnels.cloudflare import CloudflareTunnelClient

API = "https://api.cloudflare.com/client/v4"
ACCOUNT = f"{API}/accounts/acct-1/cfd_tunnel"
ZONE = f"{API}/zones/zone-1/dns_records"


def make_settings(**overrides) -> CleanSettings:
    defaults = {
        "cloudflare_api_url": API,
        "cloudflare_api_token": "cf-token",
        "cloudflare_account_id": "acct-1",
        "cloudflare_zone_id": "zone-1",
        "tunnel_domain": "tryclean.ai",
    }
    defaults.update(overrides)
    return CleanSettings(**defaults)


def ok(result) -> httpx.Response:
    return httpx.Response(200, json={"success": True, "errors": [], "result": result})


def fail(status: int, message: str) -> httpx.Response:
    return httpx.Response(
        status, json={"success": False, "errors": [{"code": 1000, "message": message}], "result": None}
    )


class Recorder:
    """Routes requests by (method, url) and records them in order."""

    def __init__(self, routes: dict):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, str(request.url))
        if key not in self.routes:
            return fail(404, "not found")
        handler = self.routes[key]
        return handler(request) if callable(handler) else handler

    @property
    def calls(self) -> list[tuple[str, str]]:
        return [(r.method, str(r.url)) for r in self.requests]


def make_client(recorder: Recorder, **settings) -> CloudflareTunnelClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return CloudflareTunnelClient(make_settings(**settings), http_client=http)


def create_routes(overrides: dict | None = None) -> dict:
    routes = {
        ("POST", ACCOUNT): ok({"id": "tun-1", "name": "clean-acme-corp", "token": "tok-1"}),
        ("PUT", f"{ACCOUNT}/tun-1/configurations"): ok({}),
        ("POST", ZONE): ok({"id": "dns-1"}),
    }
    routes.update(overrides or {})
    return routes


class TestCreateTunnel:
    async def test_creates_tunnel_ingress_and_dns(self):
        recorder = Recorder(create_routes())
        client = make_client(recorder)

        result = await client.create_tunnel("acme-corp")

        assert result.tunnel_id == "tun-1"
        assert result.token == "tok-1"
        assert result.hostname == "acme-corp.tryclean.ai"
        assert result.dns_record_id == "dns-1"
        assert recorder.calls == [
            ("POST", ACCOUNT),
            ("PUT", f"{ACCOUNT}/tun-1/configurations"),
            ("POST", ZONE),
        ]
        for request in recorder.requests:
            assert request.headers["Authorization"] == "Bearer cf-token"

    async def test_request_bodies(self):
        recorder = Recorder(create_routes())
        await make_client(recorder).create_tunnel("acme-corp")

        create, ingress, dns = (json.loads(r.content) for r in recorder.requests)
        assert create["name"] == "clean-acme-corp"
        assert create["config_src"] == "cloudflare"
        assert len(create["tunnel_secret"]) == 44  # base64 of 32 bytes

        rules = ingress["config"]["ingress"]
        assert rules[0] == {
            "hostname": "acme-corp.tryclean.ai",
            "path": "/mcp/.*",
            "service": "http://clean:8000",
        }
        assert rules[1] == {"hostname": "acme-corp.tryclean.ai", "service": "http://dashboard:3000"}
        assert rules[-1] == {"service": "http_status:404"}

        assert dns == {
            "type": "CNAME",
            "name": "acme-corp.tryclean.ai",
            "content": "tun-1.cfargotunnel.com",
            "proxied": True,
        }

    async def test_fetches_token_when_not_returned(self):
        recorder = Recorder(create_routes({
            ("POST", ACCOUNT): ok({"id": "tun-1", "name": "clean-acme-corp"}),
            ("GET", f"{ACCOUNT}/tun-1/token"): ok("fetched-token"),
        }))
        result = await make_client(recorder).create_tunnel("acme-corp")
        assert result.token == "fetched-token"

    async def test_provider_error_message_surfaces(self):
        recorder = Recorder(create_routes({
            ("POST", ACCOUNT): fail(400, "Tunnel name already in use"),
        }))
        with pytest.raises(ProviderRequestError) as exc_info:
            await make_client(recorder).create_tunnel("acme-corp")
        assert "Tunnel name already in use" in exc_info.value.message
        assert exc_info.value.provider_status == 400
        assert len(recorder.requests) == 1

    async def test_dns_failure_leaves_tunnel(self):
        recorder = Recorder(create_routes({("POST", ZONE): fail(409, "Record already exists")}))
        with pytest.raises(ProviderRequestError, match="create DNS record"):
            await make_client(recorder).create_tunnel("acme-corp")
        assert not any(method == "DELETE" for method, _ in recorder.calls)

    async def test_transport_error_wrapped(self):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        recorder = Recorder({("POST", ACCOUNT): boom})
        with pytest.raises(ProviderRequestError, match="connection refused"):
            await make_client(recorder).create_tunnel("acme-corp")


class TestDeleteTunnel:
    async def test_deletes_dns_then_connections_then_tunnel(self):
        recorder = Recorder({
            ("DELETE", f"{ZONE}/dns-1"): ok({"id": "dns-1"}),
            ("DELETE", f"{ACCOUNT}/tun-1/connections"): ok(None),
            ("DELETE", f"{ACCOUNT}/tun-1"): ok({"id": "tun-1"}),
        })
        await make_client(recorder).delete_tunnel("tun-1", "dns-1")
        assert recorder.calls == [
            ("DELETE", f"{ZONE}/dns-1"),
            ("DELETE", f"{ACCOUNT}/tun-1/connections"),
            ("DELETE", f"{ACCOUNT}/tun-1"),
        ]

    async def test_already_deleted_is_success(self):
        # Every route 404s.
        recorder = Recorder({})
        await make_client(recorder).delete_tunnel("tun-1", "dns-1")
        assert len(recorder.requests) == 3

    async def test_best_effort_steps_do_not_raise(self):
        recorder = Recorder({
            ("DELETE", f"{ZONE}/dns-1"): fail(500, "DNS backend down"),
            ("DELETE", f"{ACCOUNT}/tun-1/connections"): fail(500, "busy"),
            ("DELETE", f"{ACCOUNT}/tun-1"): ok({"id": "tun-1"}),
        })
        await make_client(recorder).delete_tunnel("tun-1", "dns-1")

    async def test_final_delete_failure_raises(self):
        recorder = Recorder({
            ("DELETE", f"{ACCOUNT}/tun-1"): fail(400, "Cannot delete tunnel with active connections"),
        })
        with pytest.raises(ProviderRequestError, match="active connections"):
            await make_client(recorder).delete_tunnel("tun-1", "dns-1")


class TestTunnelStatus:
    async def test_connected(self):
        recorder = Recorder({
            ("GET", f"{ACCOUNT}/tun-1"): ok({
                "id": "tun-1",
                "name": "clean-acme-corp",
                "status": "healthy",
                "connections": [{"colo_name": "dfw01"}],
            }),
        })
        status = await make_client(recorder).get_tunnel_status("tun-1")
        assert status.status == "healthy"
        assert status.connected is True

    async def test_no_connections(self):
        recorder = Recorder({
            ("GET", f"{ACCOUNT}/tun-1"): ok({"id": "tun-1", "status": "inactive", "connections": []}),
        })
        status = await make_client(recorder).get_tunnel_status("tun-1")
        assert status.connected is False

    async def test_provider_error_returns_none(self):
        recorder = Recorder({("GET", f"{ACCOUNT}/tun-1"): fail(500, "oops")})
        assert await make_client(recorder).get_tunnel_status("tun-1") is None

    async def test_transport_error_returns_none(self):
        def boom(request):
            raise httpx.ReadTimeout("timed out", request=request)

        recorder = Recorder({("GET", f"{ACCOUNT}/tun-1"): boom})
        assert await make_client(recorder).get_tunnel_status("tun-1") is None

    async def test_malformed_body_returns_none(self):
        recorder = Recorder({("GET", f"{ACCOUNT}/tun-1"): httpx.Response(200, text="<html>")})
        assert await make_client(recorder).get_tunnel_status("tun-1") is None


class TestRotateTunnel:
    async def test_delete_then_create_same_hostname(self):
        routes = create_routes({("DELETE", f"{ACCOUNT}/tun-0"): ok({"id": "tun-0"})})
        recorder = Recorder(routes)
        result = await make_client(recorder).rotate_tunnel("acme-corp", "tun-0", "dns-0")
        assert result.hostname == "acme-corp.tryclean.ai"
        assert result.tunnel_id == "tun-1"
        assert recorder.calls[2] == ("DELETE", f"{ACCOUNT}/tun-0")
        assert recorder.calls[3] == ("POST", ACCOUNT)


class TestConfiguration:
    @pytest.mark.parametrize(
        "field, env_var",
        [
            ("cloudflare_api_token", "CLEAN_CLOUDFLARE_API_TOKEN"),
            ("cloudflare_account_id", "CLEAN_CLOUDFLARE_ACCOUNT_ID"),
            ("cloudflare_zone_id", "CLEAN_CLOUDFLARE_ZONE_ID"),
        ],
    )
    async def test_missing_setting_names_variable(self, field, env_var):
        recorder = Recorder(create_routes())
        client = make_client(recorder, **{field: ""})
        with pytest.raises(ConfigurationError) as exc_info:
            await client.create_tunnel("acme-corp")
        assert env_var in exc_info.value.message

    async def test_hostname_for(self):
        client = make_client(Recorder({}), tunnel_domain="example.dev")
        assert client.hostname_for("acme-corp") == "acme-corp.example.dev"

    async def test_aclose(self):
        client = make_client(Recorder({}))
        await client.aclose()
        assert client._http_client is None
