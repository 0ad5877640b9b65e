"""Tests for the installer handshake command."""

import httpx
import pytest
from typer.testing import CliRunner

from clean_cloud.cli import app

runner = CliRunner()


@pytest.fixture
def post(monkeypatch):
    """Replace httpx.post with a recorder returning a canned response."""
    calls = []
    response = {"value": httpx.Response(200, json={})}

    def fake_post(url, **kwargs):
        calls.append(url)
        return response["value"]

    monkeypatch.setattr(httpx, "post", fake_post)
    monkeypatch.delenv("CLEAN_API_PREFIX", raising=False)

    def respond(resp: httpx.Response):
        response["value"] = resp
        return calls

    return respond


class TestProvision:
    def test_success(self, post):
        calls = post(httpx.Response(200, json={
            "tunnelToken": "token-1",
            "tunnelUrl": "https://acme-corp.tryclean.ai",
            "orgSlug": "acme-corp",
            "tier": "pro",
            "maxRepos": 25,
            "maxUsers": 10,
        }))
        result = runner.invoke(app, ["provision", "--license", "key", "--url", "http://cp.test/"])
        assert result.exit_code == 0
        assert "acme-corp" in result.output
        assert "CLOUDFLARE_TUNNEL_TOKEN=token-1" in result.output
        assert calls == ["http://cp.test/cli/provision"]

    def test_prefix(self, post):
        calls = post(httpx.Response(401, json={"error": "Invalid license", "code": "INVALID_LICENSE"}))
        runner.invoke(
            app, ["provision", "--license", "key", "--url", "http://cp.test", "--prefix", "/api"]
        )
        assert calls == ["http://cp.test/api/cli/provision"]

    def test_error_body(self, post):
        post(httpx.Response(401, json={"error": "Invalid license", "code": "INVALID_LICENSE"}))
        result = runner.invoke(app, ["provision", "--license", "key"])
        assert result.exit_code == 1
        assert "Invalid license" in result.output

    def test_non_json_error(self, post):
        post(httpx.Response(502, text="Bad gateway"))
        result = runner.invoke(app, ["provision", "--license", "key"])
        assert result.exit_code == 1
        assert result.exception is None or isinstance(result.exception, SystemExit)
        assert "502" in result.output
        assert "Bad gateway" in result.output
