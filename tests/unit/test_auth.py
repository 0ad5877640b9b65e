"""Tests for session tokens, bearer parsing and settings validation."""

import os

import pytest

from clean_cloud.common.config import CleanSettings, get_settings
from clean_cloud.common.security import (
    create_session_token,
    parse_bearer,
    verify_session_token,
)


@pytest.fixture
def settings_env():
    os.environ["CLEAN_SECRET_KEY"] = "unit-test-secret"
    os.environ["CLEAN_SESSION_MAX_AGE"] = "3600"
    get_settings.cache_clear()
    yield
    os.environ.pop("CLEAN_SESSION_MAX_AGE", None)
    os.environ.pop("CLEAN_SECRET_KEY", None)
    get_settings.cache_clear()


class TestSessionTokens:
    def test_round_trip(self, settings_env):
        token = create_session_token("user-1", "org-1")
        assert verify_session_token(token) == {"user_id": "user-1", "org_id": "org-1"}

    def test_tampered(self, settings_env):
        token = create_session_token("user-1", "org-1")
        assert verify_session_token(token[:-2] + "xx") is None

    def test_other_secret(self, settings_env):
        token = create_session_token("user-1", "org-1")
        os.environ["CLEAN_SECRET_KEY"] = "rotated-secret"
        get_settings.cache_clear()
        assert verify_session_token(token) is None

    def test_expired(self, settings_env):
        token = create_session_token("user-1", "org-1")
        os.environ["CLEAN_SESSION_MAX_AGE"] = "-1"
        get_settings.cache_clear()
        assert verify_session_token(token) is None


class TestParseBearer:
    @pytest.mark.parametrize(
        "header, expected",
        [
            ("Bearer abc.def.ghi", "abc.def.ghi"),
            ("Bearer   padded  ", "padded"),
            ("Bearer ", None),
            ("Basic dXNlcjpwYXNz", None),
            ("bearer abc", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse(self, header, expected):
        assert parse_bearer(header) == expected


class TestProductionValidation:
    def test_dev_mode_rejected_outside_development(self):
        settings = CleanSettings(
            environment="production",
            dev_mode=True,
            secret_key="s" * 32,
            super_admin_key="k" * 32,
        )
        with pytest.raises(RuntimeError, match="CLEAN_DEV_MODE"):
            settings.validate_for_production()

    def test_insecure_defaults_rejected_in_production(self):
        settings = CleanSettings(
            environment="production",
            secret_key="insecure-dev-key-change-me",
            super_admin_key="k" * 32,
        )
        with pytest.raises(RuntimeError, match="CLEAN_SECRET_KEY"):
            settings.validate_for_production()

    def test_insecure_defaults_warn_in_development(self):
        settings = CleanSettings(
            environment="development",
            secret_key="insecure-dev-key-change-me",
        )
        with pytest.warns(UserWarning):
            settings.validate_for_production()

    def test_secure_production_passes(self):
        CleanSettings(
            environment="production",
            dev_mode=False,
            secret_key="s" * 32,
            super_admin_key="k" * 32,
        ).validate_for_production()
