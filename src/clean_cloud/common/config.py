"""Clean control-plane configuration via pydantic-settings."""

import warnings
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_DEFAULTS = {
    "secret_key": "insecure-dev-key-change-me",
    "super_admin_key": "insecure-super-admin-key-change-me",
}


class CleanSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CLEAN_")

    environment: str = "development"
    secret_key: str = "insecure-dev-key-change-me"
    log_level: str = "INFO"

    # Enables /dev/test-license. Never set in production.
    dev_mode: bool = False

    # Database
    db_url: str = "sqlite+aiosqlite:///./data/clean.db"

    # API
    api_title: str = "Clean Cloud"
    api_version: str = "0.1.0"
    super_admin_key: str = "insecure-super-admin-key-change-me"
    host: str = "0.0.0.0"
    port: int = 8080
    api_prefix: str = ""
    cors_origins: list[str] = ["http://localhost:3000"]

    # Dashboard sessions
    session_max_age: int = 8 * 3600  # seconds

    # Licensing. PEM-encoded P-256 private key; literal "\n" sequences allowed.
    license_private_key: str = ""
    default_license_months: int = 12

    # Cloudflare tunnel provider
    cloudflare_api_url: str = "https://api.cloudflare.com/client/v4"
    cloudflare_api_token: str = ""
    cloudflare_account_id: str = ""
    cloudflare_zone_id: str = ""
    tunnel_domain: str = "tryclean.ai"
    engine_service: str = "http://clean:8000"
    dashboard_service: str = "http://dashboard:3000"
    engine_path: str = "/mcp/.*"
    provider_timeout: float = 30.0

    # CLI provisioning handshake rate limit
    provision_rate_limit: int = 5
    provision_rate_window: int = 60  # seconds

    def validate_for_production(self) -> None:
        """Raise if insecure defaults are used in non-development environments."""
        insecure_fields = [
            field
            for field, default in _INSECURE_DEFAULTS.items()
            if getattr(self, field) == default
        ]

        if self.environment != "development" and self.dev_mode:
            raise RuntimeError(
                f"CLEAN_DEV_MODE must not be enabled in '{self.environment}' environment"
            )

        if self.environment != "development" and insecure_fields:
            env_vars = ", ".join(f"CLEAN_{f.upper()}" for f in insecure_fields)
            raise RuntimeError(
                f"Insecure default values detected in '{self.environment}' environment. "
                f"Set these environment variables to secure values: {env_vars}. "
                "Generate secrets with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
            )

        if insecure_fields:
            warnings.warn(
                "Using insecure default keys — set CLEAN_SECRET_KEY and "
                "CLEAN_SUPER_ADMIN_KEY for production",
                UserWarning,
                stacklevel=2,
            )


@lru_cache
def get_settings() -> CleanSettings:
    settings = CleanSettings()
    settings.validate_for_production()
    return settings
