"""Authentication dependencies.

Three kinds of caller reach the API:

- operators, with the super-admin key in ``X-Clean-Api-Key``;
- dashboard users, with a signed session token (``clean_session`` cookie or
  ``X-Clean-Session`` header) minted by the sign-in layer;
- installers, with a license token as ``Authorization: Bearer``.
"""

import hmac
from dataclasses import dataclass

from fastapi import Header, HTTPException, Request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from clean_cloud.orgs.models import ROLE_OWNER

SESSION_COOKIE = "clean_session"
SESSION_HEADER = "X-Clean-Session"


@dataclass
class AuthContext:
    """Resolved dashboard caller available to request handlers."""
    user_id: str
    org_id: str
    role: str

    @property
    def is_owner(self) -> bool:
        return self.role == ROLE_OWNER


async def require_super_admin(
    x_clean_api_key: str = Header(..., alias="X-Clean-Api-Key"),
) -> str:
    """FastAPI dependency that validates the super-admin key from header."""
    from clean_cloud.common.config import get_settings

    settings = get_settings()
    if not hmac.compare_digest(x_clean_api_key, settings.super_admin_key):
        raise HTTPException(status_code=403, detail="Invalid super-admin key")
    return x_clean_api_key


# ── Dashboard sessions ──

def _get_serializer() -> URLSafeTimedSerializer:
    from clean_cloud.common.config import get_settings
    return URLSafeTimedSerializer(get_settings().secret_key, salt="dashboard-session")


def create_session_token(user_id: str, org_id: str) -> str:
    """Sign a session payload for the given user and active organization."""
    return _get_serializer().dumps({"user_id": user_id, "org_id": org_id})


def verify_session_token(token: str) -> dict | None:
    """Verify and decode a session token. Returns payload or None."""
    from clean_cloud.common.config import get_settings

    try:
        payload = _get_serializer().loads(token, max_age=get_settings().session_max_age)
    except (BadSignature, SignatureExpired):
        return None
    if not isinstance(payload, dict) or not payload.get("user_id") or not payload.get("org_id"):
        return None
    return payload


async def require_session(request: Request) -> AuthContext:
    """FastAPI dependency resolving the dashboard caller and their org role.

    The role comes from the membership table, not the token, so a demoted
    or removed member loses access without waiting for the session to expire.
    """
    token = request.headers.get(SESSION_HEADER) or request.cookies.get(SESSION_COOKIE)
    payload = verify_session_token(token) if token else None
    if payload is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    from clean_cloud.deps import get_db, get_org_service

    async with get_db().get_session() as session:
        role = await get_org_service().get_member_role(
            session, payload["org_id"], payload["user_id"]
        )
    if role is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return AuthContext(user_id=payload["user_id"], org_id=payload["org_id"], role=role)


# ── Installer bearer credentials ──

def parse_bearer(authorization: str | None) -> str | None:
    """Extract the credential from an ``Authorization: Bearer`` header."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None
