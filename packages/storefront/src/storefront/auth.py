"""Authentication for the storefront API.

Bearer API keys are resolved to a user by an authentication backend that
runs as middleware; route-level dependencies then enforce authorization.
"""

import hashlib
import logging
from collections.abc import Mapping

from fastapi import HTTPException, Request
from starlette.authentication import (
    AuthCredentials,
    AuthenticationBackend,
    BaseUser,
)
from starlette.requests import HTTPConnection

from storefront.config import Settings

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"
AUTHENTICATED_SCOPE = "authenticated"


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


class StorefrontUser(BaseUser):
    """A caller identified by API key."""

    def __init__(self, user_id: str, *, is_admin: bool = False) -> None:
        self.user_id = user_id
        self.is_admin = is_admin

    @property
    def is_authenticated(self) -> bool:
        return True

    @property
    def display_name(self) -> str:
        return self.user_id

    @property
    def identity(self) -> str:
        return self.user_id


def extract_bearer_token(authorization: str | None) -> str | None:
    if authorization and authorization.startswith("Bearer "):
        token = authorization.removeprefix("Bearer ").strip()
        return token or None
    return None


class ApiKeyAuthBackend(AuthenticationBackend):
    """Resolves ``Authorization: Bearer <key>`` against hashed API keys.

    Unknown or missing keys leave the request anonymous; admin-only paths
    reject anonymous callers further down the pipeline.
    """

    def __init__(self, users_by_key_hash: Mapping[str, StorefrontUser]) -> None:
        self._users = dict(users_by_key_hash)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ApiKeyAuthBackend":
        users: dict[str, StorefrontUser] = {}
        for raw_key, user_id in settings.api_keys_map.items():
            users[hash_api_key(raw_key)] = StorefrontUser(user_id)
        if settings.admin_api_key:
            users[hash_api_key(settings.admin_api_key)] = StorefrontUser(
                ADMIN_ROLE, is_admin=True
            )
        if not users:
            logger.info("No API keys configured; all requests are anonymous")
        return cls(users)

    async def authenticate(
        self, conn: HTTPConnection
    ) -> tuple[AuthCredentials, BaseUser] | None:
        raw_key = extract_bearer_token(conn.headers.get("Authorization"))
        if raw_key is None:
            return None

        user = self._users.get(hash_api_key(raw_key))
        if user is None:
            logger.debug("Rejected unknown API key for %s", conn.url.path)
            return None

        scopes = [AUTHENTICATED_SCOPE]
        if user.is_admin:
            scopes.append(ADMIN_ROLE)
        return AuthCredentials(scopes), user


def require_user(request: Request) -> StorefrontUser:
    """FastAPI dependency that requires an authenticated caller."""
    user = request.user
    if not isinstance(user, StorefrontUser):
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


def require_admin(request: Request) -> StorefrontUser:
    """FastAPI dependency that enforces admin access."""
    user = require_user(request)
    if ADMIN_ROLE not in request.auth.scopes:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
