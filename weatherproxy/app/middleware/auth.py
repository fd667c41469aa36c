"""Authenticated session lookup.

The proxy does not own user accounts; it asks Supabase who the bearer
token belongs to. Lookups are optional: routes that only need a stable
rate-limit identity treat every failure as "anonymous".
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request

from weatherproxy.app.core.config import Settings
from weatherproxy.app.core.http_client import get_http_client
from weatherproxy.app.core.logging import get_logger

logger = get_logger(__name__)

# Bearer tokens longer than this are rejected without an upstream call
MAX_TOKEN_LENGTH = 4096


@dataclass(frozen=True)
class AuthenticatedUser:
    """Principal resolved from the request's session credentials."""
    id: str
    email: Optional[str] = None


def extract_bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("authorization", "")
    if not auth.startswith("Bearer "):
        return None
    token = auth[7:].strip()
    if not token or len(token) > MAX_TOKEN_LENGTH:
        return None
    return token


class AuthProvider(ABC):
    """Capability that maps a request to its authenticated user."""

    @abstractmethod
    async def get_authenticated_user(self, request: Request) -> Optional[AuthenticatedUser]:
        """Return the signed-in user, or None.

        Implementations may raise; callers that must not fail use
        :func:`get_optional_user`.
        """


class NullAuthProvider(AuthProvider):
    """Used when no session store is configured."""

    async def get_authenticated_user(self, request: Request) -> Optional[AuthenticatedUser]:
        return None


class SupabaseAuthProvider(AuthProvider):
    """Resolves bearer tokens against the Supabase Auth ``/user`` endpoint."""

    def __init__(
        self,
        supabase_url: str,
        anon_key: str,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.supabase_url = supabase_url.rstrip("/")
        self.anon_key = anon_key
        self._http_client = http_client

    def _client(self) -> httpx.AsyncClient:
        return self._http_client or get_http_client()

    async def get_authenticated_user(self, request: Request) -> Optional[AuthenticatedUser]:
        token = extract_bearer_token(request)
        if token is None:
            return None

        response = await self._client().get(
            f"{self.supabase_url}/auth/v1/user",
            headers={
                "apikey": self.anon_key,
                "Authorization": f"Bearer {token}",
            },
        )
        if response.status_code != 200:
            return None

        data = response.json()
        user_id = data.get("id") if isinstance(data, dict) else None
        if not user_id:
            return None
        return AuthenticatedUser(id=str(user_id), email=data.get("email"))


def create_auth_provider(app_settings: Settings) -> AuthProvider:
    if app_settings.supabase_configured:
        return SupabaseAuthProvider(
            app_settings.supabase_url, app_settings.supabase_anon_key
        )
    logger.info("Supabase not configured, all callers are anonymous")
    return NullAuthProvider()


async def get_optional_user(
    request: Request, auth: Optional[AuthProvider]
) -> Optional[AuthenticatedUser]:
    """Look up the signed-in user, treating any error as no user."""
    if auth is None:
        return None
    try:
        return await auth.get_authenticated_user(request)
    except Exception as e:
        logger.debug(f"Auth lookup failed, treating caller as anonymous: {e}")
        return None
