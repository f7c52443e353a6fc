"""
Authentication collaborators.

RemoteAuthenticator  bearer token → auth-provider user + profile role (HTTP requests)
JwtAuthenticator     HS256 token signed with JWT_SECRET (realtime handshake)
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx
import jwt

from agentcore.config import AUTH_PROVIDER_URL, AUTH_SERVICE_KEY, JWT_SECRET
from agentcore.errors import Unauthenticated, UpstreamUnavailable

logger = logging.getLogger(__name__)

ROLES = ("customer", "artisan", "admin")


@dataclass(frozen=True)
class Principal:
    id: str
    role: str = "customer"
    email: Optional[str] = None
    claims: dict = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict:
        return {"id": self.id, "role": self.role, "email": self.email}


def _json_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError as e:
        logger.warning(f"Auth provider sent a non-JSON body (HTTP {resp.status_code}) for {resp.request.url.path}")
        raise UpstreamUnavailable("Authentication service returned an unreadable response") from e


class Authenticator(Protocol):
    async def authenticate(self, token: str) -> Principal: ...


class RemoteAuthenticator:
    """Validates bearer tokens against the auth provider's REST API."""

    def __init__(
        self,
        base_url: str = AUTH_PROVIDER_URL,
        service_key: str = AUTH_SERVICE_KEY,
        timeout: float = 5.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, bearer: str, params: Optional[dict] = None) -> httpx.Response:
        try:
            return await self._client.get(
                f"{self.base_url}{path}",
                params=params,
                headers={"apikey": self.service_key, "Authorization": f"Bearer {bearer}"},
            )
        except httpx.HTTPError as e:
            logger.warning(f"Auth provider request failed: {type(e).__name__}: {e}")
            raise UpstreamUnavailable("Authentication service unavailable") from e

    async def authenticate(self, token: str) -> Principal:
        if not token:
            raise Unauthenticated("No valid authorization token provided")

        resp = await self._get("/auth/v1/user", token)
        if resp.status_code in (401, 403):
            raise Unauthenticated("Invalid token")
        if resp.status_code >= 400:
            raise UpstreamUnavailable(f"Authentication service returned HTTP {resp.status_code}")
        user = _json_body(resp) or {}
        user_id = user.get("id")
        if not user_id:
            raise Unauthenticated("Invalid token")

        resp = await self._get(
            "/rest/v1/user_profiles",
            self.service_key,
            params={"select": "*", "id": f"eq.{user_id}"},
        )
        if resp.status_code >= 400:
            raise UpstreamUnavailable(f"Profile lookup returned HTTP {resp.status_code}")
        rows = _json_body(resp) or []
        if not rows:
            raise Unauthenticated("User profile is missing")
        profile = rows[0]
        return Principal(
            id=str(user_id),
            role=str(profile.get("role") or "customer"),
            email=user.get("email"),
            claims={"profile": profile},
        )


class JwtAuthenticator:
    """Verifies HS256 tokens; the user id is taken from ``sub`` or ``id``."""

    def __init__(self, secret: str = JWT_SECRET, algorithms: tuple[str, ...] = ("HS256",)) -> None:
        self.secret = secret
        self.algorithms = list(algorithms)

    def verify(self, token: Optional[str]) -> Principal:
        if not token:
            raise Unauthenticated("Authentication required")
        try:
            claims: dict[str, Any] = jwt.decode(token, self.secret, algorithms=self.algorithms)
        except jwt.ExpiredSignatureError as e:
            raise Unauthenticated("Token expired") from e
        except jwt.InvalidTokenError as e:
            raise Unauthenticated("Invalid token") from e
        user_id = claims.get("sub") or claims.get("id")
        if not user_id:
            raise Unauthenticated("Token has no subject")
        return Principal(
            id=str(user_id),
            role=str(claims.get("role") or "customer"),
            email=claims.get("email"),
            claims=claims,
        )

    async def authenticate(self, token: str) -> Principal:
        return self.verify(token)

    def issue(self, user_id: str, **claims: Any) -> str:
        """Sign a token for ``user_id`` (used by tooling and tests)."""
        return jwt.encode({"sub": user_id, **claims}, self.secret, algorithm=self.algorithms[0])
