"""Bearer-token identity verification against an OIDC provider's JWKS."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

import httpx
from jose import JWTError, jwt

from chat_gateway.config.settings import Settings
from chat_gateway.core.exceptions import AuthenticationError
from chat_gateway.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuthUser:
    """Authenticated caller. ``sub`` is the stable identity used for quotas."""

    sub: str
    email: Optional[str] = None


class IdentityVerifier(Protocol):
    async def verify(self, token: str) -> AuthUser:
        """Return the caller for ``token`` or raise AuthenticationError."""
        ...


def parse_bearer(header: Optional[str]) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not header:
        raise AuthenticationError("Missing Authorization header")
    parts = header.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        raise AuthenticationError("Invalid Authorization header format. Expected: Bearer <token>")
    return parts[1]


def is_admin(email: Optional[str], admin_emails: Iterable[str]) -> bool:
    """Case-insensitive allow-list check. No email means no admin."""
    if not email:
        return False
    admins = {e.strip().lower() for e in admin_emails if e and e.strip()}
    return email.strip().lower() in admins


class JwksIdentityVerifier(IdentityVerifier):
    """Verify RS256 access tokens issued by ``https://{domain}/``.

    The JWKS document is cached for ``jwks_cache_seconds``. When the access
    token has no ``email`` claim the userinfo endpoint is consulted on a
    best-effort basis.
    """

    def __init__(
        self,
        domain: str,
        audience: str,
        *,
        algorithms: Optional[List[str]] = None,
        jwks_cache_seconds: int = 3600,
        timeout_seconds: float = 5,
        jwks: Optional[Dict[str, Any]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.domain = domain.strip().rstrip("/")
        self.audience = audience
        self.algorithms = algorithms or ["RS256"]
        self.jwks_cache_seconds = jwks_cache_seconds
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._jwks = jwks
        # Preloaded key sets never expire.
        self._jwks_fetched_at: Optional[float] = None if jwks is None else float("inf")

    @classmethod
    def from_settings(cls, settings: Settings) -> "JwksIdentityVerifier":
        return cls(
            settings.auth_domain,
            settings.auth_audience,
            algorithms=settings.auth_algorithms_list,
            jwks_cache_seconds=settings.jwks_cache_seconds,
            timeout_seconds=settings.auth_timeout_seconds,
        )

    @property
    def issuer(self) -> str:
        return f"https://{self.domain}/"

    async def _get_jwks(self) -> Dict[str, Any]:
        now = self._clock()
        if (
            self._jwks is not None
            and self._jwks_fetched_at is not None
            and now - self._jwks_fetched_at < self.jwks_cache_seconds
        ):
            return self._jwks

        url = f"https://{self.domain}/.well-known/jwks.json"
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds)) as client:
            response = await client.get(url)
            response.raise_for_status()
            self._jwks = response.json()
        self._jwks_fetched_at = now
        return self._jwks

    async def _fetch_email(self, token: str) -> Optional[str]:
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds)) as client:
                response = await client.get(
                    f"https://{self.domain}/userinfo",
                    headers={"Authorization": f"Bearer {token}"},
                )
            if response.is_success:
                return response.json().get("email")
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Failed to fetch userinfo", data={"error": str(exc)})
        return None

    async def verify(self, token: str) -> AuthUser:
        if not self.domain:
            raise AuthenticationError("Authentication is not configured")

        try:
            jwks = await self._get_jwks()
            claims = jwt.decode(
                token,
                jwks,
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_at_hash": False},
            )
        except (JWTError, httpx.HTTPError, ValueError) as exc:
            raise AuthenticationError(f"Token verification failed: {exc}") from exc

        sub = claims.get("sub")
        if not sub:
            raise AuthenticationError("Token verification failed: missing subject")

        email = claims.get("email") or await self._fetch_email(token)
        return AuthUser(sub=str(sub), email=email)
