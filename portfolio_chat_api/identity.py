"""Caller identity resolution for quota tracking.

Signed-in callers are identified by their Clerk user id, taken from a
verified session token. Everyone else is a guest keyed by network origin.
Guests behind the same NAT or proxy share one identity and one quota.
"""

import asyncio
from dataclasses import dataclass

import jwt
import structlog
from fastapi import Request

from portfolio_chat_api.config import get_settings

logger = structlog.get_logger()

LOOPBACK_PLACEHOLDER = "127.0.0.1"
SESSION_COOKIE = "__session"
FORWARDED_HEADERS = ("x-forwarded-for", "x-real-ip")


@dataclass(frozen=True)
class Identity:
    """Quota key for a caller."""

    key: str
    is_guest: bool


class SessionTokenVerifier:
    """Verify Clerk session JWTs and return the user id (``sub``)."""

    def __init__(
        self,
        jwt_key: str | None = None,
        jwks_url: str | None = None,
        authorized_parties: list[str] | None = None,
    ):
        """Initialize the verifier.

        Args:
            jwt_key: PEM public key. Defaults to config value.
            jwks_url: Clerk JWKS endpoint, used when no PEM key is set. Defaults to config value.
            authorized_parties: Accepted ``azp`` values. Empty list accepts any.
        """
        settings = get_settings()
        self._jwt_key = jwt_key if jwt_key is not None else settings.clerk_jwt_key
        self._jwks_url = jwks_url if jwks_url is not None else settings.clerk_jwks_url
        self._authorized_parties = (
            authorized_parties
            if authorized_parties is not None
            else settings.clerk_authorized_parties
        )
        self._jwks_client = jwt.PyJWKClient(self._jwks_url) if self._jwks_url else None

    @property
    def is_configured(self) -> bool:
        """Check if a verification key source is configured."""
        return bool(self._jwt_key or self._jwks_client)

    def _signing_key(self, token: str):
        if self._jwt_key:
            return self._jwt_key
        return self._jwks_client.get_signing_key_from_jwt(token).key

    def verify(self, token: str) -> str | None:
        """Return the user id for a valid token, None otherwise."""
        if not token or not self.is_configured:
            return None

        try:
            claims = jwt.decode(
                token,
                self._signing_key(token),
                algorithms=["RS256"],
                options={"require": ["sub", "exp"]},
            )
        except jwt.PyJWTError as e:
            logger.info("Session token rejected", error=str(e))
            return None

        azp = claims.get("azp")
        if self._authorized_parties and azp and azp not in self._authorized_parties:
            logger.warning("Session token from unauthorized party", azp=azp)
            return None

        user_id = claims.get("sub")
        return user_id if isinstance(user_id, str) and user_id else None


def extract_session_token(request: Request) -> str | None:
    """Read the session token from the Authorization header or Clerk cookie."""
    auth_header = request.headers.get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(SESSION_COOKIE) or None


def origin_address(request: Request) -> str:
    """Network origin of the caller, from the first forwarded header present."""
    for header in FORWARDED_HEADERS:
        value = request.headers.get(header)
        if value:
            # X-Forwarded-For is "client, proxy1, proxy2"
            first = value.split(",")[0].strip()
            if first:
                return first
    return LOOPBACK_PLACEHOLDER


async def resolve_identity(request: Request, verifier: SessionTokenVerifier) -> Identity:
    """Resolve the caller identity. Never raises: failures resolve to a guest."""
    token = extract_session_token(request)
    if token:
        try:
            # JWKS fetches are blocking network calls
            user_id = await asyncio.to_thread(verifier.verify, token)
        except Exception as e:
            logger.warning("Session token verification failed", error=str(e))
            user_id = None
        if user_id:
            return Identity(key=user_id, is_guest=False)

    return Identity(key=origin_address(request), is_guest=True)


# Global verifier instance
_verifier: SessionTokenVerifier | None = None


def get_token_verifier() -> SessionTokenVerifier:
    """Get the global session token verifier."""
    global _verifier
    if _verifier is None:
        _verifier = SessionTokenVerifier()
    return _verifier


def reset_token_verifier() -> None:
    """Reset the global verifier (for testing)."""
    global _verifier
    _verifier = None
