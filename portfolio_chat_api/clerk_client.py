"""Clerk Backend API client for user profile and membership lookups."""

from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from portfolio_chat_api.config import get_settings

logger = structlog.get_logger()


class ClerkError(Exception):
    """Raised when a Clerk lookup fails or returns malformed data."""

    pass


@dataclass
class ClerkUser:
    """The parts of a Clerk user that carry plan information."""

    id: str
    public_metadata: dict[str, Any] = field(default_factory=dict)
    private_metadata: dict[str, Any] = field(default_factory=dict)
    organization_memberships: list[dict[str, Any]] = field(default_factory=list)


class ClerkClient:
    """Async client for the Clerk Backend API."""

    def __init__(
        self,
        secret_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ):
        """Initialize the Clerk client.

        Args:
            secret_key: Clerk secret key (sk_...). Defaults to config value.
            base_url: Backend API base URL. Defaults to config value.
            timeout: Request timeout in seconds. Defaults to config value.
        """
        settings = get_settings()
        self._secret_key = secret_key or settings.clerk_secret_key
        self._base_url = base_url or settings.clerk_api_url
        self._timeout = timeout or settings.http_timeout_seconds
        self._client: httpx.AsyncClient | None = None

    @property
    def is_configured(self) -> bool:
        """Check if a Clerk secret key is configured."""
        return bool(self._secret_key)

    async def connect(self) -> None:
        """Create the HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": f"Bearer {self._secret_key}"},
            timeout=httpx.Timeout(self._timeout, connect=10.0),
        )
        logger.info("Clerk client connected")

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Clerk client closed")

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        if not self.is_configured:
            raise ClerkError("Clerk secret key not configured")
        if not self._client:
            await self.connect()

        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise ClerkError(
                f"Clerk API error ({e.response.status_code}) for {path}"
            ) from e
        except httpx.HTTPError as e:
            raise ClerkError(f"Clerk API unreachable: {e}") from e
        except ValueError as e:
            raise ClerkError(f"Clerk API returned invalid JSON for {path}") from e

    async def get_user(self, user_id: str) -> ClerkUser:
        """Fetch a user with metadata and organization memberships.

        Raises:
            ClerkError: If either lookup fails or the payload is malformed.
        """
        user = await self._get(f"/users/{user_id}")
        memberships = await self._get(
            f"/users/{user_id}/organization_memberships", params={"limit": 100}
        )

        if not isinstance(user, dict):
            raise ClerkError("Clerk user payload is not an object")
        if isinstance(memberships, dict):
            memberships = memberships.get("data", [])
        if not isinstance(memberships, list):
            raise ClerkError("Clerk memberships payload is not a list")

        return ClerkUser(
            id=user.get("id", user_id),
            public_metadata=user.get("public_metadata") or {},
            private_metadata=user.get("private_metadata") or {},
            organization_memberships=memberships,
        )


# Global client instance
_clerk_client: ClerkClient | None = None


async def get_clerk_client() -> ClerkClient:
    """Get or create the global Clerk client instance."""
    global _clerk_client
    if _clerk_client is None:
        _clerk_client = ClerkClient()
        await _clerk_client.connect()
    return _clerk_client


async def close_clerk_client() -> None:
    """Close the global Clerk client."""
    global _clerk_client
    if _clerk_client:
        await _clerk_client.close()
        _clerk_client = None


def reset_clerk_client() -> None:
    """Reset the global Clerk client (for testing)."""
    global _clerk_client
    _clerk_client = None
