"""Per-identity, per-day message usage tracking."""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

import structlog

from portfolio_chat_api.config import get_settings
from portfolio_chat_api.identity import Identity
from portfolio_chat_api.usage_store import UsageStore, get_usage_store

logger = structlog.get_logger()


@dataclass(frozen=True)
class UsageStatus:
    """Snapshot of a caller's usage for the current day."""

    allowed: bool
    remaining: int
    limit: int
    used: int
    key: str = ""


class UsageTracker:
    """Daily message counters keyed by (identity, day).

    Days are calendar days in a fixed reference timezone. A new day yields a
    new key, so counts reset without any cleanup job; old keys expire in the store.
    """

    def __init__(
        self,
        store: UsageStore,
        timezone: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the tracker.

        Args:
            store: Counter store.
            timezone: IANA name of the day boundary timezone. Defaults to config value.
            clock: Returns the current aware datetime. Defaults to ``datetime.now``.
        """
        self._store = store
        self._tz = ZoneInfo(timezone or get_settings().usage_timezone)
        self._clock = clock or (lambda: datetime.now(self._tz))

    def today(self) -> str:
        """Current day in the reference timezone, ISO formatted."""
        return self._clock().astimezone(self._tz).date().isoformat()

    def key_for(self, identity: Identity) -> str:
        kind = "guest" if identity.is_guest else "user"
        return f"usage:{kind}:{identity.key}:{self.today()}"

    @staticmethod
    def _status(used: int, limit: int) -> UsageStatus:
        return UsageStatus(
            allowed=used < limit,
            remaining=max(0, limit - used),
            limit=limit,
            used=used,
        )

    async def check(self, identity: Identity, limit: int) -> UsageStatus:
        """Read today's usage without modifying it."""
        used = await self._store.get(self.key_for(identity))
        return self._status(used, limit)

    async def acquire(self, identity: Identity, limit: int) -> UsageStatus:
        """Atomically take one message slot if any is left.

        Returns:
            Status after the increment, or with ``allowed=False`` if the
            ceiling had already been reached (nothing is incremented then).
            ``key`` names the counter that was incremented.
        """
        key = self.key_for(identity)
        used = await self._store.increment_with_ceiling(key, limit)
        if used is None:
            logger.info("Usage ceiling reached", is_guest=identity.is_guest, limit=limit)
            return UsageStatus(allowed=False, remaining=0, limit=limit, used=limit, key=key)
        return UsageStatus(
            allowed=True,
            remaining=max(0, limit - used),
            limit=limit,
            used=used,
            key=key,
        )

    async def commit(self, identity: Identity, limit: int) -> UsageStatus:
        """Record one consumed message after a gated action succeeded."""
        status = await self.acquire(identity, limit)
        if not status.allowed:
            logger.warning(
                "Commit past daily limit ignored",
                is_guest=identity.is_guest,
                limit=limit,
            )
        return status

    async def release(self, identity: Identity, reserved: UsageStatus) -> None:
        """Give back a slot taken by ``acquire`` when the gated action failed.

        The slot is returned to the counter ``acquire`` incremented, even if
        the day has changed since.
        """
        used = await self._store.decrement(reserved.key)
        logger.info("Usage slot released", is_guest=identity.is_guest, used=used)


def get_usage_tracker() -> UsageTracker:
    """Build a tracker over the global usage store."""
    return UsageTracker(get_usage_store())
