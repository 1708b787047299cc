"""Subscription tier resolution for signed-in users.

A recruiter plan can come from organization billing, a manual override in
public metadata, or billing webhooks writing private metadata. Sources are
checked in order and the first match wins; anything else is ``free``.
"""

from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from portfolio_chat_api.clerk_client import ClerkUser, get_clerk_client
from portfolio_chat_api.identity import Identity
from portfolio_chat_api.models import Tier
from portfolio_chat_api.observability import plan_resolution_failures_total

logger = structlog.get_logger()

PlanSource = Callable[[ClerkUser], Tier | None]
UserLookup = Callable[[str], Awaitable[ClerkUser]]


def _as_tier(value: Any) -> Tier | None:
    return Tier.RECRUITER if value == Tier.RECRUITER.value else None


def organization_plan(user: ClerkUser) -> Tier | None:
    """Recruiter if any organization the user belongs to is on the recruiter plan."""
    for membership in user.organization_memberships:
        organization = membership.get("organization") or {}
        metadata = organization.get("public_metadata") or {}
        if _as_tier(metadata.get("plan")):
            return Tier.RECRUITER
    return None


def public_metadata_plan(user: ClerkUser) -> Tier | None:
    """Manual assignment in the user's public metadata."""
    return _as_tier(user.public_metadata.get("subscriptionPlan"))


def private_metadata_plan(user: ClerkUser) -> Tier | None:
    """Assignment written by billing webhooks into private metadata."""
    return _as_tier(user.private_metadata.get("subscriptionPlan"))


PLAN_SOURCES: list[PlanSource] = [
    organization_plan,
    public_metadata_plan,
    private_metadata_plan,
]


def plan_from_user(user: ClerkUser, sources: list[PlanSource] | None = None) -> Tier:
    """Apply plan sources in order, defaulting to free."""
    for source in sources or PLAN_SOURCES:
        tier = source(user)
        if tier is not None:
            return tier
    return Tier.FREE


class PlanResolver:
    """Resolve a caller's tier, failing closed to ``free``."""

    def __init__(self, lookup: UserLookup, sources: list[PlanSource] | None = None):
        self._lookup = lookup
        self._sources = sources or PLAN_SOURCES

    async def resolve(self, identity: Identity) -> Tier:
        if identity.is_guest:
            return Tier.FREE

        try:
            user = await self._lookup(identity.key)
            tier = plan_from_user(user, self._sources)
        except Exception as e:
            logger.error("Plan lookup failed, defaulting to free", error=str(e))
            plan_resolution_failures_total.inc()
            return Tier.FREE

        logger.debug("Plan resolved", tier=tier.value)
        return tier


async def _clerk_lookup(user_id: str) -> ClerkUser:
    client = await get_clerk_client()
    return await client.get_user(user_id)


def get_plan_resolver() -> PlanResolver:
    """Plan resolver backed by the global Clerk client."""
    return PlanResolver(_clerk_lookup)
