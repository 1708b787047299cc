"""Quota-gated ChatKit session provisioning."""

import asyncio
import secrets
import string
import time
from typing import Protocol

import structlog

from portfolio_chat_api.errors import (
    ConfigurationError,
    QuotaExceeded,
    UpstreamError,
    UsageStoreUnavailable,
)
from portfolio_chat_api.identity import Identity
from portfolio_chat_api.models import Tier
from portfolio_chat_api.observability import chat_sessions_total, record_quota_decision
from portfolio_chat_api.quota import DEFAULT_POLICY, QuotaPolicy
from portfolio_chat_api.usage_tracker import UsageStatus, UsageTracker

logger = structlog.get_logger()

_BASE36 = string.digits + string.ascii_lowercase


class GuestIdGenerator(Protocol):
    def new_guest_id(self) -> str: ...


class RandomGuestIdGenerator:
    """Opaque guest ids of the form ``guest_<epoch ms>_<random base36>``."""

    def __init__(self, random_chars: int = 6):
        self._random_chars = random_chars

    def new_guest_id(self) -> str:
        suffix = "".join(secrets.choice(_BASE36) for _ in range(self._random_chars))
        return f"guest_{int(time.time() * 1000)}_{suffix}"


class ChatSessionClient(Protocol):
    async def create_chatkit_session(self, workflow_id: str, user: str) -> str: ...


class SessionProvisioner:
    """Mint ChatKit sessions while enforcing the daily message allowance.

    A slot is taken atomically before calling ChatKit and given back if the
    call fails, so concurrent requests can never be admitted past the limit
    and failed calls never consume quota.
    """

    def __init__(
        self,
        tracker: UsageTracker,
        client: ChatSessionClient,
        workflow_id: str,
        policy: QuotaPolicy = DEFAULT_POLICY,
        guest_ids: GuestIdGenerator | None = None,
    ):
        self._tracker = tracker
        self._client = client
        self._workflow_id = workflow_id
        self._policy = policy
        self._guest_ids = guest_ids or RandomGuestIdGenerator()

    async def usage(self, identity: Identity, tier: Tier) -> UsageStatus:
        """Today's usage against the caller's allowance."""
        limit = self._policy.allowance(identity.is_guest, tier)
        return await self._tracker.check(identity, limit)

    async def provision(self, identity: Identity, tier: Tier) -> str:
        """Create a chat session for the caller and return its client secret.

        Raises:
            QuotaExceeded: If today's allowance is used up.
            ConfigurationError: If the workflow or API key is not configured.
            UpstreamError: If ChatKit rejects the request or is unreachable.
            UsageStoreUnavailable: If the usage store cannot be reached.
        """
        limit = self._policy.allowance(identity.is_guest, tier)

        status = await self._tracker.check(identity, limit)
        if not status.allowed:
            record_quota_decision(tier.value, identity.is_guest, allowed=False)
            logger.info(
                "Chat session rejected, daily limit reached",
                is_guest=identity.is_guest,
                tier=tier.value,
                limit=limit,
            )
            raise QuotaExceeded(limit=limit, tier=tier, is_guest=identity.is_guest)

        if not self._workflow_id:
            chat_sessions_total.labels(status="config_error").inc()
            raise ConfigurationError("CHATKIT_WORKFLOW_ID not configured")

        # Another request may have taken the last slot since the check
        reserved = await self._tracker.acquire(identity, limit)
        if not reserved.allowed:
            record_quota_decision(tier.value, identity.is_guest, allowed=False)
            raise QuotaExceeded(limit=limit, tier=tier, is_guest=identity.is_guest)
        record_quota_decision(tier.value, identity.is_guest, allowed=True)

        session_user = self._guest_ids.new_guest_id() if identity.is_guest else identity.key

        try:
            client_secret = await self._client.create_chatkit_session(self._workflow_id, session_user)
        except asyncio.CancelledError:
            await self._release(identity, reserved)
            raise
        except Exception as e:
            await self._release(identity, reserved)
            if isinstance(e, ConfigurationError):
                chat_sessions_total.labels(status="config_error").inc()
                raise
            chat_sessions_total.labels(status="upstream_error").inc()
            logger.error("Chat session creation failed", is_guest=identity.is_guest, error=str(e))
            if isinstance(e, UpstreamError):
                raise
            raise UpstreamError(f"Chat session creation failed: {e}") from e

        chat_sessions_total.labels(status="created").inc()
        logger.info(
            "Chat session created",
            is_guest=identity.is_guest,
            tier=tier.value,
            used=reserved.used,
            limit=limit,
        )
        return client_secret

    async def _release(self, identity: Identity, reserved: UsageStatus) -> None:
        """Give the reserved slot back without masking the failure that caused it."""
        try:
            await self._tracker.release(identity, reserved)
        except UsageStoreUnavailable as e:
            logger.error(
                "Failed to release reserved usage slot",
                is_guest=identity.is_guest,
                key=reserved.key,
                error=str(e),
            )
