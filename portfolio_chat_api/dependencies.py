"""FastAPI dependency providers.

Endpoints receive their collaborators through ``Depends`` so tests can swap
them with ``app.dependency_overrides``.
"""

from fastapi import Depends, Request

from portfolio_chat_api.config import Settings, get_settings
from portfolio_chat_api.identity import Identity, get_token_verifier, resolve_identity
from portfolio_chat_api.job_fit import JobFitScorer
from portfolio_chat_api.models import Tier
from portfolio_chat_api.openai_client import get_openai_client
from portfolio_chat_api.plans import PlanResolver, get_plan_resolver
from portfolio_chat_api.session_provisioner import SessionProvisioner
from portfolio_chat_api.usage_tracker import UsageTracker, get_usage_tracker


async def get_identity(request: Request) -> Identity:
    """Resolve the caller; signed-out callers become guests."""
    return await resolve_identity(request, get_token_verifier())


def get_resolver() -> PlanResolver:
    return get_plan_resolver()


async def get_tier(
    identity: Identity = Depends(get_identity),
    resolver: PlanResolver = Depends(get_resolver),
) -> Tier:
    """Resolve the caller's tier (always free for guests and on lookup errors)."""
    return await resolver.resolve(identity)


def get_tracker() -> UsageTracker:
    return get_usage_tracker()


async def get_session_provisioner(
    tracker: UsageTracker = Depends(get_tracker),
    settings: Settings = Depends(get_settings),
) -> SessionProvisioner:
    """Session provisioner wired to the global OpenAI client and usage store."""
    client = await get_openai_client()
    return SessionProvisioner(
        tracker=tracker,
        client=client,
        workflow_id=settings.chatkit_workflow_id,
        policy=settings.quota_policy,
    )


async def get_job_fit_scorer() -> JobFitScorer:
    """Job fit scorer wired to the global OpenAI client."""
    return JobFitScorer(await get_openai_client())
