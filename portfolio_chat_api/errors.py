"""Error taxonomy shared by the quota, session and job fit flows.

User facing wording is produced only at the HTTP boundary (see
``quota_exceeded_message``); the exceptions themselves carry context.
"""

from portfolio_chat_api.models import Tier


class PortfolioAPIError(Exception):
    """Base exception for errors surfaced by public operations."""

    pass


class QuotaExceeded(PortfolioAPIError):
    """Raised when the caller has used up today's message allowance."""

    def __init__(self, limit: int, tier: Tier, is_guest: bool):
        super().__init__(f"Daily message limit of {limit} reached")
        self.limit = limit
        self.tier = tier
        self.is_guest = is_guest


class ConfigurationError(PortfolioAPIError):
    """Raised when required credentials or identifiers are missing."""

    pass


class UpstreamError(PortfolioAPIError):
    """Raised when a third-party API fails or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UsageStoreUnavailable(PortfolioAPIError):
    """Raised when the usage counter store cannot be reached."""

    pass


class AnalysisFailed(PortfolioAPIError):
    """Raised when the job fit assessment could not be produced."""

    pass


def quota_exceeded_message(error: QuotaExceeded, free_limit: int, recruiter_limit: int) -> str:
    """Build the tier-specific message shown when a session is rejected."""
    reached = f"You have reached your limit of {error.limit} messages for today."
    if error.is_guest:
        return f"{reached} Sign in to get {free_limit} messages per day."
    if error.tier is Tier.RECRUITER:
        return f"{reached} Come back tomorrow to keep chatting."
    return f"{reached} Upgrade to Recruiter to get {recruiter_limit} messages per day."
