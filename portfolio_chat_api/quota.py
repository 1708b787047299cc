"""Daily message allowances per guest status and subscription tier."""

from dataclasses import dataclass

from portfolio_chat_api.models import Tier


@dataclass(frozen=True)
class QuotaPolicy:
    """Daily message ceilings.

    Must keep guest < free < recruiter so signing in and upgrading always
    buy more messages.
    """

    guest: int = 3
    free: int = 5
    recruiter: int = 20

    def __post_init__(self) -> None:
        if self.guest < 0:
            raise ValueError("guest daily limit must be non-negative")
        if not self.guest < self.free < self.recruiter:
            raise ValueError(
                "daily limits must be strictly increasing: "
                f"guest={self.guest}, free={self.free}, recruiter={self.recruiter}"
            )

    def allowance(self, is_guest: bool, tier: Tier) -> int:
        """Return the daily message ceiling for a caller."""
        if is_guest:
            return self.guest
        if tier is Tier.RECRUITER:
            return self.recruiter
        return self.free


DEFAULT_POLICY = QuotaPolicy()


def allowance(is_guest: bool, tier: Tier) -> int:
    """Daily allowance under the default policy (guest 3, free 5, recruiter 20)."""
    return DEFAULT_POLICY.allowance(is_guest, tier)
