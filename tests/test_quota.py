"""Tests for the daily allowance policy."""

import pytest

from portfolio_chat_api.errors import QuotaExceeded, quota_exceeded_message
from portfolio_chat_api.models import Tier
from portfolio_chat_api.quota import DEFAULT_POLICY, QuotaPolicy, allowance


class TestAllowance:
    """Allowance table, exhaustively."""

    @pytest.mark.parametrize(
        ("is_guest", "tier", "expected"),
        [
            (True, Tier.FREE, 3),
            (True, Tier.RECRUITER, 3),
            (False, Tier.FREE, 5),
            (False, Tier.RECRUITER, 20),
        ],
    )
    def test_allowance_table(self, is_guest: bool, tier: Tier, expected: int) -> None:
        assert allowance(is_guest, tier) == expected

    def test_ordering_invariant(self) -> None:
        for tier in Tier:
            assert allowance(True, tier) < allowance(False, Tier.FREE)
        assert allowance(False, Tier.FREE) < allowance(False, Tier.RECRUITER)

    def test_default_policy_values(self) -> None:
        assert (DEFAULT_POLICY.guest, DEFAULT_POLICY.free, DEFAULT_POLICY.recruiter) == (3, 5, 20)


class TestQuotaPolicy:
    """Tests for custom policies."""

    def test_custom_limits(self) -> None:
        policy = QuotaPolicy(guest=1, free=2, recruiter=3)
        assert policy.allowance(True, Tier.FREE) == 1
        assert policy.allowance(False, Tier.FREE) == 2
        assert policy.allowance(False, Tier.RECRUITER) == 3

    @pytest.mark.parametrize(
        ("guest", "free", "recruiter"),
        [(5, 5, 20), (3, 20, 20), (3, 25, 20), (-1, 5, 20)],
    )
    def test_invalid_orderings_rejected(self, guest: int, free: int, recruiter: int) -> None:
        with pytest.raises(ValueError):
            QuotaPolicy(guest=guest, free=free, recruiter=recruiter)


class TestQuotaExceededMessage:
    """Tests for tier-specific rejection messages."""

    def test_guest_told_to_sign_in(self) -> None:
        error = QuotaExceeded(limit=3, tier=Tier.FREE, is_guest=True)
        message = quota_exceeded_message(error, free_limit=5, recruiter_limit=20)
        assert "3 messages" in message
        assert "Sign in" in message
        assert "5 messages per day" in message

    def test_free_user_offered_upgrade(self) -> None:
        error = QuotaExceeded(limit=5, tier=Tier.FREE, is_guest=False)
        message = quota_exceeded_message(error, free_limit=5, recruiter_limit=20)
        assert "Upgrade to Recruiter" in message
        assert "20 messages per day" in message

    def test_recruiter_told_to_come_back(self) -> None:
        error = QuotaExceeded(limit=20, tier=Tier.RECRUITER, is_guest=False)
        message = quota_exceeded_message(error, free_limit=5, recruiter_limit=20)
        assert "Come back tomorrow" in message
        assert "Upgrade" not in message

    def test_error_carries_context(self) -> None:
        error = QuotaExceeded(limit=20, tier=Tier.RECRUITER, is_guest=False)
        assert error.limit == 20
        assert error.tier is Tier.RECRUITER
        assert error.is_guest is False
