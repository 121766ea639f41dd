"""
Ledger Policy - the numeric rules of the credit and referral system.
"""

from dataclasses import dataclass

from voiceledger.config import Settings
from voiceledger.models.domain import UserData
from voiceledger.models.enums import WarningLevel


@dataclass(frozen=True)
class LedgerPolicy:
    """Immutable ledger rules, built once from settings."""

    free_trial_credits: int = 50
    referral_credit_amount: int = 5
    referral_code_max_uses: int = 5
    referral_lifetime_limit: int = 25
    referral_code_issue_threshold: int = 4
    referral_code_max_attempts: int = 10
    low_balance_notice_credits: int = 1
    default_usage_estimate_months: int = 3
    post_commit_timeout: float = 2.0
    warning_threshold: int = 10
    urgent_threshold: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> "LedgerPolicy":
        return cls(
            free_trial_credits=settings.free_trial_credits,
            referral_credit_amount=settings.referral_credit_amount,
            referral_code_max_uses=settings.referral_code_max_uses,
            referral_lifetime_limit=settings.referral_lifetime_limit,
            referral_code_issue_threshold=settings.referral_code_issue_threshold,
            referral_code_max_attempts=settings.referral_code_max_attempts,
            low_balance_notice_credits=settings.low_balance_notice_credits,
            default_usage_estimate_months=settings.default_usage_estimate_months,
            post_commit_timeout=settings.post_commit_timeout,
        )

    def should_issue_referral_code(self, user: UserData) -> bool:
        """Codes go out once a free-trial user is down to the issue threshold."""
        return user.credits_remaining <= self.referral_code_issue_threshold and not user.free_trial_used

    def warning_level(self, credits_remaining: int) -> WarningLevel:
        if credits_remaining <= self.urgent_threshold:
            return WarningLevel.URGENT
        if credits_remaining <= self.warning_threshold:
            return WarningLevel.WARNING
        return WarningLevel.NONE

    def code_uses_remaining(self, uses: int) -> int:
        return max(0, self.referral_code_max_uses - uses)
