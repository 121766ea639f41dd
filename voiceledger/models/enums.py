"""
Enumerations shared by the store, the services and their callers.
"""

from enum import Enum


class CreditOperation(str, Enum):
    """Credit transaction type enumeration."""

    PAYMENT = "payment"
    REFERRAL_BONUS = "referral_bonus"  # granted as referrer
    REFERRAL_RECEIVED = "referral_received"  # granted as referee
    INITIAL_FREE = "initial_free"
    PROMOTIONAL = "promotional"

    @classmethod
    def referral_types(cls) -> tuple["CreditOperation", ...]:
        """Operation types that count against the lifetime referral cap."""
        return (cls.REFERRAL_BONUS, cls.REFERRAL_RECEIVED)


class RedemptionOutcome(str, Enum):
    """Terminal outcomes of a referral code redemption."""

    SUCCESS = "success"
    REFEREE_LIMIT_REACHED = "referee_limit_reached"
    INVALID_CODE = "invalid_code"
    CODE_MAXED_OUT = "code_maxed_out"
    SELF_REFERRAL = "self_referral"
    ALREADY_REFERRED = "already_referred"
    UNKNOWN_USER = "unknown_user"


class WarningLevel(str, Enum):
    """Low balance warning level shown before a transcription."""

    NONE = "none"
    WARNING = "warning"
    URGENT = "urgent"
