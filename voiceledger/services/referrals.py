"""
Referral Engine - code issuance, code extraction and the redemption protocol.

A redemption runs as one ledger transaction:

1. Resolve the code owner and lock both user rows (ascending id order)
2. Validate: code exists -> not maxed out -> redeemer exists -> not self ->
   pair not yet referred
3. Clamp both grants to each side's remaining lifetime referral headroom
4. Insert the referral pair, bump the code's use counter, grant both sides

Any failure after validation rolls the whole redemption back. A concurrent
redemption of the same pair that slips past step 2 is stopped by the unique
pair constraint and reported as ALREADY_REFERRED.
"""

import re
import secrets
from collections.abc import Callable
from uuid import UUID

from voiceledger.exceptions import CodeGenerationError, DuplicateKeyError, UserNotFoundError
from voiceledger.models.domain import CreditIntent, RedemptionResult, UserData
from voiceledger.models.enums import CreditOperation, RedemptionOutcome
from voiceledger.observability import get_logger, metrics
from voiceledger.services.credits import CreditManager
from voiceledger.services.policy import LedgerPolicy
from voiceledger.store.base import LedgerStore

logger = get_logger(__name__)

# No I, L, O, Q, S, Z and no 3, 4, 6, 7, 9
ALPHABET = "ABCDEFGHJKMNPRTUVWXY01258"
CODE_LENGTH = 6

SANDBOX_VALID_CODE = "TEST123"
SANDBOX_SELF_REFERRAL_CODE = "SELF123"
SANDBOX_ALREADY_USED_CODE = "USED123"
SANDBOX_MAXED_OUT_CODE = "FULL123"
SANDBOX_LIMIT_REACHED_CODE = "LIMIT123"
SANDBOX_CODES = (
    SANDBOX_VALID_CODE,
    SANDBOX_SELF_REFERRAL_CODE,
    SANDBOX_ALREADY_USED_CODE,
    SANDBOX_MAXED_OUT_CODE,
    SANDBOX_LIMIT_REACHED_CODE,
)

_CODE_PATTERN = re.compile(rf"\b[{ALPHABET}]{{{CODE_LENGTH}}}\b")
_EXACT_CODE_PATTERN = re.compile(rf"[{ALPHABET}]{{{CODE_LENGTH}}}")
_SANDBOX_PATTERN = re.compile(r"\b(" + "|".join(SANDBOX_CODES) + r")\b")


def generate_code() -> str:
    """Draw a random referral code; uniqueness is the caller's problem."""
    return "".join(secrets.choice(ALPHABET) for _ in range(CODE_LENGTH))


def normalize_code(code: object) -> str | None:
    """Upper-cased, trimmed code, or None if it can't be a real referral code."""
    if not isinstance(code, str):
        return None
    cleaned = code.strip().upper()
    if not _EXACT_CODE_PATTERN.fullmatch(cleaned):
        return None
    return cleaned


def extract_code_from_text(message: object) -> str | None:
    """
    Find a referral code in a free-text message.

    Matching is case-insensitive and only considers whole tokens, so a code
    buried inside a longer word is ignored. The sandbox codes are recognised
    first; they deliberately fall outside the real alphabet.
    """
    if not isinstance(message, str):
        return None
    cleaned = message.strip().upper()
    if not cleaned:
        return None

    sandbox_match = _SANDBOX_PATTERN.search(cleaned)
    if sandbox_match:
        return sandbox_match.group(1)

    match = _CODE_PATTERN.search(cleaned)
    return match.group(0) if match else None


class ReferralEngine:
    """Issues referral codes and redeems them exactly once per user pair."""

    def __init__(
        self,
        store: LedgerStore,
        credit_manager: CreditManager,
        policy: LedgerPolicy,
        code_factory: Callable[[], str] = generate_code,
    ) -> None:
        self.store = store
        self.credit_manager = credit_manager
        self.policy = policy
        self.code_factory = code_factory

    # ============================================================================
    # Code issuance
    # ============================================================================

    async def generate_code_for_user(self, user_id: UUID) -> str:
        """
        Return the user's referral code, issuing one if they have none.

        Raises:
            UserNotFoundError: user doesn't exist
            CodeGenerationError: every attempt collided with an existing code
        """
        return await self._issue_code(user_id, replace_maxed=False)

    async def regenerate_code_for_user(self, user_id: UUID) -> str:
        """
        Replace a code that has reached its use limit.

        A code with uses left is returned unchanged; a user without a code gets
        a first one.
        """
        return await self._issue_code(user_id, replace_maxed=True)

    async def _issue_code(self, user_id: UUID, *, replace_maxed: bool) -> str:
        attempts = self.policy.referral_code_max_attempts
        for attempt in range(1, attempts + 1):
            candidate = self.code_factory()
            try:
                with metrics.track("issue_referral_code"):
                    async with self.store.transaction() as tx:
                        user = await tx.get_user(user_id, for_update=True)
                        if user is None:
                            raise UserNotFoundError(user_id)

                        if user.referral_code and not (
                            replace_maxed
                            and user.referral_code_uses >= self.policy.referral_code_max_uses
                        ):
                            return user.referral_code

                        if await tx.referral_code_exists(candidate):
                            logger.debug("referral_code_collision", attempt=attempt)
                            continue

                        previous = user.referral_code
                        await tx.assign_referral_code(user_id, candidate)
            except DuplicateKeyError:
                # Another transaction claimed the same code between check and write
                logger.debug("referral_code_collision", attempt=attempt, concurrent=True)
                continue

            metrics.referral_codes_issued_total.inc()
            logger.info(
                "referral_code_issued",
                user_id=str(user_id),
                regenerated=previous is not None,
                attempts=attempt,
            )
            return candidate

        logger.error("referral_code_generation_failed", user_id=str(user_id), attempts=attempts)
        raise CodeGenerationError(attempts)

    # ============================================================================
    # Redemption
    # ============================================================================

    async def redeem(self, code: str, redeeming_user: UserData | UUID) -> RedemptionResult:
        """
        Redeem a referral code on behalf of a user.

        Business-rule failures come back as typed outcomes; only infrastructure
        failures raise.
        """
        referee_id = (
            redeeming_user.user_id if isinstance(redeeming_user, UserData) else redeeming_user
        )
        normalized = normalize_code(code)
        if normalized is None:
            return self._reject(RedemptionOutcome.INVALID_CODE, code, referee_id)

        try:
            with metrics.track("redeem_referral"):
                result = await self._redeem(normalized, referee_id)
        except DuplicateKeyError:
            # The only unique insert here is the referral pair
            return self._reject(RedemptionOutcome.ALREADY_REFERRED, normalized, referee_id)

        if not result.success:
            return self._reject(result.outcome, normalized, referee_id)

        metrics.referral_redemptions_total.labels(outcome=result.outcome.value).inc()
        logger.info(
            "referral_redeemed",
            outcome=result.outcome.value,
            referral_code=normalized,
            referrer_id=str(result.referrer.user_id) if result.referrer else None,
            referee_id=str(referee_id),
            referrer_credits_added=result.referrer_credits_added,
            referee_credits_added=result.referee_credits_added,
            code_uses_remaining=result.code_uses_remaining,
        )
        return result

    async def _redeem(self, code: str, referee_id: UUID) -> RedemptionResult:
        amount = self.policy.referral_credit_amount

        async with self.store.transaction() as tx:
            owner = await tx.find_user_by_referral_code(code)
            if owner is None:
                return RedemptionResult.rejected(RedemptionOutcome.INVALID_CODE, code)

            locked = await tx.lock_users({owner.user_id, referee_id})
            referrer = locked.get(owner.user_id)
            if referrer is None or referrer.referral_code != code:
                # Code was regenerated before we got the lock
                return RedemptionResult.rejected(RedemptionOutcome.INVALID_CODE, code)

            if referrer.referral_code_uses >= self.policy.referral_code_max_uses:
                return RedemptionResult.rejected(RedemptionOutcome.CODE_MAXED_OUT, code)

            referee = locked.get(referee_id)
            if referee is None:
                return RedemptionResult.rejected(RedemptionOutcome.UNKNOWN_USER, code)

            if referrer.user_id == referee.user_id:
                return RedemptionResult.rejected(RedemptionOutcome.SELF_REFERRAL, code)

            if await tx.find_referral(referrer.user_id, referee.user_id) is not None:
                return RedemptionResult.rejected(RedemptionOutcome.ALREADY_REFERRED, code)

            referrer_limit = await self.credit_manager.referral_limit_in(tx, referrer.user_id)
            referee_limit = await self.credit_manager.referral_limit_in(tx, referee.user_id)
            referrer_credits = min(amount, referrer_limit.remaining_referral_credits)
            referee_credits = min(amount, referee_limit.remaining_referral_credits)

            await tx.insert_referral(
                referrer.user_id, referee.user_id, referrer_credits, referee_credits
            )
            referrer = await tx.increment_referral_code_uses(referrer.user_id)

            if referrer_credits > 0:
                grant = await self.credit_manager.grant_in(
                    tx,
                    CreditIntent(
                        user_id=referrer.user_id,
                        amount=referrer_credits,
                        operation=CreditOperation.REFERRAL_BONUS,
                        metadata={"referee_id": str(referee.user_id), "referral_code": code},
                    ),
                )
                referrer = grant.user

            if referee_credits > 0:
                grant = await self.credit_manager.grant_in(
                    tx,
                    CreditIntent(
                        user_id=referee.user_id,
                        amount=referee_credits,
                        operation=CreditOperation.REFERRAL_RECEIVED,
                        metadata={"referrer_id": str(referrer.user_id), "referral_code": code},
                    ),
                )
                referee = grant.user

        outcome = (
            RedemptionOutcome.SUCCESS
            if referee_credits > 0
            else RedemptionOutcome.REFEREE_LIMIT_REACHED
        )
        return RedemptionResult(
            outcome=outcome,
            code=code,
            referrer=referrer,
            referee=referee,
            referrer_credits_added=referrer_credits,
            referee_credits_added=referee_credits,
            code_uses_remaining=self.policy.code_uses_remaining(referrer.referral_code_uses),
            referee_remaining_referral_credits=(
                referee_limit.remaining_referral_credits - referee_credits
            ),
        )

    def _reject(
        self, outcome: RedemptionOutcome, code: str | None, referee_id: UUID
    ) -> RedemptionResult:
        metrics.referral_redemptions_total.labels(outcome=outcome.value).inc()
        logger.info(
            "referral_rejected",
            outcome=outcome.value,
            referral_code=code,
            referee_id=str(referee_id),
        )
        return RedemptionResult.rejected(outcome, code if isinstance(code, str) else None)
