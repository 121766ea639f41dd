"""
Post-commit actions.

Work that follows a committed ledger write but must never undo or block it,
such as issuing a referral code after a transcription. Each action gets a time
bound; failures and timeouts are logged and replaced by a fallback value.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from voiceledger.observability import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def run_after_commit(
    name: str,
    action: Callable[[], Awaitable[T]],
    default: T,
    timeout: float,
) -> T:
    """Run a best-effort action, returning `default` if it fails or overruns."""
    try:
        return await asyncio.wait_for(action(), timeout=timeout)
    except TimeoutError:
        logger.warning("post_commit_action_timeout", action=name, timeout=timeout)
        return default
    except Exception as e:
        logger.warning(
            "post_commit_action_failed",
            action=name,
            error=str(e),
            error_type=type(e).__name__,
        )
        return default
