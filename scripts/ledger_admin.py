#!/usr/bin/env python3
"""
Ledger Admin Script

Operational commands against the configured ledger database.

Usage:
    python scripts/ledger_admin.py migrate
    python scripts/ledger_admin.py grant +447700900123 10 --reason goodwill
    python scripts/ledger_admin.py stats +447700900123
"""

import argparse
import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

from voiceledger.config import get_settings
from voiceledger.db.migration_runner import run_migrations
from voiceledger.models.enums import CreditOperation
from voiceledger.observability import log_context, setup_logging
from voiceledger.services.ledger import build_ledger_gateway

logger = structlog.get_logger()


def migrate() -> int:
    """Upgrade the database schema to head."""
    settings = get_settings()
    revision = run_migrations(settings.database_url)
    logger.info("ledger_schema_ready", revision=revision)
    return 0


async def grant(phone_identifier: str, amount: int, reason: str) -> int:
    """Grant promotional credits to a user, creating them if needed."""
    gateway = build_ledger_gateway()
    try:
        ledger = gateway.for_context()
        user, created = await ledger.find_or_create_user(phone_identifier)
        result = await ledger.add_credits(
            user.user_id,
            amount,
            CreditOperation.PROMOTIONAL,
            {"reason": reason, "granted_by": "ledger_admin"},
        )
        logger.info(
            "promotional_credits_granted",
            user_id=str(user.user_id),
            user_created=created,
            amount=amount,
            credits_remaining=result.user.credits_remaining,
        )
        return 0
    finally:
        await gateway.close()


async def stats(phone_identifier: str) -> int:
    """Print a user's balance, usage and referral headroom."""
    gateway = build_ledger_gateway()
    try:
        ledger = gateway.for_context()
        user, _ = await ledger.find_or_create_user(phone_identifier)
        usage = await ledger.get_user_stats(user.user_id)
        limit = await ledger.check_referral_credit_limit(user.user_id)

        print(f"User:                 {user.user_id}")
        print(f"Credits remaining:    {usage.credits_remaining}")
        print(f"Free trial used:      {usage.free_trial_used}")
        print(f"Transcriptions:       {usage.total_transcriptions}")
        print(f"Words transcribed:    {usage.total_words}")
        print(f"Audio seconds:        {usage.total_seconds}")
        print(f"Referral code:        {user.referral_code or '-'} ({user.referral_code_uses} uses)")
        print(f"Referral credits:     {limit.total_referral_credits}")
        print(f"Referral headroom:    {limit.remaining_referral_credits}")
        return 0
    finally:
        await gateway.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Credit ledger administration")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("migrate", help="Apply pending database migrations")

    grant_parser = subparsers.add_parser("grant", help="Grant promotional credits")
    grant_parser.add_argument("phone_identifier", help="User phone identifier")
    grant_parser.add_argument("amount", type=int, help="Credits to grant (positive)")
    grant_parser.add_argument("--reason", default="manual", help="Reason stored in metadata")

    stats_parser = subparsers.add_parser("stats", help="Show a user's ledger summary")
    stats_parser.add_argument("phone_identifier", help="User phone identifier")

    args = parser.parse_args()
    setup_logging()

    if args.command == "grant" and args.amount <= 0:
        parser.error("amount must be positive")

    with log_context(command=args.command):
        if args.command == "migrate":
            return migrate()
        if args.command == "grant":
            return asyncio.run(grant(args.phone_identifier, args.amount, args.reason))
        return asyncio.run(stats(args.phone_identifier))


if __name__ == "__main__":
    sys.exit(main())
