"""
Scheduled payroll jobs.

Entry points for an external scheduler (cron):

    python -m coursepay.jobs sync-earnings [--limit N] [--from-date YYYY-MM-DD]
    python -m coursepay.jobs generate-settlement --month YYYY-MM

Exit status is non-zero when any transaction or batch failed.
"""

import argparse
import asyncio
import logging
import re
import sys
from datetime import date
from typing import List, Optional

from coursepay.app.core.exceptions import AppException
from coursepay.app.core.observability import setup_logging
from coursepay.app.db.session import AsyncSessionLocal, engine
from coursepay.app.domain.payroll.earning_ledger import EarningLedger
from coursepay.app.domain.payroll.settlement_aggregator import SettlementAggregator
from coursepay.app.services.audit import AuditAction, log_event

# Register every mapped table before the first query
from coursepay.app.models import (  # noqa: F401
    audit_log,
    course,
    enrollment,
    instructor_earning,
    notification,
    order,
    settlement_batch,
    transaction,
    user,
)

logger = logging.getLogger("coursepay.jobs")

JOB_ACTOR = "system:jobs"


def month_arg(value: str) -> str:
    if not re.fullmatch(r"\d{4}-(0[1-9]|1[0-2])", value):
        raise argparse.ArgumentTypeError("month must be YYYY-MM")
    return value


def date_arg(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError("date must be YYYY-MM-DD")


async def sync_earnings(limit: Optional[int], from_date: Optional[date]) -> int:
    async with AsyncSessionLocal() as db:
        result = await EarningLedger.sync_underived_earnings(db, limit=limit, from_date=from_date)
        await log_event(
            db=db,
            action=AuditAction.EARNINGS_SYNCED,
            actor_username=JOB_ACTOR,
            metadata={
                "processed": result.processed,
                "created": result.total_created,
                "errors": len(result.errors),
            }
        )

    print(
        f"Synced {result.processed} transactions: "
        f"{result.total_created} earnings created, {result.total_skipped} already present"
    )
    for error in result.errors:
        print(f"  transaction {error['transaction_id']}: {error['error']}", file=sys.stderr)
    return 1 if result.errors else 0


async def generate_settlement(month: str) -> int:
    async with AsyncSessionLocal() as db:
        try:
            result = await SettlementAggregator.generate_batches(db, month)
        except AppException as e:
            logger.error(f"Settlement generation for {month} refused: {e.message}")
            print(e.message, file=sys.stderr)
            return 1

        await log_event(
            db=db,
            action=AuditAction.SETTLEMENT_GENERATED,
            actor_username=JOB_ACTOR,
            metadata={
                "month": month,
                "batches_created": result.batches_created,
                "earnings_processed": result.earnings_processed,
                "failed": len(result.failed),
            }
        )

    print(
        f"Generated {result.batches_created} settlement batches for {month} "
        f"from {result.earnings_processed} earnings"
    )
    for failure in result.failed:
        print(f"  instructor {failure['instructor_id']}: {failure['error']}", file=sys.stderr)
    return 1 if result.failed else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="coursepay.jobs", description="Instructor payroll jobs")
    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync-earnings", help="Back-fill missing instructor earnings")
    sync.add_argument("--limit", type=int, default=None, help="Maximum transactions to process")
    sync.add_argument("--from-date", type=date_arg, default=None, help="Only transactions paid on or after YYYY-MM-DD")

    generate = commands.add_parser("generate-settlement", help="Create settlement batches for a month")
    generate.add_argument("--month", type=month_arg, required=True, help="Payroll month YYYY-MM")
    return parser


async def run(args: argparse.Namespace) -> int:
    try:
        if args.command == "sync-earnings":
            return await sync_earnings(args.limit, args.from_date)
        return await generate_settlement(args.month)
    finally:
        await engine.dispose()


def main(argv: Optional[List[str]] = None) -> int:
    setup_logging()
    args = build_parser().parse_args(argv)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
