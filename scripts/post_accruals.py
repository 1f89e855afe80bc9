#!/usr/bin/env python3
"""Post monthly leave accruals and expire carryover — run from cron.

Both steps are idempotent: an account never gets two accruals for the same
month, nor two expiry rows for the same expiry date, so re-running after a
failure is safe.

Usage:
    python scripts/post_accruals.py                       # current month, expiry as of today
    python scripts/post_accruals.py --month 2026-09       # back-fill a month
    python scripts/post_accruals.py --as-of 2026-03-31    # expiry cut-off date
    python scripts/post_accruals.py --skip-expiry
    python scripts/post_accruals.py --dry-run             # compute, then roll back

Exit codes:
    0 = success
    1 = a step failed (nothing was committed)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from datetime import date, datetime

# Allow running as `python scripts/post_accruals.py` from the project root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from time_manager.common.logging import setup_logging  # noqa: E402
from time_manager.database import async_session_factory, engine  # noqa: E402
from time_manager.leave.service import AccrualService  # noqa: E402

# Import every model module so relationships resolve
import time_manager.absence.models  # noqa: E402,F401
import time_manager.attendance.models  # noqa: E402,F401
import time_manager.directory.models  # noqa: E402,F401

logger = logging.getLogger("post_accruals")


def _parse_month(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM, got {value!r}")


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}")


async def run(month: date, as_of: date, *, skip_expiry: bool, dry_run: bool) -> tuple[int, int]:
    try:
        async with async_session_factory() as session:
            try:
                accrued = await AccrualService.post_monthly_accruals(session, month)
                expired = 0
                if not skip_expiry:
                    expired = await AccrualService.expire_carryover(session, as_of)

                if dry_run:
                    logger.info(
                        "[DRY RUN] Rolling back %d accrual / %d expiry rows", accrued, expired,
                    )
                    await session.rollback()
                else:
                    await session.commit()
                return accrued, expired
            except Exception:
                await session.rollback()
                raise
    finally:
        # Only after the session has handed its connection back
        await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Materialise leave accruals and carryover expiry.")
    parser.add_argument("--month", type=_parse_month, default=None,
                        help="Month to accrue, YYYY-MM (default: current month)")
    parser.add_argument("--as-of", type=_parse_date, default=None,
                        help="Expire carryover due on or before this date (default: today)")
    parser.add_argument("--skip-expiry", action="store_true", help="Only post accruals")
    parser.add_argument("--dry-run", action="store_true", help="Roll back instead of committing")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    today = date.today()
    month = args.month or today.replace(day=1)
    as_of = args.as_of or today

    logger.info("Accruals for %s, carryover expiry as of %s", f"{month:%Y-%m}", as_of)
    try:
        accrued, expired = asyncio.run(
            run(month, as_of, skip_expiry=args.skip_expiry, dry_run=args.dry_run)
        )
    except Exception:
        logger.exception("Accrual run failed")
        return 1

    logger.info("Done: %d accrual rows, %d expiry rows", accrued, expired)
    return 0


if __name__ == "__main__":
    sys.exit(main())
