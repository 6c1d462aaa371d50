#!/usr/bin/env python3
"""
Daily package fee update job.

Re-prices every pending package fee from the package's receipt date, using
calendar days in the mail center's timezone. Schedule it shortly after local
midnight (e.g. 2 AM America/New_York) so each fee picks up the new day.

Usage
-----
# All users, as of now
python scripts/update_package_fees.py

# One user only
python scripts/update_package_fees.py --user-id 3fa85f64-5717-4562-b3fc-2c963f66afa6

# Price as of a fixed instant without writing anything
python scripts/update_package_fees.py --as-of 2025-12-10T02:00:00-05:00 --dry-run

Environment / .env
------------------
SUPABASE_URL, SUPABASE_KEY, SUPABASE_SERVICE_KEY   Database access (required).
BILLING_TIMEZONE                                   Civil timezone (default America/New_York).

Exits 1 if the job fails outright or any fee could not be updated.
"""

import argparse
import logging
import sys
import time

logger = logging.getLogger("update_package_fees")


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recalculate pending package storage fees.")
    parser.add_argument("--user-id", default=None, help="Only update fees owned by this user.")
    parser.add_argument(
        "--as-of",
        default=None,
        help="ISO-8601 instant to price fees at (default: now).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute new amounts but do not write them.",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    args = _parse_args(argv)

    from app.config import get_billing_policy
    from app.errors import MailCenterError
    from app.services.calendar_days import format_for_display, parse_instant, utc_now
    from app.services.fee_store import recalculate_pending_fees

    policy = get_billing_policy()
    try:
        as_of = parse_instant(args.as_of, policy.timezone) if args.as_of else utc_now()
    except MailCenterError as e:
        logger.error(f"Invalid --as-of: {e}")
        return 2

    logger.info(
        f"Package fee update started (as of {as_of.isoformat()}, "
        f"{format_for_display(as_of, policy.timezone)} local)"
    )
    started = time.monotonic()
    try:
        result = recalculate_pending_fees(
            as_of, policy.timezone, user_id=args.user_id, dry_run=args.dry_run
        )
    except Exception as e:
        logger.error(f"Package fee update failed: {e}", exc_info=True)
        return 1

    logger.info(
        f"Package fee update completed in {time.monotonic() - started:.2f}s: "
        f"{result.updated} updated, {result.skipped} skipped, "
        f"{result.errors} errors, {result.total} total"
        + (" (dry run)" if args.dry_run else "")
    )
    for failure in result.failures:
        logger.warning(f"  fee {failure.fee_id}: {failure.error}")
    return 1 if result.errors else 0


if __name__ == "__main__":
    sys.exit(main())
