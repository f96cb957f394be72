#!/usr/bin/env python3
"""Mark jobs stuck in 'processing' as failed.

A worker that dies mid-job leaves its Job row in 'processing'. Run this from
cron (or by hand) to close such jobs out so pollers see a terminal state.
"""

import argparse
import logging
from datetime import timedelta

from catalog.core.config import get_settings
from catalog.db.session import get_fresh_session
from catalog.services.job_service import fail_stale_jobs

settings = get_settings()
logging.basicConfig(level=settings.log_level.upper())

parser = argparse.ArgumentParser(description=__doc__)
parser.add_argument(
    "--minutes",
    type=int,
    default=settings.stale_job_after_minutes,
    help="Jobs without progress for this many minutes are failed",
)
args = parser.parse_args()

print(f"Looking for jobs with no progress in the last {args.minutes} minutes...")
session = get_fresh_session()
try:
    failed = fail_stale_jobs(session, timedelta(minutes=args.minutes))
finally:
    session.close()

if failed:
    for job_id in failed:
        print(f"✓ Marked {job_id} as failed")
else:
    print("✓ No stale jobs")

print("\nDone!")
