#!/usr/bin/env python3
"""Scheduled cleanup of SchoolGate security records.

Runs the same sweeps the service performs in the background, for
deployments that prefer cron over in-process timers.

Usage:
    python scripts/cleanup_security_records.py tokens
    python scripts/cleanup_security_records.py audit [--archive] [--retention-days N]

Database and retention defaults come from the service environment
(DATABASE_URL, AUDIT_RETENTION_DAYS, ...).
"""

import argparse
import asyncio
import sys

from schoolgate.core import async_session_maker, settings, setup_logging
from schoolgate.core.background import sweep_revoked_tokens
from schoolgate.services.audit import AuditService
from schoolgate.services.audit_retention import AuditRetentionService
from schoolgate.services.audit_trail import AuditTrail


async def _run(args: argparse.Namespace) -> int:
    trail = AuditTrail(session_factory=async_session_maker)
    audit = AuditService(trail)
    try:
        if args.target == "tokens":
            deleted = await sweep_revoked_tokens(async_session_maker, audit)
            print(f"Removed {deleted} expired revocation records")
        else:
            retention = AuditRetentionService(
                async_session_maker,
                audit,
                retention_days=args.retention_days or settings.audit_retention_days,
                archive=args.archive,
            )
            affected = await retention.run_cleanup_now()
            verb = "Archived" if args.archive else "Deleted"
            print(f"{verb} {affected} audit entries older than {retention.retention_days} days")
    finally:
        await trail.close()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Clean up SchoolGate security records")
    parser.add_argument(
        "target",
        choices=["tokens", "audit"],
        help="tokens: sweep expired revocations; audit: apply audit retention",
    )
    parser.add_argument(
        "--archive",
        action="store_true",
        help="Copy old audit entries to the archive table before deleting them",
    )
    parser.add_argument(
        "--retention-days",
        type=int,
        help="Override AUDIT_RETENTION_DAYS for this run",
    )
    args = parser.parse_args()

    if args.archive and args.target != "audit":
        parser.error("--archive only applies to the audit target")

    setup_logging(level=settings.log_level, format_type="dev")
    try:
        return asyncio.run(_run(args))
    except Exception as e:
        print(f"ERROR: cleanup failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
