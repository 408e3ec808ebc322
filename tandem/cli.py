"""
tandem.cli
==========

Operator commands for a Tandem deployment.

Examples
--------
$ tandem init-db              # first‑time table creation
$ tandem refresh              # daily lifecycle sweep
$ tandem analytics            # per‑quarter partnership report
"""

from __future__ import annotations

import argparse
import logging
import textwrap
from datetime import datetime
from typing import List, Optional

from tandem.analytics import partnership_analytics
from tandem.db import create_all
from tandem.events import LoggingNotifier
from tandem.lifecycle import PartnershipLifecycle
from tandem.settings import LOG_LEVEL
from tandem.store_db import DBPartnershipStore
from tandem.sweep import refresh_active


def _fmt(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:.1f}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tandem",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description=textwrap.dedent(
            """\
            Tandem partnership utilities
            ----------------------------
            init-db     Create all SQLModel tables (safe if they already exist)
            refresh     Re-resolve date-driven statuses of active partnerships
            analytics   Print partnership counts and averages per quarter
            """
        ),
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="create tables")

    refresh = sub.add_parser("refresh", help="run the lifecycle sweep")
    refresh.add_argument("--limit", type=int, default=None, help="max partnerships to refresh")
    refresh.add_argument(
        "--now",
        type=datetime.fromisoformat,
        default=None,
        help="evaluate as of this ISO-8601 instant instead of the current time",
    )

    sub.add_parser("analytics", help="print the per-quarter report")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.command == "init-db":
        create_all()
        print("✅ tandem schema initialised")
        return 0

    store = DBPartnershipStore()

    if args.command == "refresh":
        lifecycle = PartnershipLifecycle(store, LoggingNotifier())
        result = refresh_active(lifecycle, now=args.now, limit=args.limit)
        print(f"✅ processed {result.processed}, updated {result.updated}, errors {result.errors}")
        return 1 if result.errors else 0

    rows = partnership_analytics(store)
    print(f"{'period':<9}{'total':>6}{'pend':>6}{'appr':>6}{'rej':>6}{'canc':>6}{'done':>6}{'appr d':>8}{'dur d':>8}")
    for r in rows:
        print(
            f"{r.year}-Q{r.quarter:<3}{r.total:>6}{r.pending:>6}{r.approved:>6}{r.rejected:>6}"
            f"{r.canceled:>6}{r.completed:>6}{_fmt(r.avg_approval_days):>8}{_fmt(r.avg_duration_days):>8}"
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
