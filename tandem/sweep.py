"""
tandem.sweep
============

Periodic refresh of date‑driven statuses.

Intended to be run once a day by an external scheduler (cron, a k8s
CronJob, ``tandem refresh``).  Each active partnership with a date
window is passed through :meth:`PartnershipLifecycle.refresh_lifecycle`;
a failure on one record is logged and counted, and the sweep moves on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .lifecycle import PartnershipLifecycle

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    processed: int = 0
    updated: int = 0
    errors: int = 0


def refresh_active(
    lifecycle: PartnershipLifecycle,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> SweepResult:
    """
    Refresh every active, dated partnership in ``lifecycle.store``.

    Parameters
    ----------
    lifecycle : PartnershipLifecycle
        Engine (and store) to sweep.
    now : datetime, optional
        Evaluation instant shared by the whole sweep; defaults to the
        lifecycle clock.
    limit : int, optional
        Stop after this many partnerships; defaults to
        ``lifecycle.options.sweep_batch_limit`` (unset = no limit).
    """
    now = now if now is not None else lifecycle.clock()
    limit = limit if limit is not None else lifecycle.options.sweep_batch_limit

    candidates = [p for p in lifecycle.store.list_active() if p.has_dates]
    if limit is not None:
        candidates = candidates[:limit]

    result = SweepResult()
    logger.info(f"Running lifecycle sweep over {len(candidates)} partnerships")
    for p in candidates:
        result.processed += 1
        try:
            refreshed = lifecycle.refresh_lifecycle(p.id, now=now)
        except Exception:
            result.errors += 1
            logger.exception(f"Error refreshing partnership {p.id}")
            continue
        if (refreshed.status, refreshed.lifecycle_status) != (p.status, p.lifecycle_status):
            result.updated += 1

    logger.info(
        f"Task Summary: Processed {result.processed} partnerships. "
        f"Updated: {result.updated}, Errors: {result.errors}"
    )
    return result
