"""
tandem.analytics
================

Reporting over the analytics fields the lifecycle stamps on each
partnership: request period, approval time and partnership duration.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from statistics import mean
from typing import Dict, Iterable, List, Optional, Tuple

from .models import Partnership, PartnershipStatus


@dataclass
class PeriodSummary:
    """Counts and averages for one (year, quarter) request period."""
    year: int
    quarter: int
    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    canceled: int = 0
    completed: int = 0
    avg_approval_days: Optional[float] = None
    avg_duration_days: Optional[float] = None


def _avg(values: List[int]) -> Optional[float]:
    return float(mean(values)) if values else None


def partnership_analytics(partnerships: Iterable[Partnership]) -> List[PeriodSummary]:
    """
    Group partnerships by request period, newest first.

    ``approved`` counts every partnership that was ever approved, whatever
    its current status; averages skip partnerships without the value.
    """
    groups: Dict[Tuple[int, int], List[Partnership]] = defaultdict(list)
    for p in partnerships:
        if p.request_year is None or p.request_quarter is None:
            continue
        groups[(p.request_year, p.request_quarter)].append(p)

    summaries = []
    for (year, quarter), members in sorted(groups.items(), reverse=True):
        summary = PeriodSummary(year=year, quarter=quarter, total=len(members))
        for p in members:
            if p.status is PartnershipStatus.PENDING:
                summary.pending += 1
            elif p.status is PartnershipStatus.REJECTED:
                summary.rejected += 1
            elif p.status is PartnershipStatus.CANCELED:
                summary.canceled += 1
            elif p.status is PartnershipStatus.COMPLETE:
                summary.completed += 1
            if p.approved_at is not None:
                summary.approved += 1
        summary.avg_approval_days = _avg(
            [p.approval_time_in_days for p in members if p.approval_time_in_days is not None]
        )
        summary.avg_duration_days = _avg(
            [p.partnership_duration_in_days for p in members if p.partnership_duration_in_days is not None]
        )
        summaries.append(summary)
    return summaries
