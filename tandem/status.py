"""
tandem.status
=============

Date‑driven life‑cycle resolution shared by every active partnership.
"""

from __future__ import annotations

from datetime import datetime

from .models import LifecycleStatus


def resolve(
    start_date: datetime,
    end_date: datetime,
    now: datetime,
    is_manually_complete: bool = False,
) -> LifecycleStatus:
    """
    Map a date window and the current instant to a :class:`LifecycleStatus`.

    A manual completion always wins; otherwise *now* before the window is
    UPCOMING, after it COMPLETED, and anywhere inside it (bounds included)
    ONGOING.

    Examples
    --------
    >>> from datetime import datetime
    >>> resolve(datetime(2024, 1, 1), datetime(2024, 6, 1), datetime(2024, 3, 1))
    <LifecycleStatus.ONGOING: 'ongoing'>
    """
    if is_manually_complete:
        return LifecycleStatus.COMPLETED
    if now < start_date:
        return LifecycleStatus.UPCOMING
    if now > end_date:
        return LifecycleStatus.COMPLETED
    return LifecycleStatus.ONGOING
