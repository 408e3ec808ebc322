"""
tandem.models
=============

Dataclasses and enums representing a single course ↔ project
partnership and its life‑cycle status.  These objects are intentionally
lightweight; they carry **no** external‑library dependencies so that
importing `tandem` stays fast and the state machine can be unit‑tested
without a database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class PartnershipStatus(str, Enum):
    """Primary workflow states for a partnership."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELED = "canceled"
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    COMPLETE = "complete"

    def __str__(self) -> str:        # nicer REPL display
        return self.name


class LifecycleStatus(str, Enum):
    """Date‑derived refinement of an approved partnership."""
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    COMPLETED = "completed"

    def __str__(self) -> str:
        return self.name


# Statuses that count towards the one‑per‑course / one‑per‑project rule.
ACTIVE_STATUSES = frozenset(
    {PartnershipStatus.APPROVED, PartnershipStatus.UPCOMING, PartnershipStatus.ONGOING}
)

TERMINAL_STATUSES = frozenset(
    {PartnershipStatus.REJECTED, PartnershipStatus.CANCELED, PartnershipStatus.COMPLETE}
)


@dataclass(frozen=True)
class Message:
    """One entry of the partnership conversation log."""
    user_id: str
    text: str
    timestamp: datetime


@dataclass
class SuccessMetrics:
    """
    Optional outcome scores recorded when a partnership completes.

    Parameters
    ----------
    satisfaction : float | None
        0–10 rating.
    completion_rate : float | None
        0–100 percentage.
    goal_achievement : float | None
        0–100 percentage.
    """
    satisfaction: Optional[float] = None
    completion_rate: Optional[float] = None
    goal_achievement: Optional[float] = None

    RANGES = {
        "satisfaction": (0.0, 10.0),
        "completion_rate": (0.0, 100.0),
        "goal_achievement": (0.0, 100.0),
    }

    def out_of_range(self) -> List[str]:
        """Return the names of every metric outside its documented range."""
        bad = []
        for name, (lo, hi) in self.RANGES.items():
            value = getattr(self, name)
            if value is not None and not (lo <= value <= hi):
                bad.append(name)
        return bad


@dataclass
class Partnership:
    """
    Agreement linking one course to one industry project.

    Parameters
    ----------
    id : str
        Opaque unique identifier.
    course_id, project_id : str
        Foreign identifiers of the two sides.
    requested_by_user_id, requested_to_user_id : str
        The requester and the user asked to respond.
    created_at : datetime.datetime
        Creation instant; never changes.
    status : PartnershipStatus, default=PENDING
        Current workflow state.
    version : int, default=0
        Write counter; a store only accepts a save whose version matches
        the stored one, then bumps it.

    Every other field is managed by :class:`tandem.lifecycle.PartnershipLifecycle`
    and should not be assigned directly.
    """
    id: str
    course_id: str
    project_id: str
    requested_by_user_id: str
    requested_to_user_id: str
    created_at: datetime
    status: PartnershipStatus = PartnershipStatus.PENDING
    lifecycle_status: Optional[LifecycleStatus] = None
    request_message: Optional[str] = None
    response_message: Optional[str] = None
    messages: List[Message] = field(default_factory=list)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    is_complete: bool = False

    # Derived analytics -------------------------------------------------
    request_year: Optional[int] = None
    request_quarter: Optional[int] = None
    request_month: Optional[int] = None
    approval_time_in_days: Optional[int] = None
    partnership_duration_in_days: Optional[int] = None
    success_metrics: Optional[SuccessMetrics] = None
    version: int = 0

    # Convenience helpers -------------------------------------------------
    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def has_dates(self) -> bool:
        return self.start_date is not None and self.end_date is not None
