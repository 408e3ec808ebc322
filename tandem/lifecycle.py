"""
tandem.lifecycle
================

State machine for a :class:`tandem.models.Partnership`.

A small transition table describes which statuses are legal successors
of each status.  :pyfunc:`advance_status` applies one edge of that table
in‑place; :class:`PartnershipLifecycle` layers the request / approve /
reject / cancel / complete workflow on top of it, together with the
one‑active‑partnership rule, transition timestamps and the analytics
fields derived from them.

Every operation accepts an explicit ``now`` so tests can pin the clock,
and an optional ``acting_user_id``: when given, only the participant
entitled to the action may perform it.  Callers acting with
administrative rights simply omit it.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, Iterable, List, Mapping, Optional, Union

from .dimensions import as_utc, days_between, derive_time_dimensions, utcnow
from .errors import ConflictError, InvalidArgument, InvalidState, NotFound, PermissionDenied
from .events import EventType, Notifier, NullNotifier, PartnershipEvent
from .models import (
    ACTIVE_STATUSES,
    LifecycleStatus,
    Message,
    Partnership,
    PartnershipStatus,
    SuccessMetrics,
)
from .settings import MessagePolicy, Settings, settings as default_settings
from .status import resolve
from .store import PartnershipStore

logger = logging.getLogger(__name__)

S = PartnershipStatus

# ---------------------------------------------------------------------
# Allowed transitions: source status → set[valid target statuses]
# Terminal statuses (REJECTED, CANCELED, COMPLETE) have no entry.
# ---------------------------------------------------------------------
RULES = {
    S.PENDING:  {S.APPROVED, S.REJECTED, S.CANCELED},
    S.APPROVED: {S.UPCOMING, S.ONGOING, S.COMPLETE},
    S.UPCOMING: {S.ONGOING, S.COMPLETE},
    S.ONGOING:  {S.UPCOMING, S.COMPLETE},
}

# Lifecycle results that are mirrored straight into ``status``.
_MIRRORED = {
    LifecycleStatus.UPCOMING: S.UPCOMING,
    LifecycleStatus.ONGOING: S.ONGOING,
}

MetricsInput = Union[SuccessMetrics, Mapping[str, float]]


def advance_status(p: Partnership, new_status: PartnershipStatus) -> None:
    """
    Change :pyattr:`p.status` if the transition is legal, otherwise raise
    :class:`~tandem.errors.InvalidState`.  Re‑asserting the current status
    is a no‑op.
    """
    current = p.status
    if new_status is current:
        return
    if new_status not in RULES.get(current, set()):
        raise InvalidState(f"illegal transition {current.name} → {new_status.name}", current.value)
    p.status = new_status


def _require_id(name: str, value: Optional[str]) -> str:
    if value is None or not str(value).strip():
        raise InvalidArgument(f"{name} is required")
    return str(value).strip()


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip()


def _participants(p: Partnership) -> List[str]:
    return [p.requested_by_user_id, p.requested_to_user_id]


def _coerce_metrics(metrics: MetricsInput) -> SuccessMetrics:
    if isinstance(metrics, SuccessMetrics):
        candidate = metrics
    else:
        unknown = set(metrics) - set(SuccessMetrics.RANGES)
        if unknown:
            raise InvalidArgument(f"unknown success metrics: {', '.join(sorted(unknown))}")
        candidate = SuccessMetrics(**metrics)

    values = {}
    for name in SuccessMetrics.RANGES:
        value = getattr(candidate, name)
        if value is not None:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidArgument(f"{name} must be a number")
            value = float(value)
        values[name] = value
    cleaned = SuccessMetrics(**values)

    bad = cleaned.out_of_range()
    if bad:
        raise InvalidArgument(f"success metrics out of range: {', '.join(bad)}")
    return cleaned


class PartnershipLifecycle:
    """
    Request / approve / complete workflow over a :class:`PartnershipStore`.

    Parameters
    ----------
    store : PartnershipStore
        Where partnerships are loaded from and saved to.  Each mutating
        operation runs inside ``store.atomic()``.
    notifier : Notifier, optional
        Receives one event per transition.  Failures are logged and never
        affect the result of the operation.
    clock : callable, optional
        Fallback for ``now`` when an operation is called without one.
    options : Settings, optional
        Message policy and event source; defaults to :data:`tandem.settings.settings`.

    Example
    -------
    >>> lc = PartnershipLifecycle(InMemoryPartnershipStore())
    >>> p = lc.create("course-1", "project-1", "alice", "bob")
    >>> lc.approve(p.id).status
    <PartnershipStatus.APPROVED: 'approved'>
    """

    def __init__(
        self,
        store: PartnershipStore,
        notifier: Optional[Notifier] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        options: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.notifier = notifier or NullNotifier()
        self.clock = clock
        self.options = options or default_settings

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _now(self, now: Optional[datetime]) -> datetime:
        return as_utc(now if now is not None else self.clock())

    def _load(self, partnership_id: str) -> Partnership:
        p = self.store.get(partnership_id)
        if p is None:
            raise NotFound(partnership_id)
        return p

    @staticmethod
    def _guard(p: Partnership, allowed: Iterable[PartnershipStatus], action: str) -> None:
        if p.status not in allowed:
            raise InvalidState(
                f"Cannot {action} partnership with status: {p.status.value}", p.status.value
            )

    @staticmethod
    def _authorise(
        p: Partnership, acting_user_id: Optional[str], allowed: Iterable[str], action: str
    ) -> None:
        if acting_user_id is None:
            return
        if acting_user_id not in set(allowed):
            logger.warning(f"User {acting_user_id} refused: cannot {action} partnership {p.id}")
            raise PermissionDenied(acting_user_id, action)

    @staticmethod
    def _not_before_history(p: Partnership, now: datetime) -> None:
        # created_at <= approved_at <= completed_at, whatever clock the caller passes
        latest = max(as_utc(t) for t in (p.created_at, p.approved_at) if t is not None)
        if now < latest:
            raise InvalidArgument(
                f"{now.isoformat()} is earlier than the last recorded change of "
                f"partnership {p.id} ({latest.isoformat()})"
            )

    def _publish(
        self,
        event_type: EventType,
        p: Partnership,
        now: datetime,
        message: Optional[str] = None,
    ) -> None:
        event = PartnershipEvent.from_partnership(
            event_type, p, message=message, source=self.options.event_source, timestamp=now
        )
        try:
            self.notifier.notify(event_type, event.to_dict())
        except Exception as e:  # notification is best effort
            logger.error(f"Failed to publish partnership event {event_type.value} for {p.id}: {e}")

    @staticmethod
    def _mark_complete(p: Partnership, now: datetime) -> None:
        advance_status(p, S.COMPLETE)
        p.is_complete = True
        p.lifecycle_status = LifecycleStatus.COMPLETED
        if p.completed_at is None:
            p.completed_at = now
        if p.approved_at is not None:
            p.partnership_duration_in_days = days_between(p.approved_at, p.completed_at)

    def _sync_lifecycle(self, p: Partnership, now: datetime) -> bool:
        """
        Re‑resolve the date window and mirror it into ``status``.

        Returns True when the resolution completed the partnership.
        """
        p.lifecycle_status = resolve(p.start_date, p.end_date, now, p.is_complete)
        if p.lifecycle_status is LifecycleStatus.COMPLETED:
            self._mark_complete(p, now)
            return True
        advance_status(p, _MIRRORED[p.lifecycle_status])
        return False

    def _describe(self, p: Partnership) -> str:
        return f"Partnership {p.id} between course {p.course_id} and project {p.project_id}"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def get(self, partnership_id: str) -> Partnership:
        """Return a partnership or raise :class:`~tandem.errors.NotFound`."""
        return self._load(partnership_id)

    def create(
        self,
        course_id: str,
        project_id: str,
        requested_by_user_id: str,
        requested_to_user_id: str,
        request_message: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> Partnership:
        """Open a new PENDING request.  Exclusivity is only checked on approval."""
        course_id = _require_id("course_id", course_id)
        project_id = _require_id("project_id", project_id)
        requested_by_user_id = _require_id("requested_by_user_id", requested_by_user_id)
        requested_to_user_id = _require_id("requested_to_user_id", requested_to_user_id)
        now = self._now(now)

        dims = derive_time_dimensions(now)
        p = Partnership(
            id=uuid.uuid4().hex,
            course_id=course_id,
            project_id=project_id,
            requested_by_user_id=requested_by_user_id,
            requested_to_user_id=requested_to_user_id,
            created_at=now,
            request_message=_clean_text(request_message),
            request_year=dims.year,
            request_quarter=dims.quarter,
            request_month=dims.month,
        )
        with self.store.atomic():
            p = self.store.save(p)

        logger.info(f"New partnership created: {p.id} between course {course_id} and project {project_id}")
        self._publish(EventType.PARTNERSHIP_REQUESTED, p, now, p.request_message)
        return p

    def approve(
        self,
        partnership_id: str,
        response_message: Optional[str] = None,
        *,
        acting_user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Partnership:
        """
        PENDING → APPROVED, refined to UPCOMING / ONGOING when dates are known.

        Only the requested user may approve.  Raises
        :class:`~tandem.errors.ConflictError` without touching the record if
        the course or the project is already in an active partnership.
        """
        now = self._now(now)
        with self.store.atomic():
            p = self._load(partnership_id)
            self._authorise(p, acting_user_id, [p.requested_to_user_id], "approve")
            self._guard(p, {S.PENDING}, "approve")
            self._not_before_history(p, now)

            existing = self.store.find_active_by_course_or_project(
                p.course_id, p.project_id, exclude_id=p.id
            )
            if existing is not None:
                if existing.course_id == p.course_id:
                    field, value = "course", p.course_id
                else:
                    field, value = "project", p.project_id
                logger.warning(
                    f"Partnership validation failed: {field.capitalize()} {value} is already "
                    f"in an active partnership ({existing.id})"
                )
                raise ConflictError(field, value, existing.id)

            advance_status(p, S.APPROVED)
            if response_message is not None:
                p.response_message = _clean_text(response_message)
            if p.approved_at is None:
                p.approved_at = now
            p.approval_time_in_days = days_between(p.created_at, p.approved_at)

            if p.has_dates:
                p.lifecycle_status = resolve(p.start_date, p.end_date, now, p.is_complete)
                if p.lifecycle_status in _MIRRORED:
                    advance_status(p, _MIRRORED[p.lifecycle_status])

            p = self.store.save(p)

        logger.info(f"{self._describe(p)} approved")
        self._publish(EventType.PARTNERSHIP_APPROVED, p, now, p.response_message)
        return p

    def reject(
        self,
        partnership_id: str,
        response_message: Optional[str] = None,
        *,
        acting_user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Partnership:
        """PENDING → REJECTED (terminal).  Only the requested user may reject."""
        now = self._now(now)
        with self.store.atomic():
            p = self._load(partnership_id)
            self._authorise(p, acting_user_id, [p.requested_to_user_id], "reject")
            self._guard(p, {S.PENDING}, "reject")
            self._not_before_history(p, now)
            advance_status(p, S.REJECTED)
            if response_message is not None:
                p.response_message = _clean_text(response_message)
            if p.rejected_at is None:
                p.rejected_at = now
            p = self.store.save(p)

        logger.info(f"{self._describe(p)} rejected")
        self._publish(EventType.PARTNERSHIP_REJECTED, p, now, p.response_message)
        return p

    def cancel(
        self,
        partnership_id: str,
        *,
        acting_user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Partnership:
        """
        PENDING → CANCELED (terminal).  Only the requester may cancel, and
        approved partnerships cannot be canceled.
        """
        now = self._now(now)
        with self.store.atomic():
            p = self._load(partnership_id)
            self._authorise(p, acting_user_id, [p.requested_by_user_id], "cancel")
            self._guard(p, {S.PENDING}, "cancel")
            self._not_before_history(p, now)
            advance_status(p, S.CANCELED)
            if p.canceled_at is None:
                p.canceled_at = now
            p = self.store.save(p)

        logger.info(f"{self._describe(p)} canceled by requester")
        self._publish(EventType.PARTNERSHIP_CANCELED, p, now)
        return p

    def complete(
        self,
        partnership_id: str,
        success_metrics: Optional[MetricsInput] = None,
        *,
        acting_user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Partnership:
        """
        Manually close an active partnership.  Only the requested user may
        complete it.

        *success_metrics* may be a :class:`SuccessMetrics` or a mapping with
        any of ``satisfaction`` (0–10), ``completion_rate`` (0–100) and
        ``goal_achievement`` (0–100).
        """
        metrics = _coerce_metrics(success_metrics) if success_metrics is not None else None
        now = self._now(now)
        with self.store.atomic():
            p = self._load(partnership_id)
            self._authorise(p, acting_user_id, [p.requested_to_user_id], "complete")
            self._guard(p, ACTIVE_STATUSES, "complete")
            self._not_before_history(p, now)
            self._mark_complete(p, now)
            if metrics is not None:
                p.success_metrics = metrics
            p = self.store.save(p)

        logger.info(f"{self._describe(p)} marked as complete")
        self._publish(EventType.PARTNERSHIP_COMPLETED, p, now)
        return p

    def set_dates(
        self,
        partnership_id: str,
        start_date: datetime,
        end_date: datetime,
        *,
        acting_user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Partnership:
        """
        Set the working window of an active partnership and re‑resolve its
        status.  Either participant may schedule.
        """
        if start_date is None or end_date is None:
            raise InvalidArgument("start_date and end_date are required")
        start_date, end_date = as_utc(start_date), as_utc(end_date)
        if start_date >= end_date:
            raise InvalidArgument("start_date must be before end_date")

        now = self._now(now)
        with self.store.atomic():
            p = self._load(partnership_id)
            self._authorise(p, acting_user_id, _participants(p), "schedule")
            self._guard(p, ACTIVE_STATUSES, "set dates on")
            self._not_before_history(p, now)
            p.start_date, p.end_date = start_date, end_date
            completed = self._sync_lifecycle(p, now)
            p = self.store.save(p)

        logger.info(f"{self._describe(p)} scheduled {start_date.date()} → {end_date.date()} ({p.status.value})")
        if completed:
            self._publish(EventType.PARTNERSHIP_COMPLETED, p, now)
        return p

    def refresh_lifecycle(self, partnership_id: str, *, now: Optional[datetime] = None) -> Partnership:
        """
        Re‑evaluate an active, dated partnership against *now*.

        Safe to call repeatedly; records that are not active or have no
        date window are returned unchanged.
        """
        now = self._now(now)
        with self.store.atomic():
            p = self._load(partnership_id)
            if not (p.is_active and p.has_dates):
                return p
            self._not_before_history(p, now)
            before = (p.status, p.lifecycle_status)
            completed = self._sync_lifecycle(p, now)
            if (p.status, p.lifecycle_status) == before:
                return p
            p = self.store.save(p)

        if completed:
            logger.info(f"{self._describe(p)} completed on schedule")
            self._publish(EventType.PARTNERSHIP_COMPLETED, p, now)
        else:
            logger.info(f"{self._describe(p)} is now {p.status.value}")
        return p

    def append_message(
        self,
        partnership_id: str,
        user_id: str,
        text: str,
        *,
        acting_user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Partnership:
        """
        Append one entry by *user_id* to the conversation log.

        With *acting_user_id* set, only the two participants may post.
        """
        user_id = _require_id("user_id", user_id)
        text = _clean_text(text)
        if not text:
            raise InvalidArgument("message text is required")
        now = self._now(now)

        with self.store.atomic():
            p = self._load(partnership_id)
            self._authorise(p, acting_user_id, _participants(p), "message on")
            if self.options.message_policy is MessagePolicy.ACTIVE:
                self._guard(p, {S.PENDING} | ACTIVE_STATUSES, "message on")
            self._not_before_history(p, now)
            p.messages.append(Message(user_id=user_id, text=text, timestamp=now))
            p = self.store.save(p)

        logger.info(f"Message added to partnership {p.id} by user {user_id}")
        return p
