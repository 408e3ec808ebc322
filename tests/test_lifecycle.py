"""
tests/test_lifecycle.py
=======================

Unit tests for tandem.lifecycle (advance_status + PartnershipLifecycle)
"""

import logging
import threading
from datetime import timedelta

import pytest

from tandem.errors import (
    ConflictError,
    InvalidArgument,
    InvalidState,
    NotFound,
    PermissionDenied,
)
from tandem.events import EventType
from tandem.lifecycle import PartnershipLifecycle, advance_status
from tandem.models import (
    LifecycleStatus,
    Partnership,
    PartnershipStatus,
    SuccessMetrics,
)
from tandem.settings import MessagePolicy, Settings
from tandem.store import InMemoryPartnershipStore

S = PartnershipStatus


def _request(lc, course="c1", project="p1"):
    return lc.create(course, project, "alice", "bob", "  Shall we team up?  ")


def _approved_with_dates(store, clock, start, end, status=S.APPROVED):
    """Store an already-approved partnership with a date window, bypassing set_dates."""
    p = Partnership(
        id="dated",
        course_id="c9",
        project_id="p9",
        requested_by_user_id="alice",
        requested_to_user_id="bob",
        created_at=clock.now - timedelta(days=20),
        status=status,
        approved_at=clock.now - timedelta(days=10),
        start_date=start,
        end_date=end,
    )
    store.save(p)
    return p


# ---------------------------------------------------------------------
# advance_status
# ---------------------------------------------------------------------
def test_good_transition(lifecycle):
    """PENDING → APPROVED should succeed."""
    p = _request(lifecycle)
    advance_status(p, S.APPROVED)
    assert p.status is S.APPROVED


def test_illegal_transition_raises(lifecycle):
    """PENDING → COMPLETE is not allowed and should raise InvalidState."""
    p = _request(lifecycle)
    with pytest.raises(InvalidState):
        advance_status(p, S.COMPLETE)


# ---------------------------------------------------------------------
# create
# ---------------------------------------------------------------------
def test_create_is_pending_with_request_period(lifecycle, store, clock):
    p = _request(lifecycle)
    assert p.status is S.PENDING
    assert p.created_at == clock.now
    assert (p.request_year, p.request_quarter, p.request_month) == (2024, 2, 5)
    assert p.request_message == "Shall we team up?"
    assert store.get(p.id) == p


@pytest.mark.parametrize("missing", ["course_id", "project_id", "requested_by_user_id", "requested_to_user_id"])
def test_create_requires_identifiers(lifecycle, store, missing):
    args = dict(course_id="c1", project_id="p1", requested_by_user_id="a", requested_to_user_id="b")
    args[missing] = "  "
    with pytest.raises(InvalidArgument):
        lifecycle.create(**args)
    assert len(store) == 0


def test_create_does_not_check_exclusivity(lifecycle):
    first = _request(lifecycle)
    lifecycle.approve(first.id)
    second = _request(lifecycle, project="p2")
    assert second.status is S.PENDING


def test_request_period_is_not_recomputed(lifecycle, clock):
    p = _request(lifecycle)
    clock.advance(days=90)
    p = lifecycle.approve(p.id)
    assert (p.request_year, p.request_quarter, p.request_month) == (2024, 2, 5)


# ---------------------------------------------------------------------
# approve
# ---------------------------------------------------------------------
def test_scenario_a_approve_without_dates(lifecycle, clock):
    p = _request(lifecycle)
    clock.advance(days=3, hours=5)
    p = lifecycle.approve(p.id, "Welcome aboard")
    assert p.status is S.APPROVED
    assert p.approved_at == clock.now
    assert p.approval_time_in_days == 3
    assert p.response_message == "Welcome aboard"
    assert p.lifecycle_status is None


def test_scenario_b_course_already_active(lifecycle, store):
    first = _request(lifecycle, "c1", "p1")
    lifecycle.approve(first.id)
    second = _request(lifecycle, "c1", "p2")

    with pytest.raises(ConflictError) as info:
        lifecycle.approve(second.id)

    assert info.value.field == "course"
    assert info.value.existing_id == first.id
    assert store.get(second.id).status is S.PENDING
    assert store.get(second.id).approved_at is None


def test_project_already_active(lifecycle):
    first = _request(lifecycle, "c1", "p1")
    lifecycle.approve(first.id)
    second = _request(lifecycle, "c2", "p1")
    with pytest.raises(ConflictError) as info:
        lifecycle.approve(second.id)
    assert info.value.field == "project"


def test_completed_partnership_frees_course(lifecycle):
    first = _request(lifecycle, "c1", "p1")
    lifecycle.approve(first.id)
    lifecycle.complete(first.id)
    second = _request(lifecycle, "c1", "p2")
    assert lifecycle.approve(second.id).status is S.APPROVED


def test_approve_refines_to_upcoming_when_dates_known(lifecycle, store, clock):
    p = _request(lifecycle)
    row = store.get(p.id)
    row.start_date = clock.now + timedelta(days=5)
    row.end_date = clock.now + timedelta(days=50)
    store.save(row)

    p = lifecycle.approve(p.id)
    assert p.status is S.UPCOMING
    assert p.lifecycle_status is LifecycleStatus.UPCOMING
    assert p.approved_at == clock.now


def test_approve_past_window_stays_approved_until_refresh(lifecycle, store, clock):
    p = _request(lifecycle)
    row = store.get(p.id)
    row.start_date = clock.now - timedelta(days=50)
    row.end_date = clock.now - timedelta(days=5)
    store.save(row)

    p = lifecycle.approve(p.id)
    assert p.status is S.APPROVED
    assert p.lifecycle_status is LifecycleStatus.COMPLETED

    p = lifecycle.refresh_lifecycle(p.id)
    assert p.status is S.COMPLETE


def test_concurrent_approvals_only_one_wins():
    store = InMemoryPartnershipStore()
    lc = PartnershipLifecycle(store)
    ids = [lc.create("shared-course", f"project-{i}", "alice", "bob").id for i in range(8)]

    barrier = threading.Barrier(len(ids))
    outcomes = []
    lock = threading.Lock()

    def attempt(pid):
        barrier.wait()
        try:
            lc.approve(pid)
            result = "ok"
        except ConflictError:
            result = "conflict"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt, args=(pid,)) for pid in ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("conflict") == len(ids) - 1
    assert len(store.list_active()) == 1


# ---------------------------------------------------------------------
# reject / cancel
# ---------------------------------------------------------------------
def test_scenario_e_rejected_cannot_be_approved(lifecycle, store, clock):
    p = _request(lifecycle)
    clock.advance(days=1)
    p = lifecycle.reject(p.id, "Not this term")
    assert p.rejected_at == clock.now

    with pytest.raises(InvalidState):
        lifecycle.approve(p.id)
    assert store.get(p.id).status is S.REJECTED


def test_scenario_f_cancel_only_from_pending(lifecycle, store):
    p = _request(lifecycle)
    lifecycle.approve(p.id)
    with pytest.raises(InvalidState):
        lifecycle.cancel(p.id)
    assert store.get(p.id).status is S.APPROVED


def test_cancel_pending(lifecycle, clock):
    p = _request(lifecycle)
    p = lifecycle.cancel(p.id)
    assert p.status is S.CANCELED
    assert p.canceled_at == clock.now


@pytest.mark.parametrize("close", ["reject", "cancel", "complete"])
def test_terminal_statuses_are_immutable(lifecycle, store, clock, close):
    p = _request(lifecycle)
    if close == "complete":
        lifecycle.approve(p.id)
        lifecycle.complete(p.id)
    else:
        getattr(lifecycle, close)(p.id)
    frozen = store.get(p.id)

    clock.advance(days=1)
    attempts = [
        lambda: lifecycle.approve(p.id),
        lambda: lifecycle.reject(p.id),
        lambda: lifecycle.cancel(p.id),
        lambda: lifecycle.complete(p.id),
        lambda: lifecycle.set_dates(p.id, clock.now, clock.now + timedelta(days=3)),
    ]
    for attempt in attempts:
        with pytest.raises(InvalidState):
            attempt()

    lifecycle.refresh_lifecycle(p.id)
    assert store.get(p.id) == frozen


# ---------------------------------------------------------------------
# complete
# ---------------------------------------------------------------------
def test_complete_records_duration_and_metrics(lifecycle, clock):
    p = _request(lifecycle)
    clock.advance(days=2)
    lifecycle.approve(p.id)
    clock.advance(days=30)
    p = lifecycle.complete(p.id, {"satisfaction": 8, "completion_rate": 95.5})

    assert p.status is S.COMPLETE
    assert p.is_complete
    assert p.lifecycle_status is LifecycleStatus.COMPLETED
    assert p.completed_at == clock.now
    assert p.partnership_duration_in_days == 30
    assert p.success_metrics == SuccessMetrics(satisfaction=8.0, completion_rate=95.5)
    assert p.created_at <= p.approved_at <= p.completed_at


def test_complete_requires_active(lifecycle):
    p = _request(lifecycle)
    with pytest.raises(InvalidState):
        lifecycle.complete(p.id)


@pytest.mark.parametrize(
    "metrics",
    [
        {"satisfaction": 10.5},
        {"completion_rate": -1},
        {"goal_achievement": 101},
        {"happiness": 5},
        {"satisfaction": "high"},
        SuccessMetrics(goal_achievement=200),
    ],
)
def test_complete_rejects_bad_metrics(lifecycle, store, metrics):
    p = _request(lifecycle)
    lifecycle.approve(p.id)
    with pytest.raises(InvalidArgument):
        lifecycle.complete(p.id, metrics)
    assert store.get(p.id).status is S.APPROVED


# ---------------------------------------------------------------------
# set_dates / refresh_lifecycle
# ---------------------------------------------------------------------
def test_set_dates_mirrors_lifecycle(lifecycle, clock):
    p = _request(lifecycle)
    lifecycle.approve(p.id)

    p = lifecycle.set_dates(p.id, clock.now - timedelta(days=1), clock.now + timedelta(days=10))
    assert p.status is S.ONGOING
    assert p.lifecycle_status is LifecycleStatus.ONGOING

    p = lifecycle.set_dates(p.id, clock.now + timedelta(days=3), clock.now + timedelta(days=10))
    assert p.status is S.UPCOMING


def test_set_dates_in_the_past_completes(lifecycle, notifier, clock):
    p = _request(lifecycle)
    lifecycle.approve(p.id)
    p = lifecycle.set_dates(p.id, clock.now - timedelta(days=30), clock.now - timedelta(days=1))
    assert p.status is S.COMPLETE
    assert p.is_complete
    assert notifier.types[-1] is EventType.PARTNERSHIP_COMPLETED


def test_set_dates_validation(lifecycle, clock):
    p = _request(lifecycle)
    with pytest.raises(InvalidArgument):
        lifecycle.set_dates(p.id, clock.now, clock.now)
    with pytest.raises(InvalidState):
        lifecycle.set_dates(p.id, clock.now, clock.now + timedelta(days=1))


def test_scenario_c_refresh_to_ongoing(lifecycle, store, clock):
    p = _approved_with_dates(store, clock, clock.now - timedelta(days=1), clock.now + timedelta(days=1))
    p = lifecycle.refresh_lifecycle(p.id)
    assert p.status is S.ONGOING
    assert p.lifecycle_status is LifecycleStatus.ONGOING


def test_scenario_d_refresh_completes_past_window(lifecycle, store, notifier, clock):
    p = _approved_with_dates(
        store, clock, clock.now - timedelta(days=10), clock.now - timedelta(days=2), status=S.ONGOING
    )
    p = lifecycle.refresh_lifecycle(p.id)
    assert p.status is S.COMPLETE
    assert p.is_complete
    assert p.completed_at == clock.now
    assert p.partnership_duration_in_days == 10
    assert notifier.types == [EventType.PARTNERSHIP_COMPLETED]


def test_refresh_is_idempotent(lifecycle, store, notifier, clock):
    p = _approved_with_dates(store, clock, clock.now - timedelta(days=10), clock.now - timedelta(days=2))
    first = lifecycle.refresh_lifecycle(p.id)
    second = lifecycle.refresh_lifecycle(p.id)
    assert first == second
    assert len(notifier.events) == 1


def test_refresh_follows_the_clock(lifecycle, store, clock):
    p = _approved_with_dates(store, clock, clock.now + timedelta(days=1), clock.now + timedelta(days=3))
    assert lifecycle.refresh_lifecycle(p.id).status is S.UPCOMING
    clock.advance(days=2)
    assert lifecycle.refresh_lifecycle(p.id).status is S.ONGOING
    clock.advance(days=2)
    assert lifecycle.refresh_lifecycle(p.id).status is S.COMPLETE


def test_refresh_ignores_pending_and_undated(lifecycle):
    p = _request(lifecycle)
    assert lifecycle.refresh_lifecycle(p.id) == p
    lifecycle.approve(p.id)
    assert lifecycle.refresh_lifecycle(p.id).status is S.APPROVED


# ---------------------------------------------------------------------
# messages
# ---------------------------------------------------------------------
def test_append_message_keeps_order(lifecycle, clock):
    p = _request(lifecycle)
    lifecycle.append_message(p.id, "alice", "hello")
    clock.advance(minutes=5)
    p = lifecycle.append_message(p.id, "bob", "  hi there ")
    assert [(m.user_id, m.text) for m in p.messages] == [("alice", "hello"), ("bob", "hi there")]
    assert p.messages[1].timestamp == clock.now


def test_append_message_open_policy_allows_terminal(lifecycle):
    p = _request(lifecycle)
    lifecycle.reject(p.id)
    assert len(lifecycle.append_message(p.id, "alice", "pity").messages) == 1


def test_append_message_active_policy(store, clock):
    lc = PartnershipLifecycle(store, clock=clock, options=Settings(message_policy=MessagePolicy.ACTIVE))
    p = lc.create("c1", "p1", "alice", "bob")
    lc.append_message(p.id, "alice", "still pending")
    lc.cancel(p.id)
    with pytest.raises(InvalidState):
        lc.append_message(p.id, "alice", "too late")


def test_append_message_requires_text(lifecycle):
    p = _request(lifecycle)
    with pytest.raises(InvalidArgument):
        lifecycle.append_message(p.id, "alice", "   ")
    with pytest.raises(InvalidArgument):
        lifecycle.append_message(p.id, "", "hello")


# ---------------------------------------------------------------------
# lookup & notifications
# ---------------------------------------------------------------------
@pytest.mark.parametrize("op", ["approve", "reject", "cancel", "complete", "refresh_lifecycle", "get"])
def test_unknown_id_raises_not_found(lifecycle, op):
    with pytest.raises(NotFound):
        getattr(lifecycle, op)("missing")


def test_events_follow_transitions(lifecycle, notifier):
    p = _request(lifecycle)
    lifecycle.approve(p.id, "yes")
    lifecycle.complete(p.id)
    assert notifier.types == [
        EventType.PARTNERSHIP_REQUESTED,
        EventType.PARTNERSHIP_APPROVED,
        EventType.PARTNERSHIP_COMPLETED,
    ]
    _, payload = notifier.events[1]
    assert payload["partnership_id"] == p.id
    assert payload["status"] == "approved"
    assert payload["message"] == "yes"


def test_notifier_failure_does_not_undo_transition(store, clock, caplog):
    class Broken:
        def notify(self, event_type, payload):
            raise RuntimeError("broker down")

    lc = PartnershipLifecycle(store, Broken(), clock=clock)
    with caplog.at_level(logging.ERROR, logger="tandem.lifecycle"):
        p = lc.create("c1", "p1", "alice", "bob")
        p = lc.approve(p.id)

    assert p.status is S.APPROVED
    assert store.get(p.id).status is S.APPROVED
    assert "broker down" in caplog.text


# ---------------------------------------------------------------------
# participants
# ---------------------------------------------------------------------
@pytest.mark.parametrize("op", ["approve", "reject"])
def test_only_requested_user_decides(lifecycle, store, op):
    p = _request(lifecycle)
    for outsider in ("alice", "mallory"):
        with pytest.raises(PermissionDenied):
            getattr(lifecycle, op)(p.id, acting_user_id=outsider)
    assert store.get(p.id).status is S.PENDING
    assert getattr(lifecycle, op)(p.id, acting_user_id="bob").status is not S.PENDING


def test_only_requested_user_completes(lifecycle, store):
    p = _request(lifecycle)
    lifecycle.approve(p.id, acting_user_id="bob")
    with pytest.raises(PermissionDenied):
        lifecycle.complete(p.id, acting_user_id="alice")
    assert store.get(p.id).status is S.APPROVED
    assert lifecycle.complete(p.id, acting_user_id="bob").status is S.COMPLETE


def test_only_requester_cancels(lifecycle, store):
    p = _request(lifecycle)
    with pytest.raises(PermissionDenied) as info:
        lifecycle.cancel(p.id, acting_user_id="bob")
    assert info.value.user_id == "bob"
    assert store.get(p.id).status is S.PENDING
    assert lifecycle.cancel(p.id, acting_user_id="alice").status is S.CANCELED


def test_only_participants_post_or_schedule(lifecycle, clock):
    p = _request(lifecycle)
    lifecycle.append_message(p.id, "alice", "hi", acting_user_id="alice")
    lifecycle.append_message(p.id, "bob", "hello", acting_user_id="bob")
    with pytest.raises(PermissionDenied):
        lifecycle.append_message(p.id, "mallory", "let me in", acting_user_id="mallory")

    lifecycle.approve(p.id)
    with pytest.raises(PermissionDenied):
        lifecycle.set_dates(
            p.id, clock.now, clock.now + timedelta(days=3), acting_user_id="mallory"
        )
    p = lifecycle.set_dates(p.id, clock.now, clock.now + timedelta(days=3), acting_user_id="alice")
    assert len(p.messages) == 2
    assert p.has_dates


def test_permission_is_checked_before_status(lifecycle):
    p = _request(lifecycle)
    lifecycle.reject(p.id)
    with pytest.raises(PermissionDenied):
        lifecycle.approve(p.id, acting_user_id="mallory")


# ---------------------------------------------------------------------
# timestamps never run backwards
# ---------------------------------------------------------------------
@pytest.mark.parametrize("op", ["approve", "reject", "cancel"])
def test_decision_before_creation_is_refused(lifecycle, store, clock, op):
    p = _request(lifecycle)
    with pytest.raises(InvalidArgument):
        getattr(lifecycle, op)(p.id, now=clock.now - timedelta(days=3))
    stored = store.get(p.id)
    assert stored.status is S.PENDING
    assert stored.approval_time_in_days is None


def test_completion_before_approval_is_refused(lifecycle, store, clock):
    p = _request(lifecycle)
    clock.advance(days=5)
    lifecycle.approve(p.id)

    with pytest.raises(InvalidArgument):
        lifecycle.complete(p.id, now=clock.now - timedelta(days=1))
    with pytest.raises(InvalidArgument):
        lifecycle.set_dates(
            p.id,
            clock.now - timedelta(days=30),
            clock.now - timedelta(days=10),
            now=clock.now - timedelta(days=1),
        )
    assert store.get(p.id).status is S.APPROVED

    p = lifecycle.complete(p.id)
    assert p.created_at <= p.approved_at <= p.completed_at
    assert p.partnership_duration_in_days == 0


def test_refresh_before_approval_is_refused(lifecycle, store, clock):
    p = _approved_with_dates(store, clock, clock.now - timedelta(days=10), clock.now - timedelta(days=2))
    with pytest.raises(InvalidArgument):
        lifecycle.refresh_lifecycle(p.id, now=p.approved_at - timedelta(hours=1))
    assert store.get(p.id).status is S.APPROVED


def test_message_before_creation_is_refused(lifecycle, clock):
    p = _request(lifecycle)
    with pytest.raises(InvalidArgument):
        lifecycle.append_message(p.id, "alice", "from the past", now=clock.now - timedelta(minutes=1))


# ---------------------------------------------------------------------
# concurrent writers
# ---------------------------------------------------------------------
def test_stale_copy_cannot_reopen_completed(lifecycle, store):
    p = _request(lifecycle)
    lifecycle.approve(p.id)
    stale = store.get(p.id)
    lifecycle.complete(p.id)

    with pytest.raises(InvalidState):
        store.save(stale)
    assert store.get(p.id).status is S.COMPLETE
