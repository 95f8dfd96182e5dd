from datetime import datetime, timedelta, timezone

import pytest

from cmr.domain.completion import mark_completed
from cmr.domain.errors import (
    AlreadyCompleted,
    IllegalTransition,
    MissingRequiredField,
    NotDeliverable,
    RecordLocked,
)
from cmr.domain.exception_flow import apply_exception_action, exception_history
from cmr.domain.ledger import record_milestone
from cmr.domain.machine import TRANSITIONS, Event, is_allowed
from cmr.domain.states import DeliveryStatus, ExceptionAction, ExceptionStatus
from cmr.domain.workflow import ApplyExceptionAction, MarkCompleted, RecordMilestone, apply

NOW = datetime(2024, 5, 3, 9, 30, tzinfo=timezone.utc)


def act(record, action, note="checked with carrier", actor="ops-desk", at=NOW):
    return apply_exception_action(record, action, note, actor, at)


@pytest.fixture
def in_exception(fresh, advance):
    return act(advance(fresh, 2), ExceptionAction.REPORT, "customs hold")


@pytest.mark.parametrize("status,allowed", [
    (DeliveryStatus.NOT_STARTED, {Event.RECORD_PICKUP}),
    (DeliveryStatus.IN_TRANSIT, {Event.RECORD_MILESTONE, Event.REPORT_EXCEPTION, Event.CLOSE}),
    (DeliveryStatus.EXCEPTION, {Event.FOLLOWUP, Event.RESOLVE, Event.CONTINUE, Event.CLOSE}),
    (DeliveryStatus.DELIVERED, {Event.MARK_COMPLETED, Event.CLOSE}),
    (DeliveryStatus.EXCEPTION_CLOSED, set()),
])
def test_transition_table(status, allowed):
    assert TRANSITIONS[status] == allowed
    for event in Event:
        assert is_allowed(status, event) == (event in allowed)


def test_report_opens_exception(fresh, advance):
    record = advance(fresh, 2)
    reported = act(record, ExceptionAction.REPORT, "customs hold")
    assert reported.delivery_status == DeliveryStatus.EXCEPTION
    assert reported.exception.status == ExceptionStatus.REPORTED
    assert reported.exception.note == "customs hold"
    assert len(reported.exception.records) == 1
    entry = reported.exception.records[0]
    assert (entry.seq, entry.action, entry.actor, entry.step) == (1, ExceptionAction.REPORT, "ops-desk", 2)
    assert record.exception is None


def test_resolve_returns_to_transit(in_exception):
    resolved = act(in_exception, ExceptionAction.RESOLVE)
    assert resolved.delivery_status == DeliveryStatus.IN_TRANSIT
    assert resolved.exception.status == ExceptionStatus.RESOLVED
    assert resolved.current_step == 2


def test_continue_matches_resolve(in_exception):
    resolved = act(in_exception, ExceptionAction.RESOLVE, "released")
    continued = act(in_exception, ExceptionAction.CONTINUE, "released")
    assert continued.delivery_status == resolved.delivery_status
    assert continued.exception.status == resolved.exception.status
    assert continued.exception.records[-1].action == ExceptionAction.CONTINUE


def test_followup_keeps_exception(in_exception):
    followed = act(in_exception, ExceptionAction.FOLLOWUP, "broker called")
    assert followed.delivery_status == DeliveryStatus.EXCEPTION
    assert followed.exception.status == ExceptionStatus.FOLLOWING
    followed = act(followed, ExceptionAction.FOLLOWUP)
    assert [r.seq for r in followed.exception.records] == [1, 2, 3]


def test_report_needs_note(fresh, advance):
    record = advance(fresh, 1)
    with pytest.raises(MissingRequiredField):
        act(record, ExceptionAction.REPORT, "   ")


@pytest.mark.parametrize("step", [0, 5])
def test_report_only_in_transit(fresh, advance, step):
    with pytest.raises(IllegalTransition):
        act(advance(fresh, step), ExceptionAction.REPORT, "damaged seal")


def test_report_while_open_rejected(in_exception):
    with pytest.raises(IllegalTransition):
        act(in_exception, ExceptionAction.REPORT, "second issue")


@pytest.mark.parametrize("action", [
    ExceptionAction.FOLLOWUP, ExceptionAction.RESOLVE, ExceptionAction.CONTINUE, ExceptionAction.CLOSE,
])
def test_actions_need_open_exception(fresh, advance, action):
    with pytest.raises(IllegalTransition):
        act(advance(fresh, 2), action, "note")


def test_resolved_exception_cannot_be_followed_up(in_exception):
    resolved = act(in_exception, ExceptionAction.RESOLVE)
    with pytest.raises(IllegalTransition):
        act(resolved, ExceptionAction.FOLLOWUP)


def test_report_again_after_resolve_extends_trail(in_exception):
    resolved = act(in_exception, ExceptionAction.RESOLVE)
    again = act(resolved, ExceptionAction.REPORT, "driver sick", at=NOW + timedelta(hours=4))
    assert again.delivery_status == DeliveryStatus.EXCEPTION
    assert again.exception.note == "driver sick"
    assert again.exception.reported_at == NOW + timedelta(hours=4)
    assert [r.action for r in again.exception.records] == [
        ExceptionAction.REPORT, ExceptionAction.RESOLVE, ExceptionAction.REPORT,
    ]


def test_trail_is_append_only(in_exception):
    history = [in_exception]
    for action in (ExceptionAction.FOLLOWUP, ExceptionAction.FOLLOWUP, ExceptionAction.RESOLVE):
        history.append(act(history[-1], action, f"{action.value} note"))
    for earlier, later in zip(history, history[1:]):
        before = exception_history(earlier)
        after = exception_history(later)
        assert len(after) == len(before) + 1
        assert after[:len(before)] == before


def test_close_freezes_record(in_exception):
    closed = act(in_exception, ExceptionAction.CLOSE, "cargo written off")
    assert closed.delivery_status == DeliveryStatus.EXCEPTION_CLOSED
    assert closed.exception.status == ExceptionStatus.CLOSED
    assert closed.is_frozen

    with pytest.raises(RecordLocked):
        record_milestone(closed, 3, NOW)
    for action in ExceptionAction:
        with pytest.raises(RecordLocked):
            act(closed, action, "anything")
    with pytest.raises(NotDeliverable):
        mark_completed(closed, NOW)
    assert len(closed.exception.records) == 2


def test_close_after_resolve(in_exception):
    resolved = act(in_exception, ExceptionAction.RESOLVE, "released")
    closed = act(resolved, ExceptionAction.CLOSE, "claim settled")
    assert closed.delivery_status == DeliveryStatus.EXCEPTION_CLOSED
    assert closed.exception.status == ExceptionStatus.CLOSED
    assert [r.action for r in closed.exception.records] == [
        ExceptionAction.REPORT, ExceptionAction.RESOLVE, ExceptionAction.CLOSE,
    ]
    assert closed.is_frozen
    with pytest.raises(RecordLocked):
        record_milestone(closed, 3, NOW)


def test_close_resolved_exception_once_delivered(in_exception, advance):
    delivered = advance(act(in_exception, ExceptionAction.RESOLVE, "released"), 5)
    assert delivered.delivery_status == DeliveryStatus.DELIVERED
    closed = act(delivered, ExceptionAction.CLOSE, "damage claim filed")
    assert closed.delivery_status == DeliveryStatus.EXCEPTION_CLOSED
    with pytest.raises(NotDeliverable):
        mark_completed(closed, NOW)


@pytest.mark.parametrize("action", [
    ExceptionAction.FOLLOWUP, ExceptionAction.RESOLVE, ExceptionAction.CONTINUE, ExceptionAction.CLOSE,
])
@pytest.mark.parametrize("note", [None, "", "  "])
def test_every_action_needs_note(in_exception, action, note):
    with pytest.raises(MissingRequiredField) as excinfo:
        act(in_exception, action, note)
    assert excinfo.value.field == "note"
    assert in_exception.delivery_status == DeliveryStatus.EXCEPTION
    assert len(in_exception.exception.records) == 1


def test_complete_delivered(fresh, advance):
    delivered = advance(fresh, 5)
    completed = mark_completed(delivered, NOW)
    assert completed.completed is True
    assert completed.completed_at == NOW
    assert completed.delivery_status == DeliveryStatus.DELIVERED
    with pytest.raises(AlreadyCompleted):
        mark_completed(completed, NOW)


def test_completed_record_is_locked(fresh, advance):
    completed = mark_completed(advance(fresh, 5), NOW)
    with pytest.raises(RecordLocked):
        record_milestone(completed, 5, completed.milestone(5).timestamp)
    with pytest.raises(RecordLocked):
        act(completed, ExceptionAction.REPORT, "late damage claim")


@pytest.mark.parametrize("step", [0, 1, 4])
def test_complete_requires_delivery(fresh, advance, step):
    with pytest.raises(NotDeliverable):
        mark_completed(advance(fresh, step), NOW)


def test_complete_during_exception(in_exception):
    with pytest.raises(NotDeliverable):
        mark_completed(in_exception, NOW)


class TestApply:
    def test_pickup_transition(self, fresh):
        transition = apply(fresh, RecordMilestone(slot=1, timestamp=NOW, service_provider="Rhenus Road"), at=NOW)
        assert transition.changed
        assert transition.operation == "milestone:pickup"
        assert transition.from_status == DeliveryStatus.NOT_STARTED
        assert transition.to_status == DeliveryStatus.IN_TRANSIT
        assert transition.status_event() is None

    def test_replay_is_unchanged(self, fresh, advance):
        record = advance(fresh, 1)
        transition = apply(record, RecordMilestone(slot=1, timestamp=record.milestone(1).timestamp))
        assert not transition.changed
        assert transition.record is record

    def test_exception_events(self, fresh, advance):
        record = advance(fresh, 2)
        reported = apply(record, ApplyExceptionAction(ExceptionAction.REPORT, "customs hold", "clerk"), at=NOW)
        event = reported.status_event()
        assert event.shipment_id == fresh.id
        assert (event.from_status, event.to_status) == (DeliveryStatus.IN_TRANSIT, DeliveryStatus.EXCEPTION)
        assert event.timestamp == NOW
        assert reported.operation == "exception:report"

        followed = apply(reported.record, ApplyExceptionAction(ExceptionAction.FOLLOWUP, "broker called", "clerk"))
        assert followed.status_event() is None

        closed = apply(followed.record, ApplyExceptionAction(ExceptionAction.CLOSE, "abandoned", "clerk"))
        assert closed.status_event().to_status == DeliveryStatus.EXCEPTION_CLOSED

    def test_default_actor(self, fresh, advance):
        transition = apply(advance(fresh, 1), ApplyExceptionAction(ExceptionAction.REPORT, "flat tyre"))
        assert transition.record.exception.records[0].actor == "system"

    def test_mark_completed_operation(self, fresh, advance):
        transition = apply(advance(fresh, 5), MarkCompleted(), at=NOW)
        assert transition.operation == "complete"
        assert transition.record.completed

    def test_unknown_command(self, fresh):
        with pytest.raises(TypeError):
            apply(fresh, object())
