"""Tests for snapshot reconciliation and notification dispatch."""

import pytest

from conftest import RecordingSink, make_snapshot
from tally_reconciler import (
    OFF_AIR_MESSAGE,
    ON_AIR_MESSAGE,
    TallyReconciler,
    TransitionEvent,
    dispatch_transitions,
    format_state,
)
from vmix_client import TallyState


def test_first_reconcile_only_seeds_baseline(store):
    store.assign(100, "ana", 1)
    store.assign(200, "ben", 2)
    reconciler = TallyReconciler(store)

    assert reconciler.reconcile(make_snapshot(program=[1, 2])) == []
    assert reconciler.previous.program == {1, 2}


def test_become_on_air(store):
    store.assign(100, "ana", 3)
    reconciler = TallyReconciler(store)
    reconciler.reconcile(make_snapshot())

    events = reconciler.reconcile(make_snapshot(program=[3]))

    assert events == [TransitionEvent(3, previous_on_air=False, current_on_air=True)]
    assert events[0].became_on_air
    assert not events[0].became_off_air
    assert events[0].message == ON_AIR_MESSAGE


def test_become_off_air(store):
    store.assign(100, "ana", 3)
    reconciler = TallyReconciler(store)
    reconciler.reconcile(make_snapshot(program=[3]))

    events = reconciler.reconcile(make_snapshot())

    assert events == [TransitionEvent(3, previous_on_air=True, current_on_air=False)]
    assert events[0].became_off_air
    assert events[0].message == OFF_AIR_MESSAGE


def test_same_snapshot_twice_yields_nothing(store):
    store.assign(100, "ana", 3)
    reconciler = TallyReconciler(store)
    reconciler.reconcile(make_snapshot())
    snapshot = make_snapshot(program=[3], preview=[1])

    assert len(reconciler.reconcile(snapshot)) == 1
    assert reconciler.reconcile(snapshot) == []


def test_only_watched_cameras_produce_events(store):
    store.assign(100, "ana", 2)
    reconciler = TallyReconciler(store)
    reconciler.reconcile(make_snapshot())

    events = reconciler.reconcile(make_snapshot(program=[1, 2, 5]))

    assert [e.camera_number for e in events] == [2]


def test_cameras_are_independent(store):
    store.assign(100, "ana", 1)
    store.assign(200, "ben", 2)
    store.assign(300, "cam", 3)
    reconciler = TallyReconciler(store)
    reconciler.reconcile(make_snapshot(program=[1]))

    events = reconciler.reconcile(make_snapshot(program=[2]))

    by_camera = {e.camera_number: e for e in events}
    assert set(by_camera) == {1, 2}
    assert by_camera[1].became_off_air
    assert by_camera[2].became_on_air


def test_preview_changes_do_not_notify(store):
    store.assign(100, "ana", 4)
    reconciler = TallyReconciler(store)
    reconciler.reconcile(make_snapshot())

    assert reconciler.reconcile(make_snapshot(preview=[4])) == []
    assert reconciler.reconcile(make_snapshot()) == []


def test_preview_to_program_notifies_once(store):
    store.assign(100, "ana", 4)
    reconciler = TallyReconciler(store)
    reconciler.reconcile(make_snapshot(preview=[4]))

    events = reconciler.reconcile(make_snapshot(program=[4], preview=[4]))

    assert len(events) == 1 and events[0].became_on_air


def test_oscillation_emits_one_event_per_transition(store):
    store.assign(100, "ana", 3)
    reconciler = TallyReconciler(store)
    reconciler.reconcile(make_snapshot(program=[3]))

    emitted = []
    emitted += reconciler.reconcile(make_snapshot())
    emitted += reconciler.reconcile(make_snapshot(program=[3]))

    assert len(emitted) == 2
    assert emitted[0].became_off_air
    assert emitted[1].became_on_air
    assert reconciler.reconcile(make_snapshot(program=[3])) == []


def test_compares_against_immediately_preceding_snapshot(store):
    store.assign(100, "ana", 3)
    reconciler = TallyReconciler(store)
    reconciler.reconcile(make_snapshot())
    reconciler.reconcile(make_snapshot(program=[3]))
    reconciler.reconcile(make_snapshot(program=[3]))

    assert reconciler.previous.program == {3}
    assert reconciler.reconcile(make_snapshot(program=[3])) == []


def test_camera_assigned_later_is_compared_from_then_on(store):
    reconciler = TallyReconciler(store)
    reconciler.reconcile(make_snapshot(program=[5]))

    store.assign(100, "ana", 5)
    assert reconciler.reconcile(make_snapshot(program=[5])) == []
    events = reconciler.reconcile(make_snapshot())
    assert len(events) == 1 and events[0].became_off_air


def test_unreadable_camera_keeps_last_known_state(store):
    store.assign(100, "ana", 3)
    reconciler = TallyReconciler(store)
    reconciler.reconcile(make_snapshot(program=[1, 3]))

    assert reconciler.reconcile(make_snapshot(program=[1], unknown=[3])) == []
    assert reconciler.previous.program == {1, 3}
    assert reconciler.previous.unknown == frozenset()
    assert reconciler.reconcile(make_snapshot(program=[1, 3])) == []


def test_real_change_after_unreadable_poll_is_reported_once(store):
    store.assign(100, "ana", 3)
    reconciler = TallyReconciler(store)
    reconciler.reconcile(make_snapshot(program=[3]))
    reconciler.reconcile(make_snapshot(unknown=[3]))

    events = reconciler.reconcile(make_snapshot())

    assert len(events) == 1 and events[0].became_off_air


def test_camera_unknown_since_baseline_is_seeded_silently(store):
    store.assign(100, "ana", 3)
    reconciler = TallyReconciler(store)
    reconciler.reconcile(make_snapshot(program=[1], unknown=[3]))

    assert reconciler.reconcile(make_snapshot(program=[1], unknown=[3])) == []
    assert reconciler.reconcile(make_snapshot(program=[1, 3])) == []
    events = reconciler.reconcile(make_snapshot(program=[1]))
    assert len(events) == 1 and events[0].became_off_air


def test_format_state():
    assert format_state(TallyState.PROGRAM) == "🔴 ON AIR"
    assert format_state(TallyState.PREVIEW) == "🟡 PREVIEW"
    assert format_state(TallyState.OFF) == "⚫ OFF"
    assert format_state(TallyState.OFF, icon_only=True) == "⚫"


class TestDispatchTransitions:
    @pytest.mark.asyncio
    async def test_delivers_once_to_assigned_operator(self, store, sink):
        store.assign(100, "ana", 3)
        store.assign(200, "ben", 4)
        events = [TransitionEvent(3, False, True)]

        result = await dispatch_transitions(events, store, sink)

        assert sink.delivered == [(100, ON_AIR_MESSAGE)]
        assert result.delivered == 1
        assert result.failed == 0

    @pytest.mark.asyncio
    async def test_no_events_no_calls(self, store, sink):
        store.assign(100, "ana", 3)
        result = await dispatch_transitions([], store, sink)
        assert sink.attempts == []
        assert result.delivered == 0

    @pytest.mark.asyncio
    async def test_failed_delivery_is_isolated_and_not_retried(self, store):
        store.assign(100, "ana", 1)
        store.assign(200, "ben", 2)
        store.assign(300, "cam", 3)
        sink = RecordingSink(failing=(100,), raising=(200,))
        events = [
            TransitionEvent(1, False, True),
            TransitionEvent(2, True, False),
            TransitionEvent(3, False, True),
        ]

        result = await dispatch_transitions(events, store, sink)

        assert sink.attempts == [100, 200, 300]
        assert sink.delivered == [(300, ON_AIR_MESSAGE)]
        assert result.delivered == 1
        assert result.failed == 2

    @pytest.mark.asyncio
    async def test_scenario_operator_on_camera_three(self, store, sink):
        store.assign(100, "ana", 3)
        reconciler = TallyReconciler(store)
        reconciler.reconcile(make_snapshot())

        events = reconciler.reconcile(make_snapshot(program=[3]))
        await dispatch_transitions(events, store, sink)
        events = reconciler.reconcile(make_snapshot())
        await dispatch_transitions(events, store, sink)

        assert sink.delivered == [(100, ON_AIR_MESSAGE), (100, OFF_AIR_MESSAGE)]
