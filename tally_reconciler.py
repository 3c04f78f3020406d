"""
Tally reconciliation: diff consecutive snapshots into on-air/off-air events
and deliver one notification per event to each operator on that camera.
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import List, Optional, Protocol

from tally_store import Assignment, AssignmentStore
from vmix_client import CameraSnapshot, TallyState

ON_AIR_MESSAGE = "🔴 YOUR CAMERA IS ON AIR"
OFF_AIR_MESSAGE = "⚫ Your camera is no longer on air"

_STATE_LABELS = {
    TallyState.PROGRAM: "🔴 ON AIR",
    TallyState.PREVIEW: "🟡 PREVIEW",
    TallyState.OFF: "⚫ OFF",
}

_STATE_ICONS = {
    TallyState.PROGRAM: "🔴",
    TallyState.PREVIEW: "🟡",
    TallyState.OFF: "⚫",
}


def format_state(state: TallyState, icon_only: bool = False) -> str:
    return _STATE_ICONS[state] if icon_only else _STATE_LABELS[state]


@dataclass(frozen=True)
class TransitionEvent:
    camera_number: int
    previous_on_air: bool
    current_on_air: bool

    @property
    def became_on_air(self) -> bool:
        return self.current_on_air and not self.previous_on_air

    @property
    def became_off_air(self) -> bool:
        return self.previous_on_air and not self.current_on_air

    @property
    def message(self) -> str:
        return ON_AIR_MESSAGE if self.became_on_air else OFF_AIR_MESSAGE


class NotificationSink(Protocol):
    async def deliver(self, operator_id: int, message: str) -> bool:
        ...


def _carry_forward(previous: CameraSnapshot, current: CameraSnapshot) -> CameraSnapshot:
    """Fill cameras the current reading could not see with their last known state."""
    unknown = current.unknown
    if not unknown:
        return current
    return replace(
        current,
        program=(current.program - unknown) | (previous.program & unknown),
        preview=(current.preview - unknown) | (previous.preview & unknown),
        unknown=unknown & previous.unknown,
    )


class TallyReconciler:
    """
    Owns the last observed snapshot and turns each new one into events.

    Only cameras that someone is assigned to are compared. The first
    snapshot after construction seeds the baseline and yields no events.
    A camera the switcher could not report keeps its last known state, and
    a camera with no known state yet is seeded silently once it is read.
    """

    def __init__(self, store: AssignmentStore):
        self.store = store
        self._previous: Optional[CameraSnapshot] = None
        self._lock = threading.Lock()

    @property
    def previous(self) -> Optional[CameraSnapshot]:
        return self._previous

    def reconcile(self, current: CameraSnapshot) -> List[TransitionEvent]:
        """
        Compare current against the previous snapshot and replace it.

        Args:
            current: Freshly fetched snapshot

        Returns:
            One event per watched camera whose on-air state changed
        """
        with self._lock:
            previous = self._previous
            if previous is None:
                self._previous = current
                logging.info(f"Baseline tally seeded: {current.describe()}")
                return []

            merged = _carry_forward(previous, current)
            cameras = sorted({a.camera_number for a in self.store.list_all()})
            events = []
            for camera in cameras:
                if camera in previous.unknown:
                    continue
                was_on_air = previous.is_on_air(camera)
                is_on_air = merged.is_on_air(camera)
                if was_on_air != is_on_air:
                    events.append(TransitionEvent(camera, was_on_air, is_on_air))

            self._previous = merged
            return events


@dataclass
class DispatchResult:
    delivered: int = 0
    failed: int = 0


async def _deliver_one(sink: NotificationSink, assignment: Assignment, message: str) -> bool:
    try:
        return bool(await sink.deliver(assignment.operator_id, message))
    except Exception as e:
        logging.error(
            f"Notification to operator {assignment.operator_id} "
            f"(@{assignment.display_name}) raised: {e}"
        )
        return False


async def dispatch_transitions(
    events: List[TransitionEvent],
    store: AssignmentStore,
    sink: NotificationSink,
) -> DispatchResult:
    """
    Deliver each event once to every operator assigned to its camera.

    A failed delivery is logged and dropped; it is not retried and does not
    stop delivery to the other operators.
    """
    result = DispatchResult()
    if not events:
        return result

    assignments = store.list_all()
    for event in events:
        direction = "ON AIR" if event.became_on_air else "OFF"
        for assignment in assignments:
            if assignment.camera_number != event.camera_number:
                continue

            logging.info(
                f"Camera {event.camera_number} {direction} -> "
                f"@{assignment.display_name} ({assignment.operator_id})"
            )
            if await _deliver_one(sink, assignment, event.message):
                result.delivered += 1
            else:
                result.failed += 1
                logging.warning(
                    f"✗ Notification for camera {event.camera_number} not delivered "
                    f"to {assignment.operator_id}"
                )
    return result
