"""Shared fixtures for the tally tests."""

from typing import List, Optional, Tuple

import pytest

from tally_store import AssignmentStore
from vmix_client import CameraSnapshot


def make_snapshot(program=(), preview=(), unknown=()) -> CameraSnapshot:
    return CameraSnapshot(
        program=frozenset(program), preview=frozenset(preview), unknown=frozenset(unknown)
    )


def vmix_xml(active: Optional[str] = None, preview: Optional[str] = None, overlays=()) -> str:
    parts = ["<vmix><version>27.0.0.49</version>"]
    if active is not None:
        parts.append(f"<active>{active}</active>")
    if preview is not None:
        parts.append(f"<preview>{preview}</preview>")
    if overlays:
        parts.append("<overlays>")
        parts.extend(f'<overlay number="{n}" />' for n in overlays)
        parts.append("</overlays>")
    parts.append("</vmix>")
    return "".join(parts)


class RecordingSink:
    """Notification sink that records deliveries and can fail chosen operators."""

    def __init__(self, failing: Tuple[int, ...] = (), raising: Tuple[int, ...] = ()):
        self.failing = set(failing)
        self.raising = set(raising)
        self.delivered: List[Tuple[int, str]] = []
        self.attempts: List[int] = []

    async def deliver(self, operator_id: int, message: str) -> bool:
        self.attempts.append(operator_id)
        if operator_id in self.raising:
            raise RuntimeError("recipient unreachable")
        if operator_id in self.failing:
            return False
        self.delivered.append((operator_id, message))
        return True


@pytest.fixture
def store():
    s = AssignmentStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def sink():
    return RecordingSink()
