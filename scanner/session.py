"""Capture session state."""

import time
import uuid
from enum import Enum
from typing import Optional

from .errors import InvalidSessionState
from .frames import Frame
from .geometry import Quadrilateral


class SessionState(Enum):
    LIVE = "live"
    CAPTURED = "captured"
    DETECTING = "detecting"
    REVIEWING = "reviewing"
    RECTIFIED = "rectified"


_TRANSITIONS = {
    SessionState.LIVE: {SessionState.CAPTURED},
    SessionState.CAPTURED: {SessionState.DETECTING, SessionState.REVIEWING},
    SessionState.DETECTING: {SessionState.REVIEWING, SessionState.CAPTURED},
    SessionState.REVIEWING: {SessionState.DETECTING, SessionState.REVIEWING,
                             SessionState.RECTIFIED},
    SessionState.RECTIFIED: set(),
}


class CaptureSession:
    """One still image on its way from capture to a rectified document.

    Sessions are mutated only by :class:`~scanner.engine.ScannerEngine`,
    which serializes access. ``generation`` increases every time the
    session is reset so stale detection results can be recognized.
    """

    def __init__(self):
        self.session_id = uuid.uuid4().hex
        self.created_at = time.time()
        self.generation = 0
        self._state = SessionState.LIVE
        self._still: Optional[Frame] = None
        self._quadrilateral: Optional[Quadrilateral] = None
        self._detected = False

    def __repr__(self):
        return (f"CaptureSession(id={self.session_id[:8]}, "
                f"state={self._state.value}, generation={self.generation})")

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def still(self) -> Optional[Frame]:
        return self._still

    @property
    def quadrilateral(self) -> Optional[Quadrilateral]:
        return self._quadrilateral

    @quadrilateral.setter
    def quadrilateral(self, quad: Optional[Quadrilateral]):
        self._quadrilateral = quad

    @property
    def detected(self) -> bool:
        """True when the current corners came from a detected contour."""
        return self._detected

    def require_state(self, *states: SessionState) -> None:
        if self._state not in states:
            expected = " or ".join(s.value for s in states)
            raise InvalidSessionState(
                f"Session is {self._state.value}, expected {expected}"
            )

    def transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise InvalidSessionState(
                f"Cannot go from {self._state.value} to {new_state.value}"
            )
        self._state = new_state

    def load_still(self, frame: Frame) -> None:
        self.transition(SessionState.CAPTURED)
        self._still = frame
        self._quadrilateral = None
        self._detected = False

    def apply_detection(self, quad: Optional[Quadrilateral], detected: bool) -> None:
        self.transition(SessionState.REVIEWING)
        self._quadrilateral = quad
        self._detected = detected

    def mark_rectified(self) -> None:
        self.transition(SessionState.RECTIFIED)
        # Pixel data is no longer needed once the output exists
        self._still = None

    def reset(self) -> None:
        """Back to LIVE, dropping the still and any corners."""
        self.generation += 1
        self._state = SessionState.LIVE
        self._still = None
        self._quadrilateral = None
        self._detected = False
