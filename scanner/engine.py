"""Capture, detect, correct and rectify documents, one session at a time."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from .detector import BorderDetector
from .errors import (
    DetectionCancelled,
    DetectionInProgress,
    InvalidSessionState,
    NoFrameAvailable,
)
from .frames import Frame, FrameSource
from .geometry import Point, Quadrilateral
from .session import CaptureSession, SessionState
from .transformer import PerspectiveTransformer, RectifiedImage

logger = logging.getLogger(__name__)

RESET_MODES = ("default", "full")


class ScannerEngine:
    """Drives capture sessions through detection, correction and rectification.

    Border detection runs on a single background worker so callers stay
    responsive. Every state change happens under one lock, and detection
    results are only applied if the session has not been retaken or
    superseded by a new capture in the meantime.
    """

    def __init__(
        self,
        source: Optional[FrameSource] = None,
        detector: Optional[BorderDetector] = None,
        transformer: Optional[PerspectiveTransformer] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        """Initialize the engine.

        Args:
            source: Frame source used when ``capture`` gets no frame.
            detector: Border detector, defaults to ``BorderDetector()``.
            transformer: Rectifier, defaults to ``PerspectiveTransformer()``.
            executor: Executor for detection jobs; one single-worker pool
                is created (and owned) when omitted.
        """
        self.source = source
        self.detector = detector or BorderDetector()
        self.transformer = transformer or PerspectiveTransformer()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="border-detect"
        )
        self._lock = threading.RLock()
        self._active: Optional[CaptureSession] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        with self._lock:
            if self._active is not None:
                self._active.reset()
                self._active = None
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    @property
    def active_session(self) -> Optional[CaptureSession]:
        return self._active

    def _is_current(self, session: CaptureSession, generation: int) -> bool:
        return session is self._active and session.generation == generation

    def _require_current(self, session: CaptureSession) -> None:
        if session is not self._active:
            raise InvalidSessionState(
                f"{session!r} has been superseded by a newer capture"
            )

    def capture(self, frame: Optional[Frame] = None) -> CaptureSession:
        """Start a fresh session from ``frame`` or the source's current frame.

        Raises:
            NoFrameAvailable: No frame was given and the source has none,
                or the frame holds no pixels.
        """
        if frame is None and self.source is not None:
            frame = self.source.get_frame()
        if frame is None:
            raise NoFrameAvailable("The camera has not produced a frame yet")
        if frame.data is None or frame.data.size == 0:
            raise NoFrameAvailable("The camera produced an empty frame")

        still = frame.copy()
        with self._lock:
            if self._active is not None:
                logger.debug("Superseding %r", self._active)
                self._active.reset()
            session = CaptureSession()
            session.load_still(still)
            self._active = session

        logger.debug("Captured %dx%d still into %r",
                     still.width, still.height, session)
        return session

    def detect_borders(
        self, session: CaptureSession, enabled: bool = True
    ) -> Optional[Quadrilateral]:
        """Detect the document corners and wait for the result.

        Returns:
            The detected (or fallback) quadrilateral, None when disabled.

        Raises:
            DetectionCancelled: The session was retaken or superseded while
                detection was running.
        """
        return self.detect_borders_async(session, enabled).result()

    def detect_borders_async(
        self, session: CaptureSession, enabled: bool = True
    ) -> Future:
        """Start border detection on the background worker.

        The returned future resolves to the quadrilateral, or fails with
        :class:`DetectionCancelled` if the session went stale first.
        """
        with self._lock:
            self._require_current(session)
            session.require_state(SessionState.CAPTURED, SessionState.REVIEWING)

            if not enabled:
                session.apply_detection(None, detected=False)
                future = Future()
                future.set_result(None)
                return future

            session.transition(SessionState.DETECTING)
            generation = session.generation
            still = session.still

        return self._executor.submit(
            self._run_detection, session, generation, still
        )

    def _run_detection(
        self, session: CaptureSession, generation: int, still: Frame
    ) -> Quadrilateral:
        with self._lock:
            if not self._is_current(session, generation):
                raise DetectionCancelled(f"{session!r} went stale before detection")

        try:
            result = self.detector.detect_with_info(still.data)
        except Exception:
            with self._lock:
                if self._is_current(session, generation):
                    session.transition(SessionState.CAPTURED)
            raise

        with self._lock:
            if not self._is_current(session, generation):
                logger.warning("Dropping detection result for stale %r", session)
                raise DetectionCancelled(f"{session!r} went stale during detection")
            session.apply_detection(result.quadrilateral, detected=result.detected)

        logger.debug("Detection for %r finished (detected=%s, area %.2f)",
                     session, result.detected, result.area_ratio)
        return result.quadrilateral

    def _require_editable(self, session: CaptureSession) -> None:
        self._require_current(session)
        if session.state is SessionState.DETECTING:
            raise DetectionInProgress("Wait for border detection to finish")
        session.require_state(SessionState.REVIEWING)

    def adjust_corner(
        self, session: CaptureSession, index: int, point
    ) -> Quadrilateral:
        """Move one corner, keeping the old corners if the result is invalid.

        Args:
            session: Session in the REVIEWING state.
            index: 0..3 for top-left, top-right, bottom-right, bottom-left.
            point: New normalized position, clamped to [0, 1].

        Raises:
            InvalidGeometry: The edit would make the polygon degenerate or
                self-intersecting.
        """
        with self._lock:
            self._require_editable(session)
            if session.quadrilateral is None:
                raise InvalidSessionState(
                    "No corners to adjust, reset the corners first"
                )
            if not isinstance(point, Point):
                point = Point(float(point[0]), float(point[1]))

            candidate = session.quadrilateral.with_corner(index, point).validate()
            session.quadrilateral = candidate
            return candidate

    def set_quadrilateral(
        self, session: CaptureSession, quad: Quadrilateral
    ) -> Quadrilateral:
        """Replace all four corners at once."""
        with self._lock:
            self._require_editable(session)
            candidate = quad.clamped().validate()
            session.quadrilateral = candidate
            return candidate

    def reset_corners(
        self, session: CaptureSession, mode: str = "default"
    ) -> Quadrilateral:
        """Reset corners to the default inset or to the whole frame."""
        if mode not in RESET_MODES:
            raise ValueError(f"mode must be one of {RESET_MODES}, got {mode!r}")
        if mode == "full":
            quad = Quadrilateral.full_frame()
        else:
            quad = Quadrilateral.inset(self.detector.fallback_inset)
        return self.set_quadrilateral(session, quad)

    def commit(self, session: CaptureSession) -> RectifiedImage:
        """Rectify the still using the session's corners.

        Raises:
            DegenerateQuadrilateral: The corners are degenerate or the
                output would be too small. The session stays in REVIEWING.
        """
        with self._lock:
            self._require_editable(session)
            quad = session.quadrilateral
            if quad is None:
                raise InvalidSessionState("Cannot commit without corners")

            rectified = self.transformer.rectify(session.still.data, quad)
            session.mark_rectified()

        logger.debug("Rectified %r to %dx%d", session,
                     rectified.width, rectified.height)
        return rectified

    def retake(self, session: CaptureSession) -> None:
        """Discard the still and corners and go back to LIVE."""
        with self._lock:
            session.reset()
        logger.debug("Retake reset %r", session)
