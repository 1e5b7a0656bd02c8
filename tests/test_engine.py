"""
Tests for ScannerEngine and the capture session state machine
"""

import threading

import numpy as np
import pytest

from scanner import (
    BorderDetector,
    DegenerateQuadrilateral,
    DetectionCancelled,
    DetectionInProgress,
    Frame,
    InvalidGeometry,
    InvalidSessionState,
    NoFrameAvailable,
    Point,
    Quadrilateral,
    ScannerEngine,
    SessionState,
    StaticFrameSource,
)

from conftest import make_document_image


EXPECTED_80 = Quadrilateral.from_points([(0.1, 0.1), (0.9, 0.1), (0.9, 0.9), (0.1, 0.9)])


class BlockingDetector(BorderDetector):
    """Detector that waits for the test to let it finish."""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def detect_with_info(self, image):
        self.started.set()
        assert self.release.wait(5), "test never released the detector"
        return super().detect_with_info(image)


class FailingDetector(BorderDetector):
    def detect_with_info(self, image):
        raise RuntimeError("boom")


@pytest.fixture
def engine():
    with ScannerEngine() as engine:
        yield engine


@pytest.fixture
def reviewing(engine, document_frame):
    """Session in REVIEWING with the 90% inset corners."""
    session = engine.capture(document_frame)
    engine.detect_borders(session, enabled=False)
    engine.reset_corners(session, mode="default")
    return session


class TestCapture:
    """Tests for capture and retake"""

    def test_capture_creates_session(self, engine, document_frame):
        session = engine.capture(document_frame)
        assert session.state is SessionState.CAPTURED
        assert session.quadrilateral is None
        assert session.still.size == (640, 480)
        assert engine.active_session is session

    def test_capture_copies_frame(self, engine, document_frame):
        session = engine.capture(document_frame)
        document_frame.data[:] = 0
        assert session.still.data.max() > 0

    def test_capture_from_source(self, document_image):
        source = StaticFrameSource(document_image)
        with ScannerEngine(source=source) as engine:
            session = engine.capture()
            assert session.still.sequence == 1

    def test_capture_without_frame(self):
        with ScannerEngine(source=StaticFrameSource()) as engine:
            with pytest.raises(NoFrameAvailable):
                engine.capture()

    def test_capture_without_source(self, engine):
        with pytest.raises(NoFrameAvailable):
            engine.capture()

    def test_capture_empty_frame_rejected(self, engine, document_frame):
        active = engine.capture(document_frame)
        with pytest.raises(NoFrameAvailable):
            engine.capture(Frame(data=np.zeros((0, 0, 3), dtype=np.uint8)))
        assert engine.active_session is active
        assert active.state is SessionState.CAPTURED

    def test_new_capture_supersedes_previous(self, engine, document_frame):
        first = engine.capture(document_frame)
        second = engine.capture(document_frame)

        assert first.state is SessionState.LIVE
        assert first.still is None
        assert second.session_id != first.session_id
        with pytest.raises(InvalidSessionState):
            engine.detect_borders(first)

    @pytest.mark.parametrize("stage", ["captured", "reviewing", "rectified"])
    def test_retake_from_any_state(self, engine, document_frame, stage):
        session = engine.capture(document_frame)
        if stage in ("reviewing", "rectified"):
            engine.detect_borders(session, enabled=True)
        if stage == "rectified":
            engine.commit(session)

        engine.retake(session)

        assert session.state is SessionState.LIVE
        assert session.still is None
        assert session.quadrilateral is None

    def test_retake_live_session(self, engine, document_frame):
        session = engine.capture(document_frame)
        engine.retake(session)
        engine.retake(session)
        assert session.state is SessionState.LIVE

    def test_capture_after_retake_is_fresh(self, engine, reviewing, document_frame):
        engine.adjust_corner(reviewing, 0, (0.2, 0.2))
        engine.retake(reviewing)

        session = engine.capture(document_frame)
        assert session.state is SessionState.CAPTURED
        assert session.quadrilateral is None

    def test_detect_after_retake_rejected(self, engine, document_frame):
        session = engine.capture(document_frame)
        engine.retake(session)
        with pytest.raises(InvalidSessionState):
            engine.detect_borders(session)


class TestDetectBorders:
    """Tests for detect_borders"""

    def test_disabled_detection(self, engine, document_frame):
        session = engine.capture(document_frame)
        assert engine.detect_borders(session, enabled=False) is None
        assert session.state is SessionState.REVIEWING
        assert session.quadrilateral is None
        assert not session.detected

    def test_enabled_detection(self, engine, document_frame):
        session = engine.capture(document_frame)
        quad = engine.detect_borders(session, enabled=True)

        assert session.state is SessionState.REVIEWING
        assert session.quadrilateral == quad
        assert session.detected
        assert quad.distance_to(EXPECTED_80) < 0.05

    def test_detection_is_deterministic(self, engine, document_frame):
        results = []
        for _ in range(3):
            session = engine.capture(document_frame)
            results.append(engine.detect_borders(session))
        assert results[0] == results[1] == results[2]

    def test_fallback_detection(self, engine, blank_frame):
        session = engine.capture(blank_frame)
        quad = engine.detect_borders(session, enabled=True)
        assert quad == Quadrilateral.inset(0.9)
        flat = [c for p in quad.as_list() for c in p]
        assert flat == pytest.approx([0.05, 0.05, 0.95, 0.05, 0.95, 0.95, 0.05, 0.95])
        assert not session.detected
        assert session.state is SessionState.REVIEWING

    def test_detect_again_from_review(self, engine, reviewing):
        quad = engine.detect_borders(reviewing, enabled=True)
        assert reviewing.quadrilateral == quad
        assert reviewing.detected

    def test_detection_error_returns_to_captured(self, document_frame):
        with ScannerEngine(detector=FailingDetector()) as engine:
            session = engine.capture(document_frame)
            with pytest.raises(RuntimeError):
                engine.detect_borders(session)
            assert session.state is SessionState.CAPTURED


class TestConcurrency:
    """Detection runs off the calling thread and can go stale"""

    @pytest.fixture
    def detector(self):
        detector = BlockingDetector()
        yield detector
        detector.release.set()

    @pytest.fixture
    def slow_engine(self, detector):
        with ScannerEngine(detector=detector) as engine:
            yield engine

    def test_async_detection_does_not_block(self, slow_engine, detector, document_frame):
        session = slow_engine.capture(document_frame)
        future = slow_engine.detect_borders_async(session)

        assert detector.started.wait(5)
        assert not future.done()
        assert session.state is SessionState.DETECTING

        detector.release.set()
        assert future.result(5).distance_to(EXPECTED_80) < 0.05
        assert session.state is SessionState.REVIEWING

    def test_adjust_rejected_while_detecting(self, slow_engine, detector, document_frame):
        session = slow_engine.capture(document_frame)
        future = slow_engine.detect_borders_async(session)
        detector.started.wait(5)

        with pytest.raises(DetectionInProgress):
            slow_engine.adjust_corner(session, 0, (0.2, 0.2))
        with pytest.raises(DetectionInProgress):
            slow_engine.commit(session)

        detector.release.set()
        future.result(5)

    def test_retake_cancels_detection(self, slow_engine, detector, document_frame):
        session = slow_engine.capture(document_frame)
        future = slow_engine.detect_borders_async(session)
        detector.started.wait(5)

        slow_engine.retake(session)
        detector.release.set()

        with pytest.raises(DetectionCancelled):
            future.result(5)
        assert session.state is SessionState.LIVE
        assert session.quadrilateral is None

    def test_new_capture_cancels_detection(self, slow_engine, detector, document_frame, blank_frame):
        old = slow_engine.capture(document_frame)
        future = slow_engine.detect_borders_async(old)
        detector.started.wait(5)

        new = slow_engine.capture(blank_frame)
        detector.release.set()

        with pytest.raises(DetectionCancelled):
            future.result(5)
        assert new.state is SessionState.CAPTURED
        assert new.quadrilateral is None
        assert old.quadrilateral is None


class TestAdjustCorner:
    """Tests for adjust_corner and related corner edits"""

    def test_adjust_returns_edited_point(self, engine, reviewing):
        quad = engine.adjust_corner(reviewing, 0, (0.1, 0.12))
        assert quad[0] == Point(0.1, 0.12)
        assert reviewing.quadrilateral[0] == Point(0.1, 0.12)

    @pytest.mark.parametrize("index", [0, 1, 2, 3])
    def test_adjust_each_corner(self, engine, reviewing, index):
        corner = reviewing.quadrilateral[index]
        point = Point(corner.x + 0.01, corner.y - 0.01)
        engine.adjust_corner(reviewing, index, point)
        assert reviewing.quadrilateral[index] == point

    def test_adjust_clamps(self, engine, reviewing):
        quad = engine.adjust_corner(reviewing, 2, (1.4, 1.2))
        assert quad[2] == Point(1.0, 1.0)

    def test_self_intersecting_edit_rejected(self, engine, reviewing):
        before = reviewing.quadrilateral
        with pytest.raises(InvalidGeometry):
            engine.adjust_corner(reviewing, 1, (0.3, 0.99))
        assert reviewing.quadrilateral == before
        assert reviewing.state is SessionState.REVIEWING

    def test_coincident_edit_rejected(self, engine, reviewing):
        before = reviewing.quadrilateral
        with pytest.raises(InvalidGeometry):
            engine.adjust_corner(reviewing, 0, before[1])
        assert reviewing.quadrilateral == before

    def test_session_continues_after_rejection(self, engine, reviewing):
        with pytest.raises(InvalidGeometry):
            engine.adjust_corner(reviewing, 1, (0.3, 0.99))
        quad = engine.adjust_corner(reviewing, 1, (0.9, 0.1))
        assert quad[1] == Point(0.9, 0.1)

    def test_adjust_requires_reviewing(self, engine, document_frame):
        session = engine.capture(document_frame)
        with pytest.raises(InvalidSessionState):
            engine.adjust_corner(session, 0, (0.2, 0.2))

    def test_adjust_without_corners(self, engine, document_frame):
        session = engine.capture(document_frame)
        engine.detect_borders(session, enabled=False)
        with pytest.raises(InvalidSessionState):
            engine.adjust_corner(session, 0, (0.2, 0.2))

    def test_reset_corners_full(self, engine, reviewing):
        assert engine.reset_corners(reviewing, mode="full") == Quadrilateral.full_frame()

    def test_reset_corners_bad_mode(self, engine, reviewing):
        with pytest.raises(ValueError):
            engine.reset_corners(reviewing, mode="auto")

    def test_set_quadrilateral_validates(self, engine, reviewing):
        before = reviewing.quadrilateral
        bowtie = Quadrilateral.from_points([(0, 0), (1, 0), (0, 1), (1, 1)])
        with pytest.raises(InvalidGeometry):
            engine.set_quadrilateral(reviewing, bowtie)
        assert reviewing.quadrilateral == before


class TestCommit:
    """Tests for commit"""

    def test_commit_full_frame_keeps_size(self, engine, document_frame):
        session = engine.capture(document_frame)
        engine.detect_borders(session, enabled=False)
        engine.reset_corners(session, mode="full")

        rectified = engine.commit(session)

        assert (rectified.width, rectified.height) == (640, 480)
        assert session.state is SessionState.RECTIFIED
        assert session.still is None

    def test_commit_detected_document(self, engine, document_frame):
        session = engine.capture(document_frame)
        engine.detect_borders(session)
        rectified = engine.commit(session)

        assert rectified.width == pytest.approx(512, abs=16)
        assert rectified.height == pytest.approx(384, abs=16)

    def test_commit_coincident_corners(self, engine, reviewing):
        reviewing.quadrilateral = Quadrilateral.from_points(
            [(0.1, 0.1), (0.1, 0.1), (0.9, 0.9), (0.1, 0.9)]
        )
        with pytest.raises(DegenerateQuadrilateral):
            engine.commit(reviewing)
        assert reviewing.state is SessionState.REVIEWING

    def test_commit_too_small(self, engine, reviewing):
        engine.set_quadrilateral(reviewing, Quadrilateral.from_points(
            [(0.5, 0.5), (0.52, 0.5), (0.52, 0.52), (0.5, 0.52)]
        ))
        with pytest.raises(DegenerateQuadrilateral):
            engine.commit(reviewing)
        assert reviewing.state is SessionState.REVIEWING
        assert reviewing.still is not None

    def test_commit_without_corners(self, engine, document_frame):
        session = engine.capture(document_frame)
        engine.detect_borders(session, enabled=False)
        with pytest.raises(InvalidSessionState):
            engine.commit(session)

    def test_commit_twice_rejected(self, engine, reviewing):
        engine.commit(reviewing)
        with pytest.raises(InvalidSessionState):
            engine.commit(reviewing)

    def test_rectified_image_is_independent(self, engine, document_frame):
        session = engine.capture(document_frame)
        engine.detect_borders(session, enabled=False)
        engine.reset_corners(session, mode="full")
        rectified = engine.commit(session)

        engine.retake(session)
        assert rectified.data.shape == (480, 640, 3)

    def test_small_frame(self, engine):
        frame = Frame(data=make_document_image(width=160, height=120))
        session = engine.capture(frame)
        engine.detect_borders(session)
        rectified = engine.commit(session)
        assert rectified.width >= 32 and rectified.height >= 32


class TestSessionTransitions:
    """Tests for the session state table"""

    def test_rectified_only_resets(self, engine, reviewing):
        engine.commit(reviewing)
        with pytest.raises(InvalidSessionState):
            reviewing.transition(SessionState.REVIEWING)

    def test_live_cannot_review(self, engine, document_frame):
        session = engine.capture(document_frame)
        engine.retake(session)
        with pytest.raises(InvalidSessionState):
            session.transition(SessionState.REVIEWING)

    def test_generation_increments_on_reset(self, engine, document_frame):
        session = engine.capture(document_frame)
        generation = session.generation
        engine.retake(session)
        assert session.generation == generation + 1

    def test_close_resets_active_session(self, document_frame):
        engine = ScannerEngine()
        session = engine.capture(document_frame)
        engine.close()
        assert session.state is SessionState.LIVE
        assert engine.active_session is None


def test_frame_size_property():
    frame = Frame(data=np.zeros((10, 20, 3), dtype=np.uint8))
    assert (frame.width, frame.height) == (20, 10)
