"""
Tests for frames and frame sources
"""

import cv2
import numpy as np
import pytest

from scanner import Frame, OpenCVFrameSource, StaticFrameSource
from scanner import frames as frames_module


class FakeCapture:
    """Stands in for cv2.VideoCapture."""

    instances = []

    def __init__(self, index, opened=True, frames=None):
        self.index = index
        self.opened = opened
        self.frames = list(frames or [])
        self.props = {}
        self.released = False
        FakeCapture.instances.append(self)

    def isOpened(self):
        return self.opened

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def read(self):
        if not self.frames:
            return False, None
        return True, self.frames.pop(0)

    def release(self):
        self.released = True


@pytest.fixture(autouse=True)
def reset_instances():
    FakeCapture.instances = []


class TestFrame:
    """Tests for Frame"""

    def test_from_bytes(self, document_image):
        _, buffer = cv2.imencode(".png", document_image)
        frame = Frame.from_bytes(buffer.tobytes(), sequence=3)
        assert frame.size == (640, 480)
        assert frame.sequence == 3
        assert np.array_equal(frame.data, document_image)

    def test_from_bytes_invalid(self):
        with pytest.raises(ValueError):
            Frame.from_bytes(b"not an image")

    def test_copy_is_independent(self, document_frame):
        copy = document_frame.copy()
        copy.data[:] = 0
        assert document_frame.data.max() > 0


class TestStaticFrameSource:
    """Tests for StaticFrameSource"""

    def test_empty(self):
        assert StaticFrameSource().get_frame() is None

    def test_update_increments_sequence(self, document_image):
        source = StaticFrameSource()
        source.update(document_image)
        frame = source.update(document_image)
        assert frame.sequence == 2
        assert source.get_frame() is frame

    def test_update_from_bytes(self, document_image):
        _, buffer = cv2.imencode(".jpg", document_image)
        source = StaticFrameSource()
        frame = source.update_from_bytes(buffer.tobytes())
        assert frame.size == (640, 480)

    def test_clear(self, document_image):
        source = StaticFrameSource(document_image)
        source.clear()
        assert source.get_frame() is None


class TestOpenCVFrameSource:
    """Tests for OpenCVFrameSource with a fake capture device"""

    def test_reads_frames(self, monkeypatch, document_image):
        monkeypatch.setattr(
            frames_module.cv2, "VideoCapture",
            lambda index: FakeCapture(index, frames=[document_image, document_image]),
        )
        source = OpenCVFrameSource(device_index=1, width=1280, height=720)

        first = source.get_frame()
        second = source.get_frame()

        assert first.sequence == 1 and second.sequence == 2
        assert len(FakeCapture.instances) == 1
        capture = FakeCapture.instances[0]
        assert capture.index == 1
        assert capture.props[cv2.CAP_PROP_FRAME_WIDTH] == 1280

    def test_no_frame_yet(self, monkeypatch):
        monkeypatch.setattr(frames_module.cv2, "VideoCapture", lambda index: FakeCapture(index))
        assert OpenCVFrameSource().get_frame() is None

    def test_device_not_opened(self, monkeypatch):
        monkeypatch.setattr(
            frames_module.cv2, "VideoCapture", lambda index: FakeCapture(index, opened=False)
        )
        assert OpenCVFrameSource().get_frame() is None
        assert FakeCapture.instances[0].released

    def test_close_releases_device(self, monkeypatch, document_image):
        monkeypatch.setattr(
            frames_module.cv2, "VideoCapture",
            lambda index: FakeCapture(index, frames=[document_image]),
        )
        with OpenCVFrameSource() as source:
            source.get_frame()
        assert FakeCapture.instances[0].released
