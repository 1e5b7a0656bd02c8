"""Camera frames and the sources that produce them."""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Frame:
    """A single raster frame from an image source."""

    data: np.ndarray  # BGR image data
    sequence: int = 0
    timestamp: float = field(default_factory=time.time)
    pixel_format: str = "BGR"

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @property
    def size(self):
        return self.width, self.height

    def copy(self) -> "Frame":
        return Frame(
            data=self.data.copy(),
            sequence=self.sequence,
            timestamp=self.timestamp,
            pixel_format=self.pixel_format,
        )

    @classmethod
    def from_bytes(cls, image_bytes: bytes, sequence: int = 0) -> "Frame":
        """Decode an encoded image (JPEG, PNG, ...) into a frame."""
        nparr = np.frombuffer(image_bytes, np.uint8)
        image = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
        if image is None:
            raise ValueError("Could not decode image data")
        return cls(data=image, sequence=sequence)


class FrameSource:
    """Pull-based source of frames.

    ``get_frame`` returns None while no frame is available yet.
    """

    def get_frame(self) -> Optional[Frame]:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class StaticFrameSource(FrameSource):
    """Serves the most recently supplied image.

    Used for browser captures, where the image arrives as encoded bytes
    rather than from a local device.
    """

    def __init__(self, image: Optional[np.ndarray] = None):
        self._lock = threading.Lock()
        self._sequence = 0
        self._frame = None
        if image is not None:
            self.update(image)

    def update(self, image: np.ndarray) -> Frame:
        with self._lock:
            self._sequence += 1
            self._frame = Frame(data=image, sequence=self._sequence)
            return self._frame

    def update_from_bytes(self, image_bytes: bytes) -> Frame:
        return self.update(Frame.from_bytes(image_bytes).data)

    def clear(self) -> None:
        with self._lock:
            self._frame = None

    def get_frame(self) -> Optional[Frame]:
        with self._lock:
            return self._frame


class OpenCVFrameSource(FrameSource):
    """Reads frames from a local camera through ``cv2.VideoCapture``.

    The device is opened on first use and released by ``close()``.
    """

    def __init__(
        self,
        device_index: int = 0,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ):
        self.device_index = device_index
        self.width = width
        self.height = height
        self._capture = None
        self._sequence = 0
        self._lock = threading.Lock()

    def _open(self):
        if self._capture is None:
            capture = cv2.VideoCapture(self.device_index)
            if not capture.isOpened():
                capture.release()
                logger.warning("Camera %s could not be opened", self.device_index)
                return None
            if self.width:
                capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            if self.height:
                capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            self._capture = capture
        return self._capture

    def get_frame(self) -> Optional[Frame]:
        with self._lock:
            capture = self._open()
            if capture is None:
                return None

            ok, image = capture.read()
            if not ok or image is None:
                return None

            self._sequence += 1
            return Frame(data=image, sequence=self._sequence)

    def close(self) -> None:
        with self._lock:
            if self._capture is not None:
                self._capture.release()
                self._capture = None
