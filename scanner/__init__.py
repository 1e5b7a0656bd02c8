"""Scanner module for document border detection and perspective correction."""

from .detector import BorderDetector, DetectionResult
from .engine import ScannerEngine
from .errors import (
    DegenerateQuadrilateral,
    DetectionCancelled,
    DetectionInProgress,
    InvalidGeometry,
    InvalidSessionState,
    NoFrameAvailable,
    ScannerError,
)
from .frames import Frame, FrameSource, OpenCVFrameSource, StaticFrameSource
from .geometry import Point, Quadrilateral
from .session import CaptureSession, SessionState
from .transformer import PerspectiveTransformer, RectifiedImage

__all__ = [
    "BorderDetector",
    "CaptureSession",
    "DegenerateQuadrilateral",
    "DetectionCancelled",
    "DetectionInProgress",
    "DetectionResult",
    "Frame",
    "FrameSource",
    "InvalidGeometry",
    "InvalidSessionState",
    "NoFrameAvailable",
    "OpenCVFrameSource",
    "PerspectiveTransformer",
    "Point",
    "Quadrilateral",
    "RectifiedImage",
    "ScannerEngine",
    "ScannerError",
    "SessionState",
    "StaticFrameSource",
]
