"""Exceptions raised by the scanner engine."""


class ScannerError(Exception):
    """Base class for all scanner errors."""


class NoFrameAvailable(ScannerError):
    """The frame source has not produced a frame yet."""


class InvalidGeometry(ScannerError):
    """A corner edit would produce a degenerate or self-intersecting polygon."""


class DegenerateQuadrilateral(ScannerError):
    """The quadrilateral cannot be rectified into a usable image."""


class DetectionCancelled(ScannerError):
    """Detection finished for a session that has since been superseded."""


class InvalidSessionState(ScannerError):
    """The operation is not allowed in the session's current state."""


class DetectionInProgress(InvalidSessionState):
    """Corners cannot be edited while border detection is running."""
