"""
Image helpers for the scanner page: encoding, thumbnails, overlays and
the one-shot scan pipeline.
"""

import cv2
import numpy as np
from PIL import Image, ImageOps
import io
import base64
from typing import Tuple, Optional

from scanner import (
    BorderDetector,
    Frame,
    PerspectiveTransformer,
    Quadrilateral,
    ScannerEngine,
)


def bytes_to_cv2(image_bytes: bytes) -> Optional[np.ndarray]:
    """Decode image bytes to an OpenCV BGR image (None if undecodable)."""
    nparr = np.frombuffer(image_bytes, np.uint8)
    return cv2.imdecode(nparr, cv2.IMREAD_COLOR)


def cv2_to_base64(image: np.ndarray, format: str = 'JPEG') -> str:
    """Convert OpenCV image to base64 string."""
    if format.upper() == 'JPEG':
        ext = '.jpg'
        params = [cv2.IMWRITE_JPEG_QUALITY, 95]
    else:
        ext = '.png'
        params = [cv2.IMWRITE_PNG_COMPRESSION, 3]

    _, buffer = cv2.imencode(ext, image, params)
    return base64.b64encode(buffer).decode('utf-8')


def cv2_to_pil(image: np.ndarray) -> Image.Image:
    """Convert a BGR OpenCV image to an RGB PIL image."""
    return Image.fromarray(cv2.cvtColor(image, cv2.COLOR_BGR2RGB))


def normalize_upload(image_bytes: bytes) -> bytes:
    """
    Apply EXIF orientation and re-encode as JPEG.

    Phone cameras store rotation in EXIF; OpenCV ignores it, so corners
    would be detected on a sideways image without this step.
    """
    image = Image.open(io.BytesIO(image_bytes))
    image = ImageOps.exif_transpose(image)
    if image.mode != 'RGB':
        image = image.convert('RGB')
    buffer = io.BytesIO()
    image.save(buffer, format='JPEG', quality=95)
    return buffer.getvalue()


def create_thumbnail(image: Image.Image, max_size: Tuple[int, int] = (300, 300)) -> Image.Image:
    """
    Create a thumbnail of the image.

    Args:
        image: PIL Image
        max_size: Maximum dimensions

    Returns:
        Thumbnail image
    """
    thumbnail = image.copy()
    thumbnail.thumbnail(max_size, Image.Resampling.LANCZOS)
    return thumbnail


def draw_quadrilateral(
    image: np.ndarray,
    quad: Quadrilateral,
    color: Tuple[int, int, int] = (80, 175, 76),
    thickness: int = 3,
) -> np.ndarray:
    """
    Draw the quadrilateral outline and corner handles on a copy of the image.
    """
    h, w = image.shape[:2]
    pts = quad.to_pixels(w, h).astype(np.int32)
    overlay = image.copy()
    cv2.polylines(overlay, [pts.reshape(-1, 1, 2)], True, color, thickness)
    radius = max(4, int(min(w, h) * 0.012))
    for x, y in pts:
        cv2.circle(overlay, (int(x), int(y)), radius, (255, 255, 255), -1)
        cv2.circle(overlay, (int(x), int(y)), radius, color, 2)
    return overlay


def scan_document(
    image_bytes: bytes,
    detect: bool = True,
    detector: Optional[BorderDetector] = None,
    transformer: Optional[PerspectiveTransformer] = None,
    format: str = 'JPEG',
) -> Tuple[bytes, str, bool]:
    """
    Capture, detect and rectify in one go, without manual correction.

    Args:
        image_bytes: Encoded photo
        detect: Whether to run border detection; if False the full frame is used
        detector: Border detector to use
        transformer: Rectifier to use
        format: Output format ('JPEG' or 'PNG')

    Returns:
        Tuple of (rectified bytes, content type, whether a border was detected)
    """
    frame = Frame.from_bytes(normalize_upload(image_bytes))

    with ScannerEngine(detector=detector, transformer=transformer) as engine:
        session = engine.capture(frame)
        quad = engine.detect_borders(session, enabled=detect)
        if quad is None:
            engine.reset_corners(session, mode="full")
        detected = session.detected
        rectified = engine.commit(session)

    data, content_type = rectified.encode(format)
    return data, content_type, detected
