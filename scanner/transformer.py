"""Perspective rectification of captured documents."""

from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np

from .errors import DegenerateQuadrilateral
from .geometry import Quadrilateral


CONTENT_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
}


@dataclass
class RectifiedImage:
    """Perspective-corrected output owned by the caller."""

    data: np.ndarray  # BGR

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    def encode(self, format: str = "JPEG", quality: int = 95) -> Tuple[bytes, str]:
        """Encode to bytes for storage.

        Returns:
            Tuple of (encoded bytes, content type).
        """
        format = format.upper()
        if format not in CONTENT_TYPES:
            raise ValueError(f"Unsupported format: {format}")

        if format == "JPEG":
            ext, params = ".jpg", [cv2.IMWRITE_JPEG_QUALITY, quality]
        else:
            ext, params = ".png", [cv2.IMWRITE_PNG_COMPRESSION, 3]

        ok, buffer = cv2.imencode(ext, self.data, params)
        if not ok:
            raise ValueError(f"Could not encode image as {format}")
        return buffer.tobytes(), CONTENT_TYPES[format]


class PerspectiveTransformer:
    """Maps a document quadrilateral onto an axis-aligned rectangle.

    The output size comes from the longer edge of each opposite pair, so
    the document keeps its visible proportions.
    """

    def __init__(
        self,
        min_size: Tuple[int, int] = (32, 32),
        interpolation: int = cv2.INTER_LINEAR,
    ):
        """Initialize the transformer.

        Args:
            min_size: Minimum (width, height) of a usable output.
            interpolation: OpenCV interpolation flag used for resampling.
        """
        self.min_size = min_size
        self.interpolation = interpolation

    def compute_output_dimensions(self, pts: np.ndarray) -> Tuple[int, int]:
        """Compute output dimensions preserving aspect ratio.

        Args:
            pts: Ordered (TL, TR, BR, BL) array of 4 pixel corner points.

        Returns:
            Tuple of (width, height) for the output image.
        """
        pts = np.asarray(pts, dtype=np.float64).reshape(4, 2)

        width_top = np.linalg.norm(pts[1] - pts[0])
        width_bottom = np.linalg.norm(pts[2] - pts[3])
        height_left = np.linalg.norm(pts[3] - pts[0])
        height_right = np.linalg.norm(pts[2] - pts[1])

        # Edge length counts pixel gaps, the output needs pixel count
        width = int(round(max(width_top, width_bottom))) + 1
        height = int(round(max(height_left, height_right))) + 1
        return width, height

    def get_transformation_matrix(
        self, quad: Quadrilateral, image_size: Tuple[int, int]
    ) -> Tuple[np.ndarray, Tuple[int, int]]:
        """Get the perspective matrix without applying it.

        Args:
            quad: Normalized document quadrilateral.
            image_size: (width, height) of the source image.

        Returns:
            Tuple of (3x3 transformation matrix, output size).

        Raises:
            DegenerateQuadrilateral: The quadrilateral is not a simple
                polygon or the output would be smaller than ``min_size``.
        """
        if not quad.is_simple():
            raise DegenerateQuadrilateral(
                "Corners do not form a simple quadrilateral"
            )

        src_pts = quad.to_pixels(*image_size)
        width, height = self.compute_output_dimensions(src_pts)

        min_w, min_h = self.min_size
        if width < min_w or height < min_h:
            raise DegenerateQuadrilateral(
                f"Output {width}x{height} is below the minimum {min_w}x{min_h}"
            )

        dst_pts = np.array([
            [0, 0],
            [width - 1, 0],
            [width - 1, height - 1],
            [0, height - 1],
        ], dtype=np.float32)

        matrix = cv2.getPerspectiveTransform(src_pts, dst_pts)
        return matrix, (width, height)

    def rectify(self, image: np.ndarray, quad: Quadrilateral) -> RectifiedImage:
        """Apply the perspective correction.

        Args:
            image: Source image in BGR format.
            quad: Normalized document quadrilateral.

        Returns:
            The rectified image.
        """
        h, w = image.shape[:2]
        matrix, (width, height) = self.get_transformation_matrix(quad, (w, h))

        warped = cv2.warpPerspective(
            image, matrix, (width, height),
            flags=self.interpolation,
            borderMode=cv2.BORDER_REPLICATE,
        )
        return RectifiedImage(data=warped)
