"""Document border detection using contour analysis."""

import logging
from dataclasses import dataclass
from typing import List, Optional

import cv2
import numpy as np

from .geometry import Quadrilateral

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    """A 4-vertex contour that passed the shape checks."""

    corners: np.ndarray  # (4, 2) float32, pixel coords of the processed image
    area: float
    angles: tuple
    order: int  # position in contour order, used as tie-break


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of a detection pass.

    ``detected`` is False when no contour qualified and the fallback inset
    quadrilateral was returned instead.
    """

    quadrilateral: Quadrilateral
    detected: bool
    area_ratio: float


def order_points(pts: np.ndarray) -> np.ndarray:
    """Order points in consistent order: TL, TR, BR, BL.

    Points are sorted clockwise around their centroid and rotated so the
    point with the smallest x + y comes first. Unlike a plain sum/difference
    split this stays correct for strongly rotated documents.

    Args:
        pts: Array of 4 points (shape: 4x2).

    Returns:
        Ordered float32 array of points.
    """
    pts = np.asarray(pts, dtype=np.float32).reshape(4, 2)
    centroid = pts.mean(axis=0)
    angles = np.arctan2(pts[:, 1] - centroid[1], pts[:, 0] - centroid[0])
    clockwise = pts[np.argsort(angles, kind="stable")]
    start = int(np.argmin(clockwise.sum(axis=1)))
    return np.roll(clockwise, -start, axis=0)


def interior_angles(pts: np.ndarray) -> List[float]:
    """Interior angle in degrees at each vertex of a 4x2 polygon."""
    pts = np.asarray(pts, dtype=np.float64).reshape(4, 2)
    angles = []
    for i in range(4):
        v1 = pts[i - 1] - pts[i]
        v2 = pts[(i + 1) % 4] - pts[i]
        norm = np.linalg.norm(v1) * np.linalg.norm(v2)
        if norm == 0:
            angles.append(0.0)
            continue
        cos = np.clip(np.dot(v1, v2) / norm, -1.0, 1.0)
        angles.append(float(np.degrees(np.arccos(cos))))
    return angles


class BorderDetector:
    """Finds the four corners of a document in a still image.

    Grayscale conversion, Gaussian blur and Canny edge detection produce an
    edge map; external contours are approximated to polygons and the
    largest convex 4-vertex polygon with near-right angles wins. When
    nothing qualifies a centered inset rectangle is returned, so detection
    never fails on image content.
    """

    def __init__(
        self,
        angle_tolerance: float = 20.0,
        min_area_ratio: float = 0.1,
        contour_epsilon: float = 0.02,
        fallback_inset: float = 0.9,
        canny_low: int = 50,
        canny_high: int = 150,
        max_dimension: int = 1000,
    ):
        """Initialize the border detector.

        Args:
            angle_tolerance: Allowed deviation of each interior angle from
                90 degrees.
            min_area_ratio: Minimum polygon area as ratio of image area.
            contour_epsilon: Epsilon factor (of perimeter) for polygon
                approximation.
            fallback_inset: Coverage of the centered rectangle returned when
                no contour qualifies.
            canny_low: Lower Canny hysteresis threshold.
            canny_high: Upper Canny hysteresis threshold.
            max_dimension: Larger images are downscaled to this size first.
        """
        self.angle_tolerance = angle_tolerance
        self.min_area_ratio = min_area_ratio
        self.contour_epsilon = contour_epsilon
        self.fallback_inset = fallback_inset
        self.canny_low = canny_low
        self.canny_high = canny_high
        self.max_dimension = max_dimension

    def detect(self, image: np.ndarray) -> Quadrilateral:
        """Detect the document boundary.

        Args:
            image: Input image in BGR (or single-channel grayscale) format.

        Returns:
            Normalized quadrilateral, the fallback inset if nothing is found.
        """
        return self.detect_with_info(image).quadrilateral

    def detect_with_info(self, image: np.ndarray) -> DetectionResult:
        """Like :meth:`detect` but also reports whether a contour was found."""
        if image is None or image.size == 0:
            raise ValueError("Cannot detect borders in an empty image")

        proc_image, scale = self._downscale(image)
        h, w = proc_image.shape[:2]

        candidates = self.find_candidates(proc_image)
        if not candidates:
            logger.warning(
                "No document contour found in %dx%d image, using %.0f%% inset",
                image.shape[1], image.shape[0], self.fallback_inset * 100,
            )
            return DetectionResult(
                quadrilateral=Quadrilateral.inset(self.fallback_inset),
                detected=False,
                area_ratio=self.fallback_inset ** 2,
            )

        best = self._select_best(candidates)
        logger.debug(
            "Selected contour %d of %d (area %.0f px, angles %s, scale %.3f)",
            best.order, len(candidates), best.area,
            ", ".join(f"{a:.1f}" for a in best.angles), scale,
        )

        quad = Quadrilateral.from_pixels(best.corners, w, h)
        return DetectionResult(
            quadrilateral=quad,
            detected=True,
            area_ratio=best.area / float(w * h),
        )

    def detect_edges(self, image: np.ndarray) -> np.ndarray:
        """Binary edge map used for contour extraction."""
        if image.ndim == 3:
            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        else:
            gray = image
        blurred = cv2.GaussianBlur(gray, (5, 5), 0)
        edges = cv2.Canny(blurred, self.canny_low, self.canny_high)

        # Close small gaps so the document outline forms one contour
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (3, 3))
        return cv2.dilate(edges, kernel, iterations=2)

    def find_candidates(self, image: np.ndarray) -> List[Candidate]:
        """All contours that approximate to a qualifying quadrilateral."""
        edges = self.detect_edges(image)
        contours, _ = cv2.findContours(
            edges, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE
        )

        image_area = image.shape[0] * image.shape[1]
        min_area = image_area * self.min_area_ratio

        candidates = []
        for order, contour in enumerate(contours):
            if cv2.contourArea(contour) < min_area:
                continue

            approx = self._approximate_quad(contour)
            if approx is None or not cv2.isContourConvex(approx):
                continue

            corners = order_points(approx)
            area = float(cv2.contourArea(corners))
            if area < min_area:
                continue

            angles = interior_angles(corners)
            if any(abs(a - 90.0) > self.angle_tolerance for a in angles):
                logger.debug("Rejected contour %d, angles %s", order, angles)
                continue

            candidates.append(Candidate(
                corners=corners, area=area, angles=tuple(angles), order=order,
            ))

        return candidates

    def _approximate_quad(self, contour: np.ndarray) -> Optional[np.ndarray]:
        """Approximate a contour to 4 vertices, trying a few epsilons."""
        perimeter = cv2.arcLength(contour, True)
        epsilon = self.contour_epsilon * perimeter

        for eps_mult in [0.5, 1.0, 1.5, 2.0]:
            approx = cv2.approxPolyDP(contour, epsilon * eps_mult, True)
            if len(approx) == 4:
                return approx.reshape(4, 1, 2)
        return None

    def _select_best(self, candidates: List[Candidate]) -> Candidate:
        """Largest area wins; equal areas fall back to contour order."""
        return min(candidates, key=lambda c: (-c.area, c.order))

    def _downscale(self, image: np.ndarray):
        h, w = image.shape[:2]
        if max(h, w) <= self.max_dimension:
            return image, 1.0
        scale = self.max_dimension / max(h, w)
        resized = cv2.resize(image, None, fx=scale, fy=scale,
                             interpolation=cv2.INTER_AREA)
        return resized, scale
