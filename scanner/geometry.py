"""Normalized quadrilateral geometry for document boundaries."""

from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from .errors import InvalidGeometry

CORNER_NAMES = ("top-left", "top-right", "bottom-right", "bottom-left")

# Points closer than this (in normalized units) count as coincident
EPSILON = 1e-6


@dataclass(frozen=True)
class Point:
    """A point in normalized image coordinates (fractions of width/height)."""

    x: float
    y: float

    def clamped(self) -> "Point":
        return Point(min(max(float(self.x), 0.0), 1.0),
                     min(max(float(self.y), 0.0), 1.0))

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)


def _cross(o: Point, a: Point, b: Point) -> float:
    return (a.x - o.x) * (b.y - o.y) - (a.y - o.y) * (b.x - o.x)


def _on_segment(p: Point, q: Point, r: Point) -> bool:
    """Whether q lies within the bounding box of segment p-r."""
    return (min(p.x, r.x) - EPSILON <= q.x <= max(p.x, r.x) + EPSILON
            and min(p.y, r.y) - EPSILON <= q.y <= max(p.y, r.y) + EPSILON)


def segments_intersect(p1: Point, p2: Point, q1: Point, q2: Point) -> bool:
    """Return True if segment p1-p2 touches or crosses segment q1-q2."""
    d1 = _cross(q1, q2, p1)
    d2 = _cross(q1, q2, p2)
    d3 = _cross(p1, p2, q1)
    d4 = _cross(p1, p2, q2)

    if ((d1 > EPSILON and d2 < -EPSILON) or (d1 < -EPSILON and d2 > EPSILON)) and \
            ((d3 > EPSILON and d4 < -EPSILON) or (d3 < -EPSILON and d4 > EPSILON)):
        return True

    # Collinear touching cases
    if abs(d1) <= EPSILON and _on_segment(q1, p1, q2):
        return True
    if abs(d2) <= EPSILON and _on_segment(q1, p2, q2):
        return True
    if abs(d3) <= EPSILON and _on_segment(p1, q1, p2):
        return True
    if abs(d4) <= EPSILON and _on_segment(p1, q2, p2):
        return True

    return False


@dataclass(frozen=True)
class Quadrilateral:
    """Four corners ordered top-left, top-right, bottom-right, bottom-left.

    Coordinates are normalized to the image size, so the same quadrilateral
    applies to a preview and to the full-resolution still.
    """

    top_left: Point
    top_right: Point
    bottom_right: Point
    bottom_left: Point

    @classmethod
    def from_points(cls, points: Iterable[Sequence[float]]) -> "Quadrilateral":
        """Build from four (x, y) pairs in TL, TR, BR, BL order."""
        pts = [Point(float(p[0]), float(p[1])) for p in points]
        if len(pts) != 4:
            raise InvalidGeometry(f"Expected 4 points, got {len(pts)}")
        return cls(*pts)

    @classmethod
    def from_pixels(
        cls, points: np.ndarray, width: int, height: int
    ) -> "Quadrilateral":
        """Normalize pixel coordinates of a (4, 2) array."""
        pts = np.asarray(points, dtype=np.float64).reshape(4, 2)
        sx = float(max(width - 1, 1))
        sy = float(max(height - 1, 1))
        return cls.from_points((x / sx, y / sy) for x, y in pts).clamped()

    @classmethod
    def full_frame(cls) -> "Quadrilateral":
        """Corners on the image bounds."""
        return cls.from_points([(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)])

    @classmethod
    def inset(cls, coverage: float = 0.9) -> "Quadrilateral":
        """Centered rectangle covering ``coverage`` of each dimension."""
        if not 0.0 < coverage <= 1.0:
            raise ValueError("coverage must be in (0, 1]")
        margin = (1.0 - coverage) / 2.0
        lo, hi = margin, 1.0 - margin
        return cls.from_points([(lo, lo), (hi, lo), (hi, hi), (lo, hi)])

    @property
    def points(self) -> Tuple[Point, Point, Point, Point]:
        return (self.top_left, self.top_right, self.bottom_right, self.bottom_left)

    def __getitem__(self, index: int) -> Point:
        return self.points[index]

    def __len__(self) -> int:
        return 4

    def as_list(self) -> List[List[float]]:
        return [[p.x, p.y] for p in self.points]

    def clamped(self) -> "Quadrilateral":
        return Quadrilateral(*(p.clamped() for p in self.points))

    def with_corner(self, index: int, point) -> "Quadrilateral":
        """Return a copy with one corner replaced (point is clamped)."""
        if not 0 <= index < 4:
            raise IndexError(f"Corner index must be 0..3, got {index}")
        if not isinstance(point, Point):
            point = Point(float(point[0]), float(point[1]))
        pts = list(self.points)
        pts[index] = point.clamped()
        return Quadrilateral(*pts)

    def area(self) -> float:
        """Shoelace area in normalized units."""
        pts = self.points
        total = 0.0
        for i in range(4):
            a, b = pts[i], pts[(i + 1) % 4]
            total += a.x * b.y - b.x * a.y
        return abs(total) / 2.0

    def is_simple(self) -> bool:
        """Check the polygon is non-degenerate and not self-intersecting."""
        pts = self.points

        for i in range(4):
            for j in range(i + 1, 4):
                if abs(pts[i].x - pts[j].x) <= EPSILON and \
                        abs(pts[i].y - pts[j].y) <= EPSILON:
                    return False

        for i in range(4):
            if abs(_cross(pts[i - 1], pts[i], pts[(i + 1) % 4])) <= EPSILON:
                return False

        # Opposite edges: TL-TR vs BR-BL, TR-BR vs BL-TL
        if segments_intersect(pts[0], pts[1], pts[2], pts[3]):
            return False
        if segments_intersect(pts[1], pts[2], pts[3], pts[0]):
            return False

        return True

    def validate(self) -> "Quadrilateral":
        if not self.is_simple():
            raise InvalidGeometry(
                "Corners must form a simple quadrilateral: "
                + ", ".join(f"{name}=({p.x:.3f}, {p.y:.3f})"
                            for name, p in zip(CORNER_NAMES, self.points))
            )
        return self

    def to_pixels(self, width: int, height: int) -> np.ndarray:
        """Pixel coordinates as a (4, 2) float32 array.

        Normalized 1.0 maps onto the last pixel, so the full-frame
        quadrilateral covers exactly ``width`` x ``height`` pixels.
        """
        sx = float(max(width - 1, 1))
        sy = float(max(height - 1, 1))
        return np.array([[p.x * sx, p.y * sy] for p in self.points],
                        dtype=np.float32)

    def distance_to(self, other: "Quadrilateral") -> float:
        """Largest corner-to-corner distance between two quadrilaterals."""
        return max(
            float(np.hypot(a.x - b.x, a.y - b.y))
            for a, b in zip(self.points, other.points)
        )
