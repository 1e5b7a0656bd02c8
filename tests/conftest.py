"""
Shared fixtures: synthetic camera stills.
"""

import cv2
import numpy as np
import pytest

from scanner import Frame


def make_document_image(
    width: int = 640,
    height: int = 480,
    coverage: float = 0.8,
    background: int = 30,
    paper: int = 245,
) -> np.ndarray:
    """White rectangle covering ``coverage`` of each dimension on a dark background."""
    image = np.full((height, width, 3), background, dtype=np.uint8)
    margin = (1.0 - coverage) / 2.0
    x0, y0 = int(round(width * margin)), int(round(height * margin))
    x1, y1 = int(round(width * (1 - margin))), int(round(height * (1 - margin)))
    cv2.rectangle(image, (x0, y0), (x1, y1), (paper, paper, paper), -1)
    return image


def make_skewed_document_image(width: int = 640, height: int = 480) -> np.ndarray:
    """A white quadrilateral seen at a slight angle."""
    image = np.full((height, width, 3), 25, dtype=np.uint8)
    pts = np.array([[110, 70], [540, 90], [560, 420], [90, 400]], dtype=np.int32)
    cv2.fillPoly(image, [pts], (240, 240, 240))
    return image


@pytest.fixture
def document_image():
    return make_document_image()


@pytest.fixture
def document_frame(document_image):
    return Frame(data=document_image, sequence=1)


@pytest.fixture
def blank_frame():
    return Frame(data=np.full((480, 640, 3), 128, dtype=np.uint8), sequence=1)
