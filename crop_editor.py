"""
Interactive corner editor for reviewing detected document borders.

Features:
- Displays the captured still with the document outline
- Draggable corner handles (normalized coordinates, clamped to the image)
- Edges turn red while a drag would make the outline cross itself

The editor is a bidirectional Streamlit component served from
``frontend/corner_editor``; a finished drag posts the four corners back.
"""

import os
from typing import List, Optional, Sequence

import streamlit.components.v1 as components

from scanner import InvalidGeometry, Quadrilateral

CORNER_LABELS = ["Top-Left", "Top-Right", "Bottom-Right", "Bottom-Left"]

FRONTEND_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "frontend", "corner_editor")

# Declared on first render, when a Streamlit runtime exists
_corner_editor = None


def _get_component():
    global _corner_editor
    if _corner_editor is None:
        _corner_editor = components.declare_component("corner_editor", path=FRONTEND_DIR)
    return _corner_editor


def editor_key(session_id: str, quad: Quadrilateral) -> str:
    """
    Component key for a session's current corners.

    A new key starts a fresh component instance, so the last drag does not
    come back after the corners are reset or re-detected.
    """
    return f"editor_{session_id}_{hash(quad)}"


def render_corner_editor(
    image_base64: str,
    quad: Quadrilateral,
    image_width: int,
    image_height: int,
    key: str = "corner_editor",
    max_display_width: int = 800,
):
    """
    Render the corner editor component.

    Args:
        image_base64: Base64 encoded JPEG of the still
        quad: Current corners
        image_width: Still width in pixels
        image_height: Still height in pixels
        key: Unique key for this component instance
        max_display_width: Widest the preview is drawn

    Returns:
        Corners posted by the last drag, or None before the first drag
        (see ``parse_editor_value``)
    """
    display_scale = min(1, max_display_width / image_width)
    component_height = int(image_height * display_scale) + 60

    return _get_component()(
        image=image_base64,
        corners=quad.as_list(),
        image_width=image_width,
        image_height=image_height,
        max_display_width=max_display_width,
        height=component_height,
        key=key,
        default=None,
    )


def parse_editor_value(value) -> Optional[Quadrilateral]:
    """
    Turn a value posted by the editor into a quadrilateral.

    Returns None for anything that is not four valid corners, so a stray or
    half-finished drag never replaces the session's corners.
    """
    if not isinstance(value, (list, tuple)) or len(value) != 4:
        return None
    try:
        quad = Quadrilateral.from_points(value).clamped()
        return quad.validate()
    except (InvalidGeometry, TypeError, ValueError, IndexError):
        return None


def apply_editor_value(engine, session, value) -> Optional[Quadrilateral]:
    """
    Hand dragged corners to the engine.

    Returns:
        The session's new corners, or None when the value was empty,
        invalid or unchanged
    """
    edited = parse_editor_value(value)
    if edited is None or edited == session.quadrilateral:
        return None
    return engine.set_quadrilateral(session, edited)


def corners_to_pixels(quad: Quadrilateral, width: int, height: int) -> List[List[float]]:
    """Pixel coordinates for display in the fine-tune inputs."""
    return quad.to_pixels(width, height).tolist()


def corners_from_pixels(corners: Sequence[Sequence[float]], width: int, height: int) -> Quadrilateral:
    """Normalized quadrilateral from pixel coordinates (clamped, not validated)."""
    return Quadrilateral.from_pixels(corners, width, height)
