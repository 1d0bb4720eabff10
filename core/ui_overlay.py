"""
Shared UI overlay helpers for face capture screens.

Provides:
- draw_face_guide()    : centered ellipse the user aligns their face with
- draw_face_boxes()    : detected face rectangles
- draw_status_bar()    : header line with the presence status
- draw_result_banner() : success / failure card after an attempt
"""

import cv2
import numpy as np
from typing import Iterable, Optional, Tuple

from core.capture_state import PresenceStatus

# BGR colors per presence status
STATUS_COLORS = {
    PresenceStatus.LOADING: (200, 200, 200),
    PresenceStatus.CAMERA_STARTING: (200, 200, 200),
    PresenceStatus.NO_FACE: (0, 165, 255),        # amber
    PresenceStatus.MULTIPLE_FACES: (0, 0, 255),   # red
    PresenceStatus.READY: (0, 200, 0),            # green
    PresenceStatus.VERIFYING: (255, 200, 0),
}

SUCCESS_COLOR = (0, 200, 0)
FAILURE_COLOR = (0, 0, 220)


# ---------------------------------------------------------------------------
# Face guide ellipse
# ---------------------------------------------------------------------------

def draw_face_guide(
    frame: np.ndarray,
    face_detected: bool = False,
    message: str = "Look at the camera, then press SPACE",
) -> None:
    """Draw a guide ellipse in the center of the frame.

    Args:
        frame: BGR image to draw on (modified in-place).
        face_detected: If True the ellipse is drawn green, otherwise gray.
        message: Instruction text shown below the ellipse.
    """
    h, w = frame.shape[:2]
    center = (w // 2, h // 2)

    # Portrait ellipse sized for a human face, vertical axis = 3/4 of frame height
    semi_v = h * 3 // 8
    semi_h = semi_v * 2 // 3
    axes = (semi_h, semi_v)

    color = (0, 200, 0) if face_detected else (160, 160, 160)

    overlay = frame.copy()
    cv2.ellipse(overlay, center, axes, 0, 0, 360, color, 2, cv2.LINE_AA)
    cv2.addWeighted(overlay, 0.8, frame, 0.2, 0, frame)

    text_size = cv2.getTextSize(message, cv2.FONT_HERSHEY_SIMPLEX, 0.55, 1)[0]
    tx = (w - text_size[0]) // 2
    ty = min(h - 10, center[1] + axes[1] + 30)
    cv2.putText(frame, message, (tx, ty), cv2.FONT_HERSHEY_SIMPLEX,
                0.55, color, 1, cv2.LINE_AA)


# ---------------------------------------------------------------------------
# Detection boxes and status line
# ---------------------------------------------------------------------------

def draw_face_boxes(
    frame: np.ndarray,
    boxes: Iterable[Tuple[int, int, int, int]],
    single_face: bool = True,
) -> None:
    """Draw detected face rectangles (green for one face, red for several)."""
    color = (0, 255, 0) if single_face else (0, 0, 255)
    for x1, y1, x2, y2 in boxes:
        cv2.rectangle(frame, (x1, y1), (x2, y2), color, 2)


def draw_status_bar(
    frame: np.ndarray,
    status: PresenceStatus,
    message: str,
    hint: Optional[str] = None,
) -> None:
    """Semi-transparent header with the status message and an optional key hint."""
    h, w = frame.shape[:2]

    overlay = frame.copy()
    cv2.rectangle(overlay, (0, 0), (w, 56), (0, 0, 0), -1)
    cv2.addWeighted(overlay, 0.6, frame, 0.4, 0, frame)

    cv2.putText(frame, message, (10, 24), cv2.FONT_HERSHEY_SIMPLEX,
                0.6, STATUS_COLORS.get(status, (255, 255, 255)), 1, cv2.LINE_AA)
    if hint:
        cv2.putText(frame, hint, (10, 46), cv2.FONT_HERSHEY_SIMPLEX,
                    0.45, (200, 200, 200), 1, cv2.LINE_AA)


def draw_result_banner(
    frame: np.ndarray,
    title: str,
    detail: str,
    success: bool,
    hint: Optional[str] = None,
) -> None:
    """Centered result card shown once an attempt is terminal."""
    h, w = frame.shape[:2]
    color = SUCCESS_COLOR if success else FAILURE_COLOR

    top, bottom = h // 2 - 60, h // 2 + 60
    overlay = frame.copy()
    cv2.rectangle(overlay, (20, top), (w - 20, bottom), (0, 0, 0), -1)
    cv2.addWeighted(overlay, 0.7, frame, 0.3, 0, frame)
    cv2.rectangle(frame, (20, top), (w - 20, bottom), color, 2)

    lines = [(title, 0.8, color, 2), (detail, 0.5, (255, 255, 255), 1)]
    if hint:
        lines.append((hint, 0.45, (200, 200, 200), 1))

    y = top + 35
    for text, scale, line_color, thickness in lines:
        text_w = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, scale, thickness)[0][0]
        cv2.putText(frame, text, ((w - text_w) // 2, y), cv2.FONT_HERSHEY_SIMPLEX,
                    scale, line_color, thickness, cv2.LINE_AA)
        y += 32
