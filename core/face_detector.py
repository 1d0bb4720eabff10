"""
Face Detection Module

This module provides multi-face detection using the MediaPipe Tasks API.
It answers one question for the presence gate: how many faces are in this
frame, and where are they?

Two model variants are supported:
    - fast: BlazeFace short-range (mp.tasks.vision.FaceDetector). Low latency,
      suited to per-frame polling. This is what the presence gate uses.
    - accurate: Face Landmarker (mp.tasks.vision.FaceLandmarker). Slower, boxes
      are derived from the 478 face landmarks.

The FaceDetector class is the main interface for detection operations.

Usage:
    from core.face_detector import FaceDetector, DetectorOptions

    detector = FaceDetector(config)
    detector.load_models("storage/models")
    faces = detector.detect(frame, DetectorOptions(variant="fast"))
    print(f"{len(faces)} face(s)")
"""

import asyncio
import logging
import urllib.request
import numpy as np
import cv2
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Dict, Any, List, Union

# MediaPipe Tasks API imports
import mediapipe as mp
from mediapipe.tasks import python as mp_tasks
from mediapipe.tasks.python import vision

from core.config import get_model_dir
from core.errors import ModelLoadFailed, DetectorNotReady, DetectorTransientError

logger = logging.getLogger(__name__)


FAST = "fast"
ACCURATE = "accurate"

# Model files per variant: (filename, download URL)
MODEL_FILES = {
    FAST: (
        "blaze_face_short_range.tflite",
        "https://storage.googleapis.com/mediapipe-models/face_detector/"
        "blaze_face_short_range/float16/1/blaze_face_short_range.tflite",
    ),
    ACCURATE: (
        "face_landmarker.task",
        "https://storage.googleapis.com/mediapipe-models/face_landmarker/"
        "face_landmarker/float16/1/face_landmarker.task",
    ),
}


@dataclass(frozen=True)
class FaceBox:
    """
    A single detected face.

    Attributes:
        box: Bounding box coordinates (x1, y1, x2, y2) in pixels.
             (x1, y1) is the top-left corner, (x2, y2) is the bottom-right.
        score: Detection score between 0.0 and 1.0.
    """

    box: Tuple[int, int, int, int]
    score: float


@dataclass(frozen=True)
class DetectorOptions:
    """
    Per-call detection options.

    Attributes:
        variant: "fast" for per-frame polling, "accurate" for single shots.
        score_threshold: Faces scoring below this are dropped.
    """

    variant: str = FAST
    score_threshold: float = 0.5


def ensure_model(variant: str, model_dir: Union[str, Path], download: bool = True) -> Path:
    """
    Get the path to a MediaPipe model file, downloading it if needed.

    Args:
        variant: "fast" or "accurate".
        model_dir: Directory holding the model files.
        download: If False, a missing file raises instead of downloading.

    Returns:
        Path to the model file.

    Raises:
        ModelLoadFailed: If the variant is unknown or the file is unavailable.
    """
    if variant not in MODEL_FILES:
        raise ModelLoadFailed(log_message=f"Unknown detector variant: {variant!r}")

    filename, url = MODEL_FILES[variant]
    model_dir = Path(model_dir)
    model_path = model_dir / filename

    if model_path.exists():
        return model_path

    if not download:
        raise ModelLoadFailed(log_message=f"Model file not found: {model_path}")

    model_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Downloading {variant} face model from {url}")
    try:
        urllib.request.urlretrieve(url, str(model_path))
    except OSError as e:
        # Don't leave a truncated file behind
        model_path.unlink(missing_ok=True)
        raise ModelLoadFailed(log_message=f"Failed to download {url}: {e}") from e
    logger.info(f"Saved model to {model_path}")

    return model_path


class FaceDetector:
    """
    Multi-face detection using MediaPipe Tasks.

    Models are loaded explicitly with load_models() so the caller can show a
    loading state and treat a failure as terminal for the screen.

    Attributes:
        config: Configuration dictionary with detection parameters.
        models_ready: True once at least one variant has loaded.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the FaceDetector.

        Args:
            config: Configuration dictionary containing:
                - min_detection_confidence: Minimum confidence for detection (0-1)
                - min_suppression_threshold: Non-max suppression overlap (0-1)
                - max_faces: Maximum faces reported by the accurate variant
                - model_dir: Default directory for model files

        Example:
            detector = FaceDetector({"min_detection_confidence": 0.5})
        """
        self.config = config or {}

        self.min_detection_conf = self.config.get("min_detection_confidence", 0.5)
        self.min_suppression = self.config.get("min_suppression_threshold", 0.3)
        self.max_faces = self.config.get("max_faces", 5)
        self.model_dir = get_model_dir(self.config)

        self._backends: Dict[str, Any] = {}

    @property
    def models_ready(self) -> bool:
        return bool(self._backends)

    def load_models(
        self,
        source: Optional[Union[str, Path]] = None,
        variants: Tuple[str, ...] = (FAST,),
        download: bool = True,
    ) -> None:
        """
        Load detection models from a directory.

        Args:
            source: Directory holding the model files (defaults to config model_dir).
            variants: Which variants to load.
            download: Whether missing model files may be downloaded.

        Raises:
            ModelLoadFailed: If any requested variant fails to load.
        """
        source = Path(source or self.model_dir)

        for variant in variants:
            if variant in self._backends:
                continue

            logger.info(f"Loading {variant} face detection model...")
            model_path = ensure_model(variant, source, download=download)

            try:
                self._backends[variant] = self._create_backend(variant, model_path)
            except (RuntimeError, ValueError, OSError) as e:
                raise ModelLoadFailed(log_message=f"Failed to load {model_path}: {e}") from e

            logger.info(f"{variant} face detection model loaded successfully")

    async def load_models_async(self, *args, **kwargs) -> None:
        """Load models on a worker thread (MediaPipe init blocks)."""
        await asyncio.to_thread(self.load_models, *args, **kwargs)

    def _create_backend(self, variant: str, model_path: Path):
        base_options = mp_tasks.BaseOptions(model_asset_path=str(model_path))

        if variant == FAST:
            options = vision.FaceDetectorOptions(
                base_options=base_options,
                running_mode=vision.RunningMode.IMAGE,
                min_detection_confidence=self.min_detection_conf,
                min_suppression_threshold=self.min_suppression,
            )
            return vision.FaceDetector.create_from_options(options)

        options = vision.FaceLandmarkerOptions(
            base_options=base_options,
            running_mode=vision.RunningMode.IMAGE,
            num_faces=self.max_faces,
            min_face_detection_confidence=self.min_detection_conf,
            min_face_presence_confidence=self.min_detection_conf,
            output_face_blendshapes=False,
            output_facial_transformation_matrixes=False,
        )
        return vision.FaceLandmarker.create_from_options(options)

    def detect(self, frame: np.ndarray, options: Optional[DetectorOptions] = None) -> List[FaceBox]:
        """
        Detect all faces in an image.

        Args:
            frame: Input image as BGR numpy array with shape (H, W, 3).
                   This is the standard format from cv2 webcam capture.
            options: Variant and score threshold. Defaults to the fast variant.

        Returns:
            List of FaceBox, possibly empty.

        Raises:
            DetectorNotReady: If the requested variant was never loaded.
            DetectorTransientError: If MediaPipe fails on this frame.
        """
        options = options or DetectorOptions()
        backend = self._backends.get(options.variant)
        if backend is None:
            raise DetectorNotReady(log_message=f"Variant {options.variant!r} not loaded")

        h, w = frame.shape[:2]

        # MediaPipe expects RGB, but OpenCV uses BGR
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb_frame)

        try:
            results = backend.detect(mp_image)
        except (RuntimeError, ValueError) as e:
            raise DetectorTransientError(log_message=f"MediaPipe detection failed: {e}") from e

        if options.variant == FAST:
            faces = self._boxes_from_detections(results.detections, w, h)
        else:
            faces = self._boxes_from_landmarks(results.face_landmarks, w, h)

        return [f for f in faces if f.score >= options.score_threshold]

    async def detect_async(self, frame: np.ndarray, options: Optional[DetectorOptions] = None) -> List[FaceBox]:
        """Run detect() on a worker thread so the event loop keeps ticking."""
        return await asyncio.to_thread(self.detect, frame, options)

    def _boxes_from_detections(self, detections, width: int, height: int) -> List[FaceBox]:
        """Convert MediaPipe FaceDetector detections to clamped FaceBoxes."""
        faces = []
        for detection in detections or []:
            bb = detection.bounding_box
            box = _clamp_box(
                bb.origin_x, bb.origin_y,
                bb.origin_x + bb.width, bb.origin_y + bb.height,
                width, height,
            )
            score = detection.categories[0].score if detection.categories else 0.0
            faces.append(FaceBox(box=box, score=float(score)))
        return faces

    def _boxes_from_landmarks(self, face_landmarks, width: int, height: int) -> List[FaceBox]:
        """
        Derive FaceBoxes from Face Landmarker output.

        The landmarker reports no detection score, so the score is estimated
        from face size and whether the landmarks stay inside the image.
        """
        faces = []
        for landmarks in face_landmarks or []:
            points = np.array([[lm.x * width, lm.y * height] for lm in landmarks], dtype=np.float32)
            box = _clamp_box(
                points[:, 0].min(), points[:, 1].min(),
                points[:, 0].max(), points[:, 1].max(),
                width, height,
            )
            faces.append(FaceBox(box=box, score=_estimate_confidence(points, width, height)))
        return faces

    def close(self):
        """Clean up MediaPipe resources."""
        for backend in self._backends.values():
            backend.close()
        self._backends.clear()

    def __del__(self):
        """Clean up MediaPipe resources on deletion."""
        if hasattr(self, "_backends"):
            self.close()


def _clamp_box(x1, y1, x2, y2, width: int, height: int) -> Tuple[int, int, int, int]:
    """Round a box to pixels and clamp it to image boundaries."""
    return (
        max(0, int(x1)),
        max(0, int(y1)),
        min(width, int(x2)),
        min(height, int(y2)),
    )


def _estimate_confidence(landmarks_2d: np.ndarray, width: int, height: int) -> float:
    """
    Estimate detection confidence based on landmark positions.

    Args:
        landmarks_2d: Array of 2D landmarks with shape (N, 2).
        width: Image width.
        height: Image height.

    Returns:
        Confidence score between 0.0 and 1.0.
    """
    margin = 5
    in_bounds = (
        np.all(landmarks_2d[:, 0] >= margin)
        and np.all(landmarks_2d[:, 0] <= width - margin)
        and np.all(landmarks_2d[:, 1] >= margin)
        and np.all(landmarks_2d[:, 1] <= height - margin)
    )

    face_width = np.max(landmarks_2d[:, 0]) - np.min(landmarks_2d[:, 0])
    face_height = np.max(landmarks_2d[:, 1]) - np.min(landmarks_2d[:, 1])
    size_ratio = (face_width * face_height) / (width * height)

    confidence = 0.95 if in_bounds else 0.7

    # Reduce confidence for very small faces
    if size_ratio < 0.01:
        confidence *= 0.5
    elif size_ratio < 0.05:
        confidence *= 0.8

    return float(min(1.0, max(0.0, confidence)))


if __name__ == "__main__":
    print("Testing FaceDetector...")

    detector = FaceDetector({"min_detection_confidence": 0.5})
    detector.load_models()
    print("FaceDetector initialized successfully!")

    blank = np.zeros((480, 640, 3), dtype=np.uint8)
    print(f"Faces in blank frame: {len(detector.detect(blank))}")
