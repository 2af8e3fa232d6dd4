"""
MediaPipe Face Detector

FaceDetector backed by the MediaPipe Face Landmarker (Tasks API, mediapipe
0.10+). Each face's 478 landmarks are reduced to what the capture pipeline
consumes: a face box and the head rotation (yaw / pitch / roll).

Yaw sign: the pose classifier expects positive yaw toward the side the LEFT
prompt asks for. On a mirrored kiosk preview that is the opposite of the
solvePnP sign, so yaw is flipped unless `mirror_yaw` is False.

Usage:
    from faceid.mediapipe_detector import MediaPipeFaceDetector

    detector = MediaPipeFaceDetector(get_face_detection_config())
    detections = detector.detect(frame)
"""

import logging
import urllib.request
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import cv2
import numpy as np

import mediapipe as mp
from mediapipe.tasks import python as mp_tasks
from mediapipe.tasks.python import vision

from faceid.face_detector import FaceDetection, FaceDetector, sort_largest_first

logger = logging.getLogger(__name__)

MODEL_URL = (
    "https://storage.googleapis.com/mediapipe-models/face_landmarker/"
    "face_landmarker/float16/1/face_landmarker.task"
)
MODEL_FILENAME = "face_landmarker.task"

# Landmark index -> canonical 3D position (mm), used for solvePnP
PNP_LANDMARKS = (1, 152, 263, 33, 287, 57)
PNP_MODEL_POINTS = np.array(
    [
        [0.0, 0.0, 0.0],  # nose tip
        [0.0, -63.6, -12.5],  # chin
        [-43.3, 32.7, -26.0],  # left eye, outer corner
        [43.3, 32.7, -26.0],  # right eye, outer corner
        [-28.9, -28.9, -24.1],  # left mouth corner
        [28.9, -28.9, -24.1],  # right mouth corner
    ],
    dtype=np.float64,
)

# Faces covering less of the frame than this are likely too far for a good sample
MIN_FACE_FRACTION = 0.02


def ensure_model(model_dir: Optional[str] = None) -> str:
    """
    Path to the landmarker model, downloading it on first use.

    Args:
        model_dir: Directory for the .task file; defaults to storage/models
                   under the project root.
    """
    if model_dir is None:
        from faceid.config import get_project_root

        directory = get_project_root() / "storage" / "models"
    else:
        directory = Path(model_dir)
    directory.mkdir(parents=True, exist_ok=True)

    model_path = directory / MODEL_FILENAME
    if not model_path.exists():
        logger.info(f"Downloading face landmarker model to {model_path}")
        urllib.request.urlretrieve(MODEL_URL, str(model_path))
    return str(model_path)


class MediaPipeFaceDetector(FaceDetector):
    """
    Args:
        config: Dictionary (the `face_detection` config section) with keys:
            - min_detection_confidence: Face detection/presence threshold (default 0.5)
            - min_tracking_confidence: Tracking threshold (default 0.5)
            - max_faces: Faces reported per frame, largest first (default 2)
            - mirror_yaw: Flip the yaw sign for a mirrored preview (default True)
            - model_path: Explicit .task file; skips the download
            - model_dir: Where to download the model otherwise

    Raises:
        OSError: If the model file cannot be downloaded or opened.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.max_faces = config.get("max_faces", 2)
        self.mirror_yaw = config.get("mirror_yaw", True)
        detection_conf = config.get("min_detection_confidence", 0.5)

        model_path = config.get("model_path") or ensure_model(config.get("model_dir"))
        options = vision.FaceLandmarkerOptions(
            base_options=mp_tasks.BaseOptions(model_asset_path=model_path),
            running_mode=vision.RunningMode.IMAGE,
            num_faces=self.max_faces,
            min_face_detection_confidence=detection_conf,
            min_face_presence_confidence=detection_conf,
            min_tracking_confidence=config.get("min_tracking_confidence", 0.5),
        )
        self.landmarker = vision.FaceLandmarker.create_from_options(options)
        logger.info(f"MediaPipe face landmarker ready (max_faces={self.max_faces})")

    def detect(self, frame: np.ndarray) -> List[FaceDetection]:
        height, width = frame.shape[:2]
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        result = self.landmarker.detect(mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb))

        detections = []
        for face in result.face_landmarks or []:
            points = np.array([[lm.x * width, lm.y * height] for lm in face], dtype=np.float32)
            yaw, pitch, roll = self._head_rotation(points, width, height)
            detections.append(
                FaceDetection(
                    bbox=self._calculate_bbox(points, width, height),
                    yaw=-yaw if self.mirror_yaw else yaw,
                    pitch=pitch,
                    roll=roll,
                    confidence=self._estimate_confidence(points, width, height),
                )
            )
        return sort_largest_first(detections)

    def close(self) -> None:
        if getattr(self, "landmarker", None) is not None:
            self.landmarker.close()
            self.landmarker = None

    # ------------------------------------------------------------------
    # Landmark geometry
    # ------------------------------------------------------------------

    @staticmethod
    def _calculate_bbox(
        points: np.ndarray, width: int, height: int
    ) -> Tuple[float, float, float, float]:
        """(left, top, width, height) of the landmark extent, clamped to the image."""
        left = max(0.0, float(points[:, 0].min()))
        top = max(0.0, float(points[:, 1].min()))
        right = min(float(width), float(points[:, 0].max()))
        bottom = min(float(height), float(points[:, 1].max()))
        return (left, top, max(0.0, right - left), max(0.0, bottom - top))

    @staticmethod
    def _camera_matrix(width: int, height: int) -> np.ndarray:
        # Uncalibrated webcam: focal length ~ image width, centre at the middle
        return np.array(
            [[width, 0, width / 2], [0, width, height / 2], [0, 0, 1]], dtype=np.float64
        )

    @classmethod
    def _head_rotation(
        cls, points: np.ndarray, width: int, height: int
    ) -> Tuple[float, float, float]:
        """(yaw, pitch, roll) in degrees; zeros if solvePnP does not converge."""
        image_points = points[list(PNP_LANDMARKS)].astype(np.float64)
        ok, rvec, tvec = cv2.solvePnP(
            PNP_MODEL_POINTS,
            image_points,
            cls._camera_matrix(width, height),
            np.zeros((4, 1)),
            flags=cv2.SOLVEPNP_ITERATIVE,
        )
        if not ok:
            return (0.0, 0.0, 0.0)

        rotation, _ = cv2.Rodrigues(rvec)
        euler = cv2.decomposeProjectionMatrix(np.hstack((rotation, tvec)))[6]
        pitch, yaw, roll = (float(a[0]) for a in euler)
        return (yaw, pitch, roll)

    @staticmethod
    def _estimate_confidence(points: np.ndarray, width: int, height: int) -> float:
        """
        Heuristic quality score: the landmarker reports no per-face score.

        0.95 for a face fully inside the frame, 0.7 when cut off at an edge,
        halved when the face covers less than MIN_FACE_FRACTION of the frame.
        """
        margin = 5
        xs, ys = points[:, 0], points[:, 1]
        inside = (
            xs.min() >= margin and xs.max() <= width - margin
            and ys.min() >= margin and ys.max() <= height - margin
        )
        fraction = float((xs.max() - xs.min()) * (ys.max() - ys.min())) / float(width * height)

        confidence = 0.95 if inside else 0.7
        if fraction < MIN_FACE_FRACTION:
            confidence *= 0.5
        return confidence
