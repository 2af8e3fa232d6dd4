"""
Face Detection Types

The face detector is an external collaborator: this module defines the data
it hands to the capture pipeline and the interface a detector implements.
A MediaPipe-backed implementation lives in faceid.mediapipe_detector.

Usage:
    from faceid.face_detector import FaceDetection, crop_face_region

    detections = detector.detect(frame)
    if detections:
        face = detections[0]          # largest face first
        crop = crop_face_region(frame, face.bbox, padding=0.2)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from faceid.pose import PoseMeasurement
from faceid.samples import GeometricSignature


@dataclass(frozen=True)
class FaceDetection:
    """
    Data class to hold one detected face.

    Attributes:
        bbox: Face box (left, top, width, height) in pixels.
        yaw: Horizontal head rotation in degrees (positive = LEFT prompt side).
        pitch: Vertical head rotation in degrees (positive = up).
        roll: Head tilt in degrees.
        confidence: Detection confidence score (0.0 to 1.0).
    """

    bbox: Tuple[float, float, float, float]
    yaw: float
    pitch: float
    roll: float = 0.0
    confidence: float = 1.0

    @property
    def area(self) -> float:
        _, _, width, height = self.bbox
        return max(0.0, width) * max(0.0, height)

    @property
    def has_area(self) -> bool:
        """False for degenerate boxes (zero or negative width or height)."""
        _, _, width, height = self.bbox
        return width > 0 and height > 0

    def to_measurement(self, frame_height: float) -> PoseMeasurement:
        return PoseMeasurement(
            yaw=self.yaw,
            pitch=self.pitch,
            bbox=self.bbox,
            frame_height=frame_height,
        )

    def to_signature(self, timestamp_ms: int) -> GeometricSignature:
        left, top, width, height = self.bbox
        return GeometricSignature(
            left=left,
            top=top,
            width=width,
            height=height,
            yaw=self.yaw,
            pitch=self.pitch,
            timestamp=int(timestamp_ms),
        )


class FaceDetector(ABC):
    """Detects faces in a BGR frame."""

    @abstractmethod
    def detect(self, frame: np.ndarray) -> List[FaceDetection]:
        """
        Detect faces in a frame.

        Returns:
            Detections ordered largest first; empty if no face was found.
        """

    def close(self) -> None:
        pass


def sort_largest_first(detections: List[FaceDetection]) -> List[FaceDetection]:
    """Order detections by box area, largest first (stable for equal areas)."""
    return sorted(detections, key=lambda d: d.area, reverse=True)


def crop_face_region(
    frame: np.ndarray,
    bbox: Tuple[float, float, float, float],
    padding: float = 0.2,
) -> np.ndarray:
    """
    Crop the face region from an image with padding.

    Args:
        frame: Original image (BGR format).
        bbox: Face box (left, top, width, height).
        padding: Total extra margin as a fraction of the face size, split
                 evenly on both sides (0.2 = 10% on each side).

    Returns:
        Cropped face image, clamped to the frame. May be empty when the box
        lies entirely outside the frame.
    """
    h, w = frame.shape[:2]
    left, top, width, height = bbox

    center_x = left + width / 2
    center_y = top + height / 2
    padded_w = width * (1.0 + padding)
    padded_h = height * (1.0 + padding)

    x1 = int(max(0, min(w, center_x - padded_w / 2)))
    y1 = int(max(0, min(h, center_y - padded_h / 2)))
    x2 = int(max(0, min(w, center_x + padded_w / 2)))
    y2 = int(max(0, min(h, center_y + padded_h / 2)))

    return frame[y1:y2, x1:x2]
