"""
Biometric Sample Types

A BiometricSample is what one captured angle contributes to enrollment or
identification. It carries exactly one of two modalities:

    - EMBEDDING: an L2-normalized identity vector from the embedding model.
    - GEOMETRIC: a GeometricSignature (face box, pose angles, timestamp),
      used when the embedding model is unavailable.

Both modalities have a string form for storage portability:

    embedding  -> "0.0132,-0.0871,..."           (comma-separated floats)
    geometric  -> "face_<l>_<t>_<w>_<h>_<yaw>_<pitch>_<ms>"
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

import numpy as np

from faceid.pose import PoseAngle

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "face"


class Modality(str, Enum):
    """Kind of biometric data a sample carries."""

    EMBEDDING = "embedding"
    GEOMETRIC = "geometric"


@dataclass(frozen=True)
class GeometricSignature:
    """
    Dimensional / positional / angular encoding of one detected face.

    Attributes:
        left, top, width, height: Face box in pixels.
        yaw, pitch: Head pose in degrees.
        timestamp: Capture time in milliseconds since the epoch.
    """

    left: float
    top: float
    width: float
    height: float
    yaw: float
    pitch: float
    timestamp: int

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Signature box must have positive size, got {self.width}x{self.height}"
            )

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    def to_string(self) -> str:
        """Encode as `face_<left>_<top>_<width>_<height>_<yaw>_<pitch>_<ms>`."""
        return (
            f"{SIGNATURE_PREFIX}_{self.left:.2f}_{self.top:.2f}_"
            f"{self.width:.2f}_{self.height:.2f}_"
            f"{self.yaw:.2f}_{self.pitch:.2f}_{int(self.timestamp)}"
        )

    @classmethod
    def from_string(cls, value: str) -> "GeometricSignature":
        """
        Decode a signature string.

        Raises:
            ValueError: If the string is not a well-formed signature.
        """
        parts = value.split("_")
        if len(parts) != 8 or parts[0] != SIGNATURE_PREFIX:
            raise ValueError(f"Not a geometric signature: {value!r}")

        left, top, width, height, yaw, pitch = (float(p) for p in parts[1:7])
        return cls(
            left=left,
            top=top,
            width=width,
            height=height,
            yaw=yaw,
            pitch=pitch,
            timestamp=int(float(parts[7])),
        )

    @classmethod
    def try_parse(cls, value: str) -> Optional["GeometricSignature"]:
        """Like from_string, but returns None for malformed input."""
        try:
            return cls.from_string(value)
        except (ValueError, TypeError, AttributeError) as e:
            logger.debug(f"Ignoring malformed signature {value!r}: {e}")
            return None


def encode_embedding(vector: Sequence[float]) -> str:
    """Encode an embedding as comma-separated floats."""
    return ",".join(format(float(v), ".8g") for v in np.asarray(vector).ravel())


def decode_embedding(value: str) -> np.ndarray:
    """
    Decode a comma-separated embedding string.

    Raises:
        ValueError: If any component is not a number.
    """
    return np.array([float(v) for v in value.split(",")], dtype=np.float32)


def l2_normalize(vector: Sequence[float]) -> Optional[np.ndarray]:
    """Return the unit-length float32 copy of `vector`, or None for a zero vector."""
    v = np.asarray(vector, dtype=np.float32).ravel()
    norm = float(np.linalg.norm(v))
    if not np.isfinite(norm) or norm < 1e-8:
        return None
    return (v / norm).astype(np.float32)


@dataclass
class BiometricSample:
    """
    One captured angle's biometric data.

    Exactly one of `vector` (EMBEDDING) or `signature` (GEOMETRIC) is set,
    matching `modality`. Embedding vectors are re-normalized on construction.

    Attributes:
        angle: Pose angle the sample was captured at.
        modality: EMBEDDING or GEOMETRIC.
        vector: (D,) float32 unit vector, present iff modality is EMBEDDING.
        signature: GeometricSignature, present iff modality is GEOMETRIC.
        captured_at: Unix timestamp (seconds).
    """

    angle: PoseAngle
    modality: Modality
    vector: Optional[np.ndarray] = None
    signature: Optional[GeometricSignature] = None
    captured_at: float = field(default_factory=time.time)

    def __post_init__(self):
        self.angle = PoseAngle(self.angle)
        self.modality = Modality(self.modality)

        if self.modality == Modality.EMBEDDING:
            if self.vector is None or self.signature is not None:
                raise ValueError("EMBEDDING samples need a vector and no signature")
            normalized = l2_normalize(self.vector)
            if normalized is None:
                raise ValueError("Embedding vector has zero norm")
            self.vector = normalized
        else:
            if self.signature is None or self.vector is not None:
                raise ValueError("GEOMETRIC samples need a signature and no vector")

    @classmethod
    def from_embedding(
        cls, angle: PoseAngle, vector: Sequence[float], captured_at: Optional[float] = None
    ) -> "BiometricSample":
        return cls(
            angle=angle,
            modality=Modality.EMBEDDING,
            vector=np.asarray(vector, dtype=np.float32),
            captured_at=time.time() if captured_at is None else captured_at,
        )

    @classmethod
    def from_signature(
        cls, angle: PoseAngle, signature: GeometricSignature, captured_at: Optional[float] = None
    ) -> "BiometricSample":
        return cls(
            angle=angle,
            modality=Modality.GEOMETRIC,
            signature=signature,
            captured_at=signature.timestamp / 1000.0 if captured_at is None else captured_at,
        )

    @property
    def dimension(self) -> int:
        """Embedding dimension, or 0 for geometric samples."""
        return 0 if self.vector is None else int(self.vector.shape[0])

    def to_storage_string(self) -> str:
        """String form used by registries."""
        if self.modality == Modality.EMBEDDING:
            return encode_embedding(self.vector)
        return self.signature.to_string()

    @classmethod
    def from_storage_string(cls, value: str, angle: PoseAngle = PoseAngle.FRONT) -> "BiometricSample":
        """
        Rebuild a sample from its storage string.

        Raises:
            ValueError: If the string is neither a signature nor an embedding.
        """
        if value.startswith(SIGNATURE_PREFIX + "_"):
            return cls.from_signature(angle, GeometricSignature.from_string(value))
        return cls.from_embedding(angle, decode_embedding(value))
