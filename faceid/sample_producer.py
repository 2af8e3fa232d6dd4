"""
Biometric Sample Producer

Turns one captured face region into a BiometricSample. The embedding model
is tried first; when it is unavailable or fails, a geometric signature is
built from the detection itself. produce() never raises.

Degrade ladder for one call:
    1. extractor missing / known unavailable / no image  -> geometric
    2. crop (padded) + resize + embed + L2-normalize      -> embedding
    3. ModelUnavailable during embed                      -> geometric, and
       the extractor stays unavailable for later calls
    4. any other inference failure or zero-norm output     -> geometric
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import cv2
import numpy as np

from faceid.errors import ModelUnavailable
from faceid.face_detector import FaceDetection, crop_face_region
from faceid.face_embedder import EmbeddingExtractor
from faceid.pose import PoseAngle
from faceid.samples import BiometricSample, l2_normalize

logger = logging.getLogger(__name__)


@dataclass
class FaceRegion:
    """
    A detected face and, when available, the still image it was found in.

    Attributes:
        detection: Face box and pose from the detector.
        image: Full BGR frame, or None when no still could be captured.
    """

    detection: FaceDetection
    image: Optional[np.ndarray] = None


class BiometricSampleProducer:
    """
    Produce embedding samples with a geometric fallback.

    Args:
        extractor: Embedding model, or None for geometric-only operation.
        config: Dictionary (the `embedding` config section) with keys:
            - padding: Crop margin around the face box (default 0.2)
        clock: Returns the current time in seconds; injectable for tests.
    """

    def __init__(
        self,
        extractor: Optional[EmbeddingExtractor] = None,
        config: Optional[Dict[str, Any]] = None,
        clock: Callable[[], float] = time.time,
    ):
        config = config or {}
        self.extractor = extractor
        self.padding = config.get("padding", 0.2)
        self.clock = clock

    @property
    def embeddings_enabled(self) -> bool:
        return self.extractor is not None and self.extractor.is_available

    def produce(self, region: FaceRegion, angle: PoseAngle) -> BiometricSample:
        """
        Build a sample for `angle` from a captured face region.

        Always succeeds for a detection with a positive-size box (the capture
        controller drops any other); falls back to a geometric signature.

        Raises:
            ValueError: If the detection box has zero or negative size.
        """
        now = self.clock()

        if self.embeddings_enabled and region.image is not None:
            vector = self._try_embed(region)
            if vector is not None:
                return BiometricSample.from_embedding(angle, vector, captured_at=now)

        return self.geometric_sample(region.detection, angle, now)

    def geometric_sample(
        self, detection: FaceDetection, angle: PoseAngle, now: Optional[float] = None
    ) -> BiometricSample:
        """Signature built directly from the detection; no image needed."""
        if now is None:
            now = self.clock()
        signature = detection.to_signature(timestamp_ms=int(now * 1000))
        return BiometricSample.from_signature(angle, signature, captured_at=now)

    def _try_embed(self, region: FaceRegion) -> Optional[np.ndarray]:
        crop = crop_face_region(region.image, region.detection.bbox, self.padding)
        if crop.size == 0:
            logger.debug("Face box outside frame; using geometric signature")
            return None

        size = self.extractor.input_size
        resized = cv2.resize(crop, (size, size), interpolation=cv2.INTER_CUBIC)

        try:
            raw = self.extractor.embed(resized)
        except ModelUnavailable as e:
            self.extractor.mark_unavailable(str(e))
            return None
        except Exception as e:
            logger.warning(f"Embedding extraction failed, using geometric signature: {e}")
            return None

        vector = l2_normalize(raw)
        if vector is None:
            logger.warning("Embedding model returned a zero vector; using geometric signature")
        return vector
