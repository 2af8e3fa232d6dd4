"""
Face Embedding Extractor

Extracts fixed-length identity embeddings from pre-cropped face images.
The extractor is an injected collaborator with an explicit lifecycle:

    extractor = create_extractor(config)
    extractor.open()            # loads the model; failure is cached
    vector = extractor.embed(face_crop_bgr)
    extractor.close()

If the model cannot be loaded (backend not installed, weights missing,
runtime error), the extractor marks itself unavailable for the rest of its
lifetime and every later embed() raises ModelUnavailable immediately, so
callers can degrade to geometric signatures without paying for repeated
failed loads.

Supports two backends:
  - insightface (preferred): ArcFace recognition model from a buffalo bundle,
    run directly on 112x112 crops
  - facenet-pytorch (fallback): InceptionResnetV1 with VGGFace2 pretraining,
    run on 160x160 crops
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import numpy as np

from faceid.errors import ModelUnavailable

logger = logging.getLogger(__name__)

# Backend availability flags
_INSIGHTFACE_AVAILABLE = False
_FACENET_AVAILABLE = False

try:
    from insightface.app import FaceAnalysis
    _INSIGHTFACE_AVAILABLE = True
except ImportError:
    pass

try:
    from facenet_pytorch import InceptionResnetV1
    import torch
    _FACENET_AVAILABLE = True
except ImportError:
    pass


class EmbeddingExtractor(ABC):
    """
    Abstract embedding model with cached availability.

    Subclasses implement _load (raise on failure), _infer (return a raw
    vector for one BGR crop of input_size x input_size) and _release.
    """

    embedding_dim: int = 512
    input_size: int = 112

    def __init__(self):
        self._available: Optional[bool] = None  # None = not yet attempted
        self._lock = threading.Lock()

    @property
    def is_available(self) -> bool:
        """False once the model is known to be unusable in this process."""
        return self._available is not False

    @property
    def is_loaded(self) -> bool:
        return self._available is True

    def open(self) -> bool:
        """
        Load the model if it has not been attempted yet.

        Returns:
            True if the model is ready, False if it is unavailable.
        """
        with self._lock:
            if self._available is not None:
                return self._available
            try:
                self._load()
            except Exception as e:
                logger.warning(f"Embedding model unavailable, degrading to geometric signatures: {e}")
                self._available = False
            else:
                self._available = True
                logger.info(f"{type(self).__name__} loaded (dim={self.embedding_dim})")
            return self._available

    def mark_unavailable(self, reason: str) -> None:
        """Record that the model cannot be used for the rest of this lifetime."""
        if self._available is not False:
            logger.warning(f"Marking embedding model unavailable: {reason}")
        self._available = False

    def embed(self, face_image: np.ndarray) -> np.ndarray:
        """
        Extract a raw embedding from a pre-cropped, pre-resized face.

        Raises:
            ModelUnavailable: If the model cannot be loaded or was marked unusable.
        """
        if not self.open():
            raise ModelUnavailable(f"{type(self).__name__} is not available")
        return self._infer(face_image)

    def close(self) -> None:
        """Release model resources. A later open() retries the load."""
        with self._lock:
            if self._available:
                self._release()
            self._available = None

    @abstractmethod
    def _load(self) -> None:
        ...

    @abstractmethod
    def _infer(self, face_image: np.ndarray) -> np.ndarray:
        ...

    def _release(self) -> None:
        pass

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class ArcFaceExtractor(EmbeddingExtractor):
    """
    ArcFace recognition via insightface, bypassing its own face detector.

    Our crops already come from the capture pipeline's detector, so the
    recognition ONNX model is run directly on the 112x112 crop.

    Args:
        config: Dictionary with keys:
            - model: Model bundle name ("buffalo_l", "buffalo_sc")
            - device: "cuda" or "cpu"
            - embedding_dim: Expected embedding dimension (default 512)
    """

    input_size = 112

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__()
        config = config or {}
        self.model_name = config.get("model", "buffalo_l")
        self.device = config.get("device", "cpu")
        self.embedding_dim = config.get("embedding_dim", 512)
        self._rec_model = None

    def _load(self) -> None:
        if not _INSIGHTFACE_AVAILABLE:
            raise ModelUnavailable("insightface not installed. Run: pip install insightface onnxruntime")

        if self.device == "cuda":
            providers = ["CUDAExecutionProvider", "CPUExecutionProvider"]
        else:
            providers = ["CPUExecutionProvider"]

        app = FaceAnalysis(
            name=self.model_name,
            allowed_modules=["detection", "recognition"],
            providers=providers,
        )
        app.prepare(ctx_id=0 if self.device == "cuda" else -1, det_size=(640, 640))

        rec_model = app.models.get("recognition")
        if rec_model is None:
            raise ModelUnavailable(f"No recognition model in bundle {self.model_name}")
        self._rec_model = rec_model

    def _infer(self, face_image: np.ndarray) -> np.ndarray:
        # get_feat handles blob creation with the model's own mean/std
        feat = self._rec_model.get_feat(face_image)
        return np.asarray(feat, dtype=np.float32).flatten()

    def _release(self) -> None:
        self._rec_model = None


class FacenetExtractor(EmbeddingExtractor):
    """
    InceptionResnetV1 (VGGFace2) via facenet-pytorch.

    Args:
        config: Dictionary with keys:
            - device: "cuda" or "cpu"
    """

    input_size = 160
    embedding_dim = 512

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__()
        config = config or {}
        self.device_name = config.get("device", "cpu")
        self._model = None
        self._device = None

    def _load(self) -> None:
        if not _FACENET_AVAILABLE:
            raise ModelUnavailable("facenet-pytorch not installed. Run: pip install facenet-pytorch")

        self._device = torch.device(
            self.device_name if torch.cuda.is_available() else "cpu"
        )
        self._model = InceptionResnetV1(pretrained="vggface2").eval().to(self._device)

    def _infer(self, face_image: np.ndarray) -> np.ndarray:
        import cv2

        rgb = cv2.cvtColor(face_image, cv2.COLOR_BGR2RGB)

        # [-1, 1] range (facenet-pytorch convention)
        tensor = torch.from_numpy(rgb).permute(2, 0, 1).float()
        tensor = ((tensor - 127.5) / 128.0).unsqueeze(0).to(self._device)

        with torch.no_grad():
            embedding = self._model(tensor).cpu().numpy().flatten()

        return embedding.astype(np.float32)

    def _release(self) -> None:
        self._model = None


def create_extractor(config: Optional[Dict[str, Any]] = None) -> EmbeddingExtractor:
    """
    Build the extractor for the configured backend.

    With backend "auto" (default), insightface is preferred, then
    facenet-pytorch. When neither is installed an ArcFaceExtractor is still
    returned; it reports itself unavailable on open(), which puts the
    pipeline on geometric signatures.
    """
    config = config or {}
    backend = config.get("backend", "auto")

    if backend == "auto":
        if _INSIGHTFACE_AVAILABLE:
            backend = "insightface"
        elif _FACENET_AVAILABLE:
            backend = "facenet"
        else:
            logger.warning(
                "No face embedding backend installed; identification will use "
                "geometric signatures only"
            )
            backend = "insightface"

    if backend == "insightface":
        return ArcFaceExtractor(config)
    if backend == "facenet":
        return FacenetExtractor(config)
    raise ValueError(f"Unknown embedding backend: {backend}")
