"""
Error Taxonomy for the Face ID Core

All errors raised by this package derive from FaceIdError so callers can
catch the whole family at the service boundary.

Severity classes:
    - CameraError and subclasses: fatal. The capture session is aborted
      and the error is surfaced to the caller unchanged.
    - TransientCaptureError and subclasses: never leave the frame-processing
      routine. The frame is treated as "no new evidence".
    - ModelUnavailable: permanent for the lifetime of an extractor. Once
      observed, sample production degrades to geometric signatures.
    - EmbeddingDimensionMismatch: local to one (query, candidate) pair.
    - SessionStateError / SessionNotFound: caller misuse of the session API.

A failed identification is not an error: MatchEngine returns a result with
method NONE.
"""


class FaceIdError(Exception):
    """Base class for all face ID errors."""


# ============================================================
# Fatal camera errors
# ============================================================

class CameraError(FaceIdError):
    """Camera could not be used; aborts the owning session."""


class PermissionDenied(CameraError):
    """The process is not allowed to open the camera device."""


class NoCameraAvailable(CameraError):
    """No camera device exists at the configured index."""


class CameraInitFailure(CameraError):
    """The camera opened but could not start delivering frames."""


# ============================================================
# Transient capture errors
# ============================================================

class TransientCaptureError(FaceIdError):
    """Recoverable per-frame failure; the next frame is awaited."""


class NoFaceDetected(TransientCaptureError):
    """The detector found no face in the frame."""


class FrameTimeout(TransientCaptureError):
    """A single still frame could not be obtained before the timeout."""


# ============================================================
# Model / matching errors
# ============================================================

class ModelUnavailable(FaceIdError):
    """The embedding model cannot be loaded or run in this process."""


class EmbeddingDimensionMismatch(FaceIdError, ValueError):
    """Two embedding vectors have different dimensions."""

    def __init__(self, probe_dim: int, template_dim: int):
        super().__init__(
            f"Embedding dimension mismatch: probe={probe_dim}, template={template_dim}"
        )
        self.probe_dim = probe_dim
        self.template_dim = template_dim


# ============================================================
# Session errors
# ============================================================

class SessionStateError(FaceIdError):
    """Operation is not valid in the session's current state."""


class SessionNotFound(FaceIdError, KeyError):
    """No live capture session exists for the given handle."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else "Session not found"
