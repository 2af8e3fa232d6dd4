"""
Face ID Service

Caller-facing entry point that ties the core together:

    start_capture_session(mode)       -> handle
    on_frame(handle, frame)           -> SessionSnapshot
    get_session_state(handle)         -> SessionSnapshot
    finalize_session(handle)          -> [BiometricSample]
    cancel_session / retry_session
    identify(samples, hint_id)        -> MatchResult
    enroll(identity_id, samples)      -> EnrolledIdentity

One BiometricSampleProducer (and so one EmbeddingExtractor) is shared by all
sessions, so a model found unavailable once stays unavailable for every
later session.

Usage:
    from faceid.service import FaceIdService

    with FaceIdService() as service:
        handle = service.start_capture_session(CaptureMode.IDENTIFICATION)
        ...
        samples = service.finalize_session(handle)
        result = service.identify(samples)
"""

import logging
import threading
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np

from faceid.camera import Camera
from faceid.capture import AngleCaptureController, CaptureMode, SessionSnapshot
from faceid.config import (
    get_capture_config,
    get_embedding_config,
    get_matching_config,
    get_pose_config,
)
from faceid.errors import SessionNotFound
from faceid.face_detector import FaceDetection, FaceDetector
from faceid.face_embedder import EmbeddingExtractor, create_extractor
from faceid.matching import MatchEngine, MatchResult
from faceid.pose import PoseClassifier
from faceid.registry import EnrolledIdentity, IdentityRegistry, get_registry
from faceid.sample_producer import BiometricSampleProducer
from faceid.samples import BiometricSample

logger = logging.getLogger(__name__)


def generate_session_id() -> str:
    """Format: "ses_" followed by 12 random hex characters."""
    return f"ses_{uuid.uuid4().hex[:12]}"


class FaceIdService:
    """
    Owns live capture sessions, the shared sample producer and the match engine.

    Every collaborator can be injected; missing ones are built from
    config.yaml (via faceid.config) when `config` is None, or from the
    given dict of sections otherwise.

    Args:
        config: Optional dict with `pose`, `capture`, `embedding` and
                `matching` sections.
        registry: Identity store; defaults to get_registry().
        extractor: Embedding model; defaults to create_extractor().
                   Pass use_embeddings=False for geometric-only operation.
        detector: Face detector for sessions fed raw frames without detections.
        use_embeddings: Build a default extractor when none is injected.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        registry: Optional[IdentityRegistry] = None,
        extractor: Optional[EmbeddingExtractor] = None,
        detector: Optional[FaceDetector] = None,
        use_embeddings: bool = True,
    ):
        if config is None:
            config = {
                "pose": get_pose_config(),
                "capture": get_capture_config(),
                "embedding": get_embedding_config(),
                "matching": get_matching_config(),
            }
        self.config = config

        if extractor is None and use_embeddings:
            extractor = create_extractor(config.get("embedding"))

        self.registry = registry if registry is not None else get_registry()
        self.extractor = extractor
        self.detector = detector
        self.classifier = PoseClassifier(config.get("pose"))
        self.producer = BiometricSampleProducer(extractor, config.get("embedding"))
        self.engine = MatchEngine(config.get("matching"))

        self._sessions: Dict[str, AngleCaptureController] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> bool:
        """
        Load the embedding model up front.

        Returns:
            True if embeddings are available, False if running geometric-only.
        """
        if self.extractor is None:
            logger.info("No embedding extractor configured; geometric signatures only")
            return False
        return self.extractor.open()

    @property
    def embeddings_available(self) -> bool:
        return self.producer.embeddings_enabled

    def close(self) -> None:
        """Cancel every live session and release the embedding model."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()

        for controller in sessions:
            controller.cancel()

        if self.extractor is not None:
            self.extractor.close()

        logger.info(f"FaceIdService closed ({len(sessions)} live session(s) cancelled)")

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ------------------------------------------------------------------
    # Capture sessions
    # ------------------------------------------------------------------

    def start_capture_session(
        self,
        mode: CaptureMode,
        camera: Optional[Camera] = None,
        detector: Optional[FaceDetector] = None,
    ) -> str:
        """
        Create and start a capture session.

        Args:
            mode: ENROLLMENT or IDENTIFICATION.
            camera: Optional camera the session streams from and owns.
            detector: Overrides the service's default detector.

        Returns:
            Session handle.

        Raises:
            CameraError: The camera could not be started; no session is created.
        """
        controller = AngleCaptureController(
            mode=CaptureMode(mode),
            producer=self.producer,
            classifier=self.classifier,
            config=self.config.get("capture"),
            camera=camera,
            detector=detector or self.detector,
        )
        controller.start()

        handle = generate_session_id()
        with self._lock:
            self._sessions[handle] = controller

        logger.info(f"Started {controller.mode.value} session {handle}")
        return handle

    def on_frame(
        self,
        handle: str,
        frame: Optional[np.ndarray],
        detections: Optional[Sequence[FaceDetection]] = None,
        frame_height: Optional[float] = None,
    ) -> SessionSnapshot:
        """Feed one frame to a session and return its progress."""
        controller = self._get(handle)
        controller.on_frame(frame, detections, frame_height)
        return controller.snapshot()

    def get_session_state(self, handle: str) -> SessionSnapshot:
        return self._get(handle).snapshot()

    def finalize_session(self, handle: str) -> List[BiometricSample]:
        """
        Consume a completed session's samples. The session is destroyed.

        Raises:
            SessionNotFound: Unknown handle.
            SessionStateError: The session has not captured all angles yet.
        """
        controller = self._get(handle)
        samples = controller.finalize()
        self._discard(handle)
        return samples

    def cancel_session(self, handle: str, discard: bool = False) -> None:
        """
        Cancel a session. It stays addressable for retry_session unless
        `discard` is True.
        """
        controller = self._get(handle)
        controller.cancel()
        if discard:
            self._discard(handle)

    def retry_session(self, handle: str) -> SessionSnapshot:
        """
        Clear a session's progress and return it to INITIALIZING.

        A camera-backed session reacquires its stream and waits for FRONT.

        Raises:
            CameraError: The camera could not be restarted; the session is cancelled.
        """
        controller = self._get(handle)
        controller.retry()
        if controller.camera is not None and not controller.camera_held:
            controller.start()
        return controller.snapshot()

    def list_sessions(self) -> Dict[str, SessionSnapshot]:
        with self._lock:
            sessions = dict(self._sessions)
        return {handle: c.snapshot() for handle, c in sessions.items()}

    # ------------------------------------------------------------------
    # Identification / enrollment
    # ------------------------------------------------------------------

    def identify(
        self, query_samples: Sequence[BiometricSample], hint_id: Optional[str] = None
    ) -> MatchResult:
        """Match samples against every enrolled identity."""
        return self.engine.identify(query_samples, hint_id=hint_id, registry=self.registry.list_all())

    def enroll(
        self,
        identity_id: str,
        samples: Iterable[BiometricSample],
        display_name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> EnrolledIdentity:
        """
        Store samples as an identity, replacing any earlier enrollment with
        the same id.

        Raises:
            ValueError: If no samples are given.
        """
        samples = list(samples)
        if not samples:
            raise ValueError("Cannot enroll an identity without samples")

        identity = EnrolledIdentity.from_samples(identity_id, samples, display_name, metadata)
        replaced = identity_id in self.registry
        self.registry.save(identity)

        logger.info(
            f"{'Re-enrolled' if replaced else 'Enrolled'} {identity_id} "
            f"with {len(samples)} sample(s)"
        )
        return identity

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get(self, handle: str) -> AngleCaptureController:
        with self._lock:
            controller = self._sessions.get(handle)
        if controller is None:
            raise SessionNotFound(f"No capture session {handle!r}")
        return controller

    def _discard(self, handle: str) -> None:
        with self._lock:
            self._sessions.pop(handle, None)
