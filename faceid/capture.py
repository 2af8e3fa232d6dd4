"""
Angle Capture Controller

Per-session state machine that walks the user through the five head poses,
debounces noisy per-frame pose decisions and accumulates one
BiometricSample per captured angle.

States:
    INITIALIZING -> AWAITING_ANGLE(angle) -> ... -> ALL_CAPTURED
    CANCELLED is reachable from any non-terminal state.

Frame handling is serialized by a non-blocking busy lock: a frame that
arrives while another is being processed is dropped, never queued. Only the
freshest pose matters.

Usage:
    from faceid.capture import AngleCaptureController, CaptureMode

    controller = AngleCaptureController(
        CaptureMode.IDENTIFICATION, producer, camera=camera, detector=detector
    )
    with controller:
        while controller.snapshot().state != SessionState.ALL_CAPTURED:
            time.sleep(0.05)
        samples = controller.finalize()
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from faceid.camera import Camera
from faceid.errors import CameraError, FrameTimeout, SessionStateError, TransientCaptureError
from faceid.face_detector import FaceDetection, FaceDetector
from faceid.pose import PoseAngle, PoseClassifier, Strictness
from faceid.sample_producer import BiometricSampleProducer, FaceRegion
from faceid.samples import BiometricSample

module_logger = logging.getLogger(__name__)


class CaptureMode(str, Enum):
    ENROLLMENT = "enrollment"
    IDENTIFICATION = "identification"


class SessionState(str, Enum):
    INITIALIZING = "initializing"
    AWAITING_ANGLE = "awaiting_angle"
    ALL_CAPTURED = "all_captured"
    CANCELLED = "cancelled"


def _empty_hits() -> Dict[PoseAngle, int]:
    return {angle: 0 for angle in PoseAngle.priority_order()}


@dataclass
class CaptureSession:
    """
    Mutable progress of one capture session.

    An angle enters captured_angles only once its hit count reached the
    mode threshold, and samples holds at most one entry per angle.
    """

    mode: CaptureMode
    requested_angle: Optional[PoseAngle] = PoseAngle.FRONT
    hit_counts: Dict[PoseAngle, int] = field(default_factory=_empty_hits)
    captured_angles: Set[PoseAngle] = field(default_factory=set)
    samples: List[BiometricSample] = field(default_factory=list)
    state: SessionState = SessionState.INITIALIZING

    def reset(self) -> None:
        self.requested_angle = PoseAngle.FRONT
        self.hit_counts = _empty_hits()
        self.captured_angles = set()
        self.samples = []
        self.state = SessionState.INITIALIZING


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only progress view for a UI."""

    mode: CaptureMode
    state: SessionState
    requested_angle: Optional[PoseAngle]
    captured_angles: Tuple[PoseAngle, ...]
    hit_counts: Dict[PoseAngle, int]
    sample_count: int

    @property
    def is_complete(self) -> bool:
        return self.state == SessionState.ALL_CAPTURED

    @property
    def instruction(self) -> Optional[str]:
        if self.state != SessionState.AWAITING_ANGLE or self.requested_angle is None:
            return None
        return self.requested_angle.instruction


class AngleCaptureController:
    """
    Drives one enrollment or identification capture.

    Args:
        mode: ENROLLMENT (strict poses, 3 hits, all five angles) or
              IDENTIFICATION (relaxed poses, 2 hits, front fast path).
        producer: Turns a captured face region into a BiometricSample.
        classifier: Pose classifier; a default one is built if omitted.
        config: Dictionary (the `capture` config section) with keys:
            - enrollment_hits: Debounce threshold for enrollment (default 3)
            - identification_hits: Debounce threshold for identification (default 2)
            - identification_fast_path: Complete as soon as FRONT is captured (default True)
            - identification_min_angles: Generic identification completion (default 3)
            - reset_on_miss: Reset the hit counter on a non-matching frame (default False)
            - still_frame_timeout: Seconds to wait for a still frame (default 1.5)
            - frame_height: Frame height assumed when only detections are given (default 480)
        camera: Optional camera; streamed into on_frame while the session owns it.
        detector: Face detector used when on_frame is called without detections.
        logger: Optional logger for session diagnostics.
    """

    def __init__(
        self,
        mode: CaptureMode,
        producer: BiometricSampleProducer,
        classifier: Optional[PoseClassifier] = None,
        config: Optional[Dict[str, Any]] = None,
        camera: Optional[Camera] = None,
        detector: Optional[FaceDetector] = None,
        logger: Optional[logging.Logger] = None,
    ):
        config = config or {}
        self.mode = CaptureMode(mode)
        self.producer = producer
        self.classifier = classifier or PoseClassifier()
        self.camera = camera
        self.detector = detector
        self.logger = logger or module_logger

        if self.mode == CaptureMode.ENROLLMENT:
            self.required_hits = config.get("enrollment_hits", 3)
            self.strictness = Strictness.STRICT
        else:
            self.required_hits = config.get("identification_hits", 2)
            self.strictness = Strictness.RELAXED

        self.fast_path = config.get("identification_fast_path", True)
        self.min_angles = config.get("identification_min_angles", 3)
        self.reset_on_miss = config.get("reset_on_miss", False)
        self.still_frame_timeout = config.get("still_frame_timeout", 1.5)
        self.default_frame_height = config.get("frame_height", 480)

        self.session = CaptureSession(mode=self.mode)

        self._busy = threading.Lock()
        self._state_lock = threading.RLock()
        self._cancelled = False
        # Bumped by cancel/retry so in-flight frames can detect a stale session
        self._epoch = 0
        self._camera_held = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Enter AWAITING_ANGLE(FRONT) and start the camera stream if attached.

        Raises:
            SessionStateError: The session was cancelled or already completed.
            CameraError: The camera could not be started; the session is aborted.
        """
        with self._state_lock:
            if self._cancelled:
                raise SessionStateError("Session was cancelled; call retry() first")
            if self.session.state == SessionState.ALL_CAPTURED:
                raise SessionStateError("Session already captured all angles")
            if self.session.state == SessionState.INITIALIZING:
                self._enter_awaiting()

        if self.camera is None or self._camera_held:
            return

        self._camera_held = True
        try:
            self.camera.start_stream(self.on_frame)
        except CameraError as e:
            self._camera_held = False
            self.logger.error(f"Camera failed to start, aborting {self.mode.value} session: {e}")
            self.cancel()
            raise

    def cancel(self) -> None:
        """Abandon the session: drop samples, move to CANCELLED, release the camera."""
        with self._state_lock:
            if self.session.state not in (SessionState.CANCELLED, SessionState.ALL_CAPTURED):
                self._cancelled = True
                self._epoch += 1
                self.session.samples = []
                self.session.state = SessionState.CANCELLED
                self.logger.info(f"{self.mode.value} session cancelled")
        self._release_camera()

    def retry(self) -> None:
        """Clear all progress and return to INITIALIZING with FRONT requested."""
        with self._state_lock:
            self._cancelled = False
            self._epoch += 1
            self.session.reset()
            self.logger.info(f"{self.mode.value} session reset for retry")

    def finalize(self) -> List[BiometricSample]:
        """
        Return the captured samples in capture order.

        Raises:
            SessionStateError: If the session is not ALL_CAPTURED.
        """
        with self._state_lock:
            if self.session.state != SessionState.ALL_CAPTURED:
                raise SessionStateError(
                    f"Cannot finalize session in state {self.session.state.value}"
                )
            return list(self.session.samples)

    def snapshot(self) -> SessionSnapshot:
        with self._state_lock:
            captured = tuple(
                a for a in PoseAngle.priority_order() if a in self.session.captured_angles
            )
            return SessionSnapshot(
                mode=self.mode,
                state=self.session.state,
                requested_angle=self.session.requested_angle,
                captured_angles=captured,
                hit_counts=dict(self.session.hit_counts),
                sample_count=len(self.session.samples),
            )

    @property
    def camera_held(self) -> bool:
        return self._camera_held

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None or self.session.state != SessionState.ALL_CAPTURED:
            self.cancel()
        else:
            self._release_camera()

    # ------------------------------------------------------------------
    # Frame processing
    # ------------------------------------------------------------------

    def on_frame(
        self,
        frame: Optional[np.ndarray],
        detections: Optional[Sequence[FaceDetection]] = None,
        frame_height: Optional[float] = None,
    ) -> bool:
        """
        Advance the state machine with one frame.

        Args:
            frame: BGR frame, or None when detections are supplied directly.
            detections: Detections for this frame, largest first. If omitted,
                        the attached detector is run on the frame.
            frame_height: Frame height for pose measurement when no frame is given.

        Returns:
            False if the frame was dropped because another frame was in flight.
        """
        if not self._busy.acquire(blocking=False):
            self.logger.debug("Frame dropped, previous frame still processing")
            return False
        try:
            self._process_frame(frame, detections, frame_height)
        except CameraError as e:
            self.logger.error(f"Camera failure during {self.mode.value} session: {e}")
            self.cancel()
            raise
        finally:
            self._busy.release()
        return True

    def _process_frame(
        self,
        frame: Optional[np.ndarray],
        detections: Optional[Sequence[FaceDetection]],
        frame_height: Optional[float],
    ) -> None:
        with self._state_lock:
            if self._cancelled:
                return
            if self.session.state == SessionState.INITIALIZING:
                self._enter_awaiting()
            if self.session.state != SessionState.AWAITING_ANGLE:
                return
            angle = self.session.requested_angle
            epoch = self._epoch

        if detections is None:
            detections = self._detect(frame)
        # A degenerate box cannot yield a sample; treat it like no face
        detections = [d for d in detections if d.has_area]
        if not detections:
            return

        # Multi-person frames: the largest face wins
        detection = detections[0]
        if frame_height is None:
            frame_height = frame.shape[0] if frame is not None else self.default_frame_height
        measurement = detection.to_measurement(frame_height)
        matched = self.classifier.matches(measurement, angle, self.strictness)

        with self._state_lock:
            if self._stale(epoch):
                return
            hits = self.session.hit_counts
            if not matched:
                if self.reset_on_miss and hits[angle]:
                    self.logger.debug(f"{angle.value}: miss, hit counter reset")
                    hits[angle] = 0
                return
            hits[angle] += 1
            self.logger.debug(f"{angle.value}: hit {hits[angle]}/{self.required_hits}")
            if hits[angle] < self.required_hits:
                return

        image = self._capture_still(frame, epoch)
        sample = self.producer.produce(FaceRegion(detection=detection, image=image), angle)

        with self._state_lock:
            if self._stale(epoch):
                self.logger.debug(f"{angle.value}: session changed during extraction, sample discarded")
                return
            self._record(angle, sample)
            completed = self.session.state == SessionState.ALL_CAPTURED

        if completed:
            self._release_camera()

    def _detect(self, frame: Optional[np.ndarray]) -> List[FaceDetection]:
        if frame is None:
            return []
        if self.detector is None:
            raise ValueError("No face detector attached; pass detections explicitly")
        try:
            return list(self.detector.detect(frame))
        except TransientCaptureError as e:
            self.logger.debug(f"Detection skipped: {e}")
            return []

    def _capture_still(self, frame: Optional[np.ndarray], epoch: int) -> Optional[np.ndarray]:
        """Still image for the embedding model; None means use the geometric signature."""
        if self.camera is None:
            return frame
        if self._stale(epoch):
            return None
        try:
            return self.camera.capture_single_frame(self.still_frame_timeout)
        except FrameTimeout as e:
            self.logger.warning(f"Still frame capture timed out, using geometric signature: {e}")
            return None

    def _record(self, angle: PoseAngle, sample: BiometricSample) -> None:
        session = self.session
        session.samples.append(sample)
        session.captured_angles.add(angle)
        session.hit_counts[angle] = 0
        self.logger.info(
            f"Captured {angle.value} ({sample.modality.value}), "
            f"{len(session.captured_angles)} angle(s) so far"
        )

        if self._is_complete():
            session.state = SessionState.ALL_CAPTURED
            session.requested_angle = None
            self.logger.info(f"{self.mode.value} session complete")
        else:
            session.requested_angle = self._next_angle()

    def _is_complete(self) -> bool:
        captured = self.session.captured_angles
        if self.mode == CaptureMode.ENROLLMENT:
            return len(captured) == len(PoseAngle)
        if self.fast_path and PoseAngle.FRONT in captured:
            return True
        return len(captured) >= self.min_angles

    def _next_angle(self) -> Optional[PoseAngle]:
        for angle in PoseAngle.priority_order():
            if angle not in self.session.captured_angles:
                return angle
        return None

    def _enter_awaiting(self) -> None:
        self.session.state = SessionState.AWAITING_ANGLE
        if self.session.requested_angle is None:
            self.session.requested_angle = self._next_angle()

    def _stale(self, epoch: int) -> bool:
        return self._cancelled or epoch != self._epoch

    def _release_camera(self) -> None:
        with self._state_lock:
            if not self._camera_held:
                return
            self._camera_held = False
        try:
            self.camera.stop_stream()
        except Exception:
            self.logger.exception("Error while stopping camera stream")
