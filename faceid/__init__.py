"""
Core Module for the Face ID Attendance System

This package captures posed face samples from a camera feed and matches
them against enrolled identities.

Main components:
    - config: Configuration loading and management
    - pose: Pose classification against the five capture angles
    - samples: Biometric sample types and their storage strings
    - face_detector: Detection types; MediaPipe adapter in mediapipe_detector
    - face_embedder: Embedding model adapters (insightface / facenet-pytorch)
    - sample_producer: Embedding-or-geometric sample production
    - camera: OpenCV camera with streaming and single-frame capture
    - capture: Pose-gated capture state machine
    - matching: Strategy ladder and MatchEngine
    - registry: Enrolled identity storage (in-memory / SQLite)
    - service: Caller-facing FaceIdService

Usage:
    from faceid import FaceIdService, CaptureMode
"""

from faceid.config import (
    get_config,
    get_section,
    get_pose_config,
    get_capture_config,
    get_embedding_config,
    get_matching_config,
    get_camera_config,
    get_face_detection_config,
    get_storage_config,
    get_storage_path,
)

from faceid.errors import (
    FaceIdError,
    CameraError,
    PermissionDenied,
    NoCameraAvailable,
    CameraInitFailure,
    TransientCaptureError,
    NoFaceDetected,
    FrameTimeout,
    ModelUnavailable,
    EmbeddingDimensionMismatch,
    SessionStateError,
    SessionNotFound,
)

from faceid.pose import PoseAngle, PoseClassifier, PoseMeasurement, Strictness
from faceid.samples import BiometricSample, GeometricSignature, Modality
from faceid.face_detector import FaceDetection, FaceDetector
from faceid.face_embedder import EmbeddingExtractor, create_extractor
from faceid.sample_producer import BiometricSampleProducer, FaceRegion
from faceid.camera import Camera, OpenCVCamera
from faceid.capture import (
    AngleCaptureController,
    CaptureMode,
    CaptureSession,
    SessionSnapshot,
    SessionState,
)
from faceid.matching import MatchEngine, MatchMethod, MatchResult
from faceid.registry import (
    EnrolledIdentity,
    IdentityRegistry,
    InMemoryRegistry,
    SqliteRegistry,
    get_registry,
)
from faceid.service import FaceIdService

__all__ = [
    # Configuration
    "get_config",
    "get_section",
    "get_pose_config",
    "get_capture_config",
    "get_embedding_config",
    "get_matching_config",
    "get_camera_config",
    "get_face_detection_config",
    "get_storage_config",
    "get_storage_path",
    # Errors
    "FaceIdError",
    "CameraError",
    "PermissionDenied",
    "NoCameraAvailable",
    "CameraInitFailure",
    "TransientCaptureError",
    "NoFaceDetected",
    "FrameTimeout",
    "ModelUnavailable",
    "EmbeddingDimensionMismatch",
    "SessionStateError",
    "SessionNotFound",
    # Pose and samples
    "PoseAngle",
    "PoseClassifier",
    "PoseMeasurement",
    "Strictness",
    "BiometricSample",
    "GeometricSignature",
    "Modality",
    # Collaborators
    "FaceDetection",
    "FaceDetector",
    "EmbeddingExtractor",
    "create_extractor",
    "Camera",
    "OpenCVCamera",
    # Capture
    "BiometricSampleProducer",
    "FaceRegion",
    "AngleCaptureController",
    "CaptureMode",
    "CaptureSession",
    "SessionSnapshot",
    "SessionState",
    # Matching
    "MatchEngine",
    "MatchMethod",
    "MatchResult",
    # Registry
    "EnrolledIdentity",
    "IdentityRegistry",
    "InMemoryRegistry",
    "SqliteRegistry",
    "get_registry",
    # Service
    "FaceIdService",
]
