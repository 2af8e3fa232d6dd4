"""
Pydantic Schemas for API Request/Response Models

This module defines the data models exchanged between a scanning UI and the
face ID service.

Biometric samples travel as their storage strings: comma-separated floats
for embeddings, "face_<l>_<t>_<w>_<h>_<yaw>_<pitch>_<ms>" for geometric
signatures.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from faceid.capture import SessionSnapshot
from faceid.face_detector import FaceDetection
from faceid.pose import PoseAngle
from faceid.samples import BiometricSample, Modality


# ============================================================
# Capture Session Schemas
# ============================================================

class StartSessionRequest(BaseModel):
    """Request to open a capture session."""
    mode: Literal["enrollment", "identification"] = Field(
        ..., description="Enrollment captures all five angles, identification stops early"
    )


class DetectionModel(BaseModel):
    """A face detection computed on the client."""
    bbox: List[float] = Field(..., min_length=4, max_length=4, description="[left, top, width, height] in pixels")
    yaw: float = Field(..., description="Horizontal rotation in degrees (positive = left prompt)")
    pitch: float = Field(..., description="Vertical rotation in degrees (positive = up)")
    roll: float = Field(0.0, description="Head tilt in degrees")
    confidence: float = Field(1.0, ge=0.0, le=1.0)

    @field_validator("bbox")
    @classmethod
    def check_box_size(cls, bbox: List[float]) -> List[float]:
        if bbox[2] <= 0 or bbox[3] <= 0:
            raise ValueError(f"bbox width and height must be positive, got {bbox[2]}x{bbox[3]}")
        return bbox

    def to_detection(self) -> FaceDetection:
        return FaceDetection(
            bbox=tuple(self.bbox),
            yaw=self.yaw,
            pitch=self.pitch,
            roll=self.roll,
            confidence=self.confidence,
        )


class FrameRequest(BaseModel):
    """
    One frame for a capture session.

    Send either a base64 JPEG (the server detects the face) or detections
    computed on the client, optionally with the JPEG for embedding extraction.
    """
    data: Optional[str] = Field(None, description="Base64-encoded JPEG image data")
    detections: Optional[List[DetectionModel]] = Field(
        None, description="Client-side detections, largest face first"
    )
    frame_height: Optional[float] = Field(
        None, gt=0, description="Frame height in pixels when no image is sent"
    )

    @model_validator(mode="after")
    def check_payload(self):
        if self.data is None and self.detections is None:
            raise ValueError("Either 'data' or 'detections' is required")
        return self


class SessionStateResponse(BaseModel):
    """Progress of a capture session, for a progress UI."""
    session_id: str
    mode: str
    state: str = Field(..., description="initializing | awaiting_angle | all_captured | cancelled")
    requested_angle: Optional[str] = Field(None, description="Angle the user should show next")
    instruction: Optional[str] = Field(None, description="Human-readable prompt")
    captured_angles: List[str] = Field(default_factory=list)
    hit_counts: Dict[str, int] = Field(default_factory=dict)
    sample_count: int = 0
    is_complete: bool = False

    @classmethod
    def from_snapshot(cls, session_id: str, snapshot: SessionSnapshot) -> "SessionStateResponse":
        return cls(
            session_id=session_id,
            mode=snapshot.mode.value,
            state=snapshot.state.value,
            requested_angle=snapshot.requested_angle.value if snapshot.requested_angle else None,
            instruction=snapshot.instruction,
            captured_angles=[a.value for a in snapshot.captured_angles],
            hit_counts={a.value: n for a, n in snapshot.hit_counts.items()},
            sample_count=snapshot.sample_count,
            is_complete=snapshot.is_complete,
        )


# ============================================================
# Sample Schemas
# ============================================================

class SampleModel(BaseModel):
    """A biometric sample in its portable string form."""
    angle: PoseAngle = Field(..., description="front | left | right | up | down")
    modality: Modality = Field(..., description="embedding | geometric")
    value: str = Field(..., min_length=1, description="Storage string of the sample")
    captured_at: Optional[float] = Field(None, description="Unix timestamp")

    @classmethod
    def from_sample(cls, sample: BiometricSample) -> "SampleModel":
        return cls(
            angle=sample.angle,
            modality=sample.modality,
            value=sample.to_storage_string(),
            captured_at=sample.captured_at,
        )

    def to_sample(self) -> BiometricSample:
        """
        Raises:
            ValueError: If value is malformed or does not match modality.
        """
        sample = BiometricSample.from_storage_string(self.value, angle=self.angle)
        if sample.modality != self.modality:
            raise ValueError(
                f"Sample value is {sample.modality.value}, declared {self.modality.value}"
            )
        if self.captured_at is not None:
            sample.captured_at = self.captured_at
        return sample


class FinalizeResponse(BaseModel):
    """Samples of a completed session. The session no longer exists afterwards."""
    session_id: str
    samples: List[SampleModel]


# ============================================================
# Identification Schemas
# ============================================================

class IdentifyRequest(BaseModel):
    """Identify a person from captured samples."""
    samples: List[SampleModel] = Field(default_factory=list)
    hint_id: Optional[str] = Field(
        None, description="Identity id entered manually (e.g. ID card number)"
    )


class CandidateScore(BaseModel):
    identity_id: str
    score: float


class IdentifyResponse(BaseModel):
    """Identification outcome. A non-match is a normal 200 response."""
    is_match: bool
    matched_id: Optional[str] = None
    display_name: Optional[str] = None
    score: float = Field(..., description="Similarity in [0, 1]")
    method: str = Field(..., description="exact_hint | embedding | geometric | exact_string | none")
    ranked_candidates: List[CandidateScore] = Field(default_factory=list)
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


# ============================================================
# Identity Management Schemas
# ============================================================

class EnrollRequest(BaseModel):
    """
    Enroll an identity, either from explicit samples or directly from a
    completed enrollment session.
    """
    identity_id: str = Field(..., min_length=1)
    display_name: Optional[str] = None
    samples: Optional[List[SampleModel]] = None
    session_id: Optional[str] = Field(None, description="Completed enrollment session to consume")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_source(self):
        if not self.samples and self.session_id is None:
            raise ValueError("Either 'samples' or 'session_id' is required")
        return self


class IdentityInfo(BaseModel):
    """Summary information about an enrolled identity."""
    identity_id: str
    display_name: Optional[str] = None
    enrolled_at: str = Field(..., description="ISO timestamp of enrollment")
    embedding_count: int
    geometric_count: int


class IdentityDetailResponse(IdentityInfo):
    metadata: Dict[str, Any] = Field(default_factory=dict)


class IdentityListResponse(BaseModel):
    identities: List[IdentityInfo]
    total: int


class EnrollResponse(IdentityInfo):
    replaced: bool = Field(False, description="True if an earlier enrollment was overwritten")
    message: str


class DeleteIdentityResponse(BaseModel):
    success: bool
    identity_id: str
    message: str


class ClearIdentitiesResponse(BaseModel):
    success: bool
    deleted: int = Field(..., description="Number of identities removed")
    message: str


# ============================================================
# System Schemas
# ============================================================

class HealthResponse(BaseModel):
    status: str = Field(..., description="healthy | degraded (geometric-only)")
    embeddings_available: bool
    enrolled_identities: int
    live_sessions: int
