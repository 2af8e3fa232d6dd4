"""
Capture Session API Routes

REST endpoints that drive a capture session frame by frame:

    POST   /sessions                    open a session
    POST   /sessions/{id}/frames        feed one frame
    GET    /sessions/{id}               progress
    POST   /sessions/{id}/finalize      consume the samples
    POST   /sessions/{id}/retry         clear progress, start over
    DELETE /sessions/{id}               cancel and discard
"""

import base64
import binascii
import logging
from typing import Optional

import cv2
import numpy as np
from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_service
from api.schemas import (
    FinalizeResponse,
    FrameRequest,
    SampleModel,
    SessionStateResponse,
    StartSessionRequest,
)
from faceid.capture import CaptureMode
from faceid.service import FaceIdService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


def decode_frame(frame_b64: str) -> Optional[np.ndarray]:
    """
    Decode a base64-encoded JPEG image to a BGR numpy array.

    Returns:
        The frame, or None if the data is not a decodable image.
    """
    try:
        img_bytes = base64.b64decode(frame_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Failed to decode frame: {e}")
        return None

    np_arr = np.frombuffer(img_bytes, np.uint8)
    if np_arr.size == 0:
        return None
    return cv2.imdecode(np_arr, cv2.IMREAD_COLOR)


@router.post("", response_model=SessionStateResponse, status_code=201)
def start_session(request: StartSessionRequest, service: FaceIdService = Depends(get_service)):
    """Open a capture session. Frames are pushed by the client."""
    handle = service.start_capture_session(CaptureMode(request.mode))
    return SessionStateResponse.from_snapshot(handle, service.get_session_state(handle))


@router.post("/{session_id}/frames", response_model=SessionStateResponse)
def push_frame(
    session_id: str,
    request: FrameRequest,
    service: FaceIdService = Depends(get_service),
):
    """
    Advance a session with one frame.

    Raises:
        400: The image could not be decoded.
        404: Unknown session.
        422: Image sent without detections and no server-side detector.
    """
    if request.detections is None and service.detector is None:
        raise HTTPException(
            status_code=422,
            detail="No face detector on the server; send client-side detections",
        )

    frame = None
    if request.data is not None:
        frame = decode_frame(request.data)
        if frame is None:
            raise HTTPException(status_code=400, detail="Frame is not a decodable image")

    detections = None
    if request.detections is not None:
        detections = [d.to_detection() for d in request.detections]

    snapshot = service.on_frame(session_id, frame, detections, request.frame_height)
    return SessionStateResponse.from_snapshot(session_id, snapshot)


@router.get("/{session_id}", response_model=SessionStateResponse)
def get_session(session_id: str, service: FaceIdService = Depends(get_service)):
    return SessionStateResponse.from_snapshot(session_id, service.get_session_state(session_id))


@router.post("/{session_id}/finalize", response_model=FinalizeResponse)
def finalize_session(session_id: str, service: FaceIdService = Depends(get_service)):
    """
    Return the samples of a completed session and destroy it.

    Raises:
        404: Unknown session.
        409: The session has not captured all required angles.
    """
    samples = service.finalize_session(session_id)
    return FinalizeResponse(
        session_id=session_id,
        samples=[SampleModel.from_sample(s) for s in samples],
    )


@router.post("/{session_id}/retry", response_model=SessionStateResponse)
def retry_session(session_id: str, service: FaceIdService = Depends(get_service)):
    snapshot = service.retry_session(session_id)
    return SessionStateResponse.from_snapshot(session_id, snapshot)


@router.delete("/{session_id}", status_code=204)
def cancel_session(session_id: str, service: FaceIdService = Depends(get_service)):
    service.cancel_session(session_id, discard=True)
