"""
Identity Management API Routes

    POST   /identities          enroll (from samples or a completed session)
    GET    /identities          list enrolled identities
    GET    /identities/{id}     details of one identity
    DELETE /identities/{id}     remove an enrollment
    DELETE /identities          remove every enrollment
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_service
from api.schemas import (
    ClearIdentitiesResponse,
    DeleteIdentityResponse,
    EnrollRequest,
    EnrollResponse,
    IdentityDetailResponse,
    IdentityInfo,
    IdentityListResponse,
)
from faceid.capture import CaptureMode
from faceid.registry import EnrolledIdentity
from faceid.service import FaceIdService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/identities", tags=["identities"])


def _info_fields(identity: EnrolledIdentity) -> dict:
    return {
        "identity_id": identity.identity_id,
        "display_name": identity.display_name,
        "enrolled_at": datetime.fromtimestamp(identity.enrolled_at).isoformat(),
        "embedding_count": len(identity.embedding_samples),
        "geometric_count": len(identity.geometric_samples),
    }


@router.post("", response_model=EnrollResponse, status_code=201)
def enroll(request: EnrollRequest, service: FaceIdService = Depends(get_service)):
    """
    Enroll an identity. An existing enrollment with the same id is replaced.

    Raises:
        404: session_id given but unknown.
        409: The session is not complete, or is not an enrollment session.
        422: A sample string is malformed.
    """
    if request.session_id is not None:
        snapshot = service.get_session_state(request.session_id)
        if snapshot.mode != CaptureMode.ENROLLMENT:
            raise HTTPException(
                status_code=409, detail=f"Session {request.session_id} is not an enrollment session"
            )
        samples = service.finalize_session(request.session_id)
    else:
        try:
            samples = [s.to_sample() for s in request.samples]
        except ValueError as e:
            raise HTTPException(status_code=422, detail=f"Invalid sample: {e}")

    replaced = request.identity_id in service.registry
    identity = service.enroll(
        request.identity_id, samples, request.display_name, request.metadata
    )

    return EnrollResponse(
        **_info_fields(identity),
        replaced=replaced,
        message=f"Identity {identity.identity_id} enrolled with {len(samples)} sample(s)",
    )


@router.get("", response_model=IdentityListResponse)
def list_identities(service: FaceIdService = Depends(get_service)):
    identities = service.registry.list_all()
    return IdentityListResponse(
        identities=[IdentityInfo(**_info_fields(i)) for i in identities],
        total=len(identities),
    )


@router.get("/{identity_id}", response_model=IdentityDetailResponse)
def get_identity(identity_id: str, service: FaceIdService = Depends(get_service)):
    identity = service.registry.lookup(identity_id)
    if identity is None:
        raise HTTPException(status_code=404, detail=f"Identity {identity_id} not found")
    return IdentityDetailResponse(**_info_fields(identity), metadata=identity.metadata)


@router.delete("/{identity_id}", response_model=DeleteIdentityResponse)
def delete_identity(identity_id: str, service: FaceIdService = Depends(get_service)):
    if not service.registry.delete(identity_id):
        raise HTTPException(status_code=404, detail=f"Identity {identity_id} not found")

    return DeleteIdentityResponse(
        success=True,
        identity_id=identity_id,
        message=f"Identity {identity_id} deleted successfully",
    )


@router.delete("", response_model=ClearIdentitiesResponse)
def clear_identities(service: FaceIdService = Depends(get_service)):
    """Remove every enrolled identity, e.g. to reset a kiosk between events."""
    deleted = service.registry.clear()
    logger.warning(f"All identities deleted ({deleted})")
    return ClearIdentitiesResponse(
        success=True,
        deleted=deleted,
        message=f"Deleted {deleted} identit{'y' if deleted == 1 else 'ies'}",
    )
