"""
Identification API Routes

POST /identify matches finalized samples against every enrolled identity.
A person who is not recognized gets a normal 200 response with method
"none" and a prompt to enroll.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_service
from api.schemas import CandidateScore, IdentifyRequest, IdentifyResponse
from faceid.service import FaceIdService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["identification"])

NOT_RECOGNIZED_MESSAGE = "Face not recognized, please enroll"


@router.post("/identify", response_model=IdentifyResponse)
def identify(request: IdentifyRequest, service: FaceIdService = Depends(get_service)):
    """
    Identify a person.

    Raises:
        422: A sample string is malformed.
    """
    try:
        samples = [s.to_sample() for s in request.samples]
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Invalid sample: {e}")

    result = service.identify(samples, hint_id=request.hint_id)

    display_name = None
    if result.is_match:
        identity = service.registry.lookup(result.matched_id)
        display_name = identity.display_name if identity else None
        message = f"Welcome, {display_name or result.matched_id}"
    else:
        message = NOT_RECOGNIZED_MESSAGE

    return IdentifyResponse(
        is_match=result.is_match,
        matched_id=result.matched_id,
        display_name=display_name,
        score=result.score,
        method=result.method.value,
        ranked_candidates=[
            CandidateScore(identity_id=identity_id, score=score)
            for identity_id, score in result.ranked_candidates
        ],
        message=message,
        details=result.details,
    )
