"""
Shared dependencies for the API routes.

The FaceIdService is created once per process. Routes receive it through
FastAPI's Depends(get_service), so tests can swap in their own service with
app.dependency_overrides.
"""

import logging
from typing import Optional

from faceid.service import FaceIdService

logger = logging.getLogger(__name__)

_service_instance: Optional[FaceIdService] = None


def get_service() -> FaceIdService:
    """Get or create the process-wide FaceIdService."""
    global _service_instance

    if _service_instance is None:
        detector = None
        try:
            from faceid.config import get_face_detection_config
            from faceid.mediapipe_detector import MediaPipeFaceDetector

            detector = MediaPipeFaceDetector(get_face_detection_config())
        except ImportError:
            logger.warning(
                "mediapipe not installed; frames must be sent with client-side detections"
            )
        except OSError as e:
            logger.warning(f"Face landmarker model unavailable ({e}); frames need client-side detections")

        _service_instance = FaceIdService(detector=detector)

    return _service_instance


def shutdown_service() -> None:
    """Close the shared service, if it was created."""
    global _service_instance

    if _service_instance is not None:
        _service_instance.close()
        if _service_instance.detector is not None:
            _service_instance.detector.close()
        _service_instance.registry.close()
        _service_instance = None
