"""
Tests for API Endpoints

This test suite verifies:
- System endpoints (root, health)
- Capture session endpoints (start, frames, finalize, retry, cancel)
- Identification endpoint
- Identity management endpoints (enroll, list, get, delete)
- Error mapping (404 / 409 / 422 / 400 / 503)

The FaceIdService dependency is overridden with a geometric-only service
backed by an in-memory registry, so no model or camera is needed.

Run with: pytest tests/test_api_endpoints.py -v
"""

import base64
import os
import sys
from unittest.mock import MagicMock

import cv2
import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient

from api.app import app
from api.dependencies import get_service
from api.routes.identification import NOT_RECOGNIZED_MESSAGE
from faceid.errors import NoCameraAvailable
from faceid.face_detector import FaceDetection, FaceDetector
from faceid.registry import InMemoryRegistry
from faceid.service import FaceIdService

FRONT = {"bbox": [245, 120, 150, 195], "yaw": 0.0, "pitch": 0.0}
POSES = [
    FRONT,
    {"bbox": [245, 120, 150, 195], "yaw": 35.0, "pitch": 0.0},
    {"bbox": [245, 120, 150, 195], "yaw": -35.0, "pitch": 0.0},
    {"bbox": [245, 120, 150, 195], "yaw": 0.0, "pitch": 20.0},
    {"bbox": [245, 120, 150, 195], "yaw": 0.0, "pitch": -20.0},
]
SIGNATURE = "face_245.00_120.00_150.00_195.00_0.00_0.00_1700000000000"


def make_service(detector=None):
    return FaceIdService(
        config={"capture": {}, "matching": {}},
        registry=InMemoryRegistry(),
        detector=detector,
        use_embeddings=False,
    )


@pytest.fixture
def service():
    svc = make_service()
    yield svc
    svc.close()


@pytest.fixture
def client(service):
    """Test client with the service dependency overridden."""
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def push(client, session_id, detection, times):
    response = None
    for _ in range(times):
        response = client.post(
            f"/sessions/{session_id}/frames",
            json={"detections": [detection], "frame_height": 480},
        )
        assert response.status_code == 200
    return response


def capture(client, mode):
    """Run a full capture through the API and return the finalize payload."""
    session_id = client.post("/sessions", json={"mode": mode}).json()["session_id"]
    poses = POSES if mode == "enrollment" else [FRONT]
    hits = 3 if mode == "enrollment" else 2
    for detection in poses:
        push(client, session_id, detection, hits)
    return client.post(f"/sessions/{session_id}/finalize").json()


# ============================================================
# System Endpoints
# ============================================================

class TestSystemEndpoints:
    """Tests for root and health endpoints."""

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert "name" in data
        assert "version" in data
        assert data["docs"] == "/docs"

    def test_health_degraded_without_embeddings(self, client):
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "degraded"
        assert data["embeddings_available"] is False
        assert data["enrolled_identities"] == 0
        assert data["live_sessions"] == 0


# ============================================================
# Capture Session Endpoints
# ============================================================

class TestSessionEndpoints:
    """Tests for the session lifecycle over HTTP."""

    def test_start_session(self, client):
        response = client.post("/sessions", json={"mode": "enrollment"})
        assert response.status_code == 201

        data = response.json()
        assert data["session_id"].startswith("ses_")
        assert data["state"] == "awaiting_angle"
        assert data["requested_angle"] == "front"
        assert data["instruction"] == "Look straight at the camera"
        assert data["is_complete"] is False

    def test_invalid_mode(self, client):
        response = client.post("/sessions", json={"mode": "selfie"})
        assert response.status_code == 422

    def test_frames_advance_session(self, client):
        session_id = client.post("/sessions", json={"mode": "enrollment"}).json()["session_id"]
        data = push(client, session_id, FRONT, 3).json()

        assert data["captured_angles"] == ["front"]
        assert data["requested_angle"] == "left"
        assert data["sample_count"] == 1

    def test_identification_session_completes(self, client):
        session_id = client.post("/sessions", json={"mode": "identification"}).json()["session_id"]
        data = push(client, session_id, FRONT, 2).json()
        assert data["is_complete"] is True
        assert data["state"] == "all_captured"

    def test_finalize_returns_samples(self, client):
        data = capture(client, "identification")
        assert len(data["samples"]) == 1

        sample = data["samples"][0]
        assert sample["angle"] == "front"
        assert sample["modality"] == "geometric"
        assert sample["value"].startswith("face_245.00_120.00_150.00_195.00_0.00_0.00_")

    def test_finalize_destroys_session(self, client):
        session_id = client.post("/sessions", json={"mode": "identification"}).json()["session_id"]
        push(client, session_id, FRONT, 2)
        assert client.post(f"/sessions/{session_id}/finalize").status_code == 200
        assert client.get(f"/sessions/{session_id}").status_code == 404

    def test_finalize_incomplete_conflict(self, client):
        session_id = client.post("/sessions", json={"mode": "enrollment"}).json()["session_id"]
        response = client.post(f"/sessions/{session_id}/finalize")
        assert response.status_code == 409

    def test_unknown_session(self, client):
        assert client.get("/sessions/ses_missing").status_code == 404
        response = client.post(
            "/sessions/ses_missing/frames", json={"detections": [FRONT], "frame_height": 480}
        )
        assert response.status_code == 404

    def test_frame_requires_payload(self, client):
        session_id = client.post("/sessions", json={"mode": "enrollment"}).json()["session_id"]
        response = client.post(f"/sessions/{session_id}/frames", json={})
        assert response.status_code == 422

    def test_image_without_detector(self, client):
        session_id = client.post("/sessions", json={"mode": "enrollment"}).json()["session_id"]
        response = client.post(f"/sessions/{session_id}/frames", json={"data": "aGVsbG8="})
        assert response.status_code == 422

    @pytest.mark.parametrize("bbox", [[10, 10, 0, 0], [10, 10, 100, 0], [10, 10, -20, 50]])
    def test_degenerate_box_rejected(self, client, bbox):
        session_id = client.post("/sessions", json={"mode": "identification"}).json()["session_id"]
        detection = {"bbox": bbox, "yaw": 0.0, "pitch": 0.0}

        for _ in range(2):
            response = client.post(
                f"/sessions/{session_id}/frames",
                json={"detections": [detection], "frame_height": 480},
            )
            assert response.status_code == 422

        assert client.get(f"/sessions/{session_id}").json()["hit_counts"]["front"] == 0

    def test_retry(self, client):
        session_id = client.post("/sessions", json={"mode": "enrollment"}).json()["session_id"]
        push(client, session_id, FRONT, 3)

        data = client.post(f"/sessions/{session_id}/retry").json()
        assert data["state"] == "initializing"
        assert data["captured_angles"] == []

    def test_cancel_discards(self, client):
        session_id = client.post("/sessions", json={"mode": "enrollment"}).json()["session_id"]
        assert client.delete(f"/sessions/{session_id}").status_code == 204
        assert client.get(f"/sessions/{session_id}").status_code == 404

    def test_health_counts_live_sessions(self, client):
        client.post("/sessions", json={"mode": "enrollment"})
        assert client.get("/health").json()["live_sessions"] == 1


class TestServerSideDetection:
    """Tests for frames sent as base64 JPEG."""

    @pytest.fixture
    def client(self):
        detector = MagicMock(spec=FaceDetector)
        detector.detect.return_value = [FaceDetection(bbox=(245, 120, 150, 195), yaw=0.0, pitch=0.0)]
        service = make_service(detector=detector)
        app.dependency_overrides[get_service] = lambda: service
        yield TestClient(app)
        app.dependency_overrides.clear()
        service.close()

    @staticmethod
    def jpeg_b64():
        ok, buffer = cv2.imencode(".jpg", np.zeros((480, 640, 3), dtype=np.uint8))
        assert ok
        return base64.b64encode(buffer.tobytes()).decode("ascii")

    def test_jpeg_frame(self, client):
        session_id = client.post("/sessions", json={"mode": "enrollment"}).json()["session_id"]
        response = client.post(f"/sessions/{session_id}/frames", json={"data": self.jpeg_b64()})

        assert response.status_code == 200
        assert response.json()["hit_counts"]["front"] == 1

    def test_undecodable_image(self, client):
        session_id = client.post("/sessions", json={"mode": "enrollment"}).json()["session_id"]
        response = client.post(f"/sessions/{session_id}/frames", json={"data": "not base64!"})
        assert response.status_code == 400


class TestCameraErrors:
    """Tests for camera failures surfacing as 503."""

    def test_camera_unavailable(self):
        service = MagicMock()
        service.start_capture_session.side_effect = NoCameraAvailable("Failed to open camera 0")
        app.dependency_overrides[get_service] = lambda: service
        try:
            response = TestClient(app).post("/sessions", json={"mode": "identification"})
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 503
        assert response.json()["error"] == "NoCameraAvailable"


# ============================================================
# Identification Endpoint
# ============================================================

class TestIdentifyEndpoint:
    """Tests for POST /identify."""

    def test_not_recognized(self, client):
        samples = capture(client, "identification")["samples"]
        response = client.post("/identify", json={"samples": samples})

        assert response.status_code == 200
        data = response.json()
        assert data["is_match"] is False
        assert data["method"] == "none"
        assert data["message"] == NOT_RECOGNIZED_MESSAGE

    def test_recognized_after_enrollment(self, client):
        enroll_samples = capture(client, "enrollment")["samples"]
        client.post(
            "/identities",
            json={"identity_id": "012345678901", "display_name": "Alice", "samples": enroll_samples},
        )

        samples = capture(client, "identification")["samples"]
        data = client.post("/identify", json={"samples": samples}).json()

        assert data["is_match"] is True
        assert data["matched_id"] == "012345678901"
        assert data["method"] == "geometric"
        assert data["message"] == "Welcome, Alice"
        assert data["ranked_candidates"][0]["identity_id"] == "012345678901"

    def test_hint(self, client):
        client.post(
            "/identities",
            json={"identity_id": "A", "samples": [{"angle": "front", "modality": "geometric", "value": SIGNATURE}]},
        )
        data = client.post("/identify", json={"samples": [], "hint_id": "A"}).json()
        assert data["method"] == "exact_hint"
        assert data["score"] == 1.0

    def test_malformed_sample(self, client):
        response = client.post(
            "/identify",
            json={"samples": [{"angle": "front", "modality": "geometric", "value": "face_1_2"}]},
        )
        assert response.status_code == 422

    def test_modality_mismatch(self, client):
        response = client.post(
            "/identify",
            json={"samples": [{"angle": "front", "modality": "embedding", "value": SIGNATURE}]},
        )
        assert response.status_code == 422


# ============================================================
# Identity Management Endpoints
# ============================================================

class TestIdentityEndpoints:
    """Tests for enrollment and identity management."""

    def enroll(self, client, identity_id="A", name=None):
        return client.post(
            "/identities",
            json={
                "identity_id": identity_id,
                "display_name": name,
                "samples": [{"angle": "front", "modality": "geometric", "value": SIGNATURE}],
            },
        )

    def test_enroll_from_samples(self, client):
        response = self.enroll(client, name="Alice")
        assert response.status_code == 201

        data = response.json()
        assert data["identity_id"] == "A"
        assert data["geometric_count"] == 1
        assert data["embedding_count"] == 0
        assert data["replaced"] is False

    def test_reenroll_replaces(self, client):
        self.enroll(client)
        data = self.enroll(client).json()
        assert data["replaced"] is True
        assert client.get("/identities").json()["total"] == 1

    def test_enroll_requires_source(self, client):
        response = client.post("/identities", json={"identity_id": "A"})
        assert response.status_code == 422

    def test_enroll_from_session(self, client):
        session_id = client.post("/sessions", json={"mode": "enrollment"}).json()["session_id"]
        for detection in POSES:
            push(client, session_id, detection, 3)

        response = client.post("/identities", json={"identity_id": "B", "session_id": session_id})
        assert response.status_code == 201
        assert response.json()["geometric_count"] == 5
        assert client.get(f"/sessions/{session_id}").status_code == 404

    def test_enroll_from_identification_session(self, client):
        session_id = client.post("/sessions", json={"mode": "identification"}).json()["session_id"]
        push(client, session_id, FRONT, 2)

        response = client.post("/identities", json={"identity_id": "B", "session_id": session_id})
        assert response.status_code == 409

    def test_enroll_from_unknown_session(self, client):
        response = client.post("/identities", json={"identity_id": "B", "session_id": "ses_missing"})
        assert response.status_code == 404

    def test_list_and_get(self, client):
        self.enroll(client, "A", "Alice")
        self.enroll(client, "B", "Bob")

        data = client.get("/identities").json()
        assert data["total"] == 2
        assert [i["identity_id"] for i in data["identities"]] == ["A", "B"]

        detail = client.get("/identities/B").json()
        assert detail["display_name"] == "Bob"
        assert detail["metadata"]["angles"] == ["front"]

    def test_get_missing(self, client):
        assert client.get("/identities/nobody").status_code == 404

    def test_delete(self, client):
        self.enroll(client)
        response = client.delete("/identities/A")
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert client.delete("/identities/A").status_code == 404

    def test_delete_all(self, client):
        self.enroll(client, "A")
        self.enroll(client, "B")

        response = client.delete("/identities")
        assert response.status_code == 200
        assert response.json()["deleted"] == 2
        assert client.get("/identities").json()["total"] == 0

        assert client.delete("/identities").json()["deleted"] == 0
