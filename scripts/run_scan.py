"""
Webcam Scan - Enrollment or Check-in from the Command Line

Runs one capture session against the local webcam, prompting for each head
pose in the console, then either enrolls the captured samples or identifies
the person.

Usage:
    # Check-in (identification)
    python scripts/run_scan.py checkin

    # Check-in with a manually entered ID card number as hint
    python scripts/run_scan.py checkin --hint 012345678901

    # Enrollment
    python scripts/run_scan.py enroll --id 012345678901 --name "Nguyen Van A"

    # Without the embedding model (geometric signatures only)
    python scripts/run_scan.py checkin --no-embeddings

Press Ctrl+C to cancel the scan.
"""

import argparse
import logging
import sys
import time
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from faceid.camera import OpenCVCamera
from faceid.capture import CaptureMode, SessionState
from faceid.config import get_camera_config, get_face_detection_config
from faceid.errors import CameraError
from faceid.service import FaceIdService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def wait_for_completion(service: FaceIdService, handle: str, timeout: float) -> bool:
    """Poll the session, printing each new instruction. Returns True on completion."""
    deadline = time.monotonic() + timeout
    last_angle = None

    while time.monotonic() < deadline:
        snapshot = service.get_session_state(handle)
        if snapshot.state == SessionState.ALL_CAPTURED:
            return True
        if snapshot.state == SessionState.CANCELLED:
            return False

        if snapshot.requested_angle != last_angle and snapshot.instruction:
            captured = ", ".join(a.value for a in snapshot.captured_angles) or "none"
            print(f">>> {snapshot.instruction}   (captured: {captured})")
            last_angle = snapshot.requested_angle

        time.sleep(0.05)

    return False


def main():
    parser = argparse.ArgumentParser(
        description="Face ID webcam scan",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument(
        "mode", choices=["enroll", "checkin"],
        help="enroll a new identity or check in an enrolled one"
    )
    parser.add_argument(
        "--id", dest="identity_id", type=str, default=None,
        help="Identity id to enroll (required for enroll)"
    )
    parser.add_argument(
        "--name", type=str, default=None,
        help="Display name for enrollment"
    )
    parser.add_argument(
        "--hint", type=str, default=None,
        help="Identity id entered manually, tried before biometrics (checkin)"
    )
    parser.add_argument(
        "--timeout", type=float, default=60.0,
        help="Seconds before the scan is abandoned (default: 60)"
    )
    parser.add_argument(
        "--no-embeddings", action="store_true",
        help="Skip the embedding model and use geometric signatures only"
    )
    args = parser.parse_args()

    if args.mode == "enroll" and not args.identity_id:
        parser.error("--id is required for enroll")

    # Imported here so --help works without mediapipe installed
    from faceid.mediapipe_detector import MediaPipeFaceDetector

    print("=" * 60)
    print(f"Face ID - {'Enrollment' if args.mode == 'enroll' else 'Check-in'}")
    print("=" * 60)

    detector = MediaPipeFaceDetector(get_face_detection_config())
    camera = OpenCVCamera(get_camera_config())
    mode = CaptureMode.ENROLLMENT if args.mode == "enroll" else CaptureMode.IDENTIFICATION

    with FaceIdService(detector=detector, use_embeddings=not args.no_embeddings) as service:
        try:
            handle = service.start_capture_session(mode, camera=camera)
            try:
                completed = wait_for_completion(service, handle, args.timeout)
            except KeyboardInterrupt:
                completed = False

            if not completed:
                service.cancel_session(handle, discard=True)
                print("Scan cancelled.")
                return 1

            samples = service.finalize_session(handle)
        except CameraError as e:
            print(f"Camera error: {e}")
            return 2
        finally:
            camera.close()
            detector.close()

        modalities = ", ".join(sorted({s.modality.value for s in samples}))
        print(f"Captured {len(samples)} sample(s) ({modalities})")

        if args.mode == "enroll":
            identity = service.enroll(args.identity_id, samples, display_name=args.name)
            print(f"Enrolled {identity.identity_id} ({identity.display_name or 'no name'})")
            return 0

        result = service.identify(samples, hint_id=args.hint)

    print()
    if result.is_match:
        print(f"Recognized: {result.matched_id}")
        print(f"  Method: {result.method.value}")
        print(f"  Score:  {result.score:.3f}")
    else:
        print("Face not recognized, please enroll.")
        for identity_id, score in result.ranked_candidates:
            print(f"  candidate {identity_id}: {score:.3f}")

    return 0 if result.is_match else 1


if __name__ == "__main__":
    sys.exit(main())
