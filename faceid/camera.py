"""
Camera Access

The camera is a single shared handle. One capture session owns it at a time
and is responsible for starting and stopping the stream.

Two distinct operations are offered:
    - start_stream(on_frame) / stop_stream(): continuous delivery of the
      freshest frame to a callback. Frames produced while the callback is
      still running are overwritten, never queued.
    - capture_single_frame(timeout): blocking, bounded grab of one still
      frame newer than the call. Raises FrameTimeout on expiry.

Usage:
    from faceid.camera import OpenCVCamera

    with OpenCVCamera(get_camera_config()) as camera:
        camera.start_stream(controller.on_frame)
        ...
"""

import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

import cv2
import numpy as np

from faceid.errors import (
    CameraInitFailure,
    FrameTimeout,
    NoCameraAvailable,
    PermissionDenied,
)

logger = logging.getLogger(__name__)

FrameCallback = Callable[[np.ndarray], Any]


class Camera(ABC):
    """Interface for the shared camera handle."""

    @abstractmethod
    def start_stream(self, on_frame: FrameCallback) -> None:
        """Start delivering frames to `on_frame`. Raises CameraError on failure."""

    @abstractmethod
    def stop_stream(self) -> None:
        """Stop delivering frames. Safe to call when not streaming."""

    @abstractmethod
    def capture_single_frame(self, timeout: float = 1.5) -> np.ndarray:
        """Return one fresh frame. Raises FrameTimeout if none arrives in time."""

    def close(self) -> None:
        self.stop_stream()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class OpenCVCamera(Camera):
    """
    Camera backed by cv2.VideoCapture.

    A reader thread keeps only the latest frame; a dispatcher thread hands
    that frame to the stream callback. capture_single_frame waits on the
    reader, so it may be called from inside the stream callback.

    Args:
        config: Dictionary (the `camera` config section) with keys:
            - device_id: Camera index (default 0)
            - width, height, fps: Requested capture format
            - open_timeout: Seconds to wait for the first frame (default 3.0)
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.device_id = config.get("device_id", 0)
        self.width = config.get("width", 640)
        self.height = config.get("height", 480)
        self.fps = config.get("fps", 30)
        self.open_timeout = config.get("open_timeout", 3.0)

        self._cap: Optional[cv2.VideoCapture] = None
        self._cond = threading.Condition()
        self._latest: Optional[np.ndarray] = None
        self._seq = 0
        self._delivered_seq = 0
        self._stop = threading.Event()
        self._reader: Optional[threading.Thread] = None
        self._dispatcher: Optional[threading.Thread] = None
        self._on_frame: Optional[FrameCallback] = None

    @property
    def is_open(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    @property
    def is_streaming(self) -> bool:
        return self._reader is not None and self._reader.is_alive()

    def open(self) -> None:
        """
        Open the camera device.

        Raises:
            PermissionDenied: The device node exists but is not readable.
            NoCameraAvailable: No device at the configured index.
        """
        if self.is_open:
            return

        device_node = f"/dev/video{self.device_id}"
        if os.path.exists(device_node) and not os.access(device_node, os.R_OK):
            raise PermissionDenied(f"No permission to read {device_node}")

        cap = cv2.VideoCapture(self.device_id)
        if not cap.isOpened():
            cap.release()
            raise NoCameraAvailable(f"Failed to open camera {self.device_id}")

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        cap.set(cv2.CAP_PROP_FPS, self.fps)

        self._cap = cap
        logger.info(f"Opened camera {self.device_id} at {self.width}x{self.height}")

    def start_stream(self, on_frame: FrameCallback) -> None:
        if self.is_streaming:
            raise CameraInitFailure("Camera is already streaming")

        self.open()
        self._on_frame = on_frame
        self._stop.clear()

        with self._cond:
            self._delivered_seq = self._seq
            first_seq = self._seq

        self._reader = threading.Thread(target=self._read_loop, name="camera-reader", daemon=True)
        self._reader.start()

        # Fail fast if the device opens but never produces frames
        try:
            self._wait_for_frame(after_seq=first_seq, timeout=self.open_timeout)
        except FrameTimeout:
            self.stop_stream()
            raise CameraInitFailure(
                f"Camera {self.device_id} produced no frames within {self.open_timeout}s"
            )

        self._dispatcher = threading.Thread(
            target=self._dispatch_loop, name="camera-dispatch", daemon=True
        )
        self._dispatcher.start()

    def stop_stream(self) -> None:
        self._stop.set()
        with self._cond:
            self._cond.notify_all()

        current = threading.current_thread()
        for thread in (self._dispatcher, self._reader):
            if thread is not None and thread is not current:
                thread.join(timeout=2.0)

        self._reader = None
        self._dispatcher = None
        self._on_frame = None

    def capture_single_frame(self, timeout: float = 1.5) -> np.ndarray:
        if self.is_streaming:
            with self._cond:
                after = self._seq
            return self._wait_for_frame(after_seq=after, timeout=timeout)

        self.open()
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            ret, frame = self._cap.read()
            if ret and frame is not None:
                return frame
        raise FrameTimeout(f"No frame from camera {self.device_id} within {timeout}s")

    def close(self) -> None:
        """Stop streaming and release the device."""
        self.stop_stream()
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.info("Camera closed")

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    def _read_loop(self) -> None:
        while not self._stop.is_set():
            ret, frame = self._cap.read()
            if not ret or frame is None:
                time.sleep(0.01)
                continue
            with self._cond:
                self._latest = frame
                self._seq += 1
                self._cond.notify_all()

    def _dispatch_loop(self) -> None:
        while not self._stop.is_set():
            with self._cond:
                while self._seq == self._delivered_seq and not self._stop.is_set():
                    self._cond.wait(timeout=0.5)
                if self._stop.is_set():
                    return
                frame = self._latest
                self._delivered_seq = self._seq

            callback = self._on_frame
            if callback is None:
                return
            try:
                callback(frame)
            except Exception:
                logger.exception("Frame callback failed")

    def _wait_for_frame(self, after_seq: int, timeout: float) -> np.ndarray:
        deadline = time.monotonic() + timeout
        with self._cond:
            while self._seq <= after_seq:
                remaining = deadline - time.monotonic()
                if remaining <= 0 or self._stop.is_set():
                    raise FrameTimeout(f"No frame within {timeout}s")
                self._cond.wait(timeout=remaining)
            return self._latest
