# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""
Camera device backends.

Each backend opens a video-only ``MediaStream`` made of one ``VideoTrack``
plus a ``PreviewSurface`` holding the most recently decoded frame. Tracks
advertise which still-capture APIs they support; the capture strategies
pick whichever is available.

Backends:
    OpenCVBackend: any V4L2/AVFoundation/DirectShow camera via cv2.VideoCapture
    Picamera2Backend: Raspberry Pi camera (libcamera), has a still-photo API
    MockCameraBackend: synthetic frames for development without hardware
"""

import errno
import io
import logging
import os
import sys
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from ..errors import (
    DeviceBusy,
    DeviceError,
    DeviceNotFound,
    DeviceUnknown,
    PermissionDenied,
    UnsupportedCapture,
)

# Import picamera2 if available (only on Raspberry Pi)
try:
    from picamera2 import Picamera2
    PICAMERA_AVAILABLE = True
except ImportError:
    PICAMERA_AVAILABLE = False
    Picamera2 = None

logger = logging.getLogger(__name__)


def map_device_error(exc: BaseException) -> DeviceError:
    """
    Classify a platform device-access error.

    Args:
        exc: Exception raised while opening the camera

    Returns:
        PermissionDenied, DeviceNotFound, DeviceBusy or DeviceUnknown
    """
    if isinstance(exc, DeviceError):
        return exc
    if isinstance(exc, PermissionError):
        return PermissionDenied(str(exc) or None)
    if isinstance(exc, (FileNotFoundError, IndexError)):
        # picamera2 raises IndexError when no camera is attached
        return DeviceNotFound(str(exc) or None)
    if isinstance(exc, OSError) and exc.errno == errno.EBUSY:
        return DeviceBusy(str(exc) or None)
    if "busy" in str(exc).lower():
        return DeviceBusy(str(exc))
    return DeviceUnknown(str(exc) or None)


class PreviewSurface:
    """
    Live-preview buffer: the most recently decoded frame of a track.

    Mirrors a preview widget; it only has something to draw once at least
    one frame has been decoded.
    """

    def __init__(self, track: 'VideoTrack'):
        self._track = track
        self._frame: Optional[np.ndarray] = None
        self.frames_decoded = 0

    @property
    def has_frame(self) -> bool:
        return self._frame is not None

    def push(self, frame: np.ndarray) -> None:
        self._frame = frame
        self.frames_decoded += 1

    def refresh(self) -> bool:
        """Pull one frame from the track into the preview. Returns success."""
        if self._track.ended:
            return False
        try:
            frame = self._track.read_preview()
        except Exception as e:
            logger.debug(f"Preview refresh failed: {e}")
            return False
        if frame is None:
            return False
        self.push(frame)
        return True

    def latest(self) -> Optional[np.ndarray]:
        return self._frame

    @property
    def size(self) -> tuple[int, int]:
        if self._frame is None:
            return (0, 0)
        height, width = self._frame.shape[:2]
        return (width, height)


class VideoTrack(ABC):
    """One video track of a media stream."""

    kind = "video"
    supports_take_photo = False
    supports_grab_frame = True

    def __init__(self, label: str):
        self.label = label
        self.ended = False

    def take_photo(self) -> bytes:
        """High-fidelity still capture returning finished image bytes."""
        raise UnsupportedCapture(f"{self.label} has no still-photo API")

    @abstractmethod
    def grab_frame(self) -> np.ndarray:
        """Grab one raw BGR bitmap from the track."""

    def read_preview(self) -> Optional[np.ndarray]:
        """Decode one frame for the live preview."""
        return self.grab_frame()

    def _check_live(self) -> None:
        if self.ended:
            raise RuntimeError(f"Track {self.label} has been stopped")

    def stop(self) -> None:
        if not self.ended:
            self._stop()
            self.ended = True
            logger.debug(f"Track stopped: {self.label}")

    def _stop(self) -> None:
        pass


class MediaStream:
    """A video-only stream handle owned by the capture engine."""

    def __init__(self, tracks: list[VideoTrack], backend_name: str):
        if not tracks:
            raise DeviceNotFound("Stream has no video tracks")
        self.tracks = tracks
        self.backend_name = backend_name
        self.preview = PreviewSurface(tracks[0])

    @property
    def video_track(self) -> VideoTrack:
        return self.tracks[0]

    @property
    def active(self) -> bool:
        return any(not track.ended for track in self.tracks)

    def stop(self) -> None:
        for track in self.tracks:
            track.stop()


class CameraBackend(ABC):
    """Opens camera devices as media streams."""

    name = "camera"

    @abstractmethod
    def open(self) -> MediaStream:
        """
        Open the camera (blocking).

        Raises:
            OSError / RuntimeError: platform errors, classified by map_device_error
        """


# --- OpenCV -----------------------------------------------------------------

class OpenCVTrack(VideoTrack):
    """cv2.VideoCapture wrapper; raw frames only, no still API."""

    def __init__(self, capture: 'cv2.VideoCapture', label: str):
        super().__init__(label)
        self._capture = capture

    def grab_frame(self) -> np.ndarray:
        self._check_live()
        ok, frame = self._capture.read()
        if not ok or frame is None:
            raise RuntimeError(f"{self.label}: no frame available")
        return frame

    def _stop(self) -> None:
        self._capture.release()


class OpenCVBackend(CameraBackend):
    """Generic webcam backend using OpenCV."""

    name = "opencv"

    def __init__(self, device_index: int = 0, size: Optional[tuple[int, int]] = None):
        self.device_index = device_index
        self.size = size

    def open(self) -> MediaStream:
        capture = cv2.VideoCapture(self.device_index)
        if not capture.isOpened():
            capture.release()
            self._raise_open_failure()

        if self.size:
            width, height = self.size
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        logger.info(f"Opened camera {self.device_index} via OpenCV")
        track = OpenCVTrack(capture, label=f"opencv:{self.device_index}")
        return MediaStream([track], backend_name=self.name)

    def _raise_open_failure(self) -> None:
        # OpenCV only reports "not opened"; recover the reason from the device node
        if sys.platform.startswith("linux"):
            node = Path(f"/dev/video{self.device_index}")
            if not node.exists():
                raise FileNotFoundError(f"{node} does not exist")
            if not os.access(node, os.R_OK | os.W_OK):
                raise PermissionError(f"No read/write access to {node}")
            raise OSError(errno.EBUSY, f"{node} could not be opened (device busy)")
        raise OSError(f"Camera {self.device_index} could not be opened")


# --- Raspberry Pi -----------------------------------------------------------

class Picamera2Track(VideoTrack):
    """Raspberry Pi camera track with a native JPEG still API."""

    supports_take_photo = True

    def __init__(self, camera, label: str):
        super().__init__(label)
        self._camera = camera

    def take_photo(self) -> bytes:
        self._check_live()
        buffer = io.BytesIO()
        self._camera.capture_file(buffer, format="jpeg")
        return buffer.getvalue()

    def grab_frame(self) -> np.ndarray:
        self._check_live()
        # "RGB888" arrays are laid out B, G, R in memory, which is what OpenCV expects
        return self._camera.capture_array("main")

    def _stop(self) -> None:
        if self._camera.started:
            self._camera.stop()
        self._camera.close()


class Picamera2Backend(CameraBackend):
    """Raspberry Pi HQ Camera via picamera2 (libcamera backend)."""

    name = "picamera2"

    def __init__(self, size: tuple[int, int] = (2028, 1520)):
        self.size = size

    def open(self) -> MediaStream:
        if not PICAMERA_AVAILABLE:
            raise FileNotFoundError(
                "picamera2 not available. "
                "This backend requires Raspberry Pi with picamera2 installed."
            )

        camera = Picamera2()
        config = camera.create_still_configuration(
            main={"format": "RGB888", "size": self.size}
        )
        camera.configure(config)
        camera.start()
        time.sleep(0.1)  # Brief warm-up
        logger.info(f"Opened Raspberry Pi camera at {self.size}")
        return MediaStream([Picamera2Track(camera, label="picamera2:0")], backend_name=self.name)


# --- Mock -------------------------------------------------------------------

class MockTrack(VideoTrack):
    """
    Synthetic frames; individual APIs can be disabled or made to fail.

    Counts calls running at once so tests can check that the engine never
    overlaps device access.
    """

    def __init__(
        self,
        size: tuple[int, int],
        take_photo: bool = False,
        fail: Optional[dict] = None,
        stall: Optional[dict] = None,
    ):
        super().__init__(label="mock:0")
        self.size = size
        self.supports_take_photo = take_photo
        self._fail = fail or {}
        self._stall = stall or {}
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.in_flight_at_stop: Optional[int] = None
        self._lock = threading.Lock()

    def _call(self, api: str, produce):
        self._check_live()
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.calls.append(api)
            if api in self._stall:
                time.sleep(self._stall[api])
            if api in self._fail:
                raise self._fail[api]
            return produce()
        finally:
            with self._lock:
                self.in_flight -= 1

    def _stop(self) -> None:
        with self._lock:
            self.in_flight_at_stop = self.in_flight

    def _synthetic_frame(self) -> np.ndarray:
        width, height = self.size
        frame = np.random.randint(0, 256, (height, width, 3), dtype=np.uint8)
        # Add some structure (gradient) to make it look less random
        gradient = np.linspace(0, 64, width, dtype=np.uint8)
        return np.clip(frame.astype(np.uint16) + gradient[None, :, None], 0, 255).astype(np.uint8)

    def _encode(self) -> bytes:
        ok, encoded = cv2.imencode(".jpg", self._synthetic_frame())
        if not ok:
            raise RuntimeError("mock encode failed")
        return encoded.tobytes()

    def take_photo(self) -> bytes:
        return self._call("take_photo", self._encode)

    def grab_frame(self) -> np.ndarray:
        return self._call("grab_frame", self._synthetic_frame)

    def read_preview(self) -> Optional[np.ndarray]:
        return self._call("read_preview", self._synthetic_frame)


class MockCameraBackend(CameraBackend):
    """
    Mock camera for testing without hardware.

    Args:
        size: Frame size (width, height)
        take_photo: Whether the track exposes a still-photo API
        open_error: Exception raised by open() (simulates denied/missing/busy)
        fail: Map of track API name -> exception to raise
        stall: Map of track API name -> seconds to block
    """

    name = "mock"

    def __init__(
        self,
        size: tuple[int, int] = (640, 480),
        take_photo: bool = True,
        open_error: Optional[BaseException] = None,
        fail: Optional[dict] = None,
        stall: Optional[dict] = None,
    ):
        self.size = size
        self.take_photo = take_photo
        self.open_error = open_error
        self.fail = fail
        self.stall = stall
        self.opened: list[MediaStream] = []

    def open(self) -> MediaStream:
        if self.open_error is not None:
            raise self.open_error
        track = MockTrack(self.size, take_photo=self.take_photo, fail=self.fail, stall=self.stall)
        stream = MediaStream([track], backend_name=self.name)
        self.opened.append(stream)
        logger.info(f"Opened mock camera {self.size}")
        return stream


def create_camera_backend(kind: str = "auto", device_index: int = 0) -> CameraBackend:
    """
    Create appropriate camera backend.

    Args:
        kind: "opencv", "picamera2", "mock" or "auto" (picamera2 when available)
        device_index: OpenCV device index

    Returns:
        CameraBackend instance
    """
    if kind == "mock":
        return MockCameraBackend()
    if kind == "picamera2" or (kind == "auto" and PICAMERA_AVAILABLE):
        return Picamera2Backend()
    if kind in ("opencv", "auto"):
        return OpenCVBackend(device_index)
    raise ValueError(f"Unknown camera backend: {kind}")
