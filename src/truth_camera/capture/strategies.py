# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""
Capture tiers, ordered by fidelity.

Camera capability varies by platform, so each tier is an interchangeable
strategy. The engine tries them in order until one produces a valid frame:

    1. TakePhotoStrategy: native still API, finished image bytes
    2. GrabFrameStrategy: raw bitmap from the track, encoded with OpenCV
    3. PreviewStrategy: live-preview frame drawn on a Pillow surface

All methods here block and are run off the event loop by the engine.
"""

import io
import time
from abc import ABC, abstractmethod

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from ..errors import CaptureError, EncodeFailure, InvalidDimensions
from ..models import CapturedFrame
from .devices import MediaStream


def validate_bitmap(frame) -> tuple[int, int]:
    """
    Check a raw bitmap has usable dimensions.

    Returns:
        (width, height)

    Raises:
        InvalidDimensions: If frame is missing, empty or not 2D/3D
    """
    if frame is None or not isinstance(frame, np.ndarray):
        raise InvalidDimensions("No bitmap returned")
    if frame.ndim not in (2, 3) or frame.size == 0:
        raise InvalidDimensions(f"Unexpected bitmap shape {getattr(frame, 'shape', None)}")
    height, width = frame.shape[:2]
    if width <= 0 or height <= 0:
        raise InvalidDimensions(f"Invalid bitmap size {width}x{height}")
    return width, height


def validate_image_bytes(data: bytes) -> tuple[int, int, str]:
    """
    Check encoded image bytes are non-empty and decodable.

    Only the header is parsed; pixel data is not decoded.

    Returns:
        (width, height, mime)
    """
    if not data:
        raise EncodeFailure("Empty image data")
    try:
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
            mime = Image.MIME.get(image.format or "", "application/octet-stream")
    except (UnidentifiedImageError, OSError) as e:
        raise EncodeFailure(f"Not a readable image: {e}") from e
    if width <= 0 or height <= 0:
        raise InvalidDimensions(f"Invalid image size {width}x{height}")
    return width, height, mime


class CaptureStrategy(ABC):
    """One capture tier."""

    name = "strategy"

    @abstractmethod
    def supports(self, stream: MediaStream) -> bool:
        """Whether the stream exposes the API this tier needs."""

    @abstractmethod
    def capture(self, stream: MediaStream) -> CapturedFrame:
        """
        Produce one validated frame (blocking).

        Raises:
            CaptureError: If the result is empty or malformed
        """

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"


class TakePhotoStrategy(CaptureStrategy):
    """Tier 1: the device's own high-fidelity still capture."""

    name = "take_photo"

    def supports(self, stream: MediaStream) -> bool:
        return stream.video_track.supports_take_photo

    def capture(self, stream: MediaStream) -> CapturedFrame:
        data = stream.video_track.take_photo()
        width, height, mime = validate_image_bytes(data)
        return CapturedFrame(data=data, mime=mime, width=width, height=height, tier=self.name)


class GrabFrameStrategy(CaptureStrategy):
    """Tier 2: raw bitmap from the track, encoded offscreen."""

    name = "grab_frame"

    def __init__(self, jpeg_quality: int = 90):
        self.jpeg_quality = jpeg_quality

    def supports(self, stream: MediaStream) -> bool:
        return stream.video_track.supports_grab_frame

    def capture(self, stream: MediaStream) -> CapturedFrame:
        bitmap = stream.video_track.grab_frame()
        width, height = validate_bitmap(bitmap)

        ok, encoded = cv2.imencode(".jpg", bitmap, [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality])
        if not ok or encoded is None or encoded.size == 0:
            raise EncodeFailure("OpenCV could not encode bitmap")

        stream.preview.push(bitmap)
        return CapturedFrame(
            data=encoded.tobytes(),
            mime="image/jpeg",
            width=width,
            height=height,
            tier=self.name,
        )


class PreviewStrategy(CaptureStrategy):
    """Tier 3: draw the live preview onto a raster surface and encode it."""

    name = "preview"

    def __init__(self, jpeg_quality: int = 90, ready_wait: float = 0.2, poll_interval: float = 0.02):
        self.jpeg_quality = jpeg_quality
        self.ready_wait = ready_wait
        self.poll_interval = poll_interval

    def supports(self, stream: MediaStream) -> bool:
        return True

    def _wait_for_frame(self, stream: MediaStream) -> None:
        deadline = time.monotonic() + self.ready_wait
        while not stream.preview.has_frame:
            if stream.preview.refresh():
                return
            if time.monotonic() >= deadline:
                raise CaptureError("Preview has no decoded frame")
            time.sleep(self.poll_interval)

    def capture(self, stream: MediaStream) -> CapturedFrame:
        if not stream.preview.has_frame:
            self._wait_for_frame(stream)

        frame = stream.preview.latest()
        width, height = validate_bitmap(frame)

        if frame.ndim == 2:
            source = Image.fromarray(frame).convert("RGB")
        elif frame.shape[2] == 4:
            source = Image.fromarray(cv2.cvtColor(frame, cv2.COLOR_BGRA2RGB))
        else:
            source = Image.fromarray(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))

        surface = Image.new("RGB", (width, height))
        surface.paste(source, (0, 0))

        buffer = io.BytesIO()
        try:
            surface.save(buffer, format="JPEG", quality=self.jpeg_quality)
        except OSError as e:
            raise EncodeFailure(f"Pillow could not encode preview: {e}") from e

        data = buffer.getvalue()
        validate_image_bytes(data)
        return CapturedFrame(data=data, mime="image/jpeg", width=width, height=height, tier=self.name)


def default_strategies(jpeg_quality: int = 90, preview_ready_wait: float = 0.2) -> list[CaptureStrategy]:
    """Fidelity-ordered tiers."""
    return [
        TakePhotoStrategy(),
        GrabFrameStrategy(jpeg_quality),
        PreviewStrategy(jpeg_quality, ready_wait=preview_ready_wait),
    ]
