# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""Camera capture: device backends, capture tiers and the capture engine."""

from .devices import (
    CameraBackend,
    MediaStream,
    MockCameraBackend,
    OpenCVBackend,
    Picamera2Backend,
    create_camera_backend,
    map_device_error,
)
from .strategies import (
    CaptureStrategy,
    GrabFrameStrategy,
    PreviewStrategy,
    TakePhotoStrategy,
    default_strategies,
)
from .engine import CaptureEngine

__all__ = [
    'CameraBackend',
    'MediaStream',
    'MockCameraBackend',
    'OpenCVBackend',
    'Picamera2Backend',
    'create_camera_backend',
    'map_device_error',
    'CaptureStrategy',
    'GrabFrameStrategy',
    'PreviewStrategy',
    'TakePhotoStrategy',
    'default_strategies',
    'CaptureEngine',
]
