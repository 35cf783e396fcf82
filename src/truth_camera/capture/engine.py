# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""
Capture engine: acquire a camera stream and extract one frame from it.

The stream is an exclusive, scoped resource. Use ``session()`` (or pair
``acquire()`` with ``release()`` in a ``finally``) so every track is stopped
on success, cancel and teardown.

Device calls run in a worker thread, one at a time. A tier that misses its
deadline is abandoned but its thread keeps the device until it returns;
later tiers wait for it, and a release while it runs stops the stream once
it is done.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from ..errors import CaptureError, CaptureFailed, CaptureTimeout, DeviceBusy
from ..models import CapturedFrame
from .devices import CameraBackend, MediaStream, map_device_error
from .strategies import CaptureStrategy, default_strategies

logger = logging.getLogger(__name__)


class CaptureEngine:
    """
    Tiered still capture from a live camera stream.

    Args:
        backend: Camera backend used to open streams
        strategies: Ordered capture tiers (defaults to default_strategies())
        tier_timeout: Seconds each tier may take before it is abandoned
    """

    def __init__(
        self,
        backend: CameraBackend,
        strategies: Optional[list[CaptureStrategy]] = None,
        tier_timeout: float = 1.5,
    ):
        self.backend = backend
        self.strategies = strategies if strategies is not None else default_strategies()
        self.tier_timeout = tier_timeout
        self._stream: Optional[MediaStream] = None
        self._in_flight: Optional[asyncio.Future] = None

    @property
    def device_busy(self) -> bool:
        """True while an abandoned device call is still running."""
        return self._in_flight is not None and not self._in_flight.done()

    @property
    def active_stream(self) -> Optional[MediaStream]:
        if self._stream is not None and self._stream.active:
            return self._stream
        return None

    async def acquire(self) -> MediaStream:
        """
        Request a video-only media stream.

        Raises:
            PermissionDenied, DeviceNotFound, DeviceBusy, DeviceUnknown
        """
        if self.active_stream is not None:
            raise DeviceBusy("A camera stream is already active; release it first")
        if self.device_busy:
            raise DeviceBusy("A previous camera call has not returned yet")

        logger.info(f"Requesting camera stream ({self.backend.name})")
        try:
            stream = await asyncio.to_thread(self.backend.open)
        except Exception as e:
            error = map_device_error(e)
            logger.warning(f"Camera access failed: {error.reason}: {e}")
            raise error from e

        self._stream = stream
        return stream

    async def capture_frame(self, stream: MediaStream) -> CapturedFrame:
        """
        Extract one frame, trying each tier in order.

        Returns:
            A validated CapturedFrame (never empty)

        Raises:
            CaptureFailed: If every tier was unsupported or failed
        """
        tier_errors: dict[str, str] = {}

        for strategy in self.strategies:
            if not stream.active:
                tier_errors[strategy.name] = "stream stopped"
                break
            if not strategy.supports(stream):
                tier_errors[strategy.name] = "unsupported"
                continue
            if not await self._wait_idle():
                tier_errors[strategy.name] = "device busy"
                logger.warning(f"Capture tier {strategy.name} skipped: previous call still running")
                continue

            try:
                frame = await self._device_call(strategy.capture, stream)
            except asyncio.TimeoutError:
                error = CaptureTimeout(f"{strategy.name} exceeded {self.tier_timeout}s")
                tier_errors[strategy.name] = str(error)
                logger.warning(f"Capture tier {strategy.name} timed out")
                continue
            except CaptureError as e:
                tier_errors[strategy.name] = str(e)
                logger.warning(f"Capture tier {strategy.name} rejected: {e}")
                continue
            except Exception as e:
                tier_errors[strategy.name] = f"{type(e).__name__}: {e}"
                logger.warning(f"Capture tier {strategy.name} failed: {e}")
                continue

            if not frame.data:
                tier_errors[strategy.name] = "empty result"
                continue

            logger.info(
                f"✓ Captured {frame.width}x{frame.height} {frame.mime} "
                f"({len(frame.data)} bytes) via {strategy.name}"
            )
            return frame

        raise CaptureFailed(tier_errors)

    async def _device_call(self, func, *args):
        task = asyncio.ensure_future(asyncio.to_thread(func, *args))
        self._in_flight = task
        task.add_done_callback(self._call_finished)
        # A missed deadline abandons the wait, not the tracked call
        return await asyncio.wait_for(asyncio.shield(task), timeout=self.tier_timeout)

    def _call_finished(self, task: asyncio.Future) -> None:
        if self._in_flight is task:
            self._in_flight = None
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Camera call finished with error: {task.exception()}")

    async def _wait_idle(self) -> bool:
        pending = self._in_flight
        if pending is None or pending.done():
            return True
        await asyncio.wait({pending}, timeout=self.tier_timeout)
        return pending.done()

    def release(self, stream: Optional[MediaStream] = None) -> None:
        """Stop every track. Safe to call more than once."""
        stream = stream or self._stream
        if stream is None:
            return
        if stream.active:
            if self.device_busy:
                logger.warning("Camera call still running; stream stops when it returns")
                self._in_flight.add_done_callback(lambda _: self._stop(stream))
            else:
                self._stop(stream)
        if stream is self._stream:
            self._stream = None

    @staticmethod
    def _stop(stream: MediaStream) -> None:
        if stream.active:
            stream.stop()
            logger.info("✓ Camera released")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[MediaStream]:
        """Acquire a stream and always release it."""
        stream = await self.acquire()
        try:
            yield stream
        finally:
            self.release(stream)

    async def capture_once(self) -> CapturedFrame:
        """Acquire, capture one frame, release."""
        async with self.session() as stream:
            return await self.capture_frame(stream)
