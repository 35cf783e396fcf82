# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""
Orchestration controller.

Sequences the two user-facing flows and owns their state machines:

    Capture: IDLE -> REQUESTING -> STREAMING -> CAPTURED -> HASHING
             -> SUBMITTING -> CONFIRMED | FAILED
    Verify:  IDLE -> FILE_SELECTED -> HASHING -> QUERYING
             -> FOUND | NOT_FOUND | FAILED

Only one step of a flow runs at a time; a second call while a step is in
flight raises FlowBusy. A captured frame is never discarded by a failed
write. It is kept until the submission confirms, or the user retakes.
"""

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union

from . import hashing
from .capture.devices import MediaStream
from .capture.engine import CaptureEngine
from .errors import (
    CaptureError,
    ConfigurationError,
    ConfirmationTimeout,
    DeviceError,
    FlowBusy,
    NetworkMismatch,
    NotConnected,
    TruthCameraError,
    UnknownContractError,
)
from .models import CapturedFrame, ProofRecord, VerificationResult, WalletSessionState
from .registry.base import ProofRegistry
from .store import ProofStore

logger = logging.getLogger(__name__)


class CaptureState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    CAPTURED = "captured"
    HASHING = "hashing"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class VerifyState(str, Enum):
    IDLE = "idle"
    FILE_SELECTED = "file_selected"
    HASHING = "hashing"
    QUERYING = "querying"
    FOUND = "found"
    NOT_FOUND = "not_found"
    FAILED = "failed"


# listener(flow, state, error)
StateListener = Callable[[str, Enum, Optional[TruthCameraError]], None]


class OrchestrationController:
    """
    Drives capture -> hash -> submit and select -> hash -> verify.

    Args:
        engine: Capture engine owning the camera
        registry: On-chain or in-process registry client
        wallet: Wallet session (defaults to the registry client's)
        store: Optional local proof history
    """

    def __init__(
        self,
        engine: CaptureEngine,
        registry: ProofRegistry,
        wallet=None,
        store: Optional[ProofStore] = None,
    ):
        self.engine = engine
        self.registry = registry
        self.wallet = wallet if wallet is not None else registry.wallet
        self.store = store

        self.capture_state = CaptureState.IDLE
        self.verify_state = VerifyState.IDLE
        self.frame: Optional[CapturedFrame] = None
        self.digest: Optional[str] = None
        self.tx_ref: Optional[str] = None
        self.record: Optional[ProofRecord] = None
        self.last_error: Optional[TruthCameraError] = None

        self.verify_digest_value: Optional[str] = None
        self.verification: Optional[VerificationResult] = None
        self.verify_error: Optional[TruthCameraError] = None

        self._capture_lock = asyncio.Lock()
        self._verify_lock = asyncio.Lock()
        self._stream: Optional[MediaStream] = None
        self._submit_task: Optional[asyncio.Task] = None
        self._abort_error: Optional[TruthCameraError] = None
        self._last_wallet_chain: Optional[int] = None
        self._submitter: Optional[str] = None
        self._listeners: list[StateListener] = []

        if self.wallet is not None:
            self.wallet.add_listener(self._on_wallet_state)

    # --- state --------------------------------------------------------------

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _notify(self, flow: str, state: Enum, error: Optional[TruthCameraError]) -> None:
        for listener in list(self._listeners):
            try:
                listener(flow, state, error)
            except Exception:
                logger.exception("Controller state listener failed")

    def _set_capture(self, state: CaptureState, error: Optional[TruthCameraError] = None) -> None:
        self.capture_state = state
        if error is not None:
            self.last_error = error
        logger.debug(f"Capture flow -> {state.value}")
        self._notify("capture", state, error)

    def _set_verify(self, state: VerifyState, error: Optional[TruthCameraError] = None) -> None:
        self.verify_state = state
        if error is not None:
            self.verify_error = error
        logger.debug(f"Verify flow -> {state.value}")
        self._notify("verify", state, error)

    @property
    def busy(self) -> bool:
        return self._capture_lock.locked()

    @property
    def can_capture(self) -> bool:
        return not self.busy and self.capture_state == CaptureState.STREAMING

    @property
    def can_submit(self) -> bool:
        return (
            not self.busy
            and self.frame is not None
            and self.capture_state in (CaptureState.CAPTURED, CaptureState.FAILED)
        )

    def _guard(self, lock: asyncio.Lock) -> None:
        if lock.locked():
            raise FlowBusy()

    # --- capture flow -------------------------------------------------------

    def _release_stream(self) -> None:
        if self._stream is not None:
            self.engine.release(self._stream)
            self._stream = None

    async def start_camera(self) -> MediaStream:
        """
        IDLE -> REQUESTING -> STREAMING.

        Raises:
            FlowBusy: If a step is in flight or a session is already open
            DeviceError: On permission/device failures (flow ends in FAILED)
        """
        self._guard(self._capture_lock)
        async with self._capture_lock:
            if self.capture_state != CaptureState.IDLE:
                raise FlowBusy(f"Capture flow is {self.capture_state.value}; retake or reset first")

            self.last_error = None
            self._set_capture(CaptureState.REQUESTING)
            try:
                self._stream = await self.engine.acquire()
            except DeviceError as e:
                self._release_stream()
                self._set_capture(CaptureState.FAILED, e)
                raise

            self._set_capture(CaptureState.STREAMING)
            return self._stream

    async def capture(self) -> CapturedFrame:
        """
        STREAMING -> CAPTURED. The stream is released once a frame is taken.

        Raises:
            CaptureError: If every tier failed (flow ends in FAILED)
        """
        self._guard(self._capture_lock)
        async with self._capture_lock:
            if self.capture_state != CaptureState.STREAMING or self._stream is None:
                raise FlowBusy("No live camera stream; start the camera first")

            try:
                frame = await self.engine.capture_frame(self._stream)
            except CaptureError as e:
                self._release_stream()
                self._set_capture(CaptureState.FAILED, e)
                raise

            self._release_stream()
            self.frame = frame
            self.digest = None
            self.tx_ref = None
            self.record = None
            self._set_capture(CaptureState.CAPTURED)
            return frame

    async def take_photo(self) -> CapturedFrame:
        """Start the camera and capture one frame."""
        await self.start_camera()
        return await self.capture()

    def _on_wallet_state(self, state: WalletSessionState) -> None:
        task = self._submit_task
        if task is None or task.done() or self.capture_state != CaptureState.SUBMITTING:
            return

        submission = self.registry.last_submission
        if submission is not None and submission.tx_ref is not None:
            # Already broadcast: the receipt wait needs no wallet
            if not state.is_connected or state.chain_id != self.registry.chain.chain_id:
                logger.warning(f"Wallet changed after broadcast of {submission.tx_ref}; waiting for receipt")
            self._last_wallet_chain = state.chain_id
            return

        target = self.registry.chain.chain_id
        if not state.is_connected:
            self._abort_error = NotConnected("Wallet disconnected during submission")
        elif self._last_wallet_chain == target and state.chain_id != target:
            self._abort_error = NetworkMismatch(
                f"Wallet switched to chain {state.chain_id} during submission"
            )
        self._last_wallet_chain = state.chain_id

        if self._abort_error is not None:
            logger.warning(f"Aborting submission: {self._abort_error.reason}")
            task.cancel()

    async def submit(self) -> str:
        """
        CAPTURED -> HASHING -> SUBMITTING -> CONFIRMED.

        Returns:
            Transaction reference of the confirmed submission

        Raises:
            NotConnected: Wallet not connected (flow stays CAPTURED)
            WalletError, NetworkError, ContractError: Flow ends in FAILED
                with the frame retained
        """
        self._guard(self._capture_lock)
        async with self._capture_lock:
            if self.frame is None or self.capture_state not in (CaptureState.CAPTURED, CaptureState.FAILED):
                raise FlowBusy("Nothing captured to submit")

            # Blocked before anything is hashed, prompted or sent
            if self.wallet is None or not self.wallet.state.is_connected:
                error = NotConnected()
                self._set_capture(CaptureState.CAPTURED, error)
                raise error

            self._set_capture(CaptureState.HASHING)
            self.digest = hashing.digest(self.frame.data)
            logger.info(f"Frame digest: {self.digest}")

            self._abort_error = None
            self._submitter = self.wallet.state.address
            self._last_wallet_chain = self.wallet.state.chain_id
            self._set_capture(CaptureState.SUBMITTING)
            self._submit_task = asyncio.ensure_future(self.registry.submit(self.digest))

            try:
                tx_ref = await self._submit_task
            except asyncio.CancelledError:
                error = self._abort_error
                if error is None:
                    self._set_capture(CaptureState.CAPTURED)
                    raise
                self._set_capture(CaptureState.CAPTURED, error)
                raise error from None
            except ConfirmationTimeout as e:
                tx_ref = await self._reconcile(e)
            except ConfigurationError as e:
                self._set_capture(CaptureState.CAPTURED, e)
                raise
            except TruthCameraError as e:
                logger.warning(f"Submission failed: {e.reason}: {e.detail}")
                self._set_capture(CaptureState.FAILED, e)
                raise
            except Exception as e:
                logger.error(f"Submission failed unexpectedly: {e}")
                error = UnknownContractError(str(e) or type(e).__name__)
                self._set_capture(CaptureState.FAILED, error)
                raise error from e
            finally:
                self._submit_task = None

            await self._confirm(tx_ref)
            return tx_ref

    async def _reconcile(self, timeout: ConfirmationTimeout) -> str:
        """Decide a timed-out submission by reading the registry."""
        logger.warning(f"Confirmation timed out for {timeout.tx_ref}; checking registry")
        try:
            result = await self.registry.verify(self.digest)
        except TruthCameraError as e:
            logger.warning(f"Reconciliation read failed: {e}")
            result = None

        if result is not None and result.exists and result.submitter == self._submitter:
            logger.info("✓ Submission found on-chain after timeout")
            return timeout.tx_ref

        self._set_capture(CaptureState.FAILED, timeout)
        raise timeout

    async def _confirm(self, tx_ref: str) -> None:
        self.tx_ref = tx_ref
        self.last_error = None
        submission = self.registry.last_submission
        block_number = submission.block_number if submission is not None else None

        try:
            result = await self.registry.verify(self.digest)
        except TruthCameraError as e:
            logger.warning(f"Confirmed {tx_ref} but could not read the record back: {e}")
            result = None

        if result is not None and result.exists:
            self.record = ProofRecord(
                digest=result.digest,
                submitter=result.submitter,
                timestamp=result.timestamp,
                tx_ref=tx_ref,
                block_number=block_number,
            )
            if self.store is not None:
                try:
                    await asyncio.to_thread(self.store.save, self.record)
                except Exception as e:
                    # The proof is on-chain; local history is best effort
                    logger.error(f"Could not save proof {tx_ref} to local history: {e}")

        self.frame = None
        self._set_capture(CaptureState.CONFIRMED)
        logger.info(f"✓ Proof anchored: {self.digest} ({tx_ref})")

    def retake(self) -> None:
        """Discard the frame and return to IDLE from CAPTURED, FAILED or CONFIRMED."""
        if self.busy:
            raise FlowBusy()
        if self.capture_state not in (
            CaptureState.CAPTURED,
            CaptureState.FAILED,
            CaptureState.CONFIRMED,
            CaptureState.STREAMING,
        ):
            raise FlowBusy(f"Cannot retake while {self.capture_state.value}")
        self._reset_capture()

    def _reset_capture(self) -> None:
        self._release_stream()
        self.frame = None
        self.digest = None
        self.tx_ref = None
        self.record = None
        self.last_error = None
        self._set_capture(CaptureState.IDLE)

    def reset(self) -> None:
        """Return both flows to IDLE, releasing the camera."""
        if self.busy or self._verify_lock.locked():
            raise FlowBusy()
        self._reset_capture()
        self.verify_digest_value = None
        self.verification = None
        self.verify_error = None
        self._set_verify(VerifyState.IDLE)

    def close(self) -> None:
        """Release the camera and stop listening to the wallet."""
        if self._submit_task is not None and not self._submit_task.done():
            self._submit_task.cancel()
        self._release_stream()
        if self.wallet is not None:
            self.wallet.remove_listener(self._on_wallet_state)

    # --- verify flow --------------------------------------------------------

    async def verify_file(self, path: Union[str, Path]) -> VerificationResult:
        """
        FILE_SELECTED -> HASHING -> QUERYING -> FOUND | NOT_FOUND.

        Raises:
            FileNotFoundError: If the path does not exist (flow unchanged)
            TruthCameraError: Registry or configuration failures (flow FAILED)
        """
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {path}")

        self._guard(self._verify_lock)
        async with self._verify_lock:
            self._start_verify()
            self._set_verify(VerifyState.HASHING)
            value = await asyncio.to_thread(hashing.digest_file, path)
            return await self._query(value)

    async def verify_bytes(self, data: bytes) -> VerificationResult:
        self._guard(self._verify_lock)
        async with self._verify_lock:
            self._start_verify()
            self._set_verify(VerifyState.HASHING)
            return await self._query(hashing.digest(data))

    async def verify_digest(self, value: str) -> VerificationResult:
        """
        Look up a digest entered directly.

        Raises:
            ValueError: If the value is not 64 hex characters
        """
        if not hashing.verify_hash_format(hashing.normalize_digest(value)):
            raise ValueError(f"Not a SHA-256 digest: {value!r}")

        self._guard(self._verify_lock)
        async with self._verify_lock:
            self._start_verify()
            return await self._query(hashing.normalize_digest(value))

    def _start_verify(self) -> None:
        self.verification = None
        self.verify_error = None
        self._set_verify(VerifyState.FILE_SELECTED)

    async def _query(self, value: str) -> VerificationResult:
        self.verify_digest_value = value
        self._set_verify(VerifyState.QUERYING)
        try:
            result = await self.registry.verify(value)
        except TruthCameraError as e:
            self._set_verify(VerifyState.FAILED, e)
            raise
        except ValueError:
            self._set_verify(VerifyState.FAILED)
            raise

        self.verification = result
        self._set_verify(VerifyState.FOUND if result.exists else VerifyState.NOT_FOUND)
        return result
