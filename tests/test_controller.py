"""Tests for the capture and verify flow state machines."""

import asyncio

import pytest

from truth_camera.capture import CaptureEngine, MockCameraBackend
from truth_camera.controller import CaptureState, OrchestrationController, VerifyState
from truth_camera.errors import (
    AlreadySubmitted,
    CaptureFailed,
    ConfirmationTimeout,
    FlowBusy,
    NetworkMismatch,
    NotConnected,
    PermissionDenied,
    TransientError,
    UnknownContractError,
    UserRejected,
)
from truth_camera.hashing import digest
from truth_camera.models import SubmissionStatus
from truth_camera.registry import MockRegistryClient, ProofRegistry
from truth_camera.store import MemoryProofStore
from truth_camera.wallet import BASE, InjectedBackend, WalletSession

from conftest import DEV_ADDRESS, FIXED_TIME, FakeInjectedProvider


class StuckRegistry(MockRegistryClient):
    """Broadcasts but never sees a receipt, and never writes the record."""

    async def submit(self, digest):
        if not self.wallet.state.is_connected:
            raise NotConnected()
        raise ConfirmationTimeout("0x" + "ab" * 32)


class UnreachableRegistry(MockRegistryClient):
    async def verify(self, digest):
        raise TransientError("RPC endpoint unreachable")


class MalformedRegistry(MockRegistryClient):
    async def verify(self, digest):
        raise ValueError(f"Cannot encode {digest!r} as bytes32")


class FullDiskStore(MemoryProofStore):
    def save(self, record):
        raise OSError("No space left on device")


class BrokenRegistry(MockRegistryClient):
    async def submit(self, digest):
        raise RuntimeError("node returned malformed receipt")


@pytest.fixture
def controller(engine, registry_client, store):
    controller = OrchestrationController(engine, registry_client, store=store)
    yield controller
    controller.close()


@pytest.fixture
def transitions(controller):
    seen = []
    controller.add_listener(lambda flow, state, error: seen.append((flow, state)))
    return seen


def capture_states(transitions):
    return [state for flow, state in transitions if flow == "capture"]


class TestCaptureFlow:
    async def test_happy_path(self, controller, transitions, embedded_wallet, store):
        await embedded_wallet.connect()

        frame = await controller.take_photo()
        tx_ref = await controller.submit()

        assert capture_states(transitions) == [
            CaptureState.REQUESTING,
            CaptureState.STREAMING,
            CaptureState.CAPTURED,
            CaptureState.HASHING,
            CaptureState.SUBMITTING,
            CaptureState.CONFIRMED,
        ]
        assert controller.digest == digest(frame.data)
        assert controller.tx_ref == tx_ref
        assert controller.record.submitter == DEV_ADDRESS
        assert controller.record.timestamp == FIXED_TIME
        assert controller.record.block_number == 1
        assert controller.frame is None
        assert store.find_by_key(controller.digest) == controller.record

    async def test_stream_released_after_capture(self, controller, engine, camera):
        await controller.take_photo()

        assert engine.active_stream is None
        assert not camera.opened[0].active
        assert controller.can_submit

    async def test_capture_requires_stream(self, controller):
        with pytest.raises(FlowBusy):
            await controller.capture()

    async def test_start_camera_twice(self, controller):
        await controller.start_camera()
        with pytest.raises(FlowBusy):
            await controller.start_camera()

    async def test_permission_denied(self, registry_client):
        """Scenario: the user blocks camera access."""
        engine = CaptureEngine(MockCameraBackend(open_error=PermissionError("denied")))
        controller = OrchestrationController(engine, registry_client)

        with pytest.raises(PermissionDenied) as exc_info:
            await controller.start_camera()

        assert controller.capture_state == CaptureState.FAILED
        assert controller.last_error is exc_info.value
        assert engine.active_stream is None
        assert controller.frame is None

    async def test_all_tiers_fail(self, registry_client):
        backend = MockCameraBackend(
            size=(64, 48),
            fail={
                "take_photo": RuntimeError("a"),
                "grab_frame": RuntimeError("b"),
                "read_preview": RuntimeError("c"),
            },
        )
        engine = CaptureEngine(backend, tier_timeout=0.2)
        controller = OrchestrationController(engine, registry_client)
        await controller.start_camera()

        with pytest.raises(CaptureFailed):
            await controller.capture()

        assert controller.capture_state == CaptureState.FAILED
        assert controller.frame is None
        assert engine.active_stream is None

    async def test_retake(self, controller, embedded_wallet):
        await controller.take_photo()
        controller.retake()

        assert controller.capture_state == CaptureState.IDLE
        assert controller.frame is None
        # A fresh session can be opened again
        await controller.start_camera()
        assert controller.capture_state == CaptureState.STREAMING

    async def test_retake_from_streaming_releases_camera(self, controller, engine):
        await controller.start_camera()
        controller.retake()
        assert engine.active_stream is None

    def test_retake_from_idle(self, controller):
        with pytest.raises(FlowBusy):
            controller.retake()

    async def test_reset(self, controller, embedded_wallet, tmp_path):
        await embedded_wallet.connect()
        await controller.take_photo()
        await controller.submit()
        path = tmp_path / "photo.jpg"
        path.write_bytes(b"unrelated")
        await controller.verify_file(path)

        controller.reset()

        assert controller.capture_state == CaptureState.IDLE
        assert controller.verify_state == VerifyState.IDLE
        assert controller.record is None
        assert controller.verification is None


class TestSubmitFailures:
    async def test_not_connected_keeps_captured(self, controller, transitions, local_registry):
        """Scenario: submit with no wallet leaves the frame ready to retry."""
        await controller.take_photo()

        with pytest.raises(NotConnected):
            await controller.submit()

        assert controller.capture_state == CaptureState.CAPTURED
        assert controller.frame is not None
        assert controller.tx_ref is None
        assert CaptureState.SUBMITTING not in capture_states(transitions)
        assert len(local_registry) == 0

    async def test_duplicate_submission(self, engine, local_registry, embedded_wallet, chain):
        """Scenario: the second submit of identical bytes is rejected."""
        client = MockRegistryClient(local_registry, chain, wallet=embedded_wallet)
        controller = OrchestrationController(engine, client)
        await embedded_wallet.connect()

        frame = await controller.take_photo()
        local_registry.submit(bytes.fromhex(digest(frame.data)), DEV_ADDRESS)

        with pytest.raises(AlreadySubmitted):
            await controller.submit()

        assert controller.capture_state == CaptureState.FAILED
        assert isinstance(controller.last_error, AlreadySubmitted)
        assert controller.frame is frame
        assert len(local_registry.events) == 1

    async def test_declined_then_retried(self, engine, local_registry, embedded_wallet, chain):
        decisions = [False, True]
        client = MockRegistryClient(
            local_registry, chain, wallet=embedded_wallet, approve=lambda tx: decisions.pop(0)
        )
        controller = OrchestrationController(engine, client)
        await embedded_wallet.connect()
        await controller.take_photo()

        with pytest.raises(UserRejected):
            await controller.submit()
        assert controller.capture_state == CaptureState.FAILED
        assert controller.can_submit

        await controller.submit()
        assert controller.capture_state == CaptureState.CONFIRMED
        assert controller.last_error is None

    async def test_submit_while_submitting(self, engine, local_registry, embedded_wallet, chain):
        client = MockRegistryClient(local_registry, chain, wallet=embedded_wallet, confirmation_delay=0.2)
        controller = OrchestrationController(engine, client)
        await embedded_wallet.connect()
        await controller.take_photo()

        first = asyncio.ensure_future(controller.submit())
        await asyncio.sleep(0.05)

        assert controller.busy
        with pytest.raises(FlowBusy):
            await controller.submit()
        with pytest.raises(FlowBusy):
            controller.retake()

        await first
        assert len(local_registry) == 1


    async def test_unexpected_registry_error_fails_with_frame(self, engine, local_registry, embedded_wallet, chain):
        client = BrokenRegistry(local_registry, chain, wallet=embedded_wallet)
        controller = OrchestrationController(engine, client)
        await embedded_wallet.connect()
        frame = await controller.take_photo()

        with pytest.raises(UnknownContractError):
            await controller.submit()

        assert controller.capture_state == CaptureState.FAILED
        assert controller.frame is frame
        assert controller.can_submit

    async def test_history_write_failure_still_confirms(self, engine, local_registry, embedded_wallet, chain):
        client = MockRegistryClient(local_registry, chain, wallet=embedded_wallet)
        controller = OrchestrationController(engine, client, store=FullDiskStore())
        await embedded_wallet.connect()
        await controller.take_photo()

        tx_ref = await controller.submit()

        assert controller.capture_state == CaptureState.CONFIRMED
        assert controller.tx_ref == tx_ref
        assert controller.record is not None
        assert not controller.busy
        controller.retake()
        assert controller.capture_state == CaptureState.IDLE



class TestWrongNetwork:
    """Scenario: the wallet is on a different chain than the registry."""

    @pytest.fixture
    def wrong_chain_provider(self, chain):
        return FakeInjectedProvider(chain_id=BASE.chain_id, known_chains={BASE.chain_id, chain.chain_id})

    @pytest.fixture
    def wrong_chain_controller(self, engine, local_registry, wrong_chain_provider, chain):
        wallet = WalletSession([InjectedBackend(wrong_chain_provider)], chain)
        client = MockRegistryClient(local_registry, chain, wallet=wallet)
        return OrchestrationController(engine, client)

    async def test_switch_approved(self, wrong_chain_controller, wrong_chain_provider, chain):
        await wrong_chain_controller.wallet.connect()
        await wrong_chain_controller.take_photo()

        await wrong_chain_controller.submit()

        assert wrong_chain_controller.capture_state == CaptureState.CONFIRMED
        assert wrong_chain_provider.chain_id == chain.chain_id
        assert "wallet_switchEthereumChain" in wrong_chain_provider.methods()

    async def test_switch_declined(self, wrong_chain_controller, wrong_chain_provider, local_registry):
        wrong_chain_provider.reject_switch = True
        await wrong_chain_controller.wallet.connect()
        frame = await wrong_chain_controller.take_photo()

        with pytest.raises(NetworkMismatch):
            await wrong_chain_controller.submit()

        assert wrong_chain_controller.capture_state == CaptureState.FAILED
        assert isinstance(wrong_chain_controller.last_error, NetworkMismatch)
        assert wrong_chain_controller.frame is frame
        assert len(local_registry) == 0


class TestAbortMidSubmit:
    async def test_wallet_disconnect(self, engine, local_registry, embedded_wallet, chain):
        client = MockRegistryClient(local_registry, chain, wallet=embedded_wallet, signing_delay=0.5)
        controller = OrchestrationController(engine, client)
        await embedded_wallet.connect()
        frame = await controller.take_photo()

        task = asyncio.ensure_future(controller.submit())
        await asyncio.sleep(0.05)
        await embedded_wallet.disconnect()

        with pytest.raises(NotConnected):
            await task

        assert controller.capture_state == CaptureState.CAPTURED
        assert controller.frame is frame
        assert len(local_registry) == 0

    async def test_chain_switched_away(self, engine, local_registry, provider, injected_wallet, chain):
        client = MockRegistryClient(local_registry, chain, wallet=injected_wallet, signing_delay=0.5)
        controller = OrchestrationController(engine, client)
        await injected_wallet.connect()
        await controller.take_photo()

        task = asyncio.ensure_future(controller.submit())
        await asyncio.sleep(0.05)
        provider.change_chain(BASE.chain_id)

        with pytest.raises(NetworkMismatch):
            await task

        assert controller.capture_state == CaptureState.CAPTURED
        assert len(local_registry) == 0

    async def test_disconnect_after_broadcast_waits_for_receipt(self, engine, local_registry, embedded_wallet, chain):
        """Scenario: the wallet goes away while the transaction is being mined."""
        client = MockRegistryClient(local_registry, chain, wallet=embedded_wallet, confirmation_delay=0.3)
        controller = OrchestrationController(engine, client)
        await embedded_wallet.connect()
        await controller.take_photo()

        task = asyncio.ensure_future(controller.submit())
        await asyncio.sleep(0.05)
        assert client.last_submission.tx_ref is not None
        await embedded_wallet.disconnect()

        tx_ref = await task

        assert controller.capture_state == CaptureState.CONFIRMED
        assert controller.tx_ref == tx_ref
        assert client.last_submission.status == SubmissionStatus.CONFIRMED
        assert controller.record.submitter == DEV_ADDRESS
        assert len(local_registry) == 1

    async def test_chain_switch_after_broadcast_waits_for_receipt(
        self, engine, local_registry, provider, injected_wallet, chain
    ):
        client = MockRegistryClient(local_registry, chain, wallet=injected_wallet, confirmation_delay=0.3)
        controller = OrchestrationController(engine, client)
        await injected_wallet.connect()
        await controller.take_photo()

        task = asyncio.ensure_future(controller.submit())
        await asyncio.sleep(0.05)
        provider.change_chain(BASE.chain_id)

        await task

        assert controller.capture_state == CaptureState.CONFIRMED
        assert len(local_registry) == 1

    async def test_disconnect_then_timeout_reconciles(self, engine, local_registry, embedded_wallet, chain):
        client = MockRegistryClient(
            local_registry, chain, wallet=embedded_wallet, confirmation_delay=1.0, confirmation_timeout=0.2
        )
        controller = OrchestrationController(engine, client)
        await embedded_wallet.connect()
        await controller.take_photo()

        task = asyncio.ensure_future(controller.submit())
        await asyncio.sleep(0.05)
        await embedded_wallet.disconnect()

        tx_ref = await task

        assert controller.capture_state == CaptureState.CONFIRMED
        assert tx_ref == local_registry.events[0].tx_ref

    async def test_events_after_confirmation_are_ignored(self, controller, embedded_wallet):
        await embedded_wallet.connect()
        await controller.take_photo()
        await controller.submit()

        await embedded_wallet.disconnect()
        assert controller.capture_state == CaptureState.CONFIRMED


class TestConfirmationTimeout:
    async def test_mined_late_is_confirmed(self, engine, local_registry, embedded_wallet, chain, store):
        client = MockRegistryClient(
            local_registry, chain, wallet=embedded_wallet, confirmation_delay=1.0, confirmation_timeout=0.01
        )
        controller = OrchestrationController(engine, client, store=store)
        await embedded_wallet.connect()
        await controller.take_photo()

        tx_ref = await controller.submit()

        assert controller.capture_state == CaptureState.CONFIRMED
        assert tx_ref == local_registry.events[0].tx_ref
        assert store.find_by_key(controller.digest).submitter == DEV_ADDRESS

    async def test_never_mined_fails_with_frame(self, engine, local_registry, embedded_wallet, chain):
        client = StuckRegistry(local_registry, chain, wallet=embedded_wallet)
        controller = OrchestrationController(engine, client)
        await embedded_wallet.connect()
        frame = await controller.take_photo()

        with pytest.raises(ConfirmationTimeout):
            await controller.submit()

        assert controller.capture_state == CaptureState.FAILED
        assert controller.frame is frame


class TestVerifyFlow:
    async def test_found(self, controller, embedded_wallet, tmp_path):
        await embedded_wallet.connect()
        frame = await controller.take_photo()
        await controller.submit()
        path = tmp_path / "photo.jpg"
        path.write_bytes(frame.data)

        result = await controller.verify_file(path)

        assert controller.verify_state == VerifyState.FOUND
        assert result.submitter == DEV_ADDRESS
        assert controller.verify_digest_value == digest(frame.data)

    async def test_not_found(self, controller, tmp_path):
        """Scenario: a file that was never anchored is a plain negative."""
        path = tmp_path / "other.jpg"
        path.write_bytes(b"never submitted")
        states = []
        controller.add_listener(lambda flow, state, error: flow == "verify" and states.append(state))

        result = await controller.verify_file(path)

        assert not result.exists
        assert states == [
            VerifyState.FILE_SELECTED,
            VerifyState.HASHING,
            VerifyState.QUERYING,
            VerifyState.NOT_FOUND,
        ]
        assert controller.verify_error is None

    async def test_missing_file(self, controller, tmp_path):
        with pytest.raises(FileNotFoundError):
            await controller.verify_file(tmp_path / "missing.jpg")
        assert controller.verify_state == VerifyState.IDLE

    async def test_verify_bytes(self, controller):
        result = await controller.verify_bytes(b"some bytes")
        assert result.digest == digest(b"some bytes")
        assert controller.verify_state == VerifyState.NOT_FOUND

    async def test_verify_digest(self, controller):
        value = digest(b"x")
        result = await controller.verify_digest("0x" + value.upper())
        assert result.digest == value

    async def test_verify_digest_rejects_garbage(self, controller):
        with pytest.raises(ValueError):
            await controller.verify_digest("not-a-hash")
        assert controller.verify_state == VerifyState.IDLE

    async def test_verify_digest_rejects_separators(self, controller):
        value = "ab" * 15 + "a_b" + "c" * 31
        with pytest.raises(ValueError):
            await controller.verify_digest(value)
        assert controller.verify_state == VerifyState.IDLE

    async def test_unencodable_digest_fails_flow(self, engine, local_registry, chain):
        controller = OrchestrationController(engine, MalformedRegistry(local_registry, chain))

        with pytest.raises(ValueError):
            await controller.verify_bytes(b"photo")

        assert controller.verify_state == VerifyState.FAILED
        assert not controller._verify_lock.locked()

    async def test_registry_failure(self, engine, local_registry, chain):
        controller = OrchestrationController(engine, UnreachableRegistry(local_registry, chain))

        with pytest.raises(TransientError):
            await controller.verify_bytes(b"photo")

        assert controller.verify_state == VerifyState.FAILED
        assert isinstance(controller.verify_error, TransientError)

    async def test_verify_runs_beside_capture(self, controller):
        await controller.start_camera()
        await controller.verify_bytes(b"photo")
        assert controller.capture_state == CaptureState.STREAMING


class TestRegistryInterface:
    def test_clients_share_interface(self, registry_client):
        assert isinstance(registry_client, ProofRegistry)

    def test_wallet_taken_from_registry(self, engine, registry_client, embedded_wallet):
        controller = OrchestrationController(engine, registry_client)
        assert controller.wallet is embedded_wallet
        controller.close()
