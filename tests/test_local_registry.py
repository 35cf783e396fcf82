"""Tests for the in-process registry and the mock registry client."""

import asyncio

import pytest

from truth_camera.errors import (
    AlreadySubmitted,
    ConfirmationTimeout,
    EmptyHash,
    NotConnected,
    UserRejected,
)
from truth_camera.hashing import ZERO_DIGEST, digest, to_bytes32
from truth_camera.models import ZERO_ADDRESS, SubmissionStatus
from truth_camera.registry import LocalRegistry, MockRegistryClient, RegistryRevert
from truth_camera.wallet import EmbeddedBackend, WalletSession

from conftest import DEV_ADDRESS, DEV_ADDRESS_2, DEV_KEY_2, FIXED_TIME


class TestLocalRegistry:
    """Test the write-once semantics of the registry itself."""

    def test_unset_key(self, local_registry):
        assert local_registry.verify(to_bytes32(digest(b"never"))) == (False, ZERO_ADDRESS, 0)

    def test_submit_then_verify(self, local_registry):
        key = to_bytes32(digest(b"photo"))
        record = local_registry.submit(key, DEV_ADDRESS)

        assert local_registry.verify(key) == (True, DEV_ADDRESS, FIXED_TIME)
        assert record.block_number == 1
        assert local_registry.events == [record]

    def test_second_submit_reverts_and_leaves_state(self, local_registry):
        key = to_bytes32(digest(b"photo"))
        local_registry.submit(key, DEV_ADDRESS)

        with pytest.raises(RegistryRevert) as exc_info:
            local_registry.submit(key, DEV_ADDRESS_2)

        assert exc_info.value.reason == "already submitted"
        assert str(exc_info.value) == "execution reverted: already submitted"
        assert local_registry.verify(key) == (True, DEV_ADDRESS, FIXED_TIME)
        assert len(local_registry.events) == 1
        assert local_registry.block_number == 1

    @pytest.mark.parametrize("sender", [DEV_ADDRESS, DEV_ADDRESS_2])
    def test_zero_key_reverts_for_any_sender(self, local_registry, sender):
        with pytest.raises(RegistryRevert, match="empty hash"):
            local_registry.submit(bytes(32), sender)
        assert len(local_registry) == 0

    def test_timestamp_is_chain_time(self):
        ticks = iter([100.9, 200.2])
        registry = LocalRegistry(clock=lambda: next(ticks))

        registry.submit(to_bytes32(digest(b"a")), DEV_ADDRESS)
        registry.submit(to_bytes32(digest(b"b")), DEV_ADDRESS)

        assert registry.verify(to_bytes32(digest(b"a")))[2] == 100
        assert registry.verify(to_bytes32(digest(b"b")))[2] == 200

    def test_distinct_tx_refs(self, local_registry):
        a = local_registry.submit(to_bytes32(digest(b"a")), DEV_ADDRESS)
        b = local_registry.submit(to_bytes32(digest(b"b")), DEV_ADDRESS)
        assert a.tx_ref != b.tx_ref
        assert len(a.tx_ref) == 66


class TestMockRegistryClient:
    async def test_submit_and_verify(self, registry_client, embedded_wallet):
        await embedded_wallet.connect()
        value = digest(b"photo")

        tx_ref = await registry_client.submit(value)
        result = await registry_client.verify(value)

        assert tx_ref.startswith("0x")
        assert result.exists
        assert result.submitter == DEV_ADDRESS
        assert result.timestamp == FIXED_TIME
        assert registry_client.last_submission.status == SubmissionStatus.CONFIRMED

    async def test_requires_wallet(self, registry_client, local_registry):
        with pytest.raises(NotConnected):
            await registry_client.submit(digest(b"photo"))
        assert len(local_registry) == 0

    async def test_empty_hash(self, registry_client, embedded_wallet):
        await embedded_wallet.connect()
        with pytest.raises(EmptyHash):
            await registry_client.submit(ZERO_DIGEST)

    async def test_declined_prompt(self, local_registry, embedded_wallet, chain):
        client = MockRegistryClient(local_registry, chain, wallet=embedded_wallet, approve=lambda tx: False)
        await embedded_wallet.connect()

        with pytest.raises(UserRejected):
            await client.submit(digest(b"photo"))
        assert len(local_registry) == 0
        assert client.last_submission.error == "UserRejected"

    async def test_mined_after_timeout(self, local_registry, embedded_wallet, chain):
        client = MockRegistryClient(
            local_registry, chain, wallet=embedded_wallet, confirmation_delay=1.0, confirmation_timeout=0.01
        )
        await embedded_wallet.connect()

        with pytest.raises(ConfirmationTimeout) as exc_info:
            await client.submit(digest(b"photo"))

        # The record exists even though the client stopped waiting
        assert (await client.verify(digest(b"photo"))).exists
        assert exc_info.value.tx_ref == local_registry.events[0].tx_ref

    async def test_recorded_at_broadcast(self, local_registry, embedded_wallet, chain):
        client = MockRegistryClient(
            local_registry, chain, wallet=embedded_wallet, signing_delay=0.1, confirmation_delay=0.2
        )
        await embedded_wallet.connect()

        task = asyncio.ensure_future(client.submit(digest(b"photo")))
        await asyncio.sleep(0.05)
        assert client.last_submission.tx_ref is None
        assert len(local_registry) == 0

        await asyncio.sleep(0.1)
        assert client.last_submission.tx_ref == local_registry.events[0].tx_ref
        assert client.last_submission.status == SubmissionStatus.PENDING

        assert await task == client.last_submission.tx_ref
        assert client.last_submission.status == SubmissionStatus.CONFIRMED

    async def test_cancelled_while_signing(self, local_registry, embedded_wallet, chain):
        client = MockRegistryClient(local_registry, chain, wallet=embedded_wallet, signing_delay=0.5)
        await embedded_wallet.connect()

        task = asyncio.ensure_future(client.submit(digest(b"photo")))
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert client.last_submission.status == SubmissionStatus.FAILED
        assert len(local_registry) == 0

    async def test_fetch_proof_events(self, registry_client, embedded_wallet):
        await embedded_wallet.connect()
        await registry_client.submit(digest(b"a"))
        await registry_client.submit(digest(b"b"))

        assert len(await registry_client.fetch_proof_events()) == 2
        assert len(await registry_client.fetch_proof_events(from_block=2)) == 1
        only_a = await registry_client.fetch_proof_events(digest="0x" + digest(b"a"))
        assert [r.digest for r in only_a] == [digest(b"a")]


class TestScenarios:
    async def test_same_bytes_submitted_twice(self, local_registry, chain):
        """Identical bytes from two devices: first wins, second is rejected."""
        photo = b"\xff\xd8identical jpeg bytes\xff\xd9"

        first_wallet = WalletSession([EmbeddedBackend("0x" + "11" * 32, chain)], chain)
        second_wallet = WalletSession([EmbeddedBackend(DEV_KEY_2, chain)], chain)
        first = MockRegistryClient(local_registry, chain, wallet=first_wallet)
        second = MockRegistryClient(local_registry, chain, wallet=second_wallet)
        await first_wallet.connect()
        await second_wallet.connect()

        await first.submit(digest(photo))
        with pytest.raises(AlreadySubmitted):
            await second.submit(digest(photo))

        result = await second.verify(digest(photo))
        assert result.submitter == first_wallet.state.address
        assert result.timestamp == FIXED_TIME
        assert len(local_registry.events) == 1

    async def test_verify_never_submitted(self, registry_client):
        """Verification of an unknown digest is a plain negative, not an error."""
        result = await registry_client.verify(digest(b"never submitted"))

        assert result.exists is False
        assert result.submitter == ZERO_ADDRESS
        assert result.timestamp == 0
