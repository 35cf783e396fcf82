# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""
In-process registry for development and testing.

LocalRegistry reproduces the contract's semantics (write-once, non-zero
keys, first submitter wins). MockRegistryClient drives it through the same
interface and wallet preconditions as the on-chain RegistryClient.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from eth_utils import keccak, to_checksum_address

from ..errors import ConfirmationTimeout, EmptyHash, NotConnected, UserRejected
from ..hashing import from_bytes32, normalize_digest, to_bytes32
from ..models import (
    ZERO_ADDRESS,
    PendingSubmission,
    ProofRecord,
    SubmissionStatus,
    VerificationResult,
)
from ..wallet.chains import ChainConfig
from ..wallet.session import WalletSession
from .abi import REVERT_ALREADY_SUBMITTED, REVERT_EMPTY_HASH
from .base import ProofRegistry
from .client import classify_error

logger = logging.getLogger(__name__)


class RegistryRevert(Exception):
    """A contract-level revert with its reason string."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"execution reverted: {reason}")


@dataclass
class _Proof:
    submitter: str
    timestamp: int
    tx_ref: str
    block_number: int


class LocalRegistry:
    """
    Append-only digest registry held in memory.

    Args:
        clock: Source of block time in seconds
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._proofs: dict[bytes, _Proof] = {}
        self.block_number = 0
        self.events: list[ProofRecord] = []

    def submit(self, key: bytes, sender: str) -> ProofRecord:
        if key == bytes(32):
            raise RegistryRevert(REVERT_EMPTY_HASH)
        if key in self._proofs:
            raise RegistryRevert(REVERT_ALREADY_SUBMITTED)

        self.block_number += 1
        timestamp = int(self._clock())
        tx_ref = "0x" + keccak(key + sender.encode() + self.block_number.to_bytes(8, "big")).hex()
        proof = _Proof(to_checksum_address(sender), timestamp, tx_ref, self.block_number)
        self._proofs[key] = proof

        record = ProofRecord(
            digest=from_bytes32(key),
            submitter=proof.submitter,
            timestamp=timestamp,
            tx_ref=tx_ref,
            block_number=self.block_number,
        )
        self.events.append(record)
        return record

    def verify(self, key: bytes) -> tuple[bool, str, int]:
        proof = self._proofs.get(key)
        if proof is None:
            return False, ZERO_ADDRESS, 0
        return True, proof.submitter, proof.timestamp

    def __len__(self) -> int:
        return len(self._proofs)


class MockRegistryClient(ProofRegistry):
    """
    Registry client backed by a LocalRegistry.

    The record is written when the transaction is "broadcast"; the
    confirmation delay then models waiting for the receipt.

    Args:
        registry: Shared in-memory registry
        chain: Chain the registry pretends to live on
        wallet: Session providing the submitter address
        approve: Called with the transaction before "signing"; returning
            False simulates the user declining the prompt
        signing_delay: Seconds the signature prompt stays open
        confirmation_delay: Seconds from broadcast to receipt
        confirmation_timeout: Seconds to wait for the receipt
    """

    def __init__(
        self,
        registry: LocalRegistry,
        chain: ChainConfig,
        wallet: Optional[WalletSession] = None,
        approve: Optional[Callable[[dict], bool]] = None,
        signing_delay: float = 0.0,
        confirmation_delay: float = 0.0,
        confirmation_timeout: float = 120.0,
    ):
        self.registry = registry
        self.chain = chain
        self.wallet = wallet
        self.approve = approve
        self.signing_delay = signing_delay
        self.confirmation_delay = confirmation_delay
        self.confirmation_timeout = confirmation_timeout
        self.address = "local"
        self.last_submission: Optional[PendingSubmission] = None

    async def is_deployed(self) -> bool:
        return True

    async def verify(self, digest: str) -> VerificationResult:
        key = to_bytes32(normalize_digest(digest))
        exists, submitter, timestamp = self.registry.verify(key)
        return VerificationResult(
            digest=from_bytes32(key),
            exists=exists,
            submitter=submitter,
            timestamp=timestamp,
        )

    async def fetch_proof_events(self, from_block: int = 0, digest: Optional[str] = None) -> list[ProofRecord]:
        wanted = normalize_digest(digest) if digest else None
        return [
            e for e in self.registry.events
            if e.block_number >= from_block and (wanted is None or e.digest == wanted)
        ]

    async def submit(self, digest: str) -> str:
        self.last_submission = None
        if self.wallet is None or not self.wallet.state.is_connected:
            raise NotConnected()

        digest = normalize_digest(digest)
        key = to_bytes32(digest)
        if key == bytes(32):
            raise EmptyHash()

        await self.wallet.ensure_chain(self.chain)
        signer = await self.wallet.get_signer()

        pending = PendingSubmission(digest=digest)
        self.last_submission = pending
        try:
            return await self._send(pending, key, signer.address)
        finally:
            if pending.status == SubmissionStatus.PENDING:
                pending.status = SubmissionStatus.FAILED
                pending.error = "Cancelled"

    async def _send(self, pending: PendingSubmission, key: bytes, sender: str) -> str:
        tx = {'from': sender, 'to': self.address, 'data': key}
        try:
            if self.approve is not None and not self.approve(tx):
                raise UserRejected()
            # Pre-flight: a reverting call fails here, before anything is sent
            exists, _, _ = self.registry.verify(key)
            if exists:
                raise RegistryRevert(REVERT_ALREADY_SUBMITTED)
            if self.signing_delay:
                await asyncio.sleep(self.signing_delay)
            record = self.registry.submit(key, sender)
        except (UserRejected, RegistryRevert) as e:
            error = classify_error(e)
            pending.status = SubmissionStatus.FAILED
            pending.error = error.reason
            raise error from e

        pending.tx_ref = record.tx_ref

        if self.confirmation_delay > self.confirmation_timeout:
            # Mined, but the client gave up waiting for the receipt
            await asyncio.sleep(self.confirmation_timeout)
            pending.status = SubmissionStatus.FAILED
            pending.error = ConfirmationTimeout.__name__
            raise ConfirmationTimeout(record.tx_ref)
        if self.confirmation_delay:
            await asyncio.sleep(self.confirmation_delay)

        pending.block_number = record.block_number
        pending.status = SubmissionStatus.CONFIRMED
        logger.info(f"✓ Local registry recorded {pending.digest[:16]}... in block {record.block_number}")
        return record.tx_ref

    def explorer_url(self, tx_ref: str) -> Optional[str]:
        return None
