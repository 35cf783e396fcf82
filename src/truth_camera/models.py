# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""Core data types shared across capture, wallet and registry layers."""

import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class BackendKind(str, Enum):
    EMBEDDED = "embedded"
    INJECTED = "injected"
    NONE = "none"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class CapturedFrame:
    """
    One still frame taken from the live stream.

    Lives only inside one orchestration session and is never persisted by
    the pipeline itself.
    """
    data: bytes
    mime: str = "image/jpeg"
    acquired_at: float = field(default_factory=time.time)
    width: int = 0
    height: int = 0
    tier: str = ""  # Capture strategy that produced the frame

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class WalletSessionState:
    """Snapshot of the wallet session, recreated on every backend event."""
    backend_kind: BackendKind = BackendKind.NONE
    address: Optional[str] = None
    chain_id: Optional[int] = None
    has_signer: bool = False

    @property
    def is_connected(self) -> bool:
        return self.backend_kind != BackendKind.NONE and bool(self.address)


@dataclass
class PendingSubmission:
    """An in-flight submit; always resolves to confirmed or failed."""
    digest: str
    tx_ref: Optional[str] = None
    status: SubmissionStatus = SubmissionStatus.PENDING
    error: Optional[str] = None
    block_number: Optional[int] = None


@dataclass
class ProofRecord:
    """Registry record for one digest (plus client-side tx metadata)."""
    digest: str
    submitter: str
    timestamp: int  # Chain time (seconds since epoch)
    tx_ref: Optional[str] = None
    block_number: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class VerificationResult:
    """Answer to ``verify(digest)``."""
    digest: str
    exists: bool
    submitter: str = ZERO_ADDRESS
    timestamp: int = 0

    @classmethod
    def not_found(cls, digest: str) -> 'VerificationResult':
        return cls(digest=digest, exists=False)

    def to_record(self, tx_ref: Optional[str] = None) -> ProofRecord:
        return ProofRecord(
            digest=self.digest,
            submitter=self.submitter,
            timestamp=self.timestamp,
            tx_ref=tx_ref,
        )
