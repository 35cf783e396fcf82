# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""Interface shared by the on-chain and in-process registry clients."""

from abc import ABC, abstractmethod
from typing import Optional

from ..models import PendingSubmission, ProofRecord, VerificationResult
from ..wallet.chains import ChainConfig
from ..wallet.session import WalletSession


class ProofRegistry(ABC):
    """
    Digest registry as seen by the controller and the verifier API.

    Attributes:
        address: Registry location (contract address, or "local")
        chain: Chain the registry lives on
        wallet: Session providing the submitter (None for read-only use)
        last_submission: Most recent submit, cleared when a new one starts.
            Its ``tx_ref`` is set as soon as the transaction is broadcast.
    """

    address: str
    chain: ChainConfig
    wallet: Optional[WalletSession]
    last_submission: Optional[PendingSubmission]

    @abstractmethod
    async def is_deployed(self) -> bool:
        """True if the registry exists at ``address``."""

    @abstractmethod
    async def verify(self, digest: str) -> VerificationResult:
        """Look up a digest. Never needs a signer."""

    @abstractmethod
    async def fetch_proof_events(self, from_block: int = 0, digest: Optional[str] = None) -> list[ProofRecord]:
        """Submission events, oldest first."""

    @abstractmethod
    async def submit(self, digest: str) -> str:
        """Anchor a digest and return the confirmed transaction reference."""

    @abstractmethod
    def explorer_url(self, tx_ref: str) -> Optional[str]:
        """Block-explorer link for a transaction, if the chain has one."""
