# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""
Registry client for submitting and verifying image digests on-chain.

Writes go through the WalletSession's signer and are never retried
automatically: a submit costs gas and must not be silently resent.
Reads need no signer and are retried on transient network errors.
"""

import asyncio
import logging
from typing import Optional

from eth_utils import to_checksum_address
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
)

from ..config import Settings
from ..errors import (
    AlreadySubmitted,
    ConfigurationError,
    ConfirmationTimeout,
    ContractNotDeployed,
    EmptyHash,
    InsufficientFunds,
    NotConnected,
    TransientError,
    TruthCameraError,
    UnknownContractError,
    UserRejected,
)
from ..hashing import from_bytes32, normalize_digest, to_bytes32
from ..models import PendingSubmission, ProofRecord, SubmissionStatus, VerificationResult
from ..wallet.chains import ChainConfig, get_chain
from ..wallet.provider import USER_REJECTED, ProviderRpcError
from ..wallet.session import WalletSession
from .abi import REGISTRY_ABI, REVERT_ALREADY_SUBMITTED, REVERT_EMPTY_HASH
from .base import ProofRegistry

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (
    asyncio.TimeoutError,
    ConnectionError,
    OSError,
    ProviderConnectionError,
)


def classify_error(exc: BaseException) -> TruthCameraError:
    """
    Map a wallet/node/contract exception onto the user-facing taxonomy.

    Args:
        exc: Exception raised while estimating, signing or broadcasting

    Returns:
        UserRejected, AlreadySubmitted, EmptyHash, InsufficientFunds,
        or UnknownContractError
    """
    if isinstance(exc, TruthCameraError):
        return exc
    if isinstance(exc, ProviderRpcError) and exc.code == USER_REJECTED:
        return UserRejected(exc.message or None)

    message = str(exc).lower()
    if "user rejected" in message or "user denied" in message:
        return UserRejected(str(exc))
    if REVERT_ALREADY_SUBMITTED in message:
        return AlreadySubmitted(str(exc))
    if REVERT_EMPTY_HASH in message:
        return EmptyHash(str(exc))
    if "insufficient funds" in message:
        return InsufficientFunds(str(exc))
    if isinstance(exc, ContractLogicError):
        return UnknownContractError(f"Transaction reverted: {exc}")
    return UnknownContractError(str(exc) or type(exc).__name__)


class RegistryClient(ProofRegistry):
    """
    Client for the on-chain TruthCamera registry.

    Args:
        w3: Read connection to the registry's chain
        registry_address: Deployed contract address
        chain: Chain the registry lives on
        wallet: Session providing the signer (None for read-only use)
        confirmation_timeout: Seconds to wait for one confirmation
        read_retries: Attempts for read calls on transient errors
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        registry_address: Optional[str],
        chain: ChainConfig,
        wallet: Optional[WalletSession] = None,
        confirmation_timeout: float = 120.0,
        read_retries: int = 3,
        retry_backoff: float = 0.5,
        contract=None,
    ):
        if not registry_address:
            raise ConfigurationError()
        self.w3 = w3
        self.address = to_checksum_address(registry_address)
        self.chain = chain
        self.wallet = wallet
        self.confirmation_timeout = confirmation_timeout
        self.read_retries = max(1, read_retries)
        self.retry_backoff = retry_backoff
        self.contract = contract or w3.eth.contract(address=self.address, abi=REGISTRY_ABI)
        self.last_submission: Optional[PendingSubmission] = None

    @classmethod
    def from_settings(cls, settings: Settings, wallet: Optional[WalletSession] = None) -> 'RegistryClient':
        """
        Build a client from configuration.

        Raises:
            ConfigurationError: If registry address or chain id is missing
        """
        address, chain_id = settings.require_registry()
        chain = get_chain(chain_id, settings.rpc_url)
        w3 = AsyncWeb3(AsyncHTTPProvider(chain.rpc_url))
        return cls(
            w3,
            address,
            chain,
            wallet=wallet,
            confirmation_timeout=settings.confirmation_timeout,
            read_retries=settings.read_retries,
        )

    # --- reads --------------------------------------------------------------

    async def _read(self, label: str, call):
        """Run a read call with retry on transient errors."""
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.read_retries + 1):
            try:
                return await call()
            except TRANSIENT_ERRORS as e:
                last_error = e
                logger.warning(f"{label} failed (attempt {attempt}/{self.read_retries}): {e}")
                if attempt < self.read_retries:
                    await asyncio.sleep(self.retry_backoff * 2 ** (attempt - 1))
        raise TransientError(f"{label} failed after {self.read_retries} attempts: {last_error}")

    async def is_deployed(self) -> bool:
        """True if executable code exists at the registry address."""
        code = await self._read("get_code", lambda: self.w3.eth.get_code(self.address))
        return bool(code) and len(code) > 0

    async def _ensure_deployed(self) -> None:
        if not await self.is_deployed():
            raise ContractNotDeployed(
                f"No contract code at {self.address} on {self.chain.name}"
            )

    async def verify(self, digest: str) -> VerificationResult:
        """
        Look up a digest. Pure read; no signer required.

        Returns:
            VerificationResult (exists=False with zero submitter/timestamp if unset)

        Raises:
            TransientError: If the node could not be reached after retries
            ContractNotDeployed: If the registry address holds no contract
        """
        digest = normalize_digest(digest)
        key = to_bytes32(digest)
        try:
            exists, submitter, timestamp = await self._read(
                "verify", lambda: self.contract.functions.verify(key).call()
            )
        except BadFunctionCallOutput as e:
            raise ContractNotDeployed(str(e)) from e

        result = VerificationResult(
            digest=from_bytes32(key),
            exists=bool(exists),
            submitter=to_checksum_address(submitter),
            timestamp=int(timestamp),
        )
        logger.info(
            f"Verify {digest[:16]}...: "
            + (f"found, submitter={result.submitter} ts={result.timestamp}" if result.exists else "not found")
        )
        return result

    async def fetch_proof_events(self, from_block: int = 0, digest: Optional[str] = None) -> list[ProofRecord]:
        """Read ``ProofSubmitted`` logs, optionally for a single digest."""
        filters = {'hash': to_bytes32(digest)} if digest else None
        logs = await self._read(
            "get_logs",
            lambda: self.contract.events.ProofSubmitted.get_logs(
                argument_filters=filters, from_block=from_block
            ),
        )
        return [
            ProofRecord(
                digest=from_bytes32(log['args']['hash']),
                submitter=to_checksum_address(log['args']['submitter']),
                timestamp=int(log['args']['timestamp']),
                tx_ref=AsyncWeb3.to_hex(log['transactionHash']),
                block_number=log['blockNumber'],
            )
            for log in logs
        ]

    # --- writes -------------------------------------------------------------

    async def submit(self, digest: str) -> str:
        """
        Anchor a digest in the registry.

        Steps: check signer and chain, confirm the contract is deployed,
        encode to bytes32, pre-flight gas estimate, broadcast, wait for one
        confirmation.

        Returns:
            Transaction hash of the confirmed submission

        Raises:
            NotConnected, NoSigner, NetworkMismatch, UserRejected,
            AlreadySubmitted, EmptyHash, InsufficientFunds,
            ContractNotDeployed, ConfirmationTimeout, UnknownContractError
        """
        self.last_submission = None
        if self.wallet is None or not self.wallet.state.is_connected:
            raise NotConnected()

        digest = normalize_digest(digest)
        key = to_bytes32(digest)
        if key == bytes(32):
            raise EmptyHash()

        await self.wallet.ensure_chain(self.chain)
        signer = await self.wallet.get_signer()
        await self._ensure_deployed()

        pending = PendingSubmission(digest=digest)
        self.last_submission = pending
        try:
            return await self._send(pending, key, signer)
        finally:
            if pending.status == SubmissionStatus.PENDING:
                # Cancelled before an outcome was known
                pending.status = SubmissionStatus.FAILED
                pending.error = "Cancelled"

    async def _send(self, pending: PendingSubmission, key: bytes, signer) -> str:
        digest = pending.digest
        sender = signer.address
        function = self.contract.functions.submit(key)

        try:
            gas = await function.estimate_gas({'from': sender})
            logger.info(f"Gas estimate for {digest[:16]}...: {gas}")
            tx = await function.build_transaction({'from': sender, 'gas': gas})
            tx_ref = await signer.send_transaction(tx)
        except Exception as e:
            error = classify_error(e)
            logger.error(f"Submission failed for {digest[:16]}...: {error.reason}: {e}")
            raise self._fail(pending, error) from e

        pending.tx_ref = tx_ref
        logger.info(f"Transaction sent: {tx_ref}")

        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_ref, timeout=self.confirmation_timeout
            )
        except (TimeExhausted, *TRANSIENT_ERRORS) as e:
            # Outcome unknown: the transaction may still be mined
            raise self._fail(pending, ConfirmationTimeout(tx_ref)) from e

        if receipt['status'] != 1:
            raise self._fail(pending, await self._explain_revert(digest, tx_ref, sender))

        pending.status = SubmissionStatus.CONFIRMED
        pending.block_number = receipt.get('blockNumber')
        logger.info(f"✓ Transaction confirmed: {tx_ref} in block {pending.block_number}")
        return tx_ref

    @staticmethod
    def _fail(pending: PendingSubmission, error: TruthCameraError) -> TruthCameraError:
        pending.status = SubmissionStatus.FAILED
        pending.error = error.reason
        return error

    async def _explain_revert(self, digest: str, tx_ref: str, sender: str) -> TruthCameraError:
        """
        Classify a transaction that passed pre-flight but reverted when mined.

        The usual cause is another submission of the same digest landing
        between our gas estimate and our transaction.
        """
        try:
            result = await self.verify(digest)
        except TruthCameraError as e:
            logger.warning(f"Could not read registry after revert of {tx_ref}: {e}")
            return UnknownContractError(f"Transaction {tx_ref} reverted on-chain")

        if result.exists:
            logger.warning(
                f"Transaction {tx_ref} reverted: {digest[:16]}... already recorded by {result.submitter}"
                + (" (this wallet)" if result.submitter == sender else "")
            )
            return AlreadySubmitted(f"Transaction {tx_ref} reverted: digest already recorded by {result.submitter}")
        return UnknownContractError(f"Transaction {tx_ref} reverted on-chain")

    def explorer_url(self, tx_ref: str) -> Optional[str]:
        return self.chain.explorer_tx_url(tx_ref)
