# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""
Error taxonomy for the Truth Camera pipeline.

Every error carries a ``user_message`` that the controller and CLI show
verbatim. Messages are deliberately distinct so a user can tell a declined
signature from a duplicate proof from an empty gas balance.
"""

from typing import Optional


class TruthCameraError(Exception):
    """Base exception for all pipeline errors."""

    user_message = "Something went wrong."

    def __init__(self, message: Optional[str] = None):
        self.detail = message or self.user_message
        super().__init__(self.detail)

    @property
    def reason(self) -> str:
        """Short machine-readable reason (the class name)."""
        return type(self).__name__


class ConfigurationError(TruthCameraError):
    """Registry address or chain id missing or malformed."""

    user_message = "Registry is not configured. Set the registry address and chain id."


class FlowBusy(TruthCameraError):
    """A step is already in flight for this orchestration session."""

    user_message = "Another step is still running. Please wait for it to finish."


# --- Device -----------------------------------------------------------------

class DeviceError(TruthCameraError):
    """Camera device could not be opened."""

    user_message = "Camera access failed."


class PermissionDenied(DeviceError):
    user_message = "Camera permission denied. Allow camera access and try again."


class DeviceNotFound(DeviceError):
    user_message = "No camera found. Connect a camera and try again."


class DeviceBusy(DeviceError):
    user_message = "Camera is busy. Close other camera applications and try again."


class DeviceUnknown(DeviceError):
    user_message = "Camera access failed for an unknown reason."


# --- Capture ----------------------------------------------------------------

class CaptureError(TruthCameraError):
    """A capture tier failed to produce a usable frame."""

    user_message = "Capture failed."


class CaptureTimeout(CaptureError):
    user_message = "The camera did not return a frame in time."


class UnsupportedCapture(CaptureError):
    user_message = "This camera does not support that capture method."


class InvalidDimensions(CaptureError):
    user_message = "The camera returned a frame with invalid dimensions."


class EncodeFailure(CaptureError):
    user_message = "The captured frame could not be encoded."


class CaptureFailed(CaptureError):
    """Every capture tier was tried and none produced a frame."""

    user_message = "Could not capture a photo from this camera. Please retake."

    def __init__(self, tier_errors: Optional[dict] = None):
        self.tier_errors = dict(tier_errors or {})
        summary = "; ".join(f"{name}: {err}" for name, err in self.tier_errors.items())
        super().__init__(f"All capture tiers failed ({summary})" if summary else None)


# --- Wallet / network -------------------------------------------------------

class WalletError(TruthCameraError):
    user_message = "Wallet error."


class NotConnected(WalletError):
    user_message = "Wallet not connected. Connect a wallet to submit proofs."


class NoSigner(WalletError):
    user_message = "The connected wallet cannot sign transactions."


class UserRejected(WalletError):
    user_message = "Transaction rejected by user."


class NetworkError(TruthCameraError):
    user_message = "Network error."


class NetworkMismatch(NetworkError):
    user_message = "Wrong network. Please switch your wallet to the registry's chain."


# --- Contract ---------------------------------------------------------------

class ContractError(TruthCameraError):
    user_message = "Registry contract call failed."


class ContractNotDeployed(ContractError):
    user_message = "Registry contract not found at the configured address on this chain."


class AlreadySubmitted(ContractError):
    user_message = "This photo's hash was already submitted."


class EmptyHash(ContractError):
    user_message = "Refusing to submit an empty hash."


class InsufficientFunds(ContractError):
    user_message = "Insufficient funds for gas on this chain."


class ConfirmationTimeout(ContractError):
    """Broadcast succeeded but no confirmation arrived in time."""

    user_message = "Transaction sent but not confirmed yet. Check the explorer before retrying."

    def __init__(self, tx_ref: str, message: Optional[str] = None):
        self.tx_ref = tx_ref
        super().__init__(message or f"No confirmation for {tx_ref}")


class UnknownContractError(ContractError):
    user_message = "Transaction failed."


class TransientError(TruthCameraError):
    """Read-call network hiccup. Always safe to retry."""

    user_message = "Could not reach the registry. Please try again."
