# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""Proof registry clients (on-chain and in-process)."""

from typing import Optional

from ..config import Settings
from ..wallet.chains import LOCALHOST, get_chain
from ..wallet.session import WalletSession
from .abi import REGISTRY_ABI
from .base import ProofRegistry
from .client import RegistryClient, classify_error
from .local import LocalRegistry, MockRegistryClient, RegistryRevert


def create_registry_client(
    settings: Settings,
    wallet: Optional[WalletSession] = None,
    use_mock: bool = False,
    registry: Optional[LocalRegistry] = None,
) -> ProofRegistry:
    """
    Factory function to create appropriate registry client.

    Args:
        settings: Application settings
        wallet: Wallet session used for submissions
        use_mock: If True, use an in-process LocalRegistry
        registry: Existing LocalRegistry to share (mock mode only)

    Returns:
        RegistryClient or MockRegistryClient

    Raises:
        ConfigurationError: If not mock and the registry is not configured
    """
    if use_mock:
        chain = get_chain(settings.chain_id, settings.rpc_url) if settings.chain_id else LOCALHOST
        return MockRegistryClient(
            registry or LocalRegistry(),
            chain,
            wallet=wallet,
            confirmation_timeout=settings.confirmation_timeout,
        )
    return RegistryClient.from_settings(settings, wallet=wallet)


__all__ = [
    'REGISTRY_ABI',
    'ProofRegistry',
    'RegistryClient',
    'classify_error',
    'LocalRegistry',
    'MockRegistryClient',
    'RegistryRevert',
    'create_registry_client',
]
