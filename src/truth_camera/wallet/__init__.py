# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""Wallet session over embedded and injected backends."""

from .chains import BASE, BASE_SEPOLIA, CHAINS, LOCALHOST, ChainConfig, get_chain
from .provider import ProviderRpcError, RpcWalletProvider
from .backends import (
    ChainNotAdded,
    EmbeddedBackend,
    InjectedBackend,
    InjectedSigner,
    LocalAccountSigner,
    Signer,
    WalletBackend,
)
from .session import WalletSession, create_wallet_session

__all__ = [
    'BASE',
    'BASE_SEPOLIA',
    'CHAINS',
    'LOCALHOST',
    'ChainConfig',
    'get_chain',
    'ProviderRpcError',
    'RpcWalletProvider',
    'ChainNotAdded',
    'EmbeddedBackend',
    'InjectedBackend',
    'InjectedSigner',
    'LocalAccountSigner',
    'Signer',
    'WalletBackend',
    'WalletSession',
    'create_wallet_session',
]
