# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""Known EVM chains the registry can be deployed on."""

from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class ChainConfig:
    """Everything a wallet needs to add and switch to a chain."""
    chain_id: int
    name: str
    rpc_url: str
    explorer_url: Optional[str] = None
    currency_name: str = "Ether"
    currency_symbol: str = "ETH"
    currency_decimals: int = 18

    @property
    def hex_id(self) -> str:
        return hex(self.chain_id)

    def to_add_params(self) -> dict:
        """Parameters for ``wallet_addEthereumChain`` (EIP-3085)."""
        params = {
            "chainId": self.hex_id,
            "chainName": self.name,
            "nativeCurrency": {
                "name": self.currency_name,
                "symbol": self.currency_symbol,
                "decimals": self.currency_decimals,
            },
            "rpcUrls": [self.rpc_url],
        }
        if self.explorer_url:
            params["blockExplorerUrls"] = [self.explorer_url]
        return params

    def explorer_tx_url(self, tx_ref: str) -> Optional[str]:
        if not self.explorer_url:
            return None
        return f"{self.explorer_url.rstrip('/')}/tx/{tx_ref}"


BASE = ChainConfig(8453, "Base", "https://mainnet.base.org", "https://basescan.org")
BASE_SEPOLIA = ChainConfig(84532, "Base Sepolia", "https://sepolia.base.org", "https://sepolia.basescan.org")
LOCALHOST = ChainConfig(31337, "Localhost", "http://127.0.0.1:8545")

CHAINS: dict[int, ChainConfig] = {chain.chain_id: chain for chain in (BASE, BASE_SEPOLIA, LOCALHOST)}


def parse_chain_id(value) -> int:
    """Accept 8453, "8453" or "0x2105"."""
    if isinstance(value, int):
        return value
    value = str(value).strip()
    if value.lower().startswith("0x"):
        return int(value, 16)
    return int(value)


def get_chain(chain_id: int, rpc_url: Optional[str] = None) -> ChainConfig:
    """
    Look up a chain, optionally overriding its RPC URL.

    Unknown chain ids need an explicit rpc_url.
    """
    chain = CHAINS.get(chain_id)
    if chain is None:
        if not rpc_url:
            raise ValueError(f"Unknown chain id {chain_id}; an RPC URL is required")
        return ChainConfig(chain_id, f"Chain {chain_id}", rpc_url)
    if rpc_url:
        return replace(chain, rpc_url=rpc_url)
    return chain
