# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""
Wallet backends.

A backend is one concrete way of holding an account and signing with it:

    EmbeddedBackend: custodial key held in-process (eth_account)
    InjectedBackend: an EIP-1193 provider supplied from outside

Backends push ``accountsChanged``, ``chainChanged`` and ``disconnect``
events; the WalletSession listens and re-derives its state.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from eth_account import Account
from eth_utils import to_checksum_address
from web3 import AsyncHTTPProvider, AsyncWeb3

from ..errors import NetworkError, NotConnected, UserRejected, WalletError
from ..models import BackendKind
from .chains import ChainConfig, parse_chain_id
from .provider import USER_REJECTED, UNRECOGNIZED_CHAIN, EventEmitter, ProviderRpcError

logger = logging.getLogger(__name__)


class ChainNotAdded(NetworkError):
    """The wallet does not know the requested chain yet (EIP-1193 code 4902)."""

    user_message = "Your wallet does not know this network yet."


def translate_provider_error(exc: ProviderRpcError) -> WalletError:
    if exc.code == USER_REJECTED:
        return UserRejected(exc.message or None)
    return WalletError(str(exc))


class Signer(ABC):
    """Something that can authorize and broadcast a transaction."""

    def __init__(self, address: str):
        self.address = to_checksum_address(address)

    @abstractmethod
    async def send_transaction(self, tx: dict) -> str:
        """
        Sign and broadcast a transaction.

        Returns:
            Transaction hash (0x-prefixed hex)
        """


class LocalAccountSigner(Signer):
    """Signs with an in-process key and broadcasts the raw transaction."""

    def __init__(self, account, w3: AsyncWeb3):
        super().__init__(account.address)
        self._account = account
        self._w3 = w3

    async def send_transaction(self, tx: dict) -> str:
        tx = dict(tx)
        tx['from'] = self.address
        if 'nonce' not in tx:
            tx['nonce'] = await self._w3.eth.get_transaction_count(self.address, 'pending')
        if 'chainId' not in tx:
            tx['chainId'] = await self._w3.eth.chain_id
        if 'gas' not in tx:
            tx['gas'] = await self._w3.eth.estimate_gas(tx)
        if 'gasPrice' not in tx and 'maxFeePerGas' not in tx:
            tx['gasPrice'] = await self._w3.eth.gas_price

        signed = self._account.sign_transaction(tx)
        tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        return AsyncWeb3.to_hex(tx_hash)


def _rpc_quantity(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return hex(value)
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return value


class InjectedSigner(Signer):
    """Delegates signing to the provider's own ``eth_sendTransaction`` prompt."""

    def __init__(self, address: str, provider):
        super().__init__(address)
        self._provider = provider

    async def send_transaction(self, tx: dict) -> str:
        params = {key: _rpc_quantity(value) for key, value in tx.items() if key != 'nonce'}
        params['from'] = self.address
        try:
            return await self._provider.request("eth_sendTransaction", [params])
        except ProviderRpcError as e:
            if e.code == USER_REJECTED:
                raise UserRejected(e.message or None) from e
            raise


class WalletBackend(EventEmitter, ABC):
    """One pluggable implementation of the wallet capability."""

    kind = BackendKind.NONE

    @abstractmethod
    def is_available(self) -> bool:
        """Whether this backend can be used in the current environment."""

    @abstractmethod
    async def connect(self) -> str:
        """Connect and return the active address."""

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    @abstractmethod
    async def get_address(self) -> Optional[str]:
        ...

    @abstractmethod
    async def get_chain_id(self) -> int:
        ...

    @abstractmethod
    async def switch_chain(self, chain: ChainConfig) -> None:
        """
        Raises:
            ChainNotAdded: If the wallet does not know the chain
            UserRejected: If the user declines the switch
        """

    @abstractmethod
    async def add_chain(self, chain: ChainConfig) -> None:
        ...

    @abstractmethod
    async def get_signer(self) -> Signer:
        ...


class EmbeddedBackend(WalletBackend):
    """
    Custodial wallet: the private key lives in this process.

    Args:
        private_key: Hex private key (None makes the backend unavailable)
        chain: Chain the wallet starts on
        known_chains: Chains the wallet can switch to without adding them first
    """

    kind = BackendKind.EMBEDDED

    def __init__(
        self,
        private_key: Optional[str],
        chain: ChainConfig,
        known_chains: Optional[dict[int, ChainConfig]] = None,
    ):
        super().__init__()
        self._private_key = private_key
        self._account = None
        self._chain = chain
        self._known = dict(known_chains or {})
        self._known[chain.chain_id] = chain

    def is_available(self) -> bool:
        return bool(self._private_key)

    async def connect(self) -> str:
        if not self._private_key:
            raise NotConnected("No embedded wallet key configured")
        if self._account is None:
            self._account = Account.from_key(self._private_key)
            logger.info(f"Embedded wallet unlocked: {self._account.address}")
            self.emit("accountsChanged", [self._account.address])
        return self._account.address

    async def disconnect(self) -> None:
        if self._account is not None:
            self._account = None
            self.emit("disconnect", None)

    async def get_address(self) -> Optional[str]:
        return self._account.address if self._account else None

    async def get_chain_id(self) -> int:
        return self._chain.chain_id

    async def switch_chain(self, chain: ChainConfig) -> None:
        if chain.chain_id not in self._known:
            raise ChainNotAdded(f"Chain {chain.chain_id} not configured in embedded wallet")
        if chain.chain_id != self._chain.chain_id:
            self._chain = self._known[chain.chain_id]
            logger.info(f"Embedded wallet switched to {self._chain.name}")
            self.emit("chainChanged", self._chain.hex_id)

    async def add_chain(self, chain: ChainConfig) -> None:
        self._known[chain.chain_id] = chain

    async def get_signer(self) -> Signer:
        if self._account is None:
            raise NotConnected()
        w3 = AsyncWeb3(AsyncHTTPProvider(self._chain.rpc_url))
        return LocalAccountSigner(self._account, w3)


class InjectedBackend(WalletBackend):
    """
    Wallet reached through an EIP-1193 provider.

    The provider needs ``request(method, params)``; if it also has
    ``on(event, handler)`` its events are forwarded.
    """

    kind = BackendKind.INJECTED

    def __init__(self, provider):
        super().__init__()
        self.provider = provider
        if provider is not None and hasattr(provider, "on"):
            for event in ("accountsChanged", "chainChanged", "disconnect"):
                provider.on(event, self._forwarder(event))

    def _forwarder(self, event: str):
        def forward(*args):
            self.emit(event, *args)
        return forward

    def is_available(self) -> bool:
        return self.provider is not None and callable(getattr(self.provider, "request", None))

    async def _request(self, method: str, params: Optional[list] = None):
        try:
            return await self.provider.request(method, params or [])
        except ProviderRpcError as e:
            raise translate_provider_error(e) from e

    async def connect(self) -> str:
        accounts = await self._request("eth_requestAccounts")
        if not accounts:
            raise NotConnected("Wallet returned no accounts")
        return to_checksum_address(accounts[0])

    async def disconnect(self) -> None:
        # Injected wallets cannot be disconnected remotely; forget locally
        self.emit("disconnect", None)

    async def get_address(self) -> Optional[str]:
        accounts = await self._request("eth_accounts")
        return to_checksum_address(accounts[0]) if accounts else None

    async def get_chain_id(self) -> int:
        return parse_chain_id(await self._request("eth_chainId"))

    async def switch_chain(self, chain: ChainConfig) -> None:
        try:
            await self.provider.request("wallet_switchEthereumChain", [{"chainId": chain.hex_id}])
        except ProviderRpcError as e:
            if e.code == UNRECOGNIZED_CHAIN:
                raise ChainNotAdded(e.message or None) from e
            raise translate_provider_error(e) from e

    async def add_chain(self, chain: ChainConfig) -> None:
        await self._request("wallet_addEthereumChain", [chain.to_add_params()])

    async def get_signer(self) -> Signer:
        address = await self.get_address()
        if not address:
            raise NotConnected()
        return InjectedSigner(address, self.provider)
