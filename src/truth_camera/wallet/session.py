# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""
Wallet session: one connect/chain/sign capability over pluggable backends.

Backends are tried in priority order on ``connect()``. Once attached, the
session reacts to the backend's pushed events. Any account or chain change
invalidates the cached signer and produces a new WalletSessionState.
"""

import logging
from typing import Callable, Optional

from eth_utils import to_checksum_address

from ..errors import NetworkMismatch, NotConnected, NoSigner, UserRejected, WalletError
from ..models import BackendKind, WalletSessionState
from .backends import ChainNotAdded, EmbeddedBackend, InjectedBackend, Signer, WalletBackend
from .chains import ChainConfig, parse_chain_id

logger = logging.getLogger(__name__)

StateListener = Callable[[WalletSessionState], None]


class WalletSession:
    """
    Args:
        backends: Candidate backends, highest priority first
        target_chain: Chain the registry lives on
    """

    def __init__(self, backends: list[WalletBackend], target_chain: ChainConfig):
        self.backends = list(backends)
        self.target_chain = target_chain
        self._backend: Optional[WalletBackend] = None
        self._state = WalletSessionState()
        self._signer: Optional[Signer] = None
        self._listeners: list[StateListener] = []
        self._handlers: dict[str, Callable] = {
            "accountsChanged": self._on_accounts_changed,
            "chainChanged": self._on_chain_changed,
            "disconnect": self._on_disconnect,
        }

    # --- state --------------------------------------------------------------

    @property
    def state(self) -> WalletSessionState:
        return self._state

    @property
    def backend(self) -> Optional[WalletBackend]:
        return self._backend

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _set_state(self, state: WalletSessionState) -> None:
        if state == self._state:
            return
        self._state = state
        logger.info(
            f"Wallet state: backend={state.backend_kind.value} "
            f"address={state.address} chain={state.chain_id}"
        )
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Wallet state listener failed")

    # --- backend events -----------------------------------------------------

    def _on_accounts_changed(self, accounts) -> None:
        self._signer = None
        if not accounts:
            self._detach()
            return
        self._set_state(WalletSessionState(
            backend_kind=self._state.backend_kind,
            address=to_checksum_address(accounts[0]),
            chain_id=self._state.chain_id,
            has_signer=True,
        ))

    def _on_chain_changed(self, chain_id) -> None:
        self._signer = None
        self._set_state(WalletSessionState(
            backend_kind=self._state.backend_kind,
            address=self._state.address,
            chain_id=parse_chain_id(chain_id),
            has_signer=bool(self._state.address),
        ))

    def _on_disconnect(self, *_args) -> None:
        self._detach()

    def _attach(self, backend: WalletBackend) -> None:
        self._backend = backend
        for event, handler in self._handlers.items():
            backend.on(event, handler)

    def _detach(self) -> None:
        if self._backend is not None:
            for event, handler in self._handlers.items():
                self._backend.remove_listener(event, handler)
        self._backend = None
        self._signer = None
        self._set_state(WalletSessionState())

    # --- capability ---------------------------------------------------------

    async def connect(self) -> WalletSessionState:
        """
        Connect the first available backend.

        Raises:
            NotConnected: If no backend is available or all failed
            UserRejected: If the user declined the connection request
        """
        if self._backend is not None and self._state.is_connected:
            return self._state

        errors = []
        for backend in self.backends:
            if not backend.is_available():
                continue
            try:
                address = await backend.connect()
                chain_id = await backend.get_chain_id()
            except UserRejected:
                raise
            except WalletError as e:
                logger.warning(f"{backend.kind.value} wallet failed to connect: {e}")
                errors.append(f"{backend.kind.value}: {e}")
                continue

            self._attach(backend)
            self._set_state(WalletSessionState(
                backend_kind=backend.kind,
                address=to_checksum_address(address),
                chain_id=chain_id,
                has_signer=True,
            ))
            logger.info(f"✓ Wallet connected via {backend.kind.value}: {address}")
            return self._state

        raise NotConnected("; ".join(errors) if errors else "No wallet backend available")

    async def disconnect(self) -> None:
        backend = self._backend
        if backend is None:
            return
        self._detach()
        await backend.disconnect()

    async def get_address(self) -> Optional[str]:
        return self._state.address

    async def get_chain_id(self) -> Optional[int]:
        return self._state.chain_id

    def _require_backend(self) -> WalletBackend:
        if self._backend is None or not self._state.is_connected:
            raise NotConnected()
        return self._backend

    async def switch_chain(self, target: ChainConfig) -> None:
        backend = self._require_backend()
        await backend.switch_chain(target)
        # Backends that do not push chainChanged still get a consistent state
        self._on_chain_changed(await backend.get_chain_id())

    async def ensure_chain(self, target: Optional[ChainConfig] = None) -> None:
        """
        Make the wallet's active chain the target chain.

        Switches if needed; registers the chain first when the wallet does
        not know it.

        Raises:
            NotConnected: If no wallet is connected
            NetworkMismatch: If the user declined the add or switch request
        """
        target = target or self.target_chain
        backend = self._require_backend()
        if self._state.chain_id == target.chain_id:
            return

        logger.info(f"Requesting switch from chain {self._state.chain_id} to {target.name}")
        try:
            try:
                await self.switch_chain(target)
            except ChainNotAdded:
                logger.info(f"Wallet does not know {target.name}; adding it")
                await backend.add_chain(target)
                await self.switch_chain(target)
        except (UserRejected, ChainNotAdded) as e:
            raise NetworkMismatch(f"Switch to {target.name} declined: {e}") from e

        if self._state.chain_id != target.chain_id:
            raise NetworkMismatch(
                f"Wallet still on chain {self._state.chain_id}, expected {target.chain_id}"
            )

    async def get_signer(self) -> Signer:
        """
        Raises:
            NotConnected: If no wallet is connected
            NoSigner: If the backend cannot produce a signer
        """
        backend = self._require_backend()
        if self._signer is None:
            try:
                self._signer = await backend.get_signer()
            except NotConnected:
                raise
            except WalletError as e:
                raise NoSigner(str(e)) from e
        return self._signer

    def describe(self) -> str:
        state = self._state
        if not state.is_connected:
            return "Not connected"
        address = state.address
        return f"{address[:6]}...{address[-4:]} ({state.backend_kind.value}, chain {state.chain_id})"


def create_wallet_session(
    target_chain: ChainConfig,
    priority: list[str],
    embedded_private_key: Optional[str] = None,
    injected_provider=None,
    known_chains: Optional[dict[int, ChainConfig]] = None,
) -> WalletSession:
    """
    Build a session with backends ordered by configured priority.

    Args:
        target_chain: Registry chain
        priority: Backend kinds, e.g. ["injected", "embedded"]
        embedded_private_key: Key for the embedded backend (optional)
        injected_provider: EIP-1193 provider for the injected backend (optional)
    """
    builders = {
        BackendKind.EMBEDDED.value: lambda: EmbeddedBackend(
            embedded_private_key, target_chain, known_chains
        ),
        BackendKind.INJECTED.value: lambda: InjectedBackend(injected_provider),
    }

    backends = []
    for kind in priority:
        if kind not in builders:
            raise ValueError(f"Unknown wallet backend: {kind}")
        backends.append(builders[kind]())
    return WalletSession(backends, target_chain)
