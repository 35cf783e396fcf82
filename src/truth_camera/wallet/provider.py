# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""
EIP-1193 style wallet provider over HTTP JSON-RPC.

Talks to an external wallet bridge (a desktop wallet or signer that exposes
the standard ``eth_requestAccounts`` / ``wallet_switchEthereumChain`` /
``eth_sendTransaction`` methods). HTTP has no server push, so the provider
emits ``accountsChanged`` and ``chainChanged`` itself whenever a response
shows the account or chain moved.
"""

import itertools
import logging
from collections import defaultdict
from typing import Any, Callable, Optional

import httpx

from .chains import parse_chain_id

logger = logging.getLogger(__name__)

# EIP-1193 provider error codes
USER_REJECTED = 4001
UNAUTHORIZED = 4100
UNSUPPORTED_METHOD = 4200
DISCONNECTED = 4900
CHAIN_DISCONNECTED = 4901
UNRECOGNIZED_CHAIN = 4902


class ProviderRpcError(Exception):
    """Error returned by an EIP-1193 provider."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.data = data


class EventEmitter:
    """Minimal ``on`` / ``remove_listener`` / ``emit`` event hub."""

    def __init__(self):
        self._listeners: dict[str, list[Callable]] = defaultdict(list)

    def on(self, event: str, handler: Callable) -> None:
        self._listeners[event].append(handler)

    def remove_listener(self, event: str, handler: Callable) -> None:
        if handler in self._listeners.get(event, []):
            self._listeners[event].remove(handler)

    def emit(self, event: str, *args) -> None:
        for handler in list(self._listeners.get(event, [])):
            try:
                handler(*args)
            except Exception:
                logger.exception(f"Listener for {event} failed")


class RpcWalletProvider(EventEmitter):
    """
    EIP-1193 provider backed by a JSON-RPC wallet endpoint.

    Args:
        url: Wallet bridge URL (e.g. http://127.0.0.1:1248)
        timeout: Request timeout in seconds
        client: Optional pre-built httpx.AsyncClient (tests inject a MockTransport)
    """

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        super().__init__()
        self.url = url
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={'User-Agent': 'Truth-Camera/0.1.0'},
        )
        self._ids = itertools.count(1)
        self._accounts: Optional[list[str]] = None
        self._chain_id: Optional[str] = None

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        """
        Send one JSON-RPC request.

        Raises:
            ProviderRpcError: On a JSON-RPC error object or transport failure
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        try:
            response = await self._client.post(self.url, json=payload)
        except httpx.TimeoutException:
            raise ProviderRpcError(DISCONNECTED, f"Wallet timeout at {self.url}") from None
        except httpx.TransportError as e:
            self._mark_disconnected()
            raise ProviderRpcError(DISCONNECTED, f"Cannot connect to wallet at {self.url}: {e}") from e

        if response.status_code != 200:
            raise ProviderRpcError(
                DISCONNECTED, f"HTTP {response.status_code}: {response.text}"
            )

        data = response.json()
        if data.get("error"):
            error = data["error"]
            raise ProviderRpcError(error.get("code", -32603), error.get("message", ""), error.get("data"))

        result = data.get("result")
        self._observe(method, params or [], result)
        return result

    def _observe(self, method: str, params: list, result: Any) -> None:
        if method in ("eth_accounts", "eth_requestAccounts"):
            accounts = list(result or [])
            if self._accounts is not None and accounts != self._accounts:
                self.emit("accountsChanged", accounts)
            self._accounts = accounts
        elif method == "eth_chainId":
            self._set_chain(result)
        elif method == "wallet_switchEthereumChain" and params:
            self._set_chain(params[0].get("chainId"))

    def _set_chain(self, chain_id: Optional[str]) -> None:
        if chain_id is None:
            return
        chain_id = hex(parse_chain_id(chain_id))
        if self._chain_id is not None and chain_id != self._chain_id:
            self.emit("chainChanged", chain_id)
        self._chain_id = chain_id

    def _mark_disconnected(self) -> None:
        if self._accounts:
            self._accounts = None
            self.emit("disconnect", ProviderRpcError(DISCONNECTED, "Wallet unreachable"))

    async def close(self) -> None:
        await self._client.aclose()
