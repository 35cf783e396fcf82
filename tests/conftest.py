"""Pytest configuration and fixtures."""

import itertools

import pytest

from truth_camera.capture import CaptureEngine, MockCameraBackend
from truth_camera.registry import LocalRegistry, MockRegistryClient
from truth_camera.store import MemoryProofStore
from truth_camera.wallet import LOCALHOST, EmbeddedBackend, InjectedBackend, WalletSession
from truth_camera.wallet.provider import (
    UNRECOGNIZED_CHAIN,
    USER_REJECTED,
    EventEmitter,
    ProviderRpcError,
)

# Well-known development keys (Hardhat/Anvil accounts #0 and #1)
DEV_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
DEV_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
DEV_KEY_2 = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
DEV_ADDRESS_2 = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

FIXED_TIME = 1_700_000_000


class FakeInjectedProvider(EventEmitter):
    """
    In-memory EIP-1193 provider.

    Records every request and answers like a browser wallet would. Flags
    make individual prompts fail with user rejection.
    """

    def __init__(self, accounts=None, chain_id=LOCALHOST.chain_id, known_chains=None):
        super().__init__()
        self.accounts = list(accounts if accounts is not None else [DEV_ADDRESS])
        self.chain_id = chain_id
        self.known_chains = set(known_chains or {chain_id})
        self.requests: list[tuple[str, list]] = []
        self.reject_connect = False
        self.reject_switch = False
        self.reject_add = False
        self.reject_tx = False
        self._tx_ids = itertools.count(1)

    async def request(self, method, params=None):
        params = params or []
        self.requests.append((method, params))

        if method == "eth_requestAccounts":
            if self.reject_connect:
                raise ProviderRpcError(USER_REJECTED, "User rejected the request.")
            return list(self.accounts)
        if method == "eth_accounts":
            return list(self.accounts)
        if method == "eth_chainId":
            return hex(self.chain_id)
        if method == "wallet_switchEthereumChain":
            target = int(params[0]["chainId"], 16)
            if target not in self.known_chains:
                raise ProviderRpcError(UNRECOGNIZED_CHAIN, "Unrecognized chain ID")
            if self.reject_switch:
                raise ProviderRpcError(USER_REJECTED, "User rejected the request.")
            self.change_chain(target)
            return None
        if method == "wallet_addEthereumChain":
            if self.reject_add:
                raise ProviderRpcError(USER_REJECTED, "User rejected the request.")
            self.known_chains.add(int(params[0]["chainId"], 16))
            return None
        if method == "eth_sendTransaction":
            if self.reject_tx:
                raise ProviderRpcError(USER_REJECTED, "User denied transaction signature.")
            return "0x" + f"{next(self._tx_ids):064x}"
        raise ProviderRpcError(4200, f"Unsupported method {method}")

    def methods(self) -> list[str]:
        return [method for method, _ in self.requests]

    # Simulated user actions in the wallet UI

    def change_chain(self, chain_id: int) -> None:
        if chain_id != self.chain_id:
            self.chain_id = chain_id
            self.emit("chainChanged", hex(chain_id))

    def change_accounts(self, accounts: list[str]) -> None:
        self.accounts = list(accounts)
        self.emit("accountsChanged", list(accounts))

    def disconnect(self) -> None:
        self.accounts = []
        self.emit("disconnect", ProviderRpcError(4900, "Disconnected"))


@pytest.fixture
def chain():
    return LOCALHOST


@pytest.fixture
def embedded_wallet(chain) -> WalletSession:
    return WalletSession([EmbeddedBackend(DEV_KEY, chain)], chain)


@pytest.fixture
def provider():
    return FakeInjectedProvider()


@pytest.fixture
def injected_wallet(provider, chain) -> WalletSession:
    return WalletSession([InjectedBackend(provider)], chain)


@pytest.fixture
def local_registry():
    return LocalRegistry(clock=lambda: FIXED_TIME)


@pytest.fixture
def registry_client(local_registry, embedded_wallet, chain):
    return MockRegistryClient(local_registry, chain, wallet=embedded_wallet)


@pytest.fixture
def camera():
    return MockCameraBackend(size=(64, 48))


@pytest.fixture
def engine(camera):
    return CaptureEngine(camera, tier_timeout=1.0)


@pytest.fixture
def store():
    return MemoryProofStore()
