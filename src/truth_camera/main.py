# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""
Truth Camera - Main CLI Application

Capture a photo, anchor its SHA-256 digest in the on-chain registry, and
verify files against it later.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from eth_account import Account

from . import __version__
from .capture import CaptureEngine, create_camera_backend, default_strategies
from .config import Settings, get_settings
from .controller import OrchestrationController
from .errors import ConfigurationError, TruthCameraError
from .hashing import digest
from .registry import LocalRegistry, create_registry_client
from .store import ProofStore, SqlProofStore
from .wallet import LOCALHOST, ChainConfig, RpcWalletProvider, create_wallet_session, get_chain

logger = logging.getLogger(__name__)


def resolve_chain(settings: Settings, use_mock_chain: bool = False) -> ChainConfig:
    """
    Chain the registry lives on.

    Raises:
        ConfigurationError: If the chain cannot be determined
    """
    if use_mock_chain and settings.chain_id is None:
        return LOCALHOST
    if use_mock_chain:
        chain_id = settings.chain_id
    else:
        _, chain_id = settings.require_registry()
    try:
        return get_chain(chain_id, settings.rpc_url)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


class TruthCamera:
    """
    Main application wiring capture, wallet, registry and history together.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        use_mock_camera: bool = False,
        use_mock_chain: bool = False,
        store: Optional[ProofStore] = None,
        registry: Optional[LocalRegistry] = None,
    ):
        """
        Initialize Truth Camera.

        Args:
            settings: Application settings (loaded from the environment if None)
            use_mock_camera: Use synthetic frames instead of a real camera
            use_mock_chain: Use an in-process registry instead of a chain
            store: Proof history (SqlProofStore at proof_store_url if None)
            registry: Shared in-process registry for mock-chain mode

        Raises:
            ConfigurationError: If not mock-chain and the registry is not configured
        """
        self.settings = settings or get_settings()
        self.use_mock_chain = use_mock_chain
        self.chain = resolve_chain(self.settings, use_mock_chain)

        self.provider = None
        if self.settings.injected_provider_url:
            self.provider = RpcWalletProvider(
                self.settings.injected_provider_url, timeout=self.settings.rpc_timeout
            )

        private_key = self.settings.embedded_private_key
        if use_mock_chain and not private_key and self.provider is None:
            private_key = Account.create().key.hex()
            logger.warning("⚠ No wallet configured; using an ephemeral development key")

        self.wallet = create_wallet_session(
            self.chain,
            self.settings.wallet_priority_list,
            embedded_private_key=private_key,
            injected_provider=self.provider,
        )
        self.registry = create_registry_client(
            self.settings, self.wallet, use_mock=use_mock_chain, registry=registry
        )

        backend = create_camera_backend(
            "mock" if use_mock_camera else self.settings.camera_backend,
            self.settings.camera_device,
        )
        self.engine = CaptureEngine(
            backend,
            default_strategies(self.settings.jpeg_quality, self.settings.preview_ready_wait),
            tier_timeout=self.settings.capture_tier_timeout,
        )
        self.store = store if store is not None else SqlProofStore(self.settings.proof_store_url)
        self.controller = OrchestrationController(self.engine, self.registry, self.wallet, self.store)

    async def capture_photo(self, output: Optional[Path] = None, submit: bool = True) -> dict:
        """
        Capture one photo and (optionally) anchor it.

        Returns:
            Dictionary with digest, tx_ref, submitter and timestamp
        """
        frame = await self.controller.take_photo()
        print(f"✓ Captured {frame.width}x{frame.height} via {frame.tier} ({len(frame)} bytes)")

        if output is not None:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_bytes(frame.data)
            print(f"✓ Saved: {output}")

        result = {'digest': None, 'tx_ref': None, 'submitter': None, 'timestamp': None}
        if not submit:
            result['digest'] = digest(frame.data)
            print(f"Digest: {result['digest']}")
            return result

        state = await self.wallet.connect()
        print(f"✓ Wallet: {self.wallet.describe()}")

        tx_ref = await self.controller.submit()
        result['digest'] = self.controller.digest
        result['tx_ref'] = tx_ref
        if self.controller.record is not None:
            result['submitter'] = self.controller.record.submitter
            result['timestamp'] = self.controller.record.timestamp
        else:
            result['submitter'] = state.address

        print(f"Digest: {result['digest']}")
        print(f"✓ Anchored in tx {tx_ref}")
        url = self.registry.explorer_url(tx_ref)
        if url:
            print(f"  {url}")
        return result

    async def verify_file(self, path: Path) -> bool:
        result = await self.controller.verify_file(path)
        self._print_verification(result)
        return result.exists

    async def lookup(self, value: str) -> bool:
        result = await self.controller.verify_digest(value)
        self._print_verification(result)
        return result.exists

    def _print_verification(self, result) -> None:
        print(f"Digest: {result.digest}")
        if result.exists:
            print("✓ Found in registry")
            print(f"  Submitter: {result.submitter}")
            print(f"  Timestamp: {result.timestamp}")
        else:
            print("✗ Not found in registry")

    async def show_info(self) -> None:
        """Show configuration and connectivity."""
        print("=== Truth Camera Info ===\n")
        print(f"Version: {__version__}")
        print(f"Chain: {self.chain.name} ({self.chain.chain_id})")
        print(f"Registry: {self.registry.address}")
        print(f"Camera backend: {self.engine.backend.name}")
        print(f"Wallet priority: {', '.join(self.settings.wallet_priority_list)}")
        try:
            deployed = await self.registry.is_deployed()
            print(f"Contract deployed: {'yes' if deployed else 'NO'}")
        except TruthCameraError as e:
            print(f"Contract deployed: unknown ({e.detail})")

    async def show_history(self, limit: int = 20, from_chain: bool = False) -> None:
        if from_chain:
            records = await self.registry.fetch_proof_events()
            records = records[-limit:]
        else:
            records = self.store.list_recent(limit)

        if not records:
            print("No proofs recorded")
            return
        for record in records:
            print(f"{record.digest}  {record.submitter}  {record.timestamp}  {record.tx_ref or '-'}")

    async def close(self) -> None:
        """Clean up resources."""
        self.controller.close()
        await self.wallet.disconnect()
        if self.provider is not None:
            await self.provider.close()
        if isinstance(self.store, SqlProofStore):
            self.store.close()


async def run_command(args: argparse.Namespace, settings: Settings) -> int:
    app = TruthCamera(
        settings,
        use_mock_camera=args.mock,
        use_mock_chain=args.mock_chain,
    )
    try:
        if args.command == 'capture':
            await app.capture_photo(output=args.output, submit=not args.no_submit)
            return 0
        if args.command == 'verify':
            return 0 if await app.verify_file(args.target) else 2
        if args.command == 'lookup':
            return 0 if await app.lookup(args.target) else 2
        if args.command == 'info':
            await app.show_info()
            return 0
        if args.command == 'history':
            await app.show_history(limit=args.limit, from_chain=args.chain)
            return 0
        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await app.close()


def serve(settings: Settings, use_mock_chain: bool = False) -> None:
    import uvicorn

    from .verifier_app import create_app

    app = create_app(settings, use_mock_chain=use_mock_chain)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


def main(argv: Optional[list[str]] = None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Truth Camera: anchor photo digests on-chain and verify them',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Capture and anchor a photo
  python -m truth_camera capture --output photo.jpg

  # Development without camera or chain
  python -m truth_camera capture --mock --mock-chain

  # Verify a file
  python -m truth_camera verify photo.jpg

  # Look up a digest
  python -m truth_camera lookup 3a7bd3e2360a3d29eea436fcfb7e44c735d117c42d1c1835420b6b9942dd4f1b

  # Run the verifier API
  python -m truth_camera serve
        """
    )

    parser.add_argument(
        'command',
        choices=['capture', 'verify', 'lookup', 'info', 'history', 'serve'],
        help='Command to execute'
    )

    parser.add_argument(
        'target',
        nargs='?',
        help='File to verify (verify) or digest to look up (lookup)'
    )

    parser.add_argument(
        '--output',
        type=Path,
        help='Save the captured image to this path'
    )

    parser.add_argument(
        '--no-submit',
        action='store_true',
        help='Capture and hash only; do not submit'
    )

    parser.add_argument(
        '--limit',
        type=int,
        default=20,
        help='Number of history entries to show (default: 20)'
    )

    parser.add_argument(
        '--chain',
        action='store_true',
        help='Read history from registry events instead of the local store'
    )

    parser.add_argument(
        '--mock',
        action='store_true',
        help='Use mock camera for testing'
    )

    parser.add_argument(
        '--mock-chain',
        action='store_true',
        help='Use an in-process registry instead of a chain'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if args.command in ('verify', 'lookup') and not args.target:
        print(f"Error: {args.command} requires a target")
        sys.exit(1)
    if args.command == 'verify':
        args.target = Path(args.target)

    try:
        if args.command == 'serve':
            serve(settings, use_mock_chain=args.mock_chain)
            return
        sys.exit(asyncio.run(run_command(args, settings)))

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(1)

    except TruthCameraError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"\nError: {e.user_message}")
        if e.detail != e.user_message:
            print(f"  ({e.detail})")
        sys.exit(1)

    except (FileNotFoundError, ValueError) as e:
        print(f"\nError: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
