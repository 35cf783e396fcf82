# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""Configuration management for Truth Camera."""

from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TRUTH_CAMERA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Registry (both required for submit/verify)
    registry_address: Optional[str] = None
    chain_id: Optional[int] = None
    rpc_url: Optional[str] = None  # Defaults to the chain catalogue's URL

    # Wallet
    wallet_priority: str = "injected,embedded"  # Comma-separated backend order
    embedded_private_key: Optional[str] = None
    injected_provider_url: Optional[str] = None  # EIP-1193 JSON-RPC bridge

    # Capture
    camera_backend: Literal["auto", "opencv", "picamera2", "mock"] = "auto"
    camera_device: int = 0
    capture_tier_timeout: float = 1.5
    preview_ready_wait: float = 0.2
    jpeg_quality: int = 90

    # Registry client
    confirmation_timeout: float = 120.0
    read_retries: int = 3
    rpc_timeout: float = 10.0

    # Local proof history
    proof_store_url: str = "sqlite:///./data/proofs.db"

    # Verifier API
    api_host: str = "127.0.0.1"
    api_port: int = 8080

    # Logging
    log_level: str = "INFO"

    @field_validator("registry_address")
    @classmethod
    def _blank_address_is_missing(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @property
    def wallet_priority_list(self) -> list[str]:
        """Parse wallet backend priority from comma-separated string."""
        return [kind.strip() for kind in self.wallet_priority.split(",") if kind.strip()]

    def require_registry(self) -> tuple[str, int]:
        """
        Return (registry_address, chain_id) or fail closed.

        Raises:
            ConfigurationError: If either value is missing or malformed
        """
        if not self.registry_address or self.chain_id is None:
            raise ConfigurationError(
                "TRUTH_CAMERA_REGISTRY_ADDRESS and TRUTH_CAMERA_CHAIN_ID must both be set"
            )
        address = self.registry_address.strip()
        if not (address.startswith("0x") and len(address) == 42):
            raise ConfigurationError(f"Malformed registry address: {address!r}")
        try:
            int(address, 16)
        except ValueError:
            raise ConfigurationError(f"Malformed registry address: {address!r}") from None
        return address, self.chain_id


def get_settings() -> Settings:
    """Load settings fresh from the environment."""
    return Settings()
