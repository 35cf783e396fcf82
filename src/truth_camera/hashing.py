# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""
Standardized hashing utilities for Truth Camera.

All digests are SHA-256 over the raw image bytes only: no filename, no
timestamp, no EXIF rewriting. Any byte-level change, including a lossless
re-encode, yields a different digest. That is intended.
"""

import hashlib
import re
from pathlib import Path
from typing import Union

# Registry key for "no hash"; the contract rejects it.
ZERO_DIGEST = "0" * 64

_CHUNK_SIZE = 1024 * 1024
_HEX_DIGEST = re.compile(r"[0-9a-fA-F]{64}")


def digest(data: bytes) -> str:
    """
    Compute SHA-256 hash of raw bytes.

    Args:
        data: Raw image bytes (e.g., a captured JPEG)

    Returns:
        64-character hex string (lowercase)

    Example:
        >>> digest(b"abc")[:16]
        'ba7816bf8f01cfea'
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError(f"digest() takes bytes, not {type(data).__name__}")
    return hashlib.sha256(data).hexdigest()


def digest_file(path: Union[str, Path]) -> str:
    """
    Hash a file's bytes, streaming it in chunks.

    Args:
        path: Path to image file

    Returns:
        Hex string of SHA-256 hash (64 characters)
    """
    sha256 = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b''):
            sha256.update(chunk)
    return sha256.hexdigest()


def verify_hash_format(hash_string) -> bool:
    """
    Verify that a value is a valid SHA-256 hex digest.

    Example:
        >>> verify_hash_format("a" * 64)
        True
        >>> verify_hash_format("not a hash")
        False
    """
    if not isinstance(hash_string, str):
        return False
    return _HEX_DIGEST.fullmatch(hash_string) is not None


def normalize_digest(value: str) -> str:
    """Strip an optional ``0x`` prefix and lowercase a hex digest."""
    if value.startswith(("0x", "0X")):
        value = value[2:]
    return value.lower()


def to_bytes32(value: str) -> bytes:
    """
    Encode a hex digest into the registry's fixed-width bytes32 key.

    Shorter values are left-padded with zeros, so submit and verify always
    agree on the key for the same digest.

    Raises:
        ValueError: If the value is not hex or longer than 32 bytes
    """
    hex_value = normalize_digest(value)
    if len(hex_value) > 64:
        raise ValueError(f"Digest longer than 32 bytes: {value!r}")
    if len(hex_value) % 2:
        hex_value = "0" + hex_value
    try:
        raw = bytes.fromhex(hex_value)
    except ValueError:
        raise ValueError(f"Digest is not valid hex: {value!r}") from None
    return raw.rjust(32, b"\x00")


def from_bytes32(key: bytes) -> str:
    """Decode a bytes32 registry key back to a 64-character hex digest."""
    if len(key) != 32:
        raise ValueError(f"Expected 32 bytes, got {len(key)}")
    return bytes(key).hex()


def is_zero_digest(value: str) -> bool:
    return to_bytes32(value) == bytes(32)
