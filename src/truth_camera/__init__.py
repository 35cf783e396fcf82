# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""
Truth Camera

Capture a photo, anchor its SHA-256 digest in an append-only on-chain
registry, and verify any file against that registry later.
"""

__version__ = "0.1.0"
