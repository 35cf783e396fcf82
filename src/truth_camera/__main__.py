# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""
Main entry point for running truth_camera as a module.

Allows running:
    python -m truth_camera capture --mock --mock-chain
"""

from .main import main

if __name__ == "__main__":
    main()
