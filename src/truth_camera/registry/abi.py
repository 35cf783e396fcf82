# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""ABI of the TruthCamera registry contract (contracts/TruthCamera.sol)."""

REGISTRY_ABI = [
    {
        "type": "function",
        "name": "submit",
        "inputs": [{"name": "hash", "type": "bytes32"}],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "verify",
        "inputs": [{"name": "hash", "type": "bytes32"}],
        "outputs": [
            {"name": "exists", "type": "bool"},
            {"name": "submitter", "type": "address"},
            {"name": "timestamp", "type": "uint64"},
        ],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "proofs",
        "inputs": [{"name": "", "type": "bytes32"}],
        "outputs": [
            {"name": "submitter", "type": "address"},
            {"name": "timestamp", "type": "uint64"},
        ],
        "stateMutability": "view",
    },
    {
        "type": "event",
        "name": "ProofSubmitted",
        "anonymous": False,
        "inputs": [
            {"name": "hash", "type": "bytes32", "indexed": True},
            {"name": "submitter", "type": "address", "indexed": True},
            {"name": "timestamp", "type": "uint64", "indexed": False},
        ],
    },
]

# Revert reasons emitted by the contract
REVERT_EMPTY_HASH = "empty hash"
REVERT_ALREADY_SUBMITTED = "already submitted"
