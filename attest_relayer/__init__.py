"""
Attestation Relayer

Watches an EVM contract for a target event, extracts the matching receipt
logs, has them proven by a zero-knowledge prover and submits the proof to
an attestation network, waiting for finality.

Usage:
    # Run the relayer
    attest-relayer run --config .env

    # Run a single pass (for testing)
    attest-relayer run --once

    # Inspect what a range would prove
    attest-relayer scan 21348491 21348493
"""

__version__ = "0.1.0"

from .config import Settings, load_settings
from .models import AttestationRequest, BlockRange, MatchedLogEntry, PassReport
from .relayer import Relayer
from .extractor import EventExtractor
from .pipeline import ProofPipeline
from .store import MemoryStateStore, SqlStateStore

__all__ = [
    "__version__",
    "Settings",
    "load_settings",
    "AttestationRequest",
    "BlockRange",
    "MatchedLogEntry",
    "PassReport",
    "Relayer",
    "EventExtractor",
    "ProofPipeline",
    "MemoryStateStore",
    "SqlStateStore",
]
