"""
Error taxonomy for the attestation relayer.

Every error raised inside a pass derives from RelayerError so the
scheduler can catch it at the pass boundary.
"""

from typing import Optional

from .models import ProveErrorKind


class RelayerError(Exception):
    """Base class for pass-level errors."""


class ChainReadError(RelayerError):
    """Node unreachable, timed out, or returned a malformed response."""


class ExtractionError(RelayerError):
    """Receipt does not contain the logs the filter promised."""

    def __init__(self, tx_hash: str, message: str):
        self.tx_hash = tx_hash
        super().__init__(f"{tx_hash}: {message}")


class ProveError(RelayerError):
    """Proving capability rejected the request or could not be reached."""

    def __init__(self, kind: ProveErrorKind, message: str):
        self.kind = kind
        self.message = message
        super().__init__(f"{kind.value}: {message}")


class SubmitError(RelayerError):
    """Attestation network refused or failed the submission."""


class FinalityError(RelayerError):
    """Submitted query failed or did not finalize in time."""

    def __init__(self, message: str, query_key: Optional[str] = None):
        self.query_key = query_key
        super().__init__(message)
