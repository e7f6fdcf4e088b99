"""
Data model for one relayer pass.

Everything here except the cursor is pass-scoped: built while scanning a
block range and discarded once the pass ends.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


def normalize_hex(value: Any) -> str:
    """Lowercase 0x-prefixed hex for bytes, HexBytes or hex strings."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value).lower()
    if not text.startswith("0x"):
        text = "0x" + text
    return text


@dataclass(frozen=True)
class BlockRange:
    """Inclusive block range [from_block, to_block]."""

    from_block: int
    to_block: int

    def __post_init__(self) -> None:
        if self.from_block < 0:
            raise ValueError(f"from_block must be >= 0, got {self.from_block}")
        if self.from_block > self.to_block:
            raise ValueError(
                f"from_block ({self.from_block}) must be <= to_block ({self.to_block})"
            )

    def __len__(self) -> int:
        return self.to_block - self.from_block + 1

    def __str__(self) -> str:
        return f"[{self.from_block},{self.to_block}]"


@dataclass(frozen=True)
class LogEvent:
    """A log returned by the node's log filter."""

    tx_hash: str
    block_number: int
    log_index: int
    address: str
    topics: tuple[str, ...]


@dataclass(frozen=True)
class ReceiptLog:
    """One log inside a transaction receipt."""

    address: str
    topics: tuple[str, ...]
    data: str = "0x"

    @property
    def topic0(self) -> Optional[str]:
        return self.topics[0] if self.topics else None


@dataclass(frozen=True)
class Receipt:
    """Transaction receipt, reduced to what extraction needs."""

    tx_hash: str
    block_number: int
    logs: tuple[ReceiptLog, ...]


@dataclass(frozen=True)
class MatchedLogEntry:
    """
    A single field of a single log of a single receipt, to be proven.

    log_pos is the position of the log within its receipt's log list,
    which is what the prover binds the proof to.
    """

    tx_hash: str
    block_number: int
    log_pos: int
    topic0: str
    address: str
    field_index: int
    is_topic: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "fields": [
                {
                    "log_pos": self.log_pos,
                    "is_topic": self.is_topic,
                    "field_index": self.field_index,
                }
            ],
        }


@dataclass(frozen=True)
class TxEntries:
    """Entries contributed by one transaction, in ascending log position."""

    tx_hash: str
    block_number: int
    entries: tuple[MatchedLogEntry, ...]


@dataclass(frozen=True)
class AttestationRequest:
    """Ordered per-transaction groups of entries sent to the prover."""

    groups: tuple[TxEntries, ...]

    def __post_init__(self) -> None:
        if not self.groups or not any(g.entries for g in self.groups):
            raise ValueError("AttestationRequest must contain at least one entry")

    @property
    def entries(self) -> list[MatchedLogEntry]:
        return [entry for group in self.groups for entry in group.entries]

    @property
    def tx_hashes(self) -> list[str]:
        return [group.tx_hash for group in self.groups]

    @property
    def first_block(self) -> int:
        return min(group.block_number for group in self.groups)

    @property
    def last_block(self) -> int:
        return max(group.block_number for group in self.groups)

    def __len__(self) -> int:
        return sum(len(group.entries) for group in self.groups)

    def to_dict(self) -> dict[str, Any]:
        """JSON body for the prover: one receipt item per entry."""
        return {"receipts": [entry.to_dict() for entry in self.entries]}


class ProveErrorKind(str, Enum):
    """Classification of prover failures."""

    INVALID_INPUT = "invalid_input"
    INVALID_CUSTOM_INPUT = "invalid_custom_input"
    PROVE_FAILED = "prove_failed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ProofResult:
    """Either a proof or a classified prover error."""

    proof: Optional[bytes] = None
    error_kind: Optional[ProveErrorKind] = None
    error_message: str = ""

    @classmethod
    def ok(cls, proof: bytes) -> "ProofResult":
        return cls(proof=proof)

    @classmethod
    def error(cls, kind: ProveErrorKind, message: str) -> "ProofResult":
        return cls(error_kind=kind, error_message=message)

    @property
    def is_ok(self) -> bool:
        return self.error_kind is None and self.proof is not None


@dataclass(frozen=True)
class SubmissionReceipt:
    """Handle returned by the attestation network for a submitted query."""

    query_key: str
    chain_id: int


class PipelineStage(str, Enum):
    """States of the prove/submit/finalize state machine."""

    BUILT = "built"
    PROVING = "proving"
    PROVEN = "proven"
    PROVE_FAILED = "prove_failed"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    SUBMIT_FAILED = "submit_failed"
    AWAITING_FINALITY = "awaiting_finality"
    FINALIZED = "finalized"
    FINALITY_FAILED = "finality_failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STAGES


_TERMINAL_STAGES = frozenset(
    {
        PipelineStage.PROVE_FAILED,
        PipelineStage.SUBMIT_FAILED,
        PipelineStage.FINALIZED,
        PipelineStage.FINALITY_FAILED,
    }
)


class PassStatus(str, Enum):
    """Outcome of one scheduler pass."""

    UP_TO_DATE = "up_to_date"
    NO_EVENTS = "no_events"
    FINALIZED = "finalized"
    PARTIAL = "partial"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class PassReport:
    """Summary of one pass, kept as the relayer's last report."""

    status: PassStatus
    cursor_before: int
    cursor_after: int
    block_range: Optional[BlockRange] = None
    stage: Optional[PipelineStage] = None
    entry_count: int = 0
    failed_txs: list[str] = field(default_factory=list)
    query_keys: list[str] = field(default_factory=list)
    error: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None

    @property
    def advanced(self) -> bool:
        return self.cursor_after > self.cursor_before

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "stage": self.stage.value if self.stage else None,
            "from_block": self.block_range.from_block if self.block_range else None,
            "to_block": self.block_range.to_block if self.block_range else None,
            "cursor_before": self.cursor_before,
            "cursor_after": self.cursor_after,
            "entry_count": self.entry_count,
            "failed_txs": list(self.failed_txs),
            "query_keys": list(self.query_keys),
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
