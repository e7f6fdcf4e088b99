"""
Proof pipeline: prove -> submit -> wait for finality.

    BUILT -> PROVING -> { PROVEN, PROVE_FAILED }
    PROVEN -> SUBMITTING -> { SUBMITTED, SUBMIT_FAILED }
    SUBMITTED -> AWAITING_FINALITY -> { FINALIZED, FINALITY_FAILED }

Calls are strictly sequential and none is retried within a pass.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from .attestation import AttestationNetwork
from .config import Settings
from .errors import FinalityError, ProveError, SubmitError
from .models import (
    AttestationRequest,
    BlockRange,
    PipelineStage,
    ProofResult,
    ProveErrorKind,
    SubmissionReceipt,
)
from .prover import Prover
from .store import StateStore

logger = structlog.get_logger()

# Distinct log events per prover failure class
PROVE_ERROR_EVENTS: dict[ProveErrorKind, str] = {
    ProveErrorKind.INVALID_INPUT: "prove_invalid_input",
    ProveErrorKind.INVALID_CUSTOM_INPUT: "prove_invalid_custom_input",
    ProveErrorKind.PROVE_FAILED: "prove_failed",
    ProveErrorKind.UNKNOWN: "prove_unknown_error",
}


@dataclass(frozen=True)
class SubmissionParams:
    """Destination parameters for attestation submission."""

    src_chain_id: int
    dst_chain_id: int
    fee: int = 0
    refund_address: str = ""
    dst_contract_address: str = ""

    @classmethod
    def from_settings(cls, settings: Settings) -> "SubmissionParams":
        return cls(
            src_chain_id=settings.src_chain_id,
            dst_chain_id=settings.dst_chain_id,
            fee=settings.fee,
            refund_address=settings.refund_address,
            dst_contract_address=settings.dst_contract_address,
        )


@dataclass
class PipelineResult:
    """Terminal state of one pipeline run."""

    stage: PipelineStage
    proof: Optional[bytes] = None
    receipt: Optional[SubmissionReceipt] = None
    error: Optional[str] = None
    error_kind: Optional[ProveErrorKind] = None

    @property
    def finalized(self) -> bool:
        return self.stage == PipelineStage.FINALIZED


class ProofPipeline:
    """
    Drives one attestation request through proving and submission.

    Failures are returned as terminal results, never raised; the caller
    decides what to do with the cursor.
    """

    def __init__(
        self,
        prover: Prover,
        attestation: AttestationNetwork,
        params: SubmissionParams,
        store: Optional[StateStore] = None,
    ):
        self.prover = prover
        self.attestation = attestation
        self.params = params
        self.store = store

    async def _prove(self, request: AttestationRequest) -> ProofResult:
        try:
            return await self.prover.prove(request)
        except ProveError as e:
            return ProofResult.error(e.kind, e.message)

    async def run(
        self, request: AttestationRequest, block_range: BlockRange
    ) -> PipelineResult:
        log = logger.bind(
            block_range=str(block_range),
            entries=len(request),
            transactions=len(request.groups),
        )
        log.debug("pipeline_started", stage=PipelineStage.BUILT.value)

        # Prove
        stage = PipelineStage.PROVING
        log.info("proving", stage=stage.value)
        result = await self._prove(request)
        if not result.is_ok:
            kind = result.error_kind or ProveErrorKind.UNKNOWN
            log.error(
                PROVE_ERROR_EVENTS[kind],
                kind=kind.value,
                error=result.error_message,
                tx_hashes=request.tx_hashes,
            )
            return PipelineResult(
                stage=PipelineStage.PROVE_FAILED,
                error=result.error_message,
                error_kind=kind,
            )
        proof = result.proof
        stage = PipelineStage.PROVEN
        log.info("proof_generated", stage=stage.value, proof_size=len(proof))

        # Submit
        stage = PipelineStage.SUBMITTING
        try:
            receipt = await self.attestation.submit(
                request,
                proof,
                self.params.src_chain_id,
                self.params.dst_chain_id,
                self.params.fee,
                self.params.refund_address,
                self.params.dst_contract_address,
            )
        except SubmitError as e:
            log.error("submit_failed", stage=stage.value, error=str(e))
            return PipelineResult(
                stage=PipelineStage.SUBMIT_FAILED, proof=proof, error=str(e)
            )
        stage = PipelineStage.SUBMITTED
        log = log.bind(query_key=receipt.query_key, dst_chain_id=receipt.chain_id)
        log.info("proof_submitted", stage=stage.value)
        if self.store:
            self.store.record_submission(
                receipt.query_key,
                receipt.chain_id,
                request.first_block,
                request.last_block,
                len(request),
            )

        # Wait for finality
        stage = PipelineStage.AWAITING_FINALITY
        try:
            await self.attestation.wait_finality(receipt.query_key, self.params.dst_chain_id)
        except FinalityError as e:
            log.error("finality_failed", stage=stage.value, error=str(e))
            if self.store:
                self.store.update_submission(receipt.query_key, "failed")
            return PipelineResult(
                stage=PipelineStage.FINALITY_FAILED,
                proof=proof,
                receipt=receipt,
                error=str(e),
            )

        if self.store:
            self.store.update_submission(receipt.query_key, "finalized")
        log.info("proof_finalized", stage=PipelineStage.FINALIZED.value)
        return PipelineResult(stage=PipelineStage.FINALIZED, proof=proof, receipt=receipt)
