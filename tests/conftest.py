"""
Shared fixtures and stubs for relayer tests.
"""

import asyncio
from typing import Optional

import pytest

from attest_relayer.chain import MockChainClient
from attest_relayer.config import Settings
from attest_relayer.errors import FinalityError, ProveError, SubmitError
from attest_relayer.models import (
    AttestationRequest,
    ProofResult,
    ReceiptLog,
    SubmissionReceipt,
)
from attest_relayer.relayer import Relayer
from attest_relayer.store import MemoryStateStore

POOL = "0x88e6A0c2dDD26FEEb64F039a2c41296FcB3f5640"
SWAP_TOPIC = "0xc42079f94a6350d7e6235f29174924f928cc2ac818eb64fed8004e115fbcca67"
TOKEN = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def swap_log(address: str = POOL) -> ReceiptLog:
    return ReceiptLog(address=address, topics=(SWAP_TOPIC, "0x" + "11" * 32), data="0x" + "00" * 224)


def transfer_log() -> ReceiptLog:
    return ReceiptLog(address=TOKEN, topics=(TRANSFER_TOPIC,), data="0x" + "00" * 32)


def double_swap_logs() -> list[ReceiptLog]:
    """Receipt logs with the target event at positions 3 and 7."""
    logs = [transfer_log() for _ in range(8)]
    logs[3] = swap_log()
    logs[7] = swap_log()
    return logs


class StubProver:
    """Prover stub with a call counter; optionally blocks until gate is set."""

    def __init__(
        self,
        result: Optional[ProofResult] = None,
        error: Optional[ProveError] = None,
        gate: Optional[asyncio.Event] = None,
    ):
        self.result = result or ProofResult.ok(b"\xde\xad\xbe\xef")
        self.error = error
        self.gate = gate
        self.calls: list[AttestationRequest] = []
        self.started = asyncio.Event()

    async def prove(self, request: AttestationRequest) -> ProofResult:
        self.calls.append(request)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


class StubAttestation:
    """Attestation network stub recording submissions and finality waits."""

    def __init__(
        self,
        submit_error: Optional[SubmitError] = None,
        failing_waits: Optional[set[int]] = None,
    ):
        self.submit_error = submit_error
        self.failing_waits = failing_waits or set()
        self.submissions: list[dict] = []
        self.waits: list[tuple[str, int]] = []

    async def submit(
        self,
        request: AttestationRequest,
        proof: bytes,
        src_chain_id: int,
        dst_chain_id: int,
        fee: int,
        refund_address: str,
        dst_contract_address: str,
    ) -> SubmissionReceipt:
        self.submissions.append(
            {
                "request": request,
                "proof": proof,
                "src_chain_id": src_chain_id,
                "dst_chain_id": dst_chain_id,
                "fee": fee,
                "refund_address": refund_address,
                "dst_contract_address": dst_contract_address,
            }
        )
        if self.submit_error is not None:
            raise self.submit_error
        return SubmissionReceipt(
            query_key=f"0xquery{len(self.submissions)}", chain_id=dst_chain_id
        )

    async def wait_finality(self, query_key: str, dst_chain_id: int) -> None:
        self.waits.append((query_key, dst_chain_id))
        if len(self.waits) in self.failing_waits:
            raise FinalityError("query failed on destination", query_key=query_key)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        start_block=100,
        contract_address=POOL,
        event_topic=SWAP_TOPIC,
        field_index=4,
        database_url="",
        poll_interval_seconds=0.01,
        pass_timeout_seconds=5.0,
    )


@pytest.fixture
def chain() -> MockChainClient:
    return MockChainClient()


@pytest.fixture
def prover() -> StubProver:
    return StubProver()


@pytest.fixture
def attestation() -> StubAttestation:
    return StubAttestation()


@pytest.fixture
def store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def make_relayer(settings, chain, prover, attestation, store):
    """Build a relayer wired to the stubs; keyword overrides replace fixtures."""

    def _make(**overrides) -> Relayer:
        return Relayer(
            overrides.pop("settings", settings),
            chain=overrides.pop("chain", chain),
            prover=overrides.pop("prover", prover),
            attestation=overrides.pop("attestation", attestation),
            store=overrides.pop("store", store),
        )

    return _make
