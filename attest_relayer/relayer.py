"""
Relayer scheduler - scans ranges, proves, submits, advances the cursor.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import structlog

from .attestation import AttestationNetwork, HttpAttestationNetwork
from .chain import ChainClient, Web3ChainClient
from .config import Settings
from .errors import RelayerError
from .extractor import EventExtractor, ExtractionResult
from .models import BlockRange, PassReport, PassStatus
from .pipeline import ProofPipeline, SubmissionParams
from .prover import HttpProver, Prover
from .request_builder import build_request, split_request
from .store import StateStore, create_store

logger = structlog.get_logger()


@dataclass
class RelayerState:
    """Current relayer state."""

    is_running: bool = False
    last_poll_time: Optional[datetime] = None
    passes: int = 0
    passes_finalized: int = 0
    passes_failed: int = 0
    ticks_skipped: int = 0
    last_report: Optional[PassReport] = None


class Relayer:
    """
    Runs one pass per tick, never two at once.

    Workflow per pass:
    1. Compute the next block range from the cursor and the chain head
    2. Extract matching log entries from receipts in that range
    3. Build the attestation request (split to prover capacity)
    4. Prove, submit and wait for finality
    5. Advance the cursor only past what is finalized or known to be empty

    The cursor and the in-flight guard belong to this object alone and are
    only touched at pass boundaries.
    """

    def __init__(
        self,
        settings: Settings,
        chain: Optional[ChainClient] = None,
        prover: Optional[Prover] = None,
        attestation: Optional[AttestationNetwork] = None,
        store: Optional[StateStore] = None,
    ):
        self.settings = settings
        self.chain = chain or Web3ChainClient(settings.chain_config())
        self.store = store or create_store(settings.database_url)
        self.extractor = EventExtractor(
            self.chain,
            contract_address=settings.contract_address,
            event_topic=settings.event_topic,
            field_index=settings.field_index,
            is_topic=settings.field_is_topic,
            concurrency=settings.receipt_concurrency,
        )
        self.pipeline = ProofPipeline(
            prover or HttpProver(settings.prover_config()),
            attestation or HttpAttestationNetwork(settings.attestation_config()),
            SubmissionParams.from_settings(settings),
            store=self.store,
        )
        self.state = RelayerState()

        persisted = self.store.load_cursor()
        self._cursor = persisted if persisted is not None else settings.start_block - 1
        self._guard = asyncio.Lock()
        self._inflight: Optional["asyncio.Task[PassReport]"] = None
        self._stop_event = asyncio.Event()

        logger.info(
            "relayer_initialized",
            contract=settings.contract_address,
            event_topic=settings.event_topic,
            cursor=self._cursor,
            cursor_source="store" if persisted is not None else "start_block",
            poll_interval=settings.poll_interval_seconds,
        )

    @property
    def cursor(self) -> int:
        """Last block fully processed."""
        return self._cursor

    @property
    def in_flight(self) -> bool:
        return self._guard.locked()

    def next_range(self, height: int) -> Optional[BlockRange]:
        """Range to scan given the chain height, or None if nothing is new."""
        head = height - self.settings.confirmations
        if head <= self._cursor:
            return None
        start = self._cursor + 1
        return BlockRange(start, min(head, self._cursor + self.settings.max_block_span))

    def _advance(self, height: int) -> None:
        if height <= self._cursor:
            return
        previous = self._cursor
        self.store.save_cursor(height)
        self._cursor = height
        logger.info("cursor_advanced", previous=previous, cursor=height)

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    async def run_pass(self) -> PassReport:
        """Run one full pass without the guard or time budget."""
        report = PassReport(
            status=PassStatus.FAILED, cursor_before=self._cursor, cursor_after=self._cursor
        )
        await self._execute(report)
        return self._finish(report)

    async def _execute(self, report: PassReport) -> None:
        try:
            await self._scan_and_prove(report)
        except RelayerError as e:
            report.status = PassStatus.FAILED
            report.error = str(e)
            logger.error(
                "pass_failed",
                block_range=str(report.block_range) if report.block_range else None,
                error_kind=type(e).__name__,
                error=str(e),
            )
        except Exception as e:
            report.status = PassStatus.FAILED
            report.error = f"unexpected error: {e}"
            logger.exception(
                "pass_crashed",
                block_range=str(report.block_range) if report.block_range else None,
            )

    async def _scan_and_prove(self, report: PassReport) -> None:
        height = await self.chain.current_height()
        block_range = self.next_range(height)
        if block_range is None:
            report.status = PassStatus.UP_TO_DATE
            logger.debug("chain_up_to_date", cursor=self._cursor, height=height)
            return

        report.block_range = block_range
        logger.info(
            "pass_started", block_range=str(block_range), cursor=self._cursor, height=height
        )

        extraction = await self.extractor.extract(block_range)
        if extraction.log_count == 0:
            logger.info("no_events_found", block_range=str(block_range))
            report.status = PassStatus.NO_EVENTS
            self._advance(block_range.to_block)
            return

        report.entry_count = extraction.entry_count
        report.failed_txs = [f.tx_hash for f in extraction.failures]
        if not self._extraction_usable(extraction, report):
            return

        request = build_request(extraction.groups)
        chunks = split_request(request, self.settings.max_receipts_per_request)
        if len(chunks) > 1:
            logger.info(
                "request_split",
                block_range=str(block_range),
                entries=len(request),
                chunks=len(chunks),
            )

        finalized = 0
        gaps = [f.block_number for f in extraction.failures]
        for chunk in chunks:
            result = await self.pipeline.run(chunk, block_range)
            report.stage = result.stage
            if result.receipt:
                report.query_keys.append(result.receipt.query_key)
            if not result.finalized:
                report.error = result.error
                gaps.append(chunk.first_block)
                break
            finalized += 1

        if finalized == 0:
            report.status = PassStatus.FAILED
            logger.warning(
                "cursor_held",
                block_range=str(block_range),
                cursor=self._cursor,
                stage=report.stage.value if report.stage else None,
            )
            return

        if not gaps:
            report.status = PassStatus.FINALIZED
            self._advance(block_range.to_block)
            return

        # Everything below the first unproven block is finalized; never
        # past the scanned range
        report.status = PassStatus.PARTIAL
        self._advance(min(min(gaps) - 1, block_range.to_block))
        logger.warning(
            "pass_partially_finalized",
            block_range=str(block_range),
            first_gap=min(gaps),
            failed_txs=report.failed_txs,
            cursor=self._cursor,
        )

    def _extraction_usable(self, extraction: ExtractionResult, report: PassReport) -> bool:
        if extraction.failures and self.settings.require_complete_batch:
            report.status = PassStatus.FAILED
            report.error = f"{len(extraction.failures)} receipt(s) could not be extracted"
            logger.error(
                "incomplete_batch",
                block_range=str(extraction.block_range),
                failed_txs=report.failed_txs,
            )
            return False
        if not extraction.groups:
            report.status = PassStatus.FAILED
            report.error = "no receipts could be extracted"
            logger.error(
                "extraction_failed",
                block_range=str(extraction.block_range),
                failed_txs=report.failed_txs,
            )
            return False
        return True

    def _finish(self, report: PassReport) -> PassReport:
        report.cursor_after = self._cursor
        report.finished_at = datetime.utcnow()

        self.state.passes += 1
        if report.status in (PassStatus.FINALIZED, PassStatus.PARTIAL):
            self.state.passes_finalized += 1
        elif report.status in (PassStatus.FAILED, PassStatus.TIMED_OUT):
            self.state.passes_failed += 1
        self.state.last_report = report

        if report.status != PassStatus.UP_TO_DATE:
            logger.info(
                "pass_complete",
                status=report.status.value,
                block_range=str(report.block_range) if report.block_range else None,
                cursor=self._cursor,
                entries=report.entry_count,
            )
        return report

    async def _run_guarded(self) -> PassReport:
        """Run a pass under the time budget."""
        report = PassReport(
            status=PassStatus.FAILED,
            cursor_before=self._cursor,
            cursor_after=self._cursor,
        )
        try:
            await asyncio.wait_for(
                self._execute(report), timeout=self.settings.pass_timeout_seconds
            )
        except asyncio.TimeoutError:
            report.status = PassStatus.TIMED_OUT
            report.error = f"pass exceeded {self.settings.pass_timeout_seconds}s"
            logger.error(
                "pass_timed_out",
                block_range=str(report.block_range) if report.block_range else None,
                stage=report.stage.value if report.stage else None,
                cursor=self._cursor,
            )
        return self._finish(report)

    def _release_guard(self, task: "asyncio.Task[PassReport]") -> None:
        # Runs however the task ends, including cancellation before its first step
        self._guard.release()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def tick(self) -> Optional["asyncio.Task[PassReport]"]:
        """
        Start a pass unless one is already running.

        Returns the pass task, or None if the tick was skipped.
        """
        self.state.last_poll_time = datetime.utcnow()
        if self._guard.locked():
            self.state.ticks_skipped += 1
            logger.info("tick_skipped", reason="pass_in_flight", cursor=self._cursor)
            return None

        await self._guard.acquire()
        try:
            task = asyncio.create_task(self._run_guarded())
        except BaseException:
            self._guard.release()
            raise
        task.add_done_callback(self._release_guard)
        self._inflight = task
        return task

    async def run(self) -> None:
        """Tick every poll interval until stop() is called."""
        self._stop_event.clear()
        self.state.is_running = True
        logger.info(
            "relayer_starting",
            poll_interval=self.settings.poll_interval_seconds,
            cursor=self._cursor,
        )

        try:
            while not self._stop_event.is_set():
                await self.tick()
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self.settings.poll_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.drain()
            self.state.is_running = False
            logger.info("relayer_stopped", cursor=self._cursor)

    async def drain(self) -> None:
        """Wait for the in-flight pass, if any, to reach its end."""
        if self._inflight is not None and not self._inflight.done():
            logger.info("waiting_for_inflight_pass")
            await asyncio.gather(self._inflight, return_exceptions=True)

    def stop(self) -> None:
        """Request shutdown; the in-flight pass is allowed to finish."""
        self._stop_event.set()
        logger.info("relayer_stopping")

    def snapshot(self) -> dict[str, Any]:
        """Status view for the status API and CLI."""
        report = self.state.last_report
        return {
            "running": self.state.is_running,
            "in_flight": self.in_flight,
            "cursor": self._cursor,
            "last_poll_time": (
                self.state.last_poll_time.isoformat() if self.state.last_poll_time else None
            ),
            "passes": self.state.passes,
            "passes_finalized": self.state.passes_finalized,
            "passes_failed": self.state.passes_failed,
            "ticks_skipped": self.state.ticks_skipped,
            "last_report": report.to_dict() if report else None,
        }
