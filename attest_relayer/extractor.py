"""
Event extraction: block range -> matched log entries grouped per transaction.
"""

import asyncio
from dataclasses import dataclass, field

import structlog

from .chain import ChainClient
from .errors import ExtractionError, RelayerError
from .models import BlockRange, LogEvent, MatchedLogEntry, Receipt, TxEntries

logger = structlog.get_logger()


@dataclass
class ReceiptFailure:
    """A transaction whose entries could not be extracted."""

    tx_hash: str
    block_number: int
    error: str


@dataclass
class ExtractionResult:
    """Matched groups plus the transactions that had to be skipped."""

    block_range: BlockRange
    log_count: int = 0
    groups: list[TxEntries] = field(default_factory=list)
    failures: list[ReceiptFailure] = field(default_factory=list)

    @property
    def entry_count(self) -> int:
        return sum(len(group.entries) for group in self.groups)


class EventExtractor:
    """
    Finds every occurrence of the target event in a block range.

    The filtered logs only tell us which transactions to look at. Each
    receipt is then re-scanned in full, because one transaction can emit
    the event several times and every occurrence needs its own log position.
    """

    def __init__(
        self,
        chain: ChainClient,
        contract_address: str,
        event_topic: str,
        field_index: int,
        is_topic: bool = False,
        concurrency: int = 8,
    ):
        self.chain = chain
        self.contract_address = contract_address
        self.event_topic = event_topic.lower()
        self.field_index = field_index
        self.is_topic = is_topic
        self._semaphore = asyncio.Semaphore(concurrency)

    def match_receipt(self, receipt: Receipt) -> TxEntries:
        """
        Select every log in the receipt emitted by the target contract
        with the target event signature.

        Raises:
            ExtractionError: if the receipt holds no such log
        """
        target = self.contract_address.lower()
        entries = tuple(
            MatchedLogEntry(
                tx_hash=receipt.tx_hash,
                block_number=receipt.block_number,
                log_pos=pos,
                topic0=self.event_topic,
                address=log.address,
                field_index=self.field_index,
                is_topic=self.is_topic,
            )
            for pos, log in enumerate(receipt.logs)
            if log.address.lower() == target and log.topic0 == self.event_topic
        )
        if not entries:
            raise ExtractionError(receipt.tx_hash, "receipt contains no matching log")
        return TxEntries(
            tx_hash=receipt.tx_hash, block_number=receipt.block_number, entries=entries
        )

    async def _fetch_entries(
        self, event: LogEvent, block_range: BlockRange
    ) -> TxEntries | ReceiptFailure:
        async with self._semaphore:
            try:
                receipt = await self.chain.get_receipt(event.tx_hash)
                # Receipt moved by a reorg since the log filter ran
                if not block_range.from_block <= receipt.block_number <= block_range.to_block:
                    raise ExtractionError(
                        event.tx_hash,
                        f"receipt block {receipt.block_number} outside range {block_range}",
                    )
                return self.match_receipt(receipt)
            except RelayerError as e:
                logger.warning(
                    "receipt_extraction_failed",
                    tx_hash=event.tx_hash,
                    block_number=event.block_number,
                    error=str(e),
                )
                return ReceiptFailure(
                    tx_hash=event.tx_hash,
                    block_number=event.block_number,
                    error=str(e),
                )

    async def extract(self, block_range: BlockRange) -> ExtractionResult:
        """
        Extract matched entries for a block range.

        Transactions keep the order the node returned their logs in.
        A failed receipt fetch skips that transaction only; a failed log
        filter raises ChainReadError.
        """
        events = await self.chain.filter_logs(
            self.contract_address,
            self.event_topic,
            block_range.from_block,
            block_range.to_block,
        )
        result = ExtractionResult(block_range=block_range, log_count=len(events))
        if not events:
            return result

        # One receipt fetch per transaction, first-seen order
        unique: dict[str, LogEvent] = {}
        for event in events:
            unique.setdefault(event.tx_hash, event)

        outcomes = await asyncio.gather(
            *(self._fetch_entries(event, block_range) for event in unique.values())
        )
        for outcome in outcomes:
            if isinstance(outcome, ReceiptFailure):
                result.failures.append(outcome)
            else:
                result.groups.append(outcome)

        logger.info(
            "events_extracted",
            block_range=str(block_range),
            logs=len(events),
            transactions=len(unique),
            entries=result.entry_count,
            failed=len(result.failures),
        )
        return result
