"""
Read-only EVM chain client for event extraction.
"""

import asyncio
from typing import Any, Awaitable, Optional, Protocol, TypeVar

import structlog
from web3 import AsyncHTTPProvider, AsyncWeb3

from .config import ChainConfig
from .errors import ChainReadError
from .models import LogEvent, Receipt, ReceiptLog, normalize_hex

logger = structlog.get_logger()

T = TypeVar("T")


class ChainClient(Protocol):
    """Protocol for chain clients (real or mock)."""

    async def current_height(self) -> int: ...
    async def filter_logs(
        self, address: str, topic0: str, from_block: int, to_block: int
    ) -> list[LogEvent]: ...
    async def get_receipt(self, tx_hash: str) -> Receipt: ...
    async def close(self) -> None: ...


def _log_event(raw: Any) -> LogEvent:
    return LogEvent(
        tx_hash=normalize_hex(raw["transactionHash"]),
        block_number=int(raw["blockNumber"]),
        log_index=int(raw["logIndex"]),
        address=str(raw["address"]),
        topics=tuple(normalize_hex(t) for t in raw["topics"]),
    )


def _receipt(raw: Any) -> Receipt:
    return Receipt(
        tx_hash=normalize_hex(raw["transactionHash"]),
        block_number=int(raw["blockNumber"]),
        logs=tuple(
            ReceiptLog(
                address=str(log["address"]),
                topics=tuple(normalize_hex(t) for t in log["topics"]),
                data=normalize_hex(log.get("data", "0x")),
            )
            for log in raw["logs"]
        ),
    )


class Web3ChainClient:
    """
    Async chain client backed by web3.py.

    Every call is bounded by config.timeout; transport and decoding
    failures surface as ChainReadError.
    """

    def __init__(self, config: ChainConfig, w3: Optional[AsyncWeb3] = None):
        self.config = config
        self._owns_provider = w3 is None
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(config.rpc_url))

    async def close(self) -> None:
        """Close the HTTP session of a provider created here."""
        if self._owns_provider:
            await self.w3.provider.disconnect()

    async def _call(self, what: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.config.timeout)
        except asyncio.TimeoutError as e:
            raise ChainReadError(f"{what} timed out after {self.config.timeout}s") from e
        except Exception as e:
            raise ChainReadError(f"{what} failed: {e}") from e

    async def current_height(self) -> int:
        """Get current block height."""
        height = await self._call("eth_blockNumber", self.w3.eth.block_number)
        return int(height)

    async def filter_logs(
        self, address: str, topic0: str, from_block: int, to_block: int
    ) -> list[LogEvent]:
        """Get logs emitted by address with the given first topic in [from_block, to_block]."""
        params = {
            "address": AsyncWeb3.to_checksum_address(address),
            "topics": [topic0],
            "fromBlock": from_block,
            "toBlock": to_block,
        }
        raw_logs = await self._call("eth_getLogs", self.w3.eth.get_logs(params))
        try:
            return [_log_event(raw) for raw in raw_logs]
        except (KeyError, TypeError, ValueError) as e:
            raise ChainReadError(f"malformed log in eth_getLogs response: {e}") from e

    async def get_receipt(self, tx_hash: str) -> Receipt:
        """Get the full receipt for a transaction."""
        raw = await self._call(
            "eth_getTransactionReceipt", self.w3.eth.get_transaction_receipt(tx_hash)
        )
        try:
            return _receipt(raw)
        except (KeyError, TypeError, ValueError) as e:
            raise ChainReadError(f"malformed receipt for {tx_hash}: {e}") from e


class MockChainClient:
    """
    Mock chain client for testing and dry runs without a node.

    Logs returned by filter_logs are derived from the registered receipts,
    so receipt and filter views are always consistent.
    """

    def __init__(self, height: int = 0) -> None:
        self.height = height
        self._receipts: dict[str, Receipt] = {}
        self._order: list[str] = []
        self.failing_receipts: set[str] = set()
        # Block filter_logs reports for a tx, when it differs from its receipt
        self.log_blocks: dict[str, int] = {}
        self.closed = False
        self.calls: list[str] = []

    def add_receipt(
        self, tx_hash: str, block_number: int, logs: list[ReceiptLog]
    ) -> Receipt:
        """Add a mock receipt. Receipts are kept in insertion order within a block."""
        tx_hash = normalize_hex(tx_hash)
        receipt = Receipt(tx_hash=tx_hash, block_number=block_number, logs=tuple(logs))
        if tx_hash not in self._receipts:
            self._order.append(tx_hash)
        self._receipts[tx_hash] = receipt
        self.height = max(self.height, block_number)
        return receipt

    async def current_height(self) -> int:
        self.calls.append("current_height")
        return self.height

    async def filter_logs(
        self, address: str, topic0: str, from_block: int, to_block: int
    ) -> list[LogEvent]:
        self.calls.append("filter_logs")

        def reported_block(receipt: Receipt) -> int:
            return self.log_blocks.get(receipt.tx_hash, receipt.block_number)

        receipts = sorted((self._receipts[h] for h in self._order), key=reported_block)
        events: list[LogEvent] = []
        for receipt in receipts:
            block_number = reported_block(receipt)
            if not from_block <= block_number <= to_block:
                continue
            for index, log in enumerate(receipt.logs):
                if log.address.lower() == address.lower() and log.topic0 == topic0.lower():
                    events.append(
                        LogEvent(
                            tx_hash=receipt.tx_hash,
                            block_number=block_number,
                            log_index=index,
                            address=log.address,
                            topics=log.topics,
                        )
                    )
        return events

    async def get_receipt(self, tx_hash: str) -> Receipt:
        self.calls.append("get_receipt")
        tx_hash = normalize_hex(tx_hash)
        if tx_hash in self.failing_receipts:
            raise ChainReadError(f"receipt for {tx_hash} unavailable")
        if tx_hash not in self._receipts:
            raise ChainReadError(f"transaction {tx_hash} not found")
        return self._receipts[tx_hash]

    async def close(self) -> None:
        self.closed = True
