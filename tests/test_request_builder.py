"""
Tests for attestation request assembly.
"""

import pytest

from attest_relayer.models import AttestationRequest, MatchedLogEntry, TxEntries
from attest_relayer.request_builder import build_request, split_request

from conftest import POOL, SWAP_TOPIC, tx_hash


def entry(tx: int, block: int, pos: int) -> MatchedLogEntry:
    return MatchedLogEntry(
        tx_hash=tx_hash(tx),
        block_number=block,
        log_pos=pos,
        topic0=SWAP_TOPIC,
        address=POOL,
        field_index=4,
    )


def group(tx: int, block: int, *positions: int) -> TxEntries:
    return TxEntries(
        tx_hash=tx_hash(tx),
        block_number=block,
        entries=tuple(entry(tx, block, pos) for pos in positions),
    )


class TestBuildRequest:
    """Tests for build_request."""

    def test_preserves_transaction_order(self) -> None:
        request = build_request([group(2, 104, 0), group(1, 101, 5)])
        assert request.tx_hashes == [tx_hash(2), tx_hash(1)]

    def test_sorts_entries_by_log_position(self) -> None:
        request = build_request([group(1, 102, 7, 3), group(2, 103, 9, 1, 4)])
        assert [(e.tx_hash, e.log_pos) for e in request.entries] == [
            (tx_hash(1), 3),
            (tx_hash(1), 7),
            (tx_hash(2), 1),
            (tx_hash(2), 4),
            (tx_hash(2), 9),
        ]

    def test_drops_empty_groups(self) -> None:
        request = build_request([group(1, 101), group(2, 102, 0)])
        assert request.tx_hashes == [tx_hash(2)]

    def test_empty_input_raises(self) -> None:
        with pytest.raises(ValueError, match="without entries"):
            build_request([])
        with pytest.raises(ValueError):
            build_request([group(1, 101)])

    def test_block_bounds(self) -> None:
        request = build_request([group(1, 101, 0), group(2, 104, 0), group(3, 103, 0)])
        assert request.first_block == 101
        assert request.last_block == 104
        assert len(request) == 3

    def test_to_dict(self) -> None:
        request = build_request([group(1, 102, 7, 3)])
        assert request.to_dict() == {
            "receipts": [
                {
                    "tx_hash": tx_hash(1),
                    "fields": [{"log_pos": 3, "is_topic": False, "field_index": 4}],
                },
                {
                    "tx_hash": tx_hash(1),
                    "fields": [{"log_pos": 7, "is_topic": False, "field_index": 4}],
                },
            ]
        }

    def test_request_requires_entries(self) -> None:
        with pytest.raises(ValueError):
            AttestationRequest(groups=())


class TestSplitRequest:
    """Tests for split_request."""

    def test_fits_in_one_chunk(self) -> None:
        request = build_request([group(1, 101, 0, 1)])
        assert split_request(request, 32) == [request]

    def test_splits_preserving_order(self) -> None:
        request = build_request([group(1, 101, 0, 1, 2), group(2, 102, 4), group(3, 103, 0)])

        chunks = split_request(request, 2)

        assert [len(c) for c in chunks] == [2, 2, 1]
        flattened = [(e.tx_hash, e.log_pos) for c in chunks for e in c.entries]
        assert flattened == [(e.tx_hash, e.log_pos) for e in request.entries]
        # tx 1 straddles the first boundary
        assert chunks[0].tx_hashes == [tx_hash(1)]
        assert chunks[1].tx_hashes == [tx_hash(1), tx_hash(2)]
        assert chunks[2].first_block == 103

    def test_exact_multiple(self) -> None:
        request = build_request([group(1, 101, 0), group(2, 102, 0), group(3, 103, 0), group(4, 104, 0)])
        assert [len(c) for c in split_request(request, 2)] == [2, 2]

    def test_invalid_capacity(self) -> None:
        request = build_request([group(1, 101, 0)])
        with pytest.raises(ValueError):
            split_request(request, 0)
