"""
Attestation request assembly.

Pure transformations, no chain I/O.
"""

from typing import Iterable

from .models import AttestationRequest, TxEntries


def build_request(groups: Iterable[TxEntries]) -> AttestationRequest:
    """
    Aggregate per-transaction groups into one request.

    Transaction order is preserved as given; entries inside a transaction
    are ordered by log position since the prover binds proofs to exact
    log positions.

    Raises:
        ValueError: if there is nothing to prove
    """
    ordered = tuple(
        TxEntries(
            tx_hash=group.tx_hash,
            block_number=group.block_number,
            entries=tuple(sorted(group.entries, key=lambda e: e.log_pos)),
        )
        for group in groups
        if group.entries
    )
    if not ordered:
        raise ValueError("cannot build an attestation request without entries")
    return AttestationRequest(groups=ordered)


def split_request(
    request: AttestationRequest, max_receipts: int
) -> list[AttestationRequest]:
    """
    Split a request into consecutive chunks of at most max_receipts entries.

    The prover circuit has a fixed receipt capacity. Global entry order is
    kept; a transaction whose entries straddle a boundary appears in both
    chunks with its entries divided between them.
    """
    if max_receipts <= 0:
        raise ValueError(f"max_receipts must be positive, got {max_receipts}")
    if len(request) <= max_receipts:
        return [request]

    chunks: list[AttestationRequest] = []
    current: list[TxEntries] = []
    room = max_receipts
    for group in request.groups:
        pending = list(group.entries)
        while pending:
            take, pending = pending[:room], pending[room:]
            current.append(
                TxEntries(
                    tx_hash=group.tx_hash,
                    block_number=group.block_number,
                    entries=tuple(take),
                )
            )
            room -= len(take)
            if room == 0:
                chunks.append(AttestationRequest(groups=tuple(current)))
                current, room = [], max_receipts
    if current:
        chunks.append(AttestationRequest(groups=tuple(current)))
    return chunks
