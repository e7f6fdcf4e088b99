"""
Client for the attestation network: proof submission and finality wait.
"""

import asyncio
from typing import Any, Optional, Protocol

import httpx
import structlog

from .config import AttestationConfig
from .errors import FinalityError, SubmitError
from .models import AttestationRequest, SubmissionReceipt

logger = structlog.get_logger()

STATUS_PENDING = "pending"
STATUS_FINALIZED = "finalized"
STATUS_FAILED = "failed"


class AttestationNetwork(Protocol):
    """Protocol for attestation networks (real or stub)."""

    async def submit(
        self,
        request: AttestationRequest,
        proof: bytes,
        src_chain_id: int,
        dst_chain_id: int,
        fee: int,
        refund_address: str,
        dst_contract_address: str,
    ) -> SubmissionReceipt: ...

    async def wait_finality(self, query_key: str, dst_chain_id: int) -> None: ...


class HttpAttestationNetwork:
    """HTTP/JSON client for the attestation network gateway."""

    def __init__(
        self,
        config: AttestationConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._transport = transport

    def _url(self, path: str) -> str:
        return f"{self.config.url.rstrip('/')}/{path}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport)

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
        """
        Submit a request and its proof.

        Raises:
            SubmitError: on transport failure, HTTP error or a rejected query
        """
        body = {
            "request": request.to_dict(),
            "proof": "0x" + proof.hex(),
            "src_chain_id": src_chain_id,
            "dst_chain_id": dst_chain_id,
            "fee": str(fee),
            "refund_address": refund_address,
            "dst_contract_address": dst_contract_address,
        }
        try:
            async with self._client() as client:
                response = await client.post(self._url("submit"), json=body)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SubmitError(f"submission failed: {e}") from e

        return parse_submit_response(payload, dst_chain_id)

    async def get_status(self, query_key: str, dst_chain_id: int) -> dict[str, Any]:
        """Fetch the current status of a submitted query."""
        try:
            async with self._client() as client:
                response = await client.get(
                    self._url("status"),
                    params={"query_key": query_key, "chain_id": dst_chain_id},
                )
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise FinalityError(f"status query failed: {e}", query_key=query_key) from e
        if not isinstance(payload, dict):
            raise FinalityError(f"unexpected status response: {payload!r}", query_key=query_key)
        return payload

    async def _poll_until_final(self, query_key: str, dst_chain_id: int) -> None:
        while True:
            payload = await self.get_status(query_key, dst_chain_id)
            status = str(payload.get("status", "")).lower()
            if status == STATUS_FINALIZED:
                return
            if status == STATUS_FAILED:
                raise FinalityError(
                    f"query failed: {payload.get('message', 'no reason given')}",
                    query_key=query_key,
                )
            logger.debug("awaiting_finality", query_key=query_key, status=status)
            await asyncio.sleep(self.config.poll_interval)

    async def wait_finality(self, query_key: str, dst_chain_id: int) -> None:
        """
        Block until the query is finalized on the destination chain.

        Raises:
            FinalityError: if the query fails or finality_timeout elapses
        """
        try:
            await asyncio.wait_for(
                self._poll_until_final(query_key, dst_chain_id),
                timeout=self.config.finality_timeout,
            )
        except asyncio.TimeoutError as e:
            raise FinalityError(
                f"not finalized after {self.config.finality_timeout}s", query_key=query_key
            ) from e


def parse_submit_response(payload: Any, dst_chain_id: int) -> SubmissionReceipt:
    """Turn a submit response body into a SubmissionReceipt."""
    if not isinstance(payload, dict):
        raise SubmitError(f"unexpected submit response: {payload!r}")
    err = payload.get("err")
    if err:
        message = err.get("msg", str(err)) if isinstance(err, dict) else str(err)
        raise SubmitError(f"submission rejected: {message}")
    query_key = payload.get("query_key")
    if not query_key:
        raise SubmitError("submit response missing query_key")
    return SubmissionReceipt(
        query_key=str(query_key),
        chain_id=int(payload.get("chain_id", dst_chain_id)),
    )
