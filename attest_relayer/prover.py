"""
Client for the zero-knowledge proving service.
"""

from typing import Any, Optional, Protocol

import httpx
import structlog

from .config import ProverConfig
from .errors import ProveError
from .models import AttestationRequest, ProofResult, ProveErrorKind

logger = structlog.get_logger()

# Error codes reported by the prover service
ERROR_CODES: dict[int, ProveErrorKind] = {
    1: ProveErrorKind.INVALID_INPUT,
    2: ProveErrorKind.INVALID_CUSTOM_INPUT,
    3: ProveErrorKind.PROVE_FAILED,
}


class Prover(Protocol):
    """Protocol for proving capabilities (real or stub)."""

    async def prove(self, request: AttestationRequest) -> ProofResult: ...


def parse_prove_response(payload: Any) -> ProofResult:
    """
    Classify a prover response body.

    Success: {"proof": "0x..."}
    Failure: {"err": {"code": int, "msg": str}}
    """
    if not isinstance(payload, dict):
        return ProofResult.error(ProveErrorKind.UNKNOWN, f"unexpected response: {payload!r}")

    err = payload.get("err")
    if err:
        code = err.get("code") if isinstance(err, dict) else None
        message = err.get("msg", "") if isinstance(err, dict) else str(err)
        kind = ERROR_CODES.get(code, ProveErrorKind.UNKNOWN)
        return ProofResult.error(kind, message)

    proof_hex = payload.get("proof")
    if not proof_hex:
        return ProofResult.error(ProveErrorKind.UNKNOWN, "response has neither proof nor err")
    try:
        proof = bytes.fromhex(proof_hex[2:] if proof_hex.startswith("0x") else proof_hex)
    except (AttributeError, ValueError):
        return ProofResult.error(ProveErrorKind.UNKNOWN, "proof is not valid hex")
    return ProofResult.ok(proof)


class HttpProver:
    """
    HTTP/JSON client for the prover service.

    Proving can take far longer than the poll interval; config.timeout
    bounds a single call.
    """

    def __init__(
        self,
        config: ProverConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._transport = transport

    async def prove(self, request: AttestationRequest) -> ProofResult:
        """
        Send a request to the prover.

        Raises:
            ProveError: (kind UNKNOWN) if the service cannot be reached,
                times out or answers with an HTTP error
        """
        url = f"{self.config.url.rstrip('/')}/prove"
        logger.info("prove_request_sent", url=url, entries=len(request))
        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout, transport=self._transport
            ) as client:
                response = await client.post(url, json=request.to_dict())
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException as e:
            raise ProveError(
                ProveErrorKind.UNKNOWN, f"prover timed out after {self.config.timeout}s"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ProveError(ProveErrorKind.UNKNOWN, f"prover call failed: {e}") from e

        return parse_prove_response(payload)
