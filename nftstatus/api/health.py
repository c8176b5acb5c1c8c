"""
Health check endpoints.

Provides liveness and readiness probes with ledger connectivity checks.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from nftstatus.clients.ledger import JsonRpcLedgerClient
from nftstatus.models.failure import LedgerError
from nftstatus.services.rate_limiter import RateLimitedGateway
from nftstatus.services.runtime import get_gateway, get_ledger

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    ledger: str | None = None
    block_number: int | None = None


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """
    Liveness probe.

    Returns healthy if the service is running.
    Does not check dependencies.
    """
    return HealthResponse(status="healthy")


@router.get(
    "/ready",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse}},
)
async def ready(
    response: Response,
    ledger: Annotated[JsonRpcLedgerClient, Depends(get_ledger)],
    gateway: Annotated[RateLimitedGateway, Depends(get_gateway)],
) -> HealthResponse:
    """
    Readiness probe.

    Returns ready if the ledger RPC answers eth_blockNumber.
    Returns 503 if it does not.
    The probe goes through the shared gateway and counts against the RPC ceiling.
    """
    try:
        block_number = await gateway.execute(ledger.block_number)
    except LedgerError as e:
        logger.warning("READINESS_LEDGER_UNREACHABLE", extra={"reason": e.message})
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not ready", ledger="disconnected")
    return HealthResponse(status="ready", ledger="connected", block_number=block_number)
