"""
Collection status API endpoints.

Read-only views of the tracked collection plus one administrative reset.
Ledger and indexer outages never surface as errors here: responses carry
`freshness` instead.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from nftstatus.config import MAX_OWNERSHIP_REQUEST_SIZE, settings
from nftstatus.models.status import AggregateCounts, Freshness, StatusResult, TokenStatus
from nftstatus.services.ownership import OwnershipLookup
from nftstatus.services.runtime import get_ownership_lookup, get_status_cache
from nftstatus.services.status_cache import StatusCache

router = APIRouter(prefix="/nft", tags=["nft"])


class StatusResponse(BaseModel):
    """Full status map of the collection."""

    total_count: int
    live_count: int
    sold_count: int
    status_by_token_id: dict[int, TokenStatus]
    served_from_cache: bool
    freshness: Freshness = Field(
        description="FRESH: recomputed or within the freshness window; "
        "STALE: last good snapshot after a failed refresh; "
        "DEFAULT: all-ACTIVE placeholder, nothing has ever been computed",
    )
    source: str
    captured_at: float

    @classmethod
    def from_result(cls, result: StatusResult) -> "StatusResponse":
        snapshot = result.snapshot
        return cls(
            total_count=snapshot.total_count,
            live_count=snapshot.live_count,
            sold_count=snapshot.sold_count,
            status_by_token_id=dict(snapshot.status_by_token_id),
            served_from_cache=result.served_from_cache,
            freshness=result.freshness,
            source=snapshot.source,
            captured_at=snapshot.captured_at,
        )


class AggregateCountsResponse(BaseModel):
    """Live and sold totals only."""

    live_count: int
    sold_count: int
    served_from_cache: bool
    freshness: Freshness
    source: str

    @classmethod
    def from_counts(cls, counts: AggregateCounts) -> "AggregateCountsResponse":
        return cls(
            live_count=counts.live_count,
            sold_count=counts.sold_count,
            served_from_cache=counts.served_from_cache,
            freshness=counts.freshness,
            source=counts.source,
        )


class OwnershipRequest(BaseModel):
    """Tokens to look up."""

    token_ids: list[int] = Field(
        ...,
        description=f"Token ids to check, at most {MAX_OWNERSHIP_REQUEST_SIZE}",
        examples=[[0, 1, 42]],
    )


class TokenOwnershipResponse(BaseModel):
    owner: str = Field(description='Current owner, lowercased; "" if no source could resolve it')
    is_sold: bool


class OwnershipResponse(BaseModel):
    ownership: dict[int, TokenOwnershipResponse]


class CacheResetResponse(BaseModel):
    cleared: bool = True


@router.get("/status", response_model=StatusResponse)
async def get_status(
    cache: Annotated[StatusCache, Depends(get_status_cache)],
    force_refresh: Annotated[bool, Query()] = False,
) -> StatusResponse:
    """
    ACTIVE/SOLD status of every token in the collection.

    Served from the cache while fresh; `force_refresh` recomputes
    (still subject to the RPC rate limit).
    """
    result = await cache.get_status(force_refresh=force_refresh)
    return StatusResponse.from_result(result)


@router.get("/aggregate-counts", response_model=AggregateCountsResponse)
async def get_aggregate_counts(
    cache: Annotated[StatusCache, Depends(get_status_cache)],
    force_refresh: Annotated[bool, Query()] = False,
) -> AggregateCountsResponse:
    """Live and sold totals via the cheapest available source."""
    counts = await cache.get_aggregate_counts(force_refresh=force_refresh)
    return AggregateCountsResponse.from_counts(counts)


@router.post("/ownership", response_model=OwnershipResponse)
async def post_ownership(
    request: OwnershipRequest,
    lookup: Annotated[OwnershipLookup, Depends(get_ownership_lookup)],
) -> OwnershipResponse:
    """Current owner of each requested token and whether that owner means sold."""
    if not request.token_ids:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="token_ids cannot be empty",
        )
    if len(request.token_ids) > MAX_OWNERSHIP_REQUEST_SIZE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"At most {MAX_OWNERSHIP_REQUEST_SIZE} token ids per request",
        )
    out_of_range = [
        token_id for token_id in request.token_ids if not 0 <= token_id < settings.total_tokens
    ]
    if out_of_range:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Token ids out of range 0..{settings.total_tokens - 1}: {out_of_range[:10]}",
        )

    results = await lookup.lookup(request.token_ids)
    return OwnershipResponse(
        ownership={
            token_id: TokenOwnershipResponse(owner=entry.owner, is_sold=entry.is_sold)
            for token_id, entry in results.items()
        }
    )


@router.delete("/status/cache", response_model=CacheResetResponse)
async def reset_status_cache(
    cache: Annotated[StatusCache, Depends(get_status_cache)],
) -> CacheResetResponse:
    """Administrative reset: the next status request recomputes from scratch."""
    await cache.reset()
    return CacheResetResponse()
