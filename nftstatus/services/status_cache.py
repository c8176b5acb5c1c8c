"""
Tiered Fallback Cache — Freshness-Bounded Status Snapshots.

Owns the single StatusSnapshot slot for the tracked collection and decides,
per request, whether to serve it, recompute it, or degrade.

STATES:
- Absent: no snapshot yet (process start, or after reset())
- Stale:  snapshot older than the freshness window
- Fresh:  snapshot within the freshness window

TRANSITIONS:
- Fresh, not forced       -> served as-is, no downstream calls
- Stale or forced         -> tier chain; success replaces the snapshot,
                             failure serves the stale snapshot (flagged STALE)
- Absent                  -> tier chain; failure serves the all-ACTIVE
                             default (flagged DEFAULT, never cached)

INVARIANTS:
- Callers always receive copies, never the cached instance
- Transient failures never propagate while a fallback exists
- Availability over freshness: a stale answer beats an error

Concurrent refreshes share one in-flight recomputation (single-flight).
"""

import asyncio
import dataclasses
import logging
import time
from collections.abc import Callable
from enum import Enum

from nftstatus.models.failure import AllTiersFailedError, IndexerError
from nftstatus.models.status import AggregateCounts, Freshness, StatusResult, StatusSnapshot
from nftstatus.services.snapshot_store import SnapshotStore
from nftstatus.services.tiers import IndexerAggregateTier, TierChain

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_AGGREGATE_TTL_SECONDS = 60.0


class CacheState(str, Enum):
    ABSENT = "absent"
    STALE = "stale"
    FRESH = "fresh"


class StatusCache:
    """Single-writer cache cell in front of the tier chain."""

    def __init__(
        self,
        chain: TierChain,
        total_count: int,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        store: SnapshotStore | None = None,
        aggregate_tier: IndexerAggregateTier | None = None,
        aggregate_ttl_seconds: float = DEFAULT_AGGREGATE_TTL_SECONDS,
    ):
        self.chain = chain
        self.total_count = total_count
        self.ttl_seconds = ttl_seconds
        self.store = store
        self.aggregate_tier = aggregate_tier
        self.aggregate_ttl_seconds = aggregate_ttl_seconds
        self._clock = clock

        self._snapshot: StatusSnapshot | None = None
        self._store_checked = store is None
        self._aggregate: AggregateCounts | None = None
        self._inflight: asyncio.Future[StatusSnapshot] | None = None
        self.refresh_count = 0

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def _current(self) -> StatusSnapshot | None:
        if not self._store_checked:
            assert self.store is not None
            self._snapshot = self.store.load(self.total_count)
            self._store_checked = True
            if self._snapshot is not None:
                logger.info(
                    "SNAPSHOT_LOADED_FROM_FILE",
                    extra={"path": str(self.store.path), "sold": self._snapshot.sold_count},
                )
        return self._snapshot

    def _is_fresh(self, captured_at: float, ttl: float) -> bool:
        return self._clock() - captured_at < ttl

    @property
    def state(self) -> CacheState:
        snapshot = self._current()
        if snapshot is None:
            return CacheState.ABSENT
        if self._is_fresh(snapshot.captured_at, self.ttl_seconds):
            return CacheState.FRESH
        return CacheState.STALE

    # -------------------------------------------------------------------------
    # Full status
    # -------------------------------------------------------------------------

    async def get_status(self, force_refresh: bool = False) -> StatusResult:
        """
        The collection's status map, from cache or recomputed.

        Args:
            force_refresh: Recompute even if the cached snapshot is fresh.
                Still subject to the rate limiter.

        Returns:
            StatusResult; never raises for ledger or indexer outages
        """
        current = self._current()
        if (
            not force_refresh
            and current is not None
            and self._is_fresh(current.captured_at, self.ttl_seconds)
        ):
            logger.debug("STATUS_CACHE_HIT", extra={"source": current.source})
            return StatusResult(current.copy(), served_from_cache=True, freshness=Freshness.FRESH)

        try:
            snapshot = await self._refresh()
        except AllTiersFailedError as e:
            return self._fallback(e)
        return StatusResult(snapshot.copy(), served_from_cache=False, freshness=Freshness.FRESH)

    async def _refresh(self) -> StatusSnapshot:
        inflight = self._inflight
        if (
            inflight is None
            or inflight.done()
            or inflight.get_loop() is not asyncio.get_running_loop()
        ):
            inflight = asyncio.ensure_future(self._recompute())
            self._inflight = inflight
        else:
            logger.debug("STATUS_REFRESH_JOINED")
        # Shield: one caller giving up must not cancel the others' recomputation
        return await asyncio.shield(inflight)

    async def _recompute(self) -> StatusSnapshot:
        snapshot = await self.chain.run()
        self._snapshot = snapshot
        self._store_checked = True
        self.refresh_count += 1
        if self.store is not None:
            self.store.save(snapshot)
        logger.info(
            "STATUS_REFRESHED",
            extra={
                "source": snapshot.source,
                "live": snapshot.live_count,
                "sold": snapshot.sold_count,
            },
        )
        return snapshot

    def _fallback(self, error: AllTiersFailedError) -> StatusResult:
        stale = self._snapshot
        if stale is not None:
            logger.warning(
                "STATUS_SERVED_STALE",
                extra={
                    "age_seconds": round(self._clock() - stale.captured_at, 1),
                    "errors": error.detail,
                },
            )
            return StatusResult(stale.copy(), served_from_cache=True, freshness=Freshness.STALE)

        logger.error(
            "STATUS_SERVED_DEFAULT",
            extra={"total": self.total_count, "errors": error.detail},
        )
        default = StatusSnapshot.all_active(self.total_count, captured_at=self._clock())
        return StatusResult(default, served_from_cache=False, freshness=Freshness.DEFAULT)

    async def reset(self) -> None:
        """
        Administrative clear of the snapshot slot (memory and file).

        The next request finds the cache Absent.
        """
        self._snapshot = None
        self._aggregate = None
        self._store_checked = True
        if self.store is not None:
            self.store.clear()
        logger.info("STATUS_CACHE_RESET")

    # -------------------------------------------------------------------------
    # Aggregate counts
    # -------------------------------------------------------------------------

    async def get_aggregate_counts(self, force_refresh: bool = False) -> AggregateCounts:
        """
        Live/sold totals via the cheapest available path.

        Order: fresh full snapshot, recent aggregate, indexer aggregate tier,
        then full status (which carries its own stale/default fallback).
        `force_refresh` skips the two reuse steps.
        """
        if not force_refresh:
            current = self._current()
            if current is not None and self._is_fresh(current.captured_at, self.ttl_seconds):
                return AggregateCounts(
                    live_count=current.live_count,
                    sold_count=current.sold_count,
                    captured_at=current.captured_at,
                    source=current.source,
                    served_from_cache=True,
                )
            aggregate = self._aggregate
            if aggregate is not None and self._is_fresh(
                aggregate.captured_at, self.aggregate_ttl_seconds
            ):
                return dataclasses.replace(aggregate, served_from_cache=True)

        if self.aggregate_tier is not None:
            try:
                counts = await self.aggregate_tier.attempt()
            except IndexerError as e:
                logger.warning(
                    "AGGREGATE_TIER_FAILED",
                    extra={"tier": self.aggregate_tier.name, "reason": e.message},
                )
            else:
                self._aggregate = counts
                return counts

        result = await self.get_status(force_refresh=force_refresh)
        snapshot = result.snapshot
        return AggregateCounts(
            live_count=snapshot.live_count,
            sold_count=snapshot.sold_count,
            captured_at=snapshot.captured_at,
            source=snapshot.source,
            served_from_cache=result.served_from_cache,
            freshness=result.freshness,
        )
