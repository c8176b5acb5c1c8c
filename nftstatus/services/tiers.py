"""
Data-source tiers for status recomputation.

Each tier produces a complete StatusSnapshot from one data source or raises.
TierChain tries them in order and returns the first success, so the
fallback order is an explicit, testable list rather than nested try/except:

1. indexer: reconciliation over the indexing API's transfer history
2. ledger: reconciliation over eth_getLogs + Multicall3 live checks
3. per_token: live ownerOf for every token, one rate-limited call each

IndexerAggregateTier is separate: it answers only live/sold counts, in one
indexing API round trip.
"""

import functools
import logging
import time
from collections.abc import Callable, Iterable, Sequence
from typing import Protocol

from nftstatus.clients.insight import InsightClient
from nftstatus.clients.ledger import LedgerClient
from nftstatus.models.failure import AllTiersFailedError, LedgerError
from nftstatus.models.status import AggregateCounts, StatusSnapshot, TokenStatus
from nftstatus.services.multicall import read_owner_of
from nftstatus.services.rate_limiter import MISSING, RateLimitedGateway
from nftstatus.services.reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)


class StatusTier(Protocol):
    """One way of producing a full snapshot."""

    name: str

    async def attempt(self) -> StatusSnapshot: ...


class ReconciliationTier:
    """Runs the reconciliation engine over whichever history source it was built with."""

    def __init__(self, name: str, engine: ReconciliationEngine, contract_address: str):
        self.name = name
        self.engine = engine
        self.contract_address = contract_address

    async def attempt(self) -> StatusSnapshot:
        return await self.engine.compute_status(self.contract_address, source_name=self.name)


class PerTokenOwnershipTier:
    """
    Last-resort tier: one ownerOf call per token through the gateway.

    Live-ownership-only policy: ACTIVE when held by a custodian address.
    Failed reads count as ACTIVE, never as confidently sold. If every read
    fails the tier fails, so an outage cannot pass for an all-ACTIVE result.
    """

    name = "per_token"

    def __init__(
        self,
        ledger: LedgerClient,
        gateway: RateLimitedGateway,
        contract_address: str,
        total_count: int,
        custodian_addresses: Iterable[str],
        batch_size: int = 10,
        clock: Callable[[], float] = time.time,
    ):
        self.ledger = ledger
        self.gateway = gateway
        self.contract_address = contract_address
        self.total_count = total_count
        self.custodians = {address.lower() for address in custodian_addresses if address}
        self.batch_size = batch_size
        self._clock = clock

    async def attempt(self) -> StatusSnapshot:
        units = [functools.partial(read_owner_of, self.ledger, self.contract_address, token_id) for token_id in range(self.total_count)]
        owners = await self.gateway.execute_batch(units, batch_size=self.batch_size)

        failed = sum(1 for owner in owners if owner is MISSING)
        if self.total_count and failed == self.total_count:
            raise LedgerError("Every per-token ownerOf read failed")

        statuses = {
            token_id: (
                TokenStatus.ACTIVE
                if owner is MISSING or owner in self.custodians
                else TokenStatus.SOLD
            )
            for token_id, owner in enumerate(owners)
        }
        if failed:
            logger.warning(
                "PER_TOKEN_READS_FAILED",
                extra={"failed": failed, "total": self.total_count},
            )
        return StatusSnapshot.from_statuses(
            statuses, self.total_count, captured_at=self._clock(), source=self.name
        )


class TierChain:
    """Ordered fallback policy over StatusTiers."""

    def __init__(self, tiers: Sequence[StatusTier]):
        self.tiers = list(tiers)

    @property
    def names(self) -> list[str]:
        return [tier.name for tier in self.tiers]

    async def run(self) -> StatusSnapshot:
        """
        First successful tier's snapshot.

        Raises:
            AllTiersFailedError: With every tier's error, if none succeeded
        """
        errors: dict[str, Exception] = {}
        for tier in self.tiers:
            try:
                snapshot = await tier.attempt()
            except Exception as e:
                logger.warning(
                    "STATUS_TIER_FAILED",
                    extra={"tier": tier.name, "error": type(e).__name__, "reason": str(e)},
                )
                errors[tier.name] = e
                continue
            return snapshot
        raise AllTiersFailedError(errors)


class IndexerAggregateTier:
    """
    Live/sold counts in one indexing API round trip.

    Sold = number of Transfer events out of the marketplace custodian,
    clamped to the collection size.
    """

    name = "indexer_aggregate"

    def __init__(
        self,
        insight: InsightClient,
        contract_address: str,
        marketplace_address: str,
        total_count: int,
        clock: Callable[[], float] = time.time,
    ):
        self.insight = insight
        self.contract_address = contract_address
        self.marketplace_address = marketplace_address.lower()
        self.total_count = total_count
        self._clock = clock

    async def attempt(self) -> AggregateCounts:
        transfers_out = await self.insight.count_transfers_from(
            self.contract_address, self.marketplace_address
        )
        sold = min(max(0, transfers_out), self.total_count)
        return AggregateCounts(
            live_count=self.total_count - sold,
            sold_count=sold,
            captured_at=self._clock(),
            source=self.name,
        )
