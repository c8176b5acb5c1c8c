"""
Ownership lookup for an arbitrary set of tokens.

Tries the cheapest source first and only sends unresolved tokens onward:
indexer per-token owners -> Multicall3 batch -> per-item ownerOf.
Tokens no source could resolve come back with owner "" and is_sold False.
"""

import asyncio
import functools
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from nftstatus.clients.insight import InsightClient
from nftstatus.clients.ledger import LedgerClient
from nftstatus.models.failure import IndexerError
from nftstatus.services.multicall import (
    DEFAULT_CHUNK_SIZE,
    MULTICALL3_ADDRESS,
    batch_owner_of,
    read_owner_of,
)
from nftstatus.services.rate_limiter import MISSING, RateLimitedGateway

logger = logging.getLogger(__name__)

# Concurrent indexer requests per group, and the pause between groups
INDEXER_GROUP_SIZE = 20
INDEXER_GROUP_PAUSE_SECONDS = 0.05


@dataclass(frozen=True)
class TokenOwnership:
    """Owner of one token and whether that owner means sold."""

    owner: str
    is_sold: bool


class OwnershipLookup:
    """Resolves current owners for a caller-chosen list of token ids."""

    def __init__(
        self,
        ledger: LedgerClient,
        gateway: RateLimitedGateway,
        contract_address: str,
        custodian_addresses: Iterable[str],
        insight: InsightClient | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        multicall_address: str = MULTICALL3_ADDRESS,
    ):
        self.ledger = ledger
        self.gateway = gateway
        self.contract_address = contract_address
        self.custodians = {address.lower() for address in custodian_addresses if address}
        self.insight = insight
        self.chunk_size = chunk_size
        self.multicall_address = multicall_address

    async def lookup(self, token_ids: Sequence[int]) -> dict[int, TokenOwnership]:
        owners: dict[int, str] = {}
        pending = list(dict.fromkeys(token_ids))

        if self.insight is not None and pending:
            owners.update(await self._from_indexer(pending))
            pending = [token_id for token_id in pending if not owners.get(token_id)]

        if pending:
            records = await batch_owner_of(
                self.ledger,
                self.gateway,
                self.contract_address,
                pending,
                chunk_size=self.chunk_size,
                multicall_address=self.multicall_address,
            )
            owners.update({record.token_id: record.owner for record in records if record.known})
            pending = [token_id for token_id in pending if not owners.get(token_id)]

        if pending:
            owners.update(await self._from_single_calls(pending))

        return {
            token_id: TokenOwnership(
                owner=owners.get(token_id, ""),
                is_sold=bool(owners.get(token_id)) and owners[token_id] not in self.custodians,
            )
            for token_id in dict.fromkeys(token_ids)
        }

    async def _from_indexer(self, token_ids: list[int]) -> dict[int, str]:
        assert self.insight is not None
        insight = self.insight
        owners: dict[int, str] = {}

        async def owner_or_blank(token_id: int) -> str:
            try:
                return await insight.get_owner(self.contract_address, token_id)
            except IndexerError:
                return ""

        for start in range(0, len(token_ids), INDEXER_GROUP_SIZE):
            group = token_ids[start : start + INDEXER_GROUP_SIZE]
            results = await asyncio.gather(*(owner_or_blank(token_id) for token_id in group))
            owners.update(zip(group, results, strict=True))
            if start + INDEXER_GROUP_SIZE < len(token_ids):
                await asyncio.sleep(INDEXER_GROUP_PAUSE_SECONDS)

        resolved = sum(1 for owner in owners.values() if owner)
        logger.debug(
            "INDEXER_OWNERSHIP_RESOLVED",
            extra={"requested": len(token_ids), "resolved": resolved},
        )
        return owners

    async def _from_single_calls(self, token_ids: list[int]) -> dict[int, str]:
        units = [functools.partial(read_owner_of, self.ledger, self.contract_address, token_id) for token_id in token_ids]
        results = await self.gateway.execute_batch(units)
        return {
            token_id: owner
            for token_id, owner in zip(token_ids, results, strict=True)
            if owner is not MISSING
        }
