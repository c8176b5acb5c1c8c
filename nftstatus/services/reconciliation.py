"""
Status Reconciliation Engine.

Combines the history-derived "ever sold" signal with a live ownership
re-check of exactly those tokens:

    not in ever_sold                                -> ACTIVE
    in ever_sold, current owner is a custodian      -> ACTIVE (relisted)
    in ever_sold, anyone else                       -> SOLD

Custodians are the marketplace and, when configured, the issuer; the
per-token tier and the ownership lookup use the same set.

"Current owner" is the live Multicall3 read, or the last-known destination
from history for tokens whose live read failed.

The snapshot is not persisted here; caching is the caller's decision.
A failed history scan propagates (EventScanError). This layer never
synthesizes an all-ACTIVE snapshot.
"""

import logging
import time
from collections.abc import Callable, Iterable

from nftstatus.clients.ledger import LedgerClient
from nftstatus.models.status import StatusSnapshot, TokenStatus, TransferHistory
from nftstatus.services.event_scanner import TransferSource, fold_transfers
from nftstatus.services.multicall import DEFAULT_CHUNK_SIZE, MULTICALL3_ADDRESS, batch_owner_of
from nftstatus.services.rate_limiter import RateLimitedGateway

logger = logging.getLogger(__name__)


def resolve_statuses(
    history: TransferHistory,
    current_owners: dict[int, str],
    total_count: int,
    custodian_addresses: Iterable[str],
) -> dict[int, TokenStatus]:
    """
    Final status for every token in 0..total_count-1.

    Args:
        history: Folded transfer history
        current_owners: Live owners of ever-sold tokens; missing or "" entries
            fall back to the last-known destination
        total_count: Collection size
        custodian_addresses: Addresses whose possession means relisted
    """
    custodians = {address.lower() for address in custodian_addresses if address}
    statuses: dict[int, TokenStatus] = {}
    for token_id in range(total_count):
        if token_id not in history.ever_sold:
            statuses[token_id] = TokenStatus.ACTIVE
            continue
        owner = current_owners.get(token_id) or history.last_destination.get(token_id, "")
        statuses[token_id] = TokenStatus.ACTIVE if owner.lower() in custodians else TokenStatus.SOLD
    return statuses


class ReconciliationEngine:
    """Computes the authoritative ACTIVE/SOLD map for one collection."""

    def __init__(
        self,
        source: TransferSource,
        ledger: LedgerClient,
        gateway: RateLimitedGateway,
        total_count: int,
        marketplace_address: str,
        issuer_address: str = "",
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        multicall_address: str = MULTICALL3_ADDRESS,
        clock: Callable[[], float] = time.time,
    ):
        self.source = source
        self.ledger = ledger
        self.gateway = gateway
        self.total_count = total_count
        self.marketplace_address = marketplace_address.lower()
        self.issuer_address = issuer_address.lower()
        self.chunk_size = chunk_size
        self.multicall_address = multicall_address
        self._clock = clock

    @property
    def custodian_addresses(self) -> list[str]:
        return [address for address in (self.marketplace_address, self.issuer_address) if address]

    async def compute_status(self, contract_address: str, source_name: str = "ledger") -> StatusSnapshot:
        """
        Reconcile history with live ownership into a full snapshot.

        Args:
            contract_address: ERC-721 collection contract
            source_name: Label recorded on the snapshot

        Returns:
            Unpersisted StatusSnapshot

        Raises:
            EventScanError: If the transfer history cannot be retrieved
        """
        events = await self.source.scan_transfers(contract_address)
        history = fold_transfers(events, self.total_count, self.custodian_addresses)

        current_owners = await self._live_owners(contract_address, sorted(history.ever_sold))

        statuses = resolve_statuses(
            history, current_owners, self.total_count, self.custodian_addresses
        )
        snapshot = StatusSnapshot.from_statuses(
            statuses, self.total_count, captured_at=self._clock(), source=source_name
        )

        logger.info(
            "STATUS_RECONCILED",
            extra={
                "contract": contract_address,
                "source": source_name,
                "events": len(events),
                "ever_sold": len(history.ever_sold),
                "live_checked": len(current_owners),
                "sold": snapshot.sold_count,
            },
        )
        return snapshot

    async def _live_owners(self, contract_address: str, token_ids: list[int]) -> dict[int, str]:
        """Live owners of `token_ids`; failed reads are left out so history is used."""
        if not token_ids:
            return {}
        records = await batch_owner_of(
            self.ledger,
            self.gateway,
            contract_address,
            token_ids,
            chunk_size=self.chunk_size,
            multicall_address=self.multicall_address,
        )
        unknown = sum(1 for record in records if not record.known)
        if unknown:
            logger.warning(
                "LIVE_OWNERSHIP_PARTIAL",
                extra={"checked": len(records), "unknown": unknown},
            )
        return {record.token_id: record.owner for record in records if record.known}
