"""
NFTStatus services.

Rate limiting, batched ownership reads, transfer history, reconciliation
and the tiered status cache.
"""

from nftstatus.services.event_scanner import (
    EventLogScanner,
    IndexerTransferSource,
    TransferSource,
    fold_transfers,
)
from nftstatus.services.multicall import (
    MULTICALL3_ADDRESS,
    batch_owner_of,
    decode_try_aggregate,
    encode_try_aggregate,
    read_owner_of,
)
from nftstatus.services.ownership import OwnershipLookup, TokenOwnership
from nftstatus.services.rate_limiter import MISSING, RateLimitedGateway
from nftstatus.services.reconciliation import ReconciliationEngine, resolve_statuses
from nftstatus.services.snapshot_store import SnapshotStore
from nftstatus.services.status_cache import CacheState, StatusCache
from nftstatus.services.tiers import (
    IndexerAggregateTier,
    PerTokenOwnershipTier,
    ReconciliationTier,
    StatusTier,
    TierChain,
)

__all__ = [
    # Rate limiting
    "MISSING",
    "RateLimitedGateway",
    # Multicall3
    "MULTICALL3_ADDRESS",
    "batch_owner_of",
    "decode_try_aggregate",
    "encode_try_aggregate",
    "read_owner_of",
    # Transfer history
    "EventLogScanner",
    "IndexerTransferSource",
    "TransferSource",
    "fold_transfers",
    # Reconciliation
    "ReconciliationEngine",
    "resolve_statuses",
    # Tiers and cache
    "CacheState",
    "IndexerAggregateTier",
    "PerTokenOwnershipTier",
    "ReconciliationTier",
    "SnapshotStore",
    "StatusCache",
    "StatusTier",
    "TierChain",
    # Ownership lookup
    "OwnershipLookup",
    "TokenOwnership",
]
