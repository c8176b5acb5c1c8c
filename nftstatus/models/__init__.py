from nftstatus.models.failure import (
    AllTiersFailedError,
    ApiResponse,
    ConfigurationError,
    EventScanError,
    FailureDetail,
    FailureKind,
    IndexerError,
    KnownError,
    LedgerError,
    OutcomeType,
)
from nftstatus.models.status import (
    AggregateCounts,
    Freshness,
    OwnershipRecord,
    StatusResult,
    StatusSnapshot,
    TokenStatus,
    TransferEvent,
    TransferHistory,
)

__all__ = [
    # Failure
    "AllTiersFailedError",
    "ApiResponse",
    "ConfigurationError",
    "EventScanError",
    "FailureDetail",
    "FailureKind",
    "IndexerError",
    "KnownError",
    "LedgerError",
    "OutcomeType",
    # Status
    "AggregateCounts",
    "Freshness",
    "OwnershipRecord",
    "StatusResult",
    "StatusSnapshot",
    "TokenStatus",
    "TransferEvent",
    "TransferHistory",
]
