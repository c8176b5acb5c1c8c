"""
Failure Classification — Error Taxonomy and Response Envelope.

Every failure in the service falls into one of four classes:

- Configuration error: a required address or credential is missing.
  Fatal at the request boundary, surfaced as an explicit error response.
- Transient I/O failure: timeout, non-success HTTP status, JSON-RPC error.
  Recovered locally by the next tier or by the cache's stale/default policy.
- Partial batch failure: some items of an aggregated call failed.
  Recovered per item (empty owner), never aborts the batch.
- Full reconciliation failure: every tier failed.
  Served as a degraded-but-successful response, annotated with its freshness.

INVARIANT: Transient failures never reach the caller while any fallback
(stale snapshot or conservative default) is available.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """Classification of failure types."""

    # Deployment
    CONFIGURATION = "configuration"

    # Transient I/O
    LEDGER_UNAVAILABLE = "ledger_unavailable"
    INDEXER_UNAVAILABLE = "indexer_unavailable"
    EVENT_SCAN_FAILED = "event_scan_failed"
    ALL_TIERS_FAILED = "all_tiers_failed"

    # Unknown
    UNKNOWN = "unknown"


class OutcomeType(str, Enum):
    """High-level outcome classification."""

    KNOWN_FAILURE = "known_failure"
    UNKNOWN_FAILURE = "unknown_failure"


class FailureDetail(BaseModel):
    """Detailed information about a failure."""

    kind: FailureKind = Field(
        ...,
        description="Classification of the failure",
    )
    message: str = Field(
        ...,
        description="Operator-appropriate explanation of what went wrong",
    )
    detail: str | None = Field(
        default=None,
        description="Additional technical detail (optional)",
    )
    suggestion: str | None = Field(
        default=None,
        description="Suggested action",
    )


class ApiResponse(BaseModel):
    """
    Response envelope for failed requests.

    Successful status queries return their payload directly; only failures
    that cannot be degraded (configuration, unexpected errors) use the envelope.
    """

    outcome: OutcomeType = Field(
        ...,
        description="High-level classification of the result",
    )
    failure: FailureDetail | None = Field(
        default=None,
        description="Failure details (present on non-success)",
    )

    @classmethod
    def known_failure(
        cls,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
    ) -> "ApiResponse":
        """Create a known failure response."""
        return cls(
            outcome=OutcomeType.KNOWN_FAILURE,
            failure=FailureDetail(
                kind=kind,
                message=message,
                detail=detail,
                suggestion=suggestion,
            ),
        )

    @classmethod
    def unknown_failure(cls, exception: Exception) -> "ApiResponse":
        """
        Create an unknown failure response.

        The message is fixed; only the exception type is exposed.
        """
        return cls(
            outcome=OutcomeType.UNKNOWN_FAILURE,
            failure=FailureDetail(
                kind=FailureKind.UNKNOWN,
                message="The request failed for an unexpected reason.",
                detail=type(exception).__name__,
                suggestion="If this persists, check the service logs.",
            ),
        )


# =============================================================================
# EXCEPTIONS
# =============================================================================


class KnownError(Exception):
    """
    Base class for exceptions that represent known, explainable failures.

    Subclass this for errors where the system knows exactly what went wrong.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        status_code: int = 400,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ApiResponse:
        """Convert to an ApiResponse."""
        return ApiResponse.known_failure(
            kind=self.kind,
            message=self.message,
            detail=self.detail,
            suggestion=self.suggestion,
        )


class ConfigurationError(KnownError):
    """
    Raised when required deployment settings are missing.

    Never defaulted: a missing address means the deployment is wrong,
    not that the ledger is having a bad day.
    """

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(
            kind=FailureKind.CONFIGURATION,
            message="Missing or invalid required environment variables.",
            detail=", ".join(missing),
            suggestion="Set the listed variables and restart the service.",
            status_code=500,
        )


class LedgerError(KnownError):
    """
    Transport or JSON-RPC failure talking to the ledger.

    `code` is the JSON-RPC error code, or None for transport failures.
    """

    def __init__(self, message: str, code: int | None = None, data: Any = None):
        self.code = code
        self.data = data
        super().__init__(
            kind=FailureKind.LEDGER_UNAVAILABLE,
            message=message,
            detail=f"rpc code {code}" if code is not None else None,
            status_code=503,
        )


class EventScanError(KnownError):
    """Transfer history could not be retrieved; history is unknown, not empty."""

    def __init__(self, message: str):
        super().__init__(
            kind=FailureKind.EVENT_SCAN_FAILED,
            message=message,
            status_code=503,
        )


class IndexerError(KnownError):
    """The indexing API returned a non-success response or unusable payload."""

    def __init__(self, message: str, status_code: int | None = None):
        self.http_status = status_code
        super().__init__(
            kind=FailureKind.INDEXER_UNAVAILABLE,
            message=message,
            detail=f"HTTP {status_code}" if status_code is not None else None,
            status_code=503,
        )


class AllTiersFailedError(KnownError):
    """Every data-source tier failed; carries each tier's error by name."""

    def __init__(self, errors: dict[str, Exception]):
        self.errors = errors
        summary = "; ".join(f"{name}: {type(err).__name__}" for name, err in errors.items())
        super().__init__(
            kind=FailureKind.ALL_TIERS_FAILED,
            message="No data source could produce a status snapshot.",
            detail=summary or "no tiers configured",
            status_code=503,
        )
