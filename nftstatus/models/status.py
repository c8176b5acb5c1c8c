from dataclasses import dataclass, field
from enum import Enum


class TokenStatus(str, Enum):
    """Sale status of a single token."""

    ACTIVE = "ACTIVE"  # held by the issuer or the marketplace custodian
    SOLD = "SOLD"


class Freshness(str, Enum):
    """How trustworthy a served snapshot is."""

    FRESH = "fresh"  # within the freshness window or just recomputed
    STALE = "stale"  # recomputation failed, previous snapshot served
    DEFAULT = "default"  # nothing to serve, optimistic all-ACTIVE default


@dataclass(frozen=True, order=True)
class TransferEvent:
    """
    One ERC-721 Transfer log.

    Ordering compares `log_order` first, which is the ledger emission order
    (block number, transaction index, log index).
    """

    log_order: tuple[int, int, int]
    from_address: str = field(compare=False)
    to_address: str = field(compare=False)
    token_id: int = field(compare=False)


@dataclass(frozen=True)
class OwnershipRecord:
    """Live owner of one token. An empty owner means the read failed."""

    token_id: int
    owner: str

    @property
    def known(self) -> bool:
        return self.owner != ""


@dataclass
class TransferHistory:
    """
    Transfer history folded per token.

    Attributes:
        last_destination: Most recent `to` address per token that ever moved
        ever_sold: Tokens that were ever sent outside the custodian set
    """

    last_destination: dict[int, str] = field(default_factory=dict)
    ever_sold: set[int] = field(default_factory=set)


@dataclass(frozen=True)
class StatusSnapshot:
    """
    Complete, consistent point-in-time status map for the whole collection.

    Construction validates the invariants:
    - live_count + sold_count == total_count
    - every token id in 0..total_count-1 has exactly one entry
    """

    total_count: int
    live_count: int
    sold_count: int
    status_by_token_id: dict[int, TokenStatus]
    captured_at: float
    source: str = "unknown"

    def __post_init__(self) -> None:
        if self.live_count + self.sold_count != self.total_count:
            raise ValueError(
                f"live_count ({self.live_count}) + sold_count ({self.sold_count}) "
                f"!= total_count ({self.total_count})"
            )
        if len(self.status_by_token_id) != self.total_count or any(
            token_id not in self.status_by_token_id for token_id in range(self.total_count)
        ):
            raise ValueError("status_by_token_id must cover exactly token ids 0..total_count-1")

    @classmethod
    def from_statuses(
        cls,
        status_by_token_id: dict[int, TokenStatus],
        total_count: int,
        captured_at: float,
        source: str,
    ) -> "StatusSnapshot":
        """Build a snapshot, deriving the aggregate counts from the map."""
        sold = sum(1 for status in status_by_token_id.values() if status is TokenStatus.SOLD)
        return cls(
            total_count=total_count,
            live_count=max(0, total_count - sold),
            sold_count=sold,
            status_by_token_id=status_by_token_id,
            captured_at=captured_at,
            source=source,
        )

    @classmethod
    def all_active(cls, total_count: int, captured_at: float) -> "StatusSnapshot":
        """The conservative default: every token ACTIVE, nothing sold."""
        return cls(
            total_count=total_count,
            live_count=total_count,
            sold_count=0,
            status_by_token_id=dict.fromkeys(range(total_count), TokenStatus.ACTIVE),
            captured_at=captured_at,
            source="default",
        )

    def copy(self) -> "StatusSnapshot":
        """Independent copy; the status map is not shared."""
        return StatusSnapshot(
            total_count=self.total_count,
            live_count=self.live_count,
            sold_count=self.sold_count,
            status_by_token_id=dict(self.status_by_token_id),
            captured_at=self.captured_at,
            source=self.source,
        )


@dataclass(frozen=True)
class StatusResult:
    """A snapshot as served to a caller, annotated with where it came from."""

    snapshot: StatusSnapshot
    served_from_cache: bool
    freshness: Freshness


@dataclass(frozen=True)
class AggregateCounts:
    """Live/sold totals, possibly from a cheaper aggregated data path."""

    live_count: int
    sold_count: int
    captured_at: float
    source: str
    served_from_cache: bool = False
    freshness: Freshness = Freshness.FRESH
