"""
Event-Log Scanner — Transfer History of the Collection.

Retrieves every ERC-721 Transfer event the collection contract ever emitted
and folds it into per-token state:
- last_destination: the `to` address of each token's most recent transfer
- ever_sold: tokens that were ever sent outside the custodian set

INVARIANTS:
- Once history puts a token in ever_sold, history never takes it out.
  Only a live ownership read can make it ACTIVE again (relisting).
- A failed retrieval raises EventScanError. History is then unknown,
  which is different from empty; callers must fall back, never report
  all-ACTIVE on the scanner's behalf.
"""

import functools
import logging
from collections import deque
from collections.abc import Iterable
from typing import Protocol

from nftstatus.clients.insight import InsightClient
from nftstatus.clients.ledger import TRANSFER_TOPIC, LedgerClient, decode_transfer_log
from nftstatus.config import ZERO_ADDRESS
from nftstatus.models.failure import EventScanError, IndexerError, LedgerError
from nftstatus.models.status import TransferEvent, TransferHistory
from nftstatus.services.rate_limiter import RateLimitedGateway

logger = logging.getLogger(__name__)

# Initial eth_getLogs block window; oversized windows are split on demand
DEFAULT_BLOCK_STRIDE = 100_000

# JSON-RPC "limit exceeded", used by most providers for too many logs
TOO_MANY_RESULTS_CODE = -32005


class TransferSource(Protocol):
    """Anything that can produce a contract's complete Transfer history."""

    async def scan_transfers(self, contract_address: str) -> list[TransferEvent]: ...


def _is_too_many_results(error: LedgerError) -> bool:
    """Provider rejected the window as too large rather than failing outright."""
    message = error.message.lower()
    return (
        error.code == TOO_MANY_RESULTS_CODE
        or "10000" in message
        or "more than" in message
        or "block range" in message
    )


class EventLogScanner:
    """
    Transfer history straight from the ledger via eth_getLogs.

    Pages through block windows from `start_block` to the chain head. A window
    the provider rejects for returning too many logs is split in half and
    retried, down to single blocks. Every request goes through the gateway.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        gateway: RateLimitedGateway,
        start_block: int = 0,
        block_stride: int = DEFAULT_BLOCK_STRIDE,
    ):
        if block_stride <= 0:
            raise ValueError("block_stride must be positive")
        self.ledger = ledger
        self.gateway = gateway
        self.start_block = start_block
        self.block_stride = block_stride

    async def scan_transfers(self, contract_address: str) -> list[TransferEvent]:
        """
        Complete Transfer history of `contract_address`, in emission order.

        Raises:
            EventScanError: If any window cannot be retrieved
        """
        try:
            latest = await self.gateway.execute(self.ledger.block_number)
            events = await self._scan_windows(contract_address, latest)
        except LedgerError as e:
            raise EventScanError(f"Transfer history unavailable: {e.message}") from e
        except TimeoutError as e:
            raise EventScanError("Transfer history request timed out") from e

        logger.info(
            "TRANSFER_HISTORY_SCANNED",
            extra={"contract": contract_address, "events": len(events), "head": latest},
        )
        return sorted(events)

    async def _scan_windows(self, contract_address: str, latest: int) -> list[TransferEvent]:
        work: deque[tuple[int, int]] = deque()
        lo = max(0, self.start_block)
        while lo <= latest:
            hi = min(lo + self.block_stride - 1, latest)
            work.append((lo, hi))
            lo = hi + 1

        events: list[TransferEvent] = []
        while work:
            lo, hi = work.popleft()
            try:
                logs = await self.gateway.execute(
                    functools.partial(
                        self.ledger.get_logs, contract_address, [TRANSFER_TOPIC], lo, hi
                    )
                )
            except LedgerError as e:
                if lo == hi or not _is_too_many_results(e):
                    raise
                mid = (lo + hi) // 2
                logger.debug(
                    "EVENT_WINDOW_SPLIT",
                    extra={"from_block": lo, "to_block": hi, "split_at": mid},
                )
                # Keep ascending order: left half is processed first
                work.appendleft((mid + 1, hi))
                work.appendleft((lo, mid))
                continue

            for log in logs:
                event = decode_transfer_log(log)
                if event is not None:
                    events.append(event)

        return events


class IndexerTransferSource:
    """Transfer history from the indexing API instead of raw eth_getLogs."""

    def __init__(self, insight: InsightClient):
        self.insight = insight

    async def scan_transfers(self, contract_address: str) -> list[TransferEvent]:
        try:
            return await self.insight.get_transfer_events(contract_address)
        except IndexerError as e:
            raise EventScanError(f"Indexer transfer history unavailable: {e}") from e


def fold_transfers(
    events: Iterable[TransferEvent],
    total_count: int,
    custodian_addresses: Iterable[str],
) -> TransferHistory:
    """
    Fold ordered Transfer events into per-token history.

    Args:
        events: Transfer events in emission order
        total_count: Collection size; ids outside 0..total_count-1 are ignored
        custodian_addresses: Addresses that do not count as a sale
            (marketplace custodian, issuer); compared lowercased

    Returns:
        TransferHistory with last destinations and the ever-sold set
    """
    custodians = {address.lower() for address in custodian_addresses if address}
    custodians.add(ZERO_ADDRESS)

    history = TransferHistory()
    for event in events:
        if not 0 <= event.token_id < total_count:
            continue
        destination = event.to_address.lower()
        history.last_destination[event.token_id] = destination
        if destination not in custodians:
            history.ever_sold.add(event.token_id)

    return history
