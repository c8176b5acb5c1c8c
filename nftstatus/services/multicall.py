"""
Batched ownership reads through Multicall3.

Packs many `ownerOf(tokenId)` point queries into one `tryAggregate` eth_call,
so 100 ownership checks cost one RPC call instead of 100.

Per-item failures never raise: a reverted, empty or undecodable item yields
an OwnershipRecord with owner "". A failed aggregated call degrades every
token in that chunk to owner "".

Multicall3: https://www.multicall3.com
"""

import functools
import logging
from collections.abc import Sequence

from eth_abi import decode
from eth_abi.exceptions import DecodingError

from nftstatus.clients.ledger import LedgerClient, encode_call, to_checksum_address
from nftstatus.models.failure import LedgerError
from nftstatus.models.status import OwnershipRecord
from nftstatus.services.rate_limiter import RateLimitedGateway

logger = logging.getLogger(__name__)

# Same address on every EVM chain Multicall3 is deployed to
MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"

OWNER_OF_SIGNATURE = "ownerOf(uint256)"
TRY_AGGREGATE_SIGNATURE = "tryAggregate(bool,(address,bytes)[])"

# Practical per-call ceiling for aggregated calls (gas and response size)
DEFAULT_CHUNK_SIZE = 100


def encode_owner_of(token_id: int) -> bytes:
    """Calldata for ERC-721 ownerOf(tokenId)."""
    return encode_call(OWNER_OF_SIGNATURE, [token_id])


def encode_try_aggregate(calls: Sequence[tuple[str, bytes]]) -> bytes:
    """
    Calldata for tryAggregate(requireSuccess=false, calls).

    Args:
        calls: (target address, calldata) pairs
    """
    return encode_call(
        TRY_AGGREGATE_SIGNATURE,
        [False, [(to_checksum_address(target), data) for target, data in calls]],
    )


def decode_try_aggregate(raw: bytes) -> list[tuple[bool, bytes]]:
    """Decode tryAggregate's (bool success, bytes returnData)[] result."""
    (results,) = decode(["(bool,bytes)[]"], raw)
    return [(bool(success), bytes(data)) for success, data in results]


def decode_owner(success: bool, return_data: bytes) -> str:
    """Owner address from one ownerOf result, lowercased; "" if it failed."""
    if not success or not return_data:
        return ""
    try:
        (owner,) = decode(["address"], return_data)
    except DecodingError:
        return ""
    return str(owner).lower()


async def batch_owner_of(
    ledger: LedgerClient,
    gateway: RateLimitedGateway,
    contract_address: str,
    token_ids: Sequence[int],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    multicall_address: str = MULTICALL3_ADDRESS,
) -> list[OwnershipRecord]:
    """
    Current owner of every token in `token_ids`, one aggregated call per chunk.

    Args:
        ledger: Ledger access client
        gateway: Rate limiter every aggregated call goes through
        contract_address: ERC-721 collection contract
        token_ids: Tokens to check
        chunk_size: Maximum ownerOf queries per aggregated call

    Returns:
        One OwnershipRecord per input token, in input order
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    records: list[OwnershipRecord] = []
    for start in range(0, len(token_ids), chunk_size):
        chunk = list(token_ids[start : start + chunk_size])
        calldata = encode_try_aggregate(
            [(contract_address, encode_owner_of(token_id)) for token_id in chunk]
        )

        try:
            raw = await gateway.execute(
                functools.partial(ledger.eth_call, multicall_address, calldata)
            )
            results = decode_try_aggregate(raw)
            if len(results) != len(chunk):
                raise DecodingError(f"expected {len(chunk)} results, got {len(results)}")
        except Exception as e:
            logger.warning(
                "MULTICALL_CHUNK_FAILED",
                extra={
                    "first_token_id": chunk[0],
                    "last_token_id": chunk[-1],
                    "error": type(e).__name__,
                },
            )
            records.extend(OwnershipRecord(token_id, "") for token_id in chunk)
            continue

        records.extend(
            OwnershipRecord(token_id, decode_owner(success, data))
            for token_id, (success, data) in zip(chunk, results, strict=True)
        )

    return records


async def read_owner_of(ledger: LedgerClient, contract_address: str, token_id: int) -> str:
    """
    Single, non-aggregated ownerOf read.

    Raises:
        LedgerError: If the call fails or returns no owner
    """
    raw = await ledger.eth_call(contract_address, encode_owner_of(token_id))
    owner = decode_owner(True, raw)
    if not owner:
        raise LedgerError(f"ownerOf({token_id}) returned no owner")
    return owner
