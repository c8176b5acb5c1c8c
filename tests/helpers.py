"""Shared test doubles: fake clock, fake ledger and Transfer log builders."""

import asyncio
from typing import Any

from eth_abi import decode, encode

from nftstatus.clients.ledger import TRANSFER_TOPIC, function_selector
from nftstatus.models.failure import LedgerError
from nftstatus.services.multicall import (
    MULTICALL3_ADDRESS,
    OWNER_OF_SIGNATURE,
    TRY_AGGREGATE_SIGNATURE,
)

COLLECTION = "0x1111111111111111111111111111111111111111"
MARKETPLACE = "0x2222222222222222222222222222222222222222"
ISSUER = "0x3333333333333333333333333333333333333333"
BUYER = "0x4444444444444444444444444444444444444444"
OTHER_BUYER = "0x5555555555555555555555555555555555555555"
ZERO = "0x0000000000000000000000000000000000000000"


class FakeClock:
    """Manually advanced clock whose sleep moves time forward instead of waiting."""

    def __init__(self, start: float = 1_000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        # Let already-issued tasks run at the current instant first
        await asyncio.sleep(0)
        self.now += seconds


def topic_for(address: str) -> str:
    return "0x" + "0" * 24 + address.lower().removeprefix("0x")


def transfer_log(
    from_address: str,
    to_address: str,
    token_id: int,
    block: int,
    tx_index: int = 0,
    log_index: int = 0,
) -> dict[str, Any]:
    """ERC-721 Transfer log as eth_getLogs returns it."""
    return {
        "address": COLLECTION,
        "topics": [
            TRANSFER_TOPIC,
            topic_for(from_address),
            topic_for(to_address),
            "0x" + format(token_id, "064x"),
        ],
        "data": "0x",
        "blockNumber": hex(block),
        "transactionIndex": hex(tx_index),
        "logIndex": hex(log_index),
    }


class FakeLedger:
    """
    In-memory ledger answering eth_blockNumber, eth_getLogs and eth_call.

    eth_call understands Multicall3 tryAggregate wrapping ownerOf, and plain
    ownerOf. Tokens in `failing_tokens` revert; `fail_all` makes every call
    raise LedgerError.
    """

    def __init__(
        self,
        owners: dict[int, str] | None = None,
        logs: list[dict[str, Any]] | None = None,
        head: int = 1_000,
    ):
        self.owners = owners or {}
        self.logs = logs or []
        self.head = head
        self.failing_tokens: set[int] = set()
        self.fail_all = False
        self.fail_get_logs = False
        # Block span above which eth_getLogs reports too many results
        self.max_log_span: int | None = None
        self.calls: list[str] = []

    def _check(self, method: str) -> None:
        self.calls.append(method)
        if self.fail_all:
            raise LedgerError(f"{method} failed: connection refused")

    async def block_number(self) -> int:
        self._check("eth_blockNumber")
        return self.head

    async def get_logs(
        self,
        address: str,
        topics: list[str | None],
        from_block: int,
        to_block: int,
    ) -> list[dict[str, Any]]:
        self._check("eth_getLogs")
        if self.fail_get_logs:
            raise LedgerError("eth_getLogs RPC error: internal error", code=-32000)
        if self.max_log_span is not None and to_block - from_block + 1 > self.max_log_span:
            raise LedgerError(
                "eth_getLogs RPC error: query returned more than 10000 results", code=-32005
            )
        return [log for log in self.logs if from_block <= int(log["blockNumber"], 16) <= to_block]

    def _owner_result(self, calldata: bytes) -> tuple[bool, bytes]:
        (token_id,) = decode(["uint256"], calldata[4:])
        owner = self.owners.get(token_id)
        if token_id in self.failing_tokens or owner is None:
            return False, b""
        return True, encode(["address"], [owner])

    async def eth_call(self, to: str, data: bytes) -> bytes:
        self._check("eth_call")
        selector = data[:4]
        if to.lower() == MULTICALL3_ADDRESS.lower():
            assert selector == function_selector(TRY_AGGREGATE_SIGNATURE)
            _, calls = decode(["bool", "(address,bytes)[]"], data[4:])
            results = [self._owner_result(calldata) for _, calldata in calls]
            return encode(["(bool,bytes)[]"], [results])
        assert selector == function_selector(OWNER_OF_SIGNATURE)
        success, returned = self._owner_result(data)
        if not success:
            raise LedgerError("eth_call RPC error: execution reverted", code=3)
        return returned

    def count(self, method: str) -> int:
        return self.calls.count(method)


