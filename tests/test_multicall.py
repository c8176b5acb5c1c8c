"""Tests for Multicall3-batched ownership reads."""

import pytest
from eth_abi import decode, encode
from helpers import BUYER, COLLECTION, MARKETPLACE, FakeLedger

from nftstatus.clients.ledger import function_selector
from nftstatus.models.failure import LedgerError
from nftstatus.services.multicall import (
    batch_owner_of,
    decode_owner,
    decode_try_aggregate,
    encode_owner_of,
    encode_try_aggregate,
    read_owner_of,
)
from nftstatus.services.rate_limiter import RateLimitedGateway


class TestEncoding:
    def test_owner_of_calldata(self) -> None:
        calldata = encode_owner_of(42)
        assert calldata[:4] == function_selector("ownerOf(uint256)")
        assert calldata[:4].hex() == "6352211e"
        assert decode(["uint256"], calldata[4:]) == (42,)

    def test_try_aggregate_does_not_require_success(self) -> None:
        calldata = encode_try_aggregate([(COLLECTION, encode_owner_of(1))])
        require_success, calls = decode(["bool", "(address,bytes)[]"], calldata[4:])
        assert require_success is False
        assert len(calls) == 1
        assert calls[0][0].lower() == COLLECTION

    def test_decode_try_aggregate(self) -> None:
        raw = encode(["(bool,bytes)[]"], [[(True, b"\x01"), (False, b"")]])
        assert decode_try_aggregate(raw) == [(True, b"\x01"), (False, b"")]

    def test_decode_owner(self) -> None:
        assert decode_owner(True, encode(["address"], [BUYER])) == BUYER
        assert decode_owner(False, encode(["address"], [BUYER])) == ""
        assert decode_owner(True, b"") == ""
        assert decode_owner(True, b"\x01\x02") == ""


class TestBatchOwnerOf:
    async def test_failed_items_are_empty_and_order_preserved(
        self, ledger: FakeLedger, gateway: RateLimitedGateway
    ) -> None:
        """Batch of 10 where queries 3 and 7 fail."""
        ledger.owners = {i: BUYER for i in range(10)}
        ledger.failing_tokens = {2, 6}

        records = await batch_owner_of(ledger, gateway, COLLECTION, list(range(10)))

        assert len(records) == 10
        assert [r.token_id for r in records] == list(range(10))
        assert records[2].owner == ""
        assert records[6].owner == ""
        assert all(r.owner == BUYER for i, r in enumerate(records) if i not in (2, 6))
        assert ledger.count("eth_call") == 1

    async def test_chunks_by_chunk_size(
        self, ledger: FakeLedger, gateway: RateLimitedGateway
    ) -> None:
        ledger.owners = {i: MARKETPLACE for i in range(250)}

        records = await batch_owner_of(ledger, gateway, COLLECTION, list(range(250)), chunk_size=100)

        assert len(records) == 250
        assert ledger.count("eth_call") == 3
        assert all(r.owner == MARKETPLACE for r in records)

    async def test_failed_chunk_degrades_to_empty_owners(
        self, ledger: FakeLedger, gateway: RateLimitedGateway
    ) -> None:
        ledger.owners = {i: BUYER for i in range(5)}
        ledger.fail_all = True

        records = await batch_owner_of(ledger, gateway, COLLECTION, list(range(5)))

        assert [r.owner for r in records] == [""] * 5
        assert not any(r.known for r in records)

    async def test_empty_input_makes_no_calls(
        self, ledger: FakeLedger, gateway: RateLimitedGateway
    ) -> None:
        assert await batch_owner_of(ledger, gateway, COLLECTION, []) == []
        assert ledger.calls == []

    async def test_rejects_non_positive_chunk_size(
        self, ledger: FakeLedger, gateway: RateLimitedGateway
    ) -> None:
        with pytest.raises(ValueError):
            await batch_owner_of(ledger, gateway, COLLECTION, [1], chunk_size=0)


class TestReadOwnerOf:
    async def test_returns_lowercased_owner(self, ledger: FakeLedger) -> None:
        ledger.owners = {3: BUYER}
        assert await read_owner_of(ledger, COLLECTION, 3) == BUYER

    async def test_revert_raises_ledger_error(self, ledger: FakeLedger) -> None:
        with pytest.raises(LedgerError):
            await read_owner_of(ledger, COLLECTION, 3)
