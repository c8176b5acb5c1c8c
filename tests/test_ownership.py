"""Tests for arbitrary-token ownership lookup."""

import pytest
from helpers import BUYER, COLLECTION, ISSUER, MARKETPLACE, FakeLedger

from nftstatus.models.failure import IndexerError
from nftstatus.services.ownership import OwnershipLookup, TokenOwnership
from nftstatus.services.rate_limiter import RateLimitedGateway


class StubInsight:
    """Indexer that knows some owners and fails for others."""

    def __init__(self, owners: dict[int, str], failing: set[int] | None = None):
        self.owners = owners
        self.failing = failing or set()
        self.requested: list[int] = []

    async def get_owner(self, contract_address: str, token_id: int) -> str:
        self.requested.append(token_id)
        if token_id in self.failing:
            raise IndexerError("Indexer returned a non-success status", 503)
        return self.owners.get(token_id, "")


@pytest.fixture
def lookup_ledger(ledger: FakeLedger) -> FakeLedger:
    ledger.owners = {0: MARKETPLACE, 1: BUYER, 2: ISSUER}
    return ledger


class TestLedgerOnly:
    async def test_resolves_through_multicall(
        self, lookup_ledger: FakeLedger, gateway: RateLimitedGateway
    ) -> None:
        lookup = OwnershipLookup(lookup_ledger, gateway, COLLECTION, [MARKETPLACE, ISSUER])

        result = await lookup.lookup([0, 1, 2])

        assert result == {
            0: TokenOwnership(MARKETPLACE, is_sold=False),
            1: TokenOwnership(BUYER, is_sold=True),
            2: TokenOwnership(ISSUER, is_sold=False),
        }
        assert lookup_ledger.count("eth_call") == 1

    async def test_per_item_fallback_after_failed_batch_item(
        self, lookup_ledger: FakeLedger, gateway: RateLimitedGateway
    ) -> None:
        lookup = OwnershipLookup(lookup_ledger, gateway, COLLECTION, [MARKETPLACE])

        result = await lookup.lookup([1, 7])

        assert result[1].is_sold is True
        assert result[7] == TokenOwnership("", is_sold=False)
        # One aggregated call, then one single ownerOf for the unresolved token
        assert lookup_ledger.count("eth_call") == 2

    async def test_duplicates_are_looked_up_once(
        self, lookup_ledger: FakeLedger, gateway: RateLimitedGateway
    ) -> None:
        lookup = OwnershipLookup(lookup_ledger, gateway, COLLECTION, [MARKETPLACE])

        result = await lookup.lookup([1, 1, 0])

        assert list(result) == [1, 0]


class TestIndexerFirst:
    async def test_indexer_answers_skip_the_ledger(
        self, lookup_ledger: FakeLedger, gateway: RateLimitedGateway
    ) -> None:
        insight = StubInsight({0: MARKETPLACE, 1: BUYER})
        lookup = OwnershipLookup(
            lookup_ledger, gateway, COLLECTION, [MARKETPLACE], insight=insight  # type: ignore[arg-type]
        )

        result = await lookup.lookup([0, 1])

        assert result[1].is_sold is True
        assert lookup_ledger.calls == []

    async def test_indexer_gaps_fall_through_to_ledger(
        self, lookup_ledger: FakeLedger, gateway: RateLimitedGateway
    ) -> None:
        insight = StubInsight({0: MARKETPLACE}, failing={1})
        lookup = OwnershipLookup(
            lookup_ledger, gateway, COLLECTION, [MARKETPLACE, ISSUER], insight=insight  # type: ignore[arg-type]
        )

        result = await lookup.lookup([0, 1, 2])

        assert result[0].owner == MARKETPLACE
        assert result[1] == TokenOwnership(BUYER, is_sold=True)
        assert result[2] == TokenOwnership(ISSUER, is_sold=False)
        assert lookup_ledger.count("eth_call") == 1
