"""
Indexing API client (thirdweb Insight).

The indexer answers questions that would take thousands of ledger calls in
one or a few HTTP round trips:
- aggregate count of Transfer events out of the marketplace
- the collection's full Transfer history, paginated
- the current owner of one token

Any non-success response or unusable payload raises IndexerError.

API reference: https://portal.thirdweb.com/insight
"""

import logging
from typing import Any

import httpx

from nftstatus.clients.ledger import decode_transfer_log
from nftstatus.config import TRANSFER_EVENT_SIGNATURE
from nftstatus.models.failure import IndexerError
from nftstatus.models.status import TransferEvent

logger = logging.getLogger(__name__)

# Events returned per page; the indexer caps page size
DEFAULT_PAGE_SIZE = 1000

# Guard against a misbehaving API paginating forever
MAX_PAGES = 500


class InsightClient:
    """Async client for the indexing API, bound to one chain."""

    def __init__(
        self,
        client_id: str,
        chain_id: int,
        base_url: str = "https://insight.thirdweb.com",
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.chain_id = chain_id
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"x-client-id": client_id, "Content-Type": "application/json"}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.get(url, params=params, headers=self._headers)
        except httpx.HTTPError as e:
            raise IndexerError(f"Indexer request failed: {e}") from e

        if response.status_code != 200:
            raise IndexerError("Indexer returned a non-success status", response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise IndexerError("Indexer returned invalid JSON") from e
        if not isinstance(body, dict):
            raise IndexerError("Indexer returned an unexpected payload")
        return body

    async def count_transfers_from(self, contract_address: str, from_address: str) -> int:
        """
        Count Transfer events sent by `from_address` in one round trip.

        Prefers the pre-aggregated `count()`; when the API returns raw events
        instead, counts distinct token ids.

        Raises:
            IndexerError: If the request fails or no count can be derived
        """
        body = await self._get(
            f"/v1/events/{contract_address}/{TRANSFER_EVENT_SIGNATURE}",
            {"chain": self.chain_id, "from_address": from_address, "aggregate": "count()"},
        )

        aggregations = body.get("aggregations")
        if isinstance(aggregations, list) and aggregations:
            count = aggregations[0].get("count") if isinstance(aggregations[0], dict) else None
            if isinstance(count, int):
                return count

        data = body.get("data")
        if isinstance(data, list):
            events = [event for event in data if isinstance(event, dict)]
            if len(events) != len(data):
                raise IndexerError("Indexer events carried malformed entries")
            token_ids: set[str] = set()
            for event in events:
                args = event.get("args")
                if not isinstance(args, dict):
                    args = {}
                token_id = args.get("tokenId", event.get("token_id"))
                if token_id is not None:
                    token_ids.add(str(token_id))
            return len(token_ids)

        raise IndexerError("Indexer response carried no aggregation")

    async def get_transfer_events(
        self,
        contract_address: str,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> list[TransferEvent]:
        """
        Fetch the collection's complete Transfer history, in emission order.

        Pages until a short page is returned. Undecodable entries are skipped.

        Raises:
            IndexerError: If any page fails
        """
        events: list[TransferEvent] = []
        for page in range(MAX_PAGES):
            body = await self._get(
                f"/v1/events/{contract_address}/{TRANSFER_EVENT_SIGNATURE}",
                {
                    "chain": self.chain_id,
                    "page": page,
                    "limit": page_size,
                    "sort_by": "block_number",
                    "sort_order": "asc",
                },
            )
            data = body.get("data")
            if not isinstance(data, list):
                raise IndexerError("Indexer events page carried no data")

            for log in data:
                event = decode_transfer_log(log)
                if event is not None:
                    events.append(event)

            if len(data) < page_size:
                break
        else:
            raise IndexerError(f"Transfer history exceeded {MAX_PAGES} pages")

        logger.debug(
            "INDEXER_HISTORY_FETCHED",
            extra={"contract": contract_address, "events": len(events)},
        )
        return sorted(events)

    async def get_owner(self, contract_address: str, token_id: int) -> str:
        """
        Current owner of one token, lowercased; "" when the indexer has none.

        Raises:
            IndexerError: If the request fails
        """
        body = await self._get(
            f"/v1/tokens/{self.chain_id}/{contract_address}/owners",
            {"tokenId": token_id, "page": 1, "limit": 1},
        )
        data = body.get("data")
        if isinstance(data, list) and data and isinstance(data[0], dict):
            return str(data[0].get("owner") or "").lower()
        return ""
