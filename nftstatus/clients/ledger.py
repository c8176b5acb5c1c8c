"""
Ledger access client.

Read-only JSON-RPC access to an EVM chain:
- `eth_call` with ABI encoding of arguments and decoding of typed returns
- `eth_getLogs` for one block window
- `eth_blockNumber`

Plus address checksum/validation helpers. The status engine only depends on
the `LedgerClient` protocol, so tests substitute an in-memory fake.
"""

import itertools
import logging
from collections.abc import Sequence
from typing import Any, Protocol

import httpx
from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from nftstatus.config import TRANSFER_EVENT_SIGNATURE
from nftstatus.models.failure import LedgerError
from nftstatus.models.status import TransferEvent

logger = logging.getLogger(__name__)

USER_AGENT = "NFTStatus/1.0"


# =============================================================================
# ADDRESS AND ABI HELPERS
# =============================================================================


def is_valid_address(address: str) -> bool:
    """True for a well-formed 20-byte hex address (checksum verified if mixed case)."""
    return isinstance(address, str) and Web3.is_address(address)


def normalize_address(address: str) -> str:
    """
    Lowercase form used for every address comparison.

    Raises:
        ValueError: If the address is malformed
    """
    if not is_valid_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    return address.lower()


def to_checksum_address(address: str) -> str:
    """EIP-55 checksummed form, for display and for providers that require it."""
    return Web3.to_checksum_address(address)


def function_selector(signature: str) -> bytes:
    """First four bytes of keccak256 of a canonical function signature."""
    return bytes(Web3.keccak(text=signature))[:4]


def event_topic(signature: str) -> str:
    """topic0 for a canonical event signature, as 0x-prefixed hex."""
    return "0x" + bytes(Web3.keccak(text=signature)).hex()


def topic_to_address(topic: str) -> str:
    """Recover a lowercase address from a 32-byte indexed topic."""
    return "0x" + topic[-40:].lower()


TRANSFER_TOPIC = event_topic(TRANSFER_EVENT_SIGNATURE)


def _as_int(value: Any) -> int:
    """Quantities arrive as 0x-hex from JSON-RPC and as plain numbers from indexers."""
    if isinstance(value, int):
        return value
    text = str(value)
    return int(text, 16) if text.startswith("0x") else int(text)


def decode_transfer_log(log: dict[str, Any]) -> TransferEvent | None:
    """
    Decode an ERC-721 Transfer log.

    ERC-721 indexes all three arguments, so a valid log has four topics.
    ERC-20 style logs (tokenId in data) and malformed entries return None.
    """
    if not isinstance(log, dict):
        return None
    topics = log.get("topics") or []
    if len(topics) != 4 or str(topics[0]).lower() != TRANSFER_TOPIC:
        return None
    try:
        return TransferEvent(
            log_order=(
                _as_int(log.get("blockNumber", log.get("block_number"))),
                _as_int(log.get("transactionIndex", log.get("transaction_index"))),
                _as_int(log.get("logIndex", log.get("log_index"))),
            ),
            from_address=topic_to_address(topics[1]),
            to_address=topic_to_address(topics[2]),
            token_id=int(topics[3], 16),
        )
    except (TypeError, ValueError):
        return None


def _signature_arg_types(signature: str) -> list[str]:
    """Argument types of `name(type1,type2)`; tuples are kept whole."""
    inner = signature[signature.index("(") + 1 : signature.rindex(")")]
    types: list[str] = []
    depth = 0
    current = ""
    for char in inner:
        if char == "," and depth == 0:
            types.append(current)
            current = ""
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        current += char
    if current:
        types.append(current)
    return types


def encode_call(signature: str, args: Sequence[Any]) -> bytes:
    """Selector plus ABI-encoded arguments for `signature`."""
    return function_selector(signature) + encode(_signature_arg_types(signature), list(args))


# =============================================================================
# CLIENT
# =============================================================================


class LedgerClient(Protocol):
    """Capabilities the status engine needs from the ledger."""

    async def block_number(self) -> int: ...

    async def eth_call(self, to: str, data: bytes) -> bytes: ...

    async def get_logs(
        self,
        address: str,
        topics: list[str | None],
        from_block: int,
        to_block: int,
    ) -> list[dict[str, Any]]: ...


class JsonRpcLedgerClient:
    """
    JSON-RPC ledger client over HTTP.

    Every failure (transport error, non-2xx status, JSON-RPC error object)
    is raised as LedgerError so callers can fall through to another tier.
    """

    def __init__(
        self,
        rpc_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.rpc_url = rpc_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
        )
        self._ids = itertools.count(1)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def request(self, method: str, params: list[Any]) -> Any:
        """
        Issue one JSON-RPC request.

        Returns:
            The `result` member of the response

        Raises:
            LedgerError: On transport failure, HTTP error or JSON-RPC error
        """
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise LedgerError(f"{method} failed: {e}") from e
        except ValueError as e:
            raise LedgerError(f"{method} returned invalid JSON") from e

        error = body.get("error")
        if error:
            raise LedgerError(
                f"{method} RPC error: {error.get('message', '')}",
                code=int(error.get("code", -1)),
                data=error.get("data"),
            )
        return body.get("result")

    async def block_number(self) -> int:
        return int(await self.request("eth_blockNumber", []), 16)

    async def eth_call(self, to: str, data: bytes) -> bytes:
        result = await self.request("eth_call", [{"to": to, "data": "0x" + data.hex()}, "latest"])
        if not isinstance(result, str):
            raise LedgerError("eth_call returned no data")
        try:
            return bytes.fromhex(result.removeprefix("0x"))
        except ValueError as e:
            raise LedgerError("eth_call returned malformed hex") from e

    async def call_function(
        self,
        to: str,
        signature: str,
        args: Sequence[Any],
        return_types: list[str],
    ) -> tuple[Any, ...]:
        """
        Call a read-only contract method and decode its typed return value.

        Args:
            to: Contract address
            signature: Canonical signature, e.g. "ownerOf(uint256)"
            args: Positional arguments matching the signature
            return_types: ABI types of the return values, e.g. ["address"]
        """
        raw = await self.eth_call(to, encode_call(signature, args))
        try:
            return tuple(decode(return_types, raw))
        except DecodingError as e:
            raise LedgerError(f"Could not decode {signature} return data") from e

    async def get_logs(
        self,
        address: str,
        topics: list[str | None],
        from_block: int,
        to_block: int,
    ) -> list[dict[str, Any]]:
        params = {
            "address": address,
            "topics": topics,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }
        result = await self.request("eth_getLogs", [params])
        return result or []
