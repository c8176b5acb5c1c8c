from nftstatus.clients.insight import InsightClient
from nftstatus.clients.ledger import (
    TRANSFER_TOPIC,
    JsonRpcLedgerClient,
    LedgerClient,
    decode_transfer_log,
    encode_call,
    is_valid_address,
    normalize_address,
    to_checksum_address,
)

__all__ = [
    "InsightClient",
    "JsonRpcLedgerClient",
    "LedgerClient",
    "TRANSFER_TOPIC",
    "decode_transfer_log",
    "encode_call",
    "is_valid_address",
    "normalize_address",
    "to_checksum_address",
]
