from pydantic_settings import BaseSettings, SettingsConfigDict

from nftstatus.models.failure import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "NFTStatus"
    debug: bool = False

    # Ledger access (Base mainnet by default)
    rpc_url: str = ""
    chain_id: int = 8453

    collection_address: str = ""
    marketplace_address: str = ""
    # Optional: when set, tokens held by the issuer also count as ACTIVE
    issuer_address: str = ""

    # Indexing API; the indexer tiers are skipped when no client id is set
    insight_client_id: str = ""
    insight_base_url: str = "https://insight.thirdweb.com"

    total_tokens: int = 7777

    rpc_calls_per_second: int = 200
    multicall_address: str = "0xcA11bde05977b3631167028862bE2a173976CA11"
    multicall_chunk_size: int = 100

    status_cache_ttl_seconds: float = 300.0
    aggregate_cache_ttl_seconds: float = 60.0
    # Single-file snapshot persistence; empty disables it
    snapshot_path: str = ""

    request_timeout_seconds: float = 30.0

    log_start_block: int = 0
    log_block_stride: int = 100_000

    def require_ledger_config(self) -> None:
        """
        Verify that every value needed to talk to the ledger is present.

        Raises:
            ConfigurationError: Listing all missing settings
        """
        missing = [
            name.upper()
            for name in ("rpc_url", "collection_address", "marketplace_address")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(missing)

    @property
    def insight_enabled(self) -> bool:
        return bool(self.insight_client_id)


settings = Settings()


# =============================================================================
# COLLECTION CONSTANTS
# =============================================================================

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Transfer event signature, shared by ERC-20 and ERC-721; hashed for topic0
TRANSFER_EVENT_SIGNATURE = "Transfer(address,address,uint256)"

# Largest id list accepted by the ownership endpoint
MAX_OWNERSHIP_REQUEST_SIZE = 1000
