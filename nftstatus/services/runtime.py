"""
Process-wide service wiring.

Builds one ledger client, one rate-limited gateway and one status cache per
process from Settings, so every request shares the same RPC ceiling and the
same snapshot slot. Construction is lazy: configuration is only validated
when the first request needs the ledger.
"""

import logging
from dataclasses import dataclass

from nftstatus.clients.insight import InsightClient
from nftstatus.clients.ledger import (
    JsonRpcLedgerClient,
    is_valid_address,
    normalize_address,
)
from nftstatus.config import Settings, settings
from nftstatus.models.failure import ConfigurationError
from nftstatus.services.event_scanner import (
    EventLogScanner,
    IndexerTransferSource,
    TransferSource,
)
from nftstatus.services.ownership import OwnershipLookup
from nftstatus.services.rate_limiter import RateLimitedGateway
from nftstatus.services.reconciliation import ReconciliationEngine
from nftstatus.services.snapshot_store import SnapshotStore
from nftstatus.services.status_cache import StatusCache
from nftstatus.services.tiers import (
    IndexerAggregateTier,
    PerTokenOwnershipTier,
    ReconciliationTier,
    StatusTier,
    TierChain,
)

logger = logging.getLogger(__name__)


@dataclass
class NFTStatusService:
    """Everything a request needs, sharing one gateway."""

    ledger: JsonRpcLedgerClient
    gateway: RateLimitedGateway
    insight: InsightClient | None
    cache: StatusCache
    ownership: OwnershipLookup

    async def aclose(self) -> None:
        await self.gateway.aclose()
        await self.ledger.aclose()
        if self.insight is not None:
            await self.insight.aclose()


def build_service(config: Settings) -> NFTStatusService:
    """
    Wire clients, tiers and cache from settings.

    Raises:
        ConfigurationError: If a required setting is missing or an address is malformed
    """
    config.require_ledger_config()
    malformed = [
        f"{name.upper()} (malformed)"
        for name in ("collection_address", "marketplace_address", "issuer_address")
        if getattr(config, name) and not is_valid_address(getattr(config, name))
    ]
    if malformed:
        raise ConfigurationError(malformed)
    contract = normalize_address(config.collection_address)
    marketplace = normalize_address(config.marketplace_address)
    issuer = normalize_address(config.issuer_address) if config.issuer_address else ""

    ledger = JsonRpcLedgerClient(config.rpc_url, timeout=config.request_timeout_seconds)
    gateway = RateLimitedGateway(calls_per_second=config.rpc_calls_per_second)
    insight = (
        InsightClient(
            config.insight_client_id,
            config.chain_id,
            base_url=config.insight_base_url,
            timeout=config.request_timeout_seconds,
        )
        if config.insight_enabled
        else None
    )

    def engine_for(source: TransferSource) -> ReconciliationEngine:
        return ReconciliationEngine(
            source,
            ledger,
            gateway,
            total_count=config.total_tokens,
            marketplace_address=marketplace,
            issuer_address=issuer,
            chunk_size=config.multicall_chunk_size,
            multicall_address=config.multicall_address,
        )

    ledger_engine = engine_for(
        EventLogScanner(
            ledger,
            gateway,
            start_block=config.log_start_block,
            block_stride=config.log_block_stride,
        )
    )

    tiers: list[StatusTier] = []
    aggregate_tier = None
    if insight is not None:
        tiers.append(ReconciliationTier("indexer", engine_for(IndexerTransferSource(insight)), contract))
        aggregate_tier = IndexerAggregateTier(insight, contract, marketplace, config.total_tokens)
    tiers.append(ReconciliationTier("ledger", ledger_engine, contract))
    tiers.append(
        PerTokenOwnershipTier(
            ledger,
            gateway,
            contract,
            config.total_tokens,
            custodian_addresses=ledger_engine.custodian_addresses,
        )
    )

    chain = TierChain(tiers)
    cache = StatusCache(
        chain,
        total_count=config.total_tokens,
        ttl_seconds=config.status_cache_ttl_seconds,
        store=SnapshotStore(config.snapshot_path) if config.snapshot_path else None,
        aggregate_tier=aggregate_tier,
        aggregate_ttl_seconds=config.aggregate_cache_ttl_seconds,
    )
    ownership = OwnershipLookup(
        ledger,
        gateway,
        contract,
        custodian_addresses=ledger_engine.custodian_addresses,
        insight=insight,
        chunk_size=config.multicall_chunk_size,
        multicall_address=config.multicall_address,
    )

    logger.info(
        "SERVICE_BUILT",
        extra={"tiers": chain.names, "total": config.total_tokens},
    )
    return NFTStatusService(ledger, gateway, insight, cache, ownership)


# =============================================================================
# PROCESS SINGLETON
# =============================================================================

_service: NFTStatusService | None = None


def get_service() -> NFTStatusService:
    """Get the process-wide service, building it on first use."""
    global _service
    if _service is None:
        _service = build_service(settings)
    return _service


async def close_service() -> None:
    """Release network clients (application shutdown)."""
    global _service
    if _service is not None:
        await _service.aclose()
        _service = None


def reset_service() -> None:
    """Forget the service without closing it (for testing)."""
    global _service
    _service = None


# FastAPI dependencies


def get_status_cache() -> StatusCache:
    return get_service().cache


def get_ownership_lookup() -> OwnershipLookup:
    return get_service().ownership


def get_ledger() -> JsonRpcLedgerClient:
    return get_service().ledger


def get_gateway() -> RateLimitedGateway:
    return get_service().gateway
