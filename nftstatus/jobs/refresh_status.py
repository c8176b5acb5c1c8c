"""
Scheduled job to recompute the collection's status map.

Forces a refresh through the same tier chain the API uses and optionally
exports the result as JSON and/or CSV.
Can be run as a standalone script or called from a scheduler.
"""

import argparse
import asyncio
import csv
import json
import logging
from pathlib import Path

from nftstatus.config import settings
from nftstatus.models.status import StatusResult
from nftstatus.services.runtime import build_service

logger = logging.getLogger(__name__)


def export_json(result: StatusResult, path: Path) -> None:
    """Write counts, freshness and the full status map as JSON."""
    snapshot = result.snapshot
    payload = {
        "total_count": snapshot.total_count,
        "live_count": snapshot.live_count,
        "sold_count": snapshot.sold_count,
        "source": snapshot.source,
        "freshness": result.freshness.value,
        "captured_at": snapshot.captured_at,
        "status_by_token_id": {
            str(token_id): token_status.value
            for token_id, token_status in sorted(snapshot.status_by_token_id.items())
        },
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def export_csv(result: StatusResult, path: Path) -> None:
    """Write one `token_id,status` row per token."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["token_id", "status"])
        for token_id, token_status in sorted(result.snapshot.status_by_token_id.items()):
            writer.writerow([token_id, token_status.value])


async def run_refresh(json_path: Path | None = None, csv_path: Path | None = None) -> StatusResult:
    """
    Force one recomputation and export it.

    Args:
        json_path: Where to write the JSON export, if anywhere
        csv_path: Where to write the CSV export, if anywhere

    Returns:
        The StatusResult; degraded results are still exported, flagged by freshness

    Raises:
        ConfigurationError: If required settings are missing
    """
    service = build_service(settings)
    try:
        result = await service.cache.get_status(force_refresh=True)
    finally:
        await service.aclose()

    snapshot = result.snapshot
    logger.info(
        "Status refresh complete: %d live, %d sold of %d (source=%s, freshness=%s)",
        snapshot.live_count,
        snapshot.sold_count,
        snapshot.total_count,
        snapshot.source,
        result.freshness.value,
    )

    if json_path is not None:
        export_json(result, json_path)
        logger.info("Wrote JSON export to %s", json_path)
    if csv_path is not None:
        export_csv(result, csv_path)
        logger.info("Wrote CSV export to %s", csv_path)
    return result


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for refreshing collection status."""
    parser = argparse.ArgumentParser(description="Recompute NFT collection status")
    parser.add_argument(
        "--json",
        type=Path,
        default=None,
        help="Write the status map as JSON to this path",
    )
    parser.add_argument(
        "--csv",
        type=Path,
        default=None,
        help="Write token_id,status rows as CSV to this path",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    result = asyncio.run(run_refresh(args.json, args.csv))

    snapshot = result.snapshot
    print(f"Live: {snapshot.live_count}  Sold: {snapshot.sold_count}  Total: {snapshot.total_count}")
    print(f"Source: {snapshot.source}  Freshness: {result.freshness.value}")


if __name__ == "__main__":
    main()
