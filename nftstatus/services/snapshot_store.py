"""
Single-file snapshot persistence.

Stores the one snapshot this deployment tracks as JSON. The file's
modification time is the capture timestamp. A missing, unreadable, corrupt
or inconsistent file is reported as None, which callers treat exactly like
an empty cache.
"""

import json
import logging
import os
import tempfile
from pathlib import Path

from nftstatus.models.status import StatusSnapshot, TokenStatus

logger = logging.getLogger(__name__)


class SnapshotStore:
    """JSON file holding the latest successful snapshot."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self, total_count: int) -> StatusSnapshot | None:
        """
        Read the stored snapshot.

        Args:
            total_count: Expected collection size; a file for a different size is ignored

        Returns:
            The snapshot with captured_at set from the file mtime, or None
        """
        try:
            captured_at = self.path.stat().st_mtime
            with open(self.path, encoding="utf-8") as f:
                payload = json.load(f)
            statuses = {
                int(token_id): TokenStatus(status)
                for token_id, status in payload["status_by_token_id"].items()
            }
            snapshot = StatusSnapshot.from_statuses(
                statuses,
                total_count=int(payload["total_count"]),
                captured_at=captured_at,
                source=str(payload.get("source", "file")),
            )
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(
                "SNAPSHOT_FILE_UNUSABLE",
                extra={"path": str(self.path), "error": type(e).__name__},
            )
            return None

        if snapshot.total_count != total_count:
            logger.warning(
                "SNAPSHOT_FILE_SIZE_MISMATCH",
                extra={"path": str(self.path), "stored": snapshot.total_count, "expected": total_count},
            )
            return None
        return snapshot

    def save(self, snapshot: StatusSnapshot) -> bool:
        """
        Write the snapshot atomically (temp file, then rename).

        Returns:
            False if the write failed; the failure is logged, never raised
        """
        payload = {
            "total_count": snapshot.total_count,
            "live_count": snapshot.live_count,
            "sold_count": snapshot.sold_count,
            "source": snapshot.source,
            "status_by_token_id": {
                str(token_id): status.value
                for token_id, status in sorted(snapshot.status_by_token_id.items())
            },
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            logger.warning(
                "SNAPSHOT_WRITE_FAILED",
                extra={"path": str(self.path), "error": type(e).__name__},
            )
            return False
        return True

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
