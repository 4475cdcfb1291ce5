from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from journal.db import get_database
from journal.logging_config import configure_logging
from journal.observability import METRICS
from journal.storage import BlobDeleteOutcome, delete_blob


LOGGER = logging.getLogger("journal.retention")

RETENTION_DAYS = 30


@dataclass
class RetentionConfig:
    dry_run: bool = False


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def cutoff_ms(now: datetime) -> int:
    return int((now - timedelta(days=RETENTION_DAYS)).timestamp() * 1000)


def run_retention_sweep(
    db,
    config: Optional[RetentionConfig] = None,
    now: Optional[datetime] = None,
) -> dict[str, int]:
    """Purge audio rows older than the retention window, then their blobs.

    Rows go first and in a single statement. Blob deletions are attempted one by
    one afterwards; a failure is logged and counted but never restores the row
    or stops the remaining deletions.
    """
    active = config or RetentionConfig()
    current = now or _utc_now()
    cutoff = cutoff_ms(current)

    summary = {
        "cutoffMs": cutoff,
        "audiosMatched": 0,
        "audiosDeleted": 0,
        "blobsDeleted": 0,
        "blobsMissing": 0,
        "blobDeleteFailures": 0,
    }

    candidates = db.fetch_audios_older_than(cutoff)
    summary["audiosMatched"] = len(candidates)
    if not candidates:
        LOGGER.info("retention.nothing_to_delete", extra={"cutoff_ms": cutoff})
        return summary

    if active.dry_run:
        for row in candidates:
            LOGGER.info(
                "retention.candidate",
                extra={"audio_id": row["id"], "blob_name": row["file_path"]},
            )
        return summary

    summary["audiosDeleted"] = db.delete_audios_by_ids([row["id"] for row in candidates])
    LOGGER.info(
        "retention.rows_deleted",
        extra={"cutoff_ms": cutoff, "deleted_rows": summary["audiosDeleted"]},
    )

    for row in candidates:
        outcome = delete_blob(row["file_path"])
        METRICS.increment_blob_cleanup("retention", outcome.value)
        if outcome is BlobDeleteOutcome.DELETED:
            summary["blobsDeleted"] += 1
        elif outcome is BlobDeleteOutcome.MISSING:
            summary["blobsMissing"] += 1
        else:
            summary["blobDeleteFailures"] += 1
            LOGGER.error(
                "retention.blob_delete_failed",
                extra={"audio_id": row["id"], "blob_name": row["file_path"]},
            )

    return summary


def _cli(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description=f"Delete audio recordings older than {RETENTION_DAYS} days."
    )
    parser.add_argument("--dry-run", action="store_true", help="Only report candidate deletions.")
    args = parser.parse_args(argv)
    configure_logging(stream=sys.stderr)

    db = get_database()
    db.migrate()
    summary = run_retention_sweep(db, RetentionConfig(dry_run=args.dry_run))
    print(json.dumps(summary))
    return 0


if __name__ == "__main__":
    raise SystemExit(_cli())
