from __future__ import annotations

import argparse
import sys
from typing import Any

from viewsync.config import load_settings, validate_settings
from viewsync.errors import SyncError, SyncStageError
from viewsync.main import run_sync


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Sync YouTube view, like and comment counts into a Notion database.",
    )
    parser.add_argument(
        "--database-id",
        type=str,
        default=None,
        help="Override VIEWSYNC_DATABASE_ID for this run.",
    )
    parser.add_argument(
        "--conservative",
        action="store_true",
        help="Serialize Notion reads and writes to ~3 requests/second.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Build and log page updates without writing them.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    settings = load_settings(validate_credentials=False)

    overrides: dict[str, Any] = {}
    if args.database_id is not None:
        overrides["database_id"] = args.database_id.strip() or None
    if args.conservative:
        overrides["rate_limit_mode"] = "conservative"
    if args.dry_run:
        overrides["dry_run"] = True
    if overrides:
        settings = settings.model_copy(update=overrides)

    try:
        validate_settings(settings)
    except ValueError as exc:
        print(f"Sync not started: {exc}", file=sys.stderr)
        return 2

    try:
        report = run_sync(settings)
    except SyncStageError as exc:
        print(f"Sync failed during {exc.stage}: {exc}", file=sys.stderr)
        return 1
    except SyncError as exc:
        print(f"Sync failed: {exc}", file=sys.stderr)
        return 1

    mode = "dry run" if report.dry_run else "sync"
    print(
        f"{mode} {report.run_id}: fetched={report.fetched_records} "
        f"videos={report.video_references} resolved={report.resolved_videos} "
        f"updated={len(report.result.updated_ids)} failed={len(report.result.failed_ids)} "
        f"skipped={len(report.result.skipped_ids)}"
    )
    for record_id in report.result.updated_ids:
        print(record_id)
    return 0


if __name__ == "__main__":
    sys.exit(main())
