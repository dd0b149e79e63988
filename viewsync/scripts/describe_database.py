from __future__ import annotations

import argparse

from viewsync.config import load_settings
from viewsync.dependencies import build_notion_repository
from viewsync.models.sync_contracts import ALLOWED_KINDS_BY_ROLE


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "List the properties of a Notion database by type, to pick values for "
            "the VIEWSYNC_*_PROPERTY settings."
        ),
    )
    parser.add_argument(
        "--database-id",
        type=str,
        default=None,
        help="Database to describe. Defaults to VIEWSYNC_DATABASE_ID.",
    )
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    settings = load_settings(validate_credentials=False)
    database_id = args.database_id or settings.database_id
    if database_id is None:
        raise SystemExit("Pass --database-id or set VIEWSYNC_DATABASE_ID.")

    repository = build_notion_repository(settings)
    grouped = repository.list_properties_by_kind(database_id)

    print(f"Database: {database_id}")
    for kind, names in grouped.items():
        print(f"{kind}: {', '.join(names) if names else '-'}")

    print("Usable for:")
    for role, kinds in ALLOWED_KINDS_BY_ROLE.items():
        candidates = sorted(name for kind in kinds for name in grouped.get(kind, []))
        print(f"  {role}: {', '.join(candidates) if candidates else '-'}")


if __name__ == "__main__":
    main()
