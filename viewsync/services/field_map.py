from __future__ import annotations

from collections.abc import Mapping
from typing import cast

from viewsync.config import AppSettings
from viewsync.errors import ConfigurationError
from viewsync.models.sync_contracts import (
    ALLOWED_KINDS_BY_ROLE,
    FieldDescriptor,
    FieldKind,
    FieldMap,
)

REQUIRED_ROLES: frozenset[str] = frozenset({"video_url", "view_count"})


def property_names_from_settings(settings: AppSettings) -> dict[str, str | None]:
    return {
        "video_url": settings.url_property,
        "view_count": settings.view_count_property,
        "like_count": settings.like_count_property,
        "comment_count": settings.comment_count_property,
        "publish_date": settings.publish_date_property,
        "title": settings.title_property,
    }


def resolve_field_map(
    property_names: Mapping[str, str | None],
    schema: Mapping[str, str],
) -> FieldMap:
    """
    Bind each logical role to a Notion property and check its type.

    All problems are collected and raised together so a misconfigured run
    fails before any record is fetched or written.
    """
    errors: list[str] = []
    descriptors: dict[str, FieldDescriptor | None] = {}

    for role, allowed_kinds in ALLOWED_KINDS_BY_ROLE.items():
        name = property_names.get(role)
        if name is None:
            if role in REQUIRED_ROLES:
                errors.append(f"Property for '{role}' is required but not configured.")
            descriptors[role] = None
            continue

        actual_kind = schema.get(name)
        if actual_kind is None:
            errors.append(f"Property '{name}' (for '{role}') does not exist in the database.")
            descriptors[role] = None
            continue
        if actual_kind not in allowed_kinds:
            expected = " or ".join(sorted(allowed_kinds))
            errors.append(
                f"Property '{name}' (for '{role}') has type '{actual_kind}', expected {expected}."
            )
            descriptors[role] = None
            continue
        descriptors[role] = FieldDescriptor(name=name, kind=cast(FieldKind, actual_kind))

    video_url = descriptors["video_url"]
    view_count = descriptors["view_count"]
    if errors or video_url is None or view_count is None:
        bullets = "\n".join(f"- {message}" for message in errors)
        raise ConfigurationError(f"Invalid property configuration:\n{bullets}")

    return FieldMap(
        video_url=video_url,
        view_count=view_count,
        like_count=descriptors.get("like_count"),
        comment_count=descriptors.get("comment_count"),
        publish_date=descriptors.get("publish_date"),
        title=descriptors.get("title"),
    )
