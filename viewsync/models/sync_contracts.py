from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

YOUTUBE_BATCH_SIZE = 50
NOTION_PAGE_SIZE = 100

FieldKind = Literal["url", "number", "date", "title", "rich_text"]
FieldRole = Literal[
    "video_url",
    "view_count",
    "like_count",
    "comment_count",
    "publish_date",
    "title",
]

ALLOWED_KINDS_BY_ROLE: dict[str, frozenset[str]] = {
    "video_url": frozenset({"url"}),
    "view_count": frozenset({"number"}),
    "like_count": frozenset({"number"}),
    "comment_count": frozenset({"number"}),
    "publish_date": frozenset({"date"}),
    "title": frozenset({"title", "rich_text"}),
}


@dataclass(frozen=True)
class NotionRecord:
    record_id: str
    url: str | None
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VideoReference:
    record_id: str
    video_id: str
    url: str


@dataclass(frozen=True)
class VideoMetadata:
    video_id: str
    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0
    published_at: str | None = None
    title: str | None = None
    thumbnail_url: str | None = None
    thumbnails: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class UpdatePlan:
    record_id: str
    video_id: str
    url: str
    metadata: VideoMetadata


@dataclass(frozen=True)
class FieldDescriptor:
    name: str
    kind: FieldKind


@dataclass(frozen=True)
class FieldMap:
    video_url: FieldDescriptor
    view_count: FieldDescriptor
    like_count: FieldDescriptor | None = None
    comment_count: FieldDescriptor | None = None
    publish_date: FieldDescriptor | None = None
    title: FieldDescriptor | None = None


@dataclass(frozen=True)
class UpdateOptions:
    update_title: bool = False
    set_thumbnail: bool = False
    dry_run: bool = False


@dataclass(frozen=True)
class PageUpdate:
    record_id: str
    properties: dict[str, Any]
    cover: dict[str, Any] | None = None


@dataclass(frozen=True)
class UpdateResult:
    updated_ids: list[str]
    failed_ids: list[str] = field(default_factory=list)
    skipped_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SyncReport:
    run_id: str
    fetched_records: int
    video_references: int
    batches: int
    resolved_videos: int
    planned_updates: int
    result: UpdateResult
    dry_run: bool = False

    @property
    def updated_ids(self) -> list[str]:
        return list(self.result.updated_ids)
