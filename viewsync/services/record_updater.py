from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from contextvars import copy_context
from time import sleep
from typing import Any, Literal

from viewsync.errors import NotionApiError
from viewsync.models.sync_contracts import (
    FieldMap,
    PageUpdate,
    UpdateOptions,
    UpdatePlan,
    UpdateResult,
    VideoMetadata,
    VideoReference,
)
from viewsync.repositories.notion_repository import (
    NotionRepository,
    is_fatal_client_status,
    is_retryable_notion_error,
)
from viewsync.services.rate_limiter import SpacingRateLimiter
from viewsync.services.retry_policies import NOTION_WRITE_ATTEMPTS, notion_retrying

LOGGER = logging.getLogger("viewsync.updater")

WriteOutcome = Literal["updated", "failed"]


def build_update_plans(
    references: Sequence[VideoReference],
    metadata: Sequence[VideoMetadata],
) -> list[UpdatePlan]:
    metadata_by_id: dict[str, VideoMetadata] = {}
    for item in metadata:
        metadata_by_id.setdefault(item.video_id, item)

    plans: list[UpdatePlan] = []
    for reference in references:
        matched = metadata_by_id.get(reference.video_id)
        if matched is None:
            LOGGER.warning(
                "video metadata missing record_id=%s video_id=%s url=%s",
                reference.record_id,
                reference.video_id,
                reference.url,
            )
            continue
        plans.append(
            UpdatePlan(
                record_id=reference.record_id,
                video_id=reference.video_id,
                url=reference.url,
                metadata=matched,
            )
        )
    return plans


def build_page_update(plan: UpdatePlan, field_map: FieldMap, options: UpdateOptions) -> PageUpdate:
    metadata = plan.metadata
    properties: dict[str, Any] = {
        field_map.view_count.name: {"number": _non_negative(metadata.view_count)},
    }
    if field_map.like_count is not None:
        properties[field_map.like_count.name] = {"number": _non_negative(metadata.like_count)}
    if field_map.comment_count is not None:
        properties[field_map.comment_count.name] = {
            "number": _non_negative(metadata.comment_count)
        }
    if field_map.publish_date is not None and metadata.published_at is not None:
        properties[field_map.publish_date.name] = {"date": {"start": metadata.published_at}}
    if options.update_title and field_map.title is not None and metadata.title is not None:
        rich_text = [{"type": "text", "text": {"content": metadata.title}}]
        if field_map.title.kind == "title":
            properties[field_map.title.name] = {"title": rich_text}
        else:
            properties[field_map.title.name] = {"rich_text": rich_text}

    cover: dict[str, Any] | None = None
    if options.set_thumbnail and metadata.thumbnail_url is not None:
        cover = {"type": "external", "external": {"url": metadata.thumbnail_url}}

    return PageUpdate(record_id=plan.record_id, properties=properties, cover=cover)


def _non_negative(value: int) -> int:
    return value if value > 0 else 0


class RecordUpdater:
    def __init__(
        self,
        repository: NotionRepository,
        *,
        write_limiter: SpacingRateLimiter,
        attempts: int = NOTION_WRITE_ATTEMPTS,
        sleep_fn: Callable[[float], None] = sleep,
    ) -> None:
        self._repository = repository
        self._write_limiter = write_limiter
        self._attempts = max(1, attempts)
        self._sleep = sleep_fn

    def apply(
        self,
        plans: Sequence[UpdatePlan],
        field_map: FieldMap,
        options: UpdateOptions,
    ) -> UpdateResult:
        if not plans:
            return UpdateResult(updated_ids=[])

        updates = [build_page_update(plan, field_map, options) for plan in plans]
        if options.dry_run:
            for update in updates:
                LOGGER.info(
                    "notion update dry_run record_id=%s properties=%s cover=%s",
                    update.record_id,
                    sorted(update.properties),
                    update.cover is not None,
                )
            return UpdateResult(
                updated_ids=[],
                skipped_ids=[update.record_id for update in updates],
            )

        with ThreadPoolExecutor(
            max_workers=min(len(updates), self._write_limiter.max_concurrent),
            thread_name_prefix="viewsync-notion-write",
        ) as executor:
            futures: list[Future[WriteOutcome]] = [
                executor.submit(copy_context().run, self._write, update) for update in updates
            ]
            outcomes = [future.result() for future in futures]

        updated_ids: list[str] = []
        failed_ids: list[str] = []
        for update, outcome in zip(updates, outcomes, strict=True):
            if outcome == "updated":
                updated_ids.append(update.record_id)
            else:
                failed_ids.append(update.record_id)

        LOGGER.info(
            "notion update complete planned=%s updated=%s failed=%s",
            len(updates),
            len(updated_ids),
            len(failed_ids),
        )
        return UpdateResult(updated_ids=updated_ids, failed_ids=failed_ids)

    def _write(self, update: PageUpdate) -> WriteOutcome:
        job_id = f"pages.update:{update.record_id}"
        retrying = notion_retrying(
            label=job_id,
            is_retryable=is_retryable_notion_error,
            attempts=self._attempts,
            sleep_fn=self._sleep,
        )
        try:
            retrying(
                self._write_limiter.schedule,
                job_id,
                lambda: self._repository.update_page(update),
            )
        except NotionApiError as exc:
            LOGGER.warning(
                "notion update failed record_id=%s status=%s client_error=%s error=%s",
                update.record_id,
                exc.status,
                is_fatal_client_status(exc.status),
                exc,
            )
            return "failed"
        LOGGER.debug("notion update ok record_id=%s", update.record_id)
        return "updated"
