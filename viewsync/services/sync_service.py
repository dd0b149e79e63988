from __future__ import annotations

import logging
from collections.abc import Mapping
from uuid import uuid4

from structlog.contextvars import bind_contextvars, reset_contextvars

from viewsync.errors import SyncStageError
from viewsync.models.sync_contracts import (
    YOUTUBE_BATCH_SIZE,
    FieldMap,
    SyncReport,
    UpdateOptions,
)
from viewsync.repositories.notion_repository import NotionRepository
from viewsync.services.field_map import resolve_field_map
from viewsync.services.record_updater import RecordUpdater, build_update_plans
from viewsync.services.video_ids import build_video_references, chunk_references
from viewsync.services.youtube_service import YouTubeService
from viewsync.telemetry import TelemetryClient

LOGGER = logging.getLogger("viewsync.sync")


class SyncService:
    def __init__(
        self,
        *,
        repository: NotionRepository,
        youtube_service: YouTubeService,
        updater: RecordUpdater,
        database_id: str,
        property_names: Mapping[str, str | None],
        options: UpdateOptions,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._repository = repository
        self._youtube_service = youtube_service
        self._updater = updater
        self._database_id = database_id
        self._property_names = dict(property_names)
        self._options = options
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    def resolve_field_map(self) -> FieldMap:
        schema = self._repository.retrieve_schema(self._database_id)
        field_map = resolve_field_map(self._property_names, schema)
        if self._options.update_title and field_map.title is None:
            LOGGER.warning("title update requested but no title property is configured")
        return field_map

    def run(self) -> SyncReport:
        """
        Run fetch, extract, resolve and update once.

        Stage failures (configuration, fetch, metadata resolution) abort the run
        before any write. Per-record problems only shrink the returned result.
        """
        run_id = uuid4().hex
        tokens = bind_contextvars(sync_run_id=run_id)
        tracker = self._telemetry.run_tracker(run_id)
        tracker.start(dry_run=self._options.dry_run)
        stage = "configure"
        try:
            field_map = self.resolve_field_map()
            tracker.stage_complete(stage)

            stage = "fetch"
            records = self._repository.fetch_video_records(
                database_id=self._database_id,
                url_property=field_map.video_url.name,
            )
            LOGGER.info("sync fetched records=%s", len(records))
            tracker.stage_complete(stage, records=len(records))

            stage = "extract"
            references = build_video_references(records)
            batches = chunk_references(references, YOUTUBE_BATCH_SIZE)
            LOGGER.info(
                "sync extracted references=%s dropped=%s batches=%s",
                len(references),
                len(records) - len(references),
                len(batches),
            )
            tracker.stage_complete(stage, references=len(references), batches=len(batches))

            stage = "resolve"
            metadata = self._youtube_service.resolve_batches(batches)
            tracker.stage_complete(stage, videos=len(metadata))

            stage = "update"
            plans = build_update_plans(references, metadata)
            LOGGER.info(
                "sync planned updates=%s unmatched=%s",
                len(plans),
                len(references) - len(plans),
            )
            result = self._updater.apply(plans, field_map, self._options)
            tracker.stage_complete(
                stage,
                updated=len(result.updated_ids),
                failed=len(result.failed_ids),
                skipped=len(result.skipped_ids),
            )
        except Exception as exc:
            failed_stage = exc.stage if isinstance(exc, SyncStageError) else stage
            tracker.fail(exc, stage=failed_stage)
            LOGGER.error("sync failed stage=%s error=%s", failed_stage, exc)
            raise
        finally:
            reset_contextvars(**tokens)

        tracker.finish(updated=len(result.updated_ids), failed=len(result.failed_ids))
        LOGGER.info(
            "sync complete updated=%s failed=%s skipped=%s",
            len(result.updated_ids),
            len(result.failed_ids),
            len(result.skipped_ids),
        )
        return SyncReport(
            run_id=run_id,
            fetched_records=len(records),
            video_references=len(references),
            batches=len(batches),
            resolved_videos=len(metadata),
            planned_updates=len(plans),
            result=result,
            dry_run=self._options.dry_run,
        )
