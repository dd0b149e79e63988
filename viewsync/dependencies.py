from __future__ import annotations

from functools import lru_cache

from viewsync.config import AppSettings, load_settings
from viewsync.errors import ConfigurationError
from viewsync.models.sync_contracts import UpdateOptions
from viewsync.repositories.notion_repository import (
    NotionRepository,
    build_notion_client,
    notion_rate_limit_delay,
)
from viewsync.services.field_map import property_names_from_settings
from viewsync.services.rate_limiter import SpacingRateLimiter, resolve_rate_limit_preset
from viewsync.services.record_updater import RecordUpdater
from viewsync.services.sync_service import SyncService
from viewsync.services.youtube_service import YouTubeService
from viewsync.telemetry import TelemetryClient, build_telemetry_client


def build_notion_repository(settings: AppSettings) -> NotionRepository:
    if settings.notion_token is None:
        raise ConfigurationError("VIEWSYNC_NOTION_TOKEN is required.")
    preset = resolve_rate_limit_preset(settings.rate_limit_mode)
    return NotionRepository(
        build_notion_client(settings.notion_token, timeout_seconds=settings.notion_timeout_seconds),
        read_limiter=SpacingRateLimiter.from_profile(
            "notion-read",
            preset.notion_read,
            rate_limit_delay=notion_rate_limit_delay,
            max_rate_limit_retries=settings.rate_limit_max_retries,
        ),
    )


def build_sync_service(
    settings: AppSettings,
    *,
    telemetry: TelemetryClient | None = None,
) -> SyncService:
    if settings.youtube_api_key is None:
        raise ConfigurationError("VIEWSYNC_YOUTUBE_API_KEY is required.")
    if settings.database_id is None:
        raise ConfigurationError("VIEWSYNC_DATABASE_ID is required.")

    preset = resolve_rate_limit_preset(settings.rate_limit_mode)
    repository = build_notion_repository(settings)
    return SyncService(
        repository=repository,
        youtube_service=YouTubeService.from_api_key(
            settings.youtube_api_key,
            timeout_seconds=settings.youtube_timeout_seconds,
        ),
        updater=RecordUpdater(
            repository,
            write_limiter=SpacingRateLimiter.from_profile(
                "notion-write",
                preset.notion_write,
                rate_limit_delay=notion_rate_limit_delay,
                max_rate_limit_retries=settings.rate_limit_max_retries,
            ),
        ),
        database_id=settings.database_id,
        property_names=property_names_from_settings(settings),
        options=UpdateOptions(
            update_title=settings.update_title,
            set_thumbnail=settings.set_thumbnail,
            dry_run=settings.dry_run,
        ),
        telemetry=telemetry,
    )


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def reset_cached_dependencies() -> None:
    get_telemetry.cache_clear()
    get_settings.cache_clear()
