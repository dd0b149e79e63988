from __future__ import annotations

from viewsync.config import AppSettings
from viewsync.dependencies import build_sync_service, get_settings, get_telemetry
from viewsync.logging_config import configure_application_logging
from viewsync.models.sync_contracts import SyncReport
from viewsync.telemetry import build_telemetry_client


def run_sync(settings: AppSettings | None = None) -> SyncReport:
    if settings is None:
        resolved_settings = get_settings()
        telemetry = get_telemetry()
    else:
        resolved_settings = settings
        telemetry = build_telemetry_client(
            enabled=settings.telemetry_enabled,
            sink=settings.telemetry_sink,
        )
    configure_application_logging(resolved_settings)
    service = build_sync_service(resolved_settings, telemetry=telemetry)
    return service.run()


def run_action(settings: AppSettings | None = None) -> list[str]:
    """Entry point for the hosting runtime: ids of the pages that were updated."""
    return run_sync(settings).updated_ids
