from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

import structlog

TELEMETRY_LOGGER_NAME = "viewsync.telemetry"
REDACTED = "[redacted]"
# Matched against each `_`-separated part of an attribute name; record-level values
# (links, titles, payloads) and credentials never leave the process as telemetry.
_SENSITIVE_KEY_PARTS: frozenset[str] = frozenset(
    {"authorization", "cover", "key", "properties", "secret", "title", "token", "url"}
)
_MAX_STRING_LENGTH = 120

TelemetryValue = bool | int | float | str | None


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        _ = (event_name, attributes)


class LogTelemetrySink:
    """Writes each event as one structlog entry named after the event."""

    def __init__(self, logger_name: str = TELEMETRY_LOGGER_NAME) -> None:
        self._logger = structlog.get_logger(logger_name)

    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        self._logger.info(event_name, **dict(attributes))


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        self.sink.emit(event_name=event_name, attributes=_sanitize_attributes(attributes))

    def run_tracker(self, run_id: str) -> SyncRunTracker:
        return SyncRunTracker(telemetry=self, run_id=run_id)


@dataclass
class SyncRunTracker:
    """Emits the `sync.*` events for one run, with stage and run durations."""

    telemetry: TelemetryClient
    run_id: str
    started_at: float = field(default_factory=time.perf_counter)
    _stage_started_at: float = field(default_factory=time.perf_counter)

    def start(self, **attributes: Any) -> None:
        self.started_at = time.perf_counter()
        self._stage_started_at = self.started_at
        self.telemetry.emit("sync.run.start", run_id=self.run_id, **attributes)

    def stage_complete(self, stage: str, **counts: int) -> None:
        now = time.perf_counter()
        self.telemetry.emit(
            "sync.stage.complete",
            run_id=self.run_id,
            stage=stage,
            duration_ms=int((now - self._stage_started_at) * 1000),
            **counts,
        )
        self._stage_started_at = now

    def finish(self, **counts: int) -> None:
        self.telemetry.emit(
            "sync.run.complete",
            run_id=self.run_id,
            duration_ms=self._elapsed_ms(),
            outcome="ok",
            **counts,
        )

    def fail(self, exc: BaseException, *, stage: str | None) -> None:
        self.telemetry.emit(
            "sync.run.failed",
            run_id=self.run_id,
            duration_ms=self._elapsed_ms(),
            stage=stage,
            error_type=type(exc).__name__,
        )

    def _elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started_at) * 1000)


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if enabled and sink == "log":
        return TelemetryClient(enabled=True, sink=LogTelemetrySink())
    return TelemetryClient.disabled()


def _sanitize_attributes(attributes: Mapping[str, Any]) -> dict[str, TelemetryValue]:
    sanitized: dict[str, TelemetryValue] = {}
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        if _is_sensitive_key(key):
            sanitized[key] = REDACTED
        else:
            sanitized[key] = _sanitize_value(raw_value)
    return sanitized


def _is_sensitive_key(key: str) -> bool:
    return any(part in _SENSITIVE_KEY_PARTS for part in key.split("_"))


def _sanitize_value(value: Any) -> TelemetryValue:
    if value is None or isinstance(value, bool | int):
        return value
    if isinstance(value, float):
        return round(value, 3)
    if isinstance(value, BaseException):
        return type(value).__name__
    if isinstance(value, str):
        compact = " ".join(value.split())
        if len(compact) > _MAX_STRING_LENGTH:
            return f"{compact[: _MAX_STRING_LENGTH - 3]}..."
        return compact
    return type(value).__name__
