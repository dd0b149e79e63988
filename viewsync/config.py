from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".viewsync"
RATE_LIMIT_MODES: frozenset[str] = frozenset({"fast", "conservative"})
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (("log_dir", Path("logs")),)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "update_title",
    "set_thumbnail",
    "dry_run",
    "telemetry_enabled",
)
_OPTIONAL_TEXT_FIELDS: tuple[str, ...] = (
    "notion_token",
    "youtube_api_key",
    "database_id",
    "like_count_property",
    "comment_count_property",
    "publish_date_property",
    "title_property",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration for one sync invocation.

    Every option is read from `VIEWSYNC_*` environment variables (or `.env`).
    Property options hold the Notion property *names*; their types are checked
    against the database schema at the start of each run.
    """

    model_config = SettingsConfigDict(
        env_prefix="VIEWSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for logs.",
    )

    # Notion.
    notion_token: str | None = Field(
        default=None,
        description="Notion integration token (opaque; issued by the hosting runtime).",
    )
    notion_timeout_seconds: float = Field(
        default=30.0,
        description="Deadline for every Notion API request.",
    )
    database_id: str | None = Field(
        default=None,
        description="Notion database that stores one page per tracked video.",
    )
    url_property: str = Field(
        default="URL",
        description="URL property holding the YouTube link.",
    )
    view_count_property: str = Field(
        default="Views",
        description="Number property receiving the view count.",
    )
    like_count_property: str | None = Field(
        default=None,
        description="Optional number property receiving the like count.",
    )
    comment_count_property: str | None = Field(
        default=None,
        description="Optional number property receiving the comment count.",
    )
    publish_date_property: str | None = Field(
        default=None,
        description="Optional date property receiving the publish timestamp.",
    )
    title_property: str | None = Field(
        default=None,
        description="Optional title or rich_text property receiving the video title.",
    )
    update_title: bool = Field(
        default=False,
        description="Overwrite the title property with the YouTube title.",
    )
    set_thumbnail: bool = Field(
        default=False,
        description="Replace each page cover with the video's best public thumbnail.",
    )

    # Rate limiting.
    rate_limit_mode: Literal["fast", "conservative"] = Field(
        default="fast",
        description=(
            "`fast` bursts reads/writes; `conservative` serializes both Notion limiters "
            "to the published 3 requests/second limit."
        ),
    )
    rate_limit_max_retries: int = Field(
        default=5,
        ge=0,
        description="Consecutive 429 re-runs allowed per Notion job before giving up.",
    )

    # YouTube.
    youtube_api_key: str | None = Field(
        default=None,
        description="YouTube Data API key used for public video lookups.",
    )
    youtube_timeout_seconds: float = Field(
        default=30.0,
        description="Socket deadline for every YouTube Data API request.",
    )

    # Run behavior.
    dry_run: bool = Field(
        default=False,
        description="Build and log page updates without writing them to Notion.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description="Directory for log files. Defaults to `${VIEWSYNC_DATA_DIR}/logs`.",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @field_validator("rate_limit_mode", mode="before")
    @classmethod
    def _normalize_rate_limit_mode(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("VIEWSYNC_RATE_LIMIT_MODE must be a string.")
        normalized = value.strip().lower()
        if normalized in RATE_LIMIT_MODES:
            return normalized
        raise ValueError("VIEWSYNC_RATE_LIMIT_MODE must be set to: fast, conservative.")

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("VIEWSYNC_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("VIEWSYNC_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("url_property", "view_count_property", mode="before")
    @classmethod
    def _normalize_required_property(cls, value: Any, info: ValidationInfo) -> str:
        env_name = f"VIEWSYNC_{str(info.field_name).upper()}"
        if not isinstance(value, str):
            raise ValueError(f"{env_name} must be a string.")
        normalized = value.strip()
        if not normalized:
            raise ValueError(f"{env_name} must not be empty.")
        return normalized

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator(*_OPTIONAL_TEXT_FIELDS, mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def _validate_credentials(
    *,
    notion_token: str | None,
    youtube_api_key: str | None,
    database_id: str | None,
) -> None:
    errors: list[str] = []

    if notion_token is None:
        errors.append("VIEWSYNC_NOTION_TOKEN is required to read and update the database.")
    if youtube_api_key is None:
        errors.append("VIEWSYNC_YOUTUBE_API_KEY is required to look up video metadata.")
    if database_id is None:
        errors.append("VIEWSYNC_DATABASE_ID is required to select the content database.")

    if errors:
        bullets = "\n".join(f"- {message}" for message in errors)
        raise ValueError(f"Invalid sync configuration:\n{bullets}")


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings(*, validate_credentials: bool = True) -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    settings = _resolve_path_fields(settings)

    if validate_credentials:
        validate_settings(settings)

    return settings


def validate_settings(settings: AppSettings) -> None:
    _validate_credentials(
        notion_token=settings.notion_token,
        youtube_api_key=settings.youtube_api_key,
        database_id=settings.database_id,
    )
