from __future__ import annotations


class SyncError(Exception):
    pass


class ConfigurationError(SyncError):
    pass


class SyncStageError(SyncError):
    def __init__(self, message: str, *, stage: str) -> None:
        super().__init__(message)
        self.stage = stage


class RecordFetchError(SyncStageError):
    def __init__(self, message: str) -> None:
        super().__init__(message, stage="fetch")


class MetadataResolutionError(SyncStageError):
    def __init__(self, message: str) -> None:
        super().__init__(message, stage="resolve")


class NotionApiError(SyncError):
    def __init__(
        self,
        message: str,
        *,
        status: int | None,
        code: str | None = None,
        retry_after_seconds: float | None = None,
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.retry_after_seconds = retry_after_seconds
        self.timed_out = timed_out


class YouTubeApiError(SyncError):
    def __init__(
        self,
        message: str,
        *,
        status: int | None,
        timed_out: bool = False,
        connection_failed: bool = False,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.timed_out = timed_out
        self.connection_failed = connection_failed
