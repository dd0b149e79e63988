from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from contextvars import copy_context
from time import sleep
from typing import Any

import httplib2
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from viewsync.errors import MetadataResolutionError, YouTubeApiError
from viewsync.models.sync_contracts import VideoMetadata, VideoReference
from viewsync.repositories.common import as_dict, as_list
from viewsync.services.retry_policies import youtube_retrying

LOGGER = logging.getLogger("viewsync.youtube")

VIDEO_PARTS = "statistics,snippet"
THUMBNAIL_PREFERENCE: tuple[str, ...] = ("maxres", "standard", "high", "medium", "default")


def build_youtube_client(api_key: str, *, timeout_seconds: float) -> Any:
    http = httplib2.Http(timeout=max(1.0, timeout_seconds))
    return build("youtube", "v3", developerKey=api_key, http=http, cache_discovery=False)


def is_retryable_youtube_error(exc: BaseException) -> bool:
    if not isinstance(exc, YouTubeApiError):
        return False
    if exc.timed_out or exc.connection_failed:
        return True
    return exc.status is not None and 500 <= exc.status <= 599


class YouTubeService:
    def __init__(
        self,
        client_factory: Callable[[], Any],
        *,
        max_batch_workers: int | None = None,
        sleep_fn: Callable[[float], None] = sleep,
    ) -> None:
        self._client_factory = client_factory
        self._max_batch_workers = max_batch_workers
        self._sleep = sleep_fn
        self._local = threading.local()

    @classmethod
    def from_api_key(
        cls,
        api_key: str,
        *,
        timeout_seconds: float = 30.0,
        max_batch_workers: int | None = None,
    ) -> YouTubeService:
        return cls(
            lambda: build_youtube_client(api_key, timeout_seconds=timeout_seconds),
            max_batch_workers=max_batch_workers,
        )

    def resolve_batches(self, batches: Sequence[Sequence[VideoReference]]) -> list[VideoMetadata]:
        if not batches:
            return []

        # Every batch is issued at once unless a cap was configured.
        worker_count = len(batches)
        if self._max_batch_workers is not None:
            worker_count = max(1, min(worker_count, self._max_batch_workers))
        with ThreadPoolExecutor(
            max_workers=worker_count,
            thread_name_prefix="viewsync-youtube",
        ) as executor:
            futures: list[Future[list[VideoMetadata]]] = [
                executor.submit(copy_context().run, self._resolve_batch, index, batch)
                for index, batch in enumerate(batches)
            ]
            resolved: list[VideoMetadata] = []
            for index, future in enumerate(futures):
                try:
                    resolved.extend(future.result())
                except YouTubeApiError as exc:
                    for pending in futures[index + 1 :]:
                        pending.cancel()
                    raise MetadataResolutionError(
                        "Error fetching video metadata from YouTube "
                        f"(batch {index}, status {exc.status}): {exc}"
                    ) from exc

        LOGGER.info(
            "youtube resolve complete batches=%s videos=%s",
            len(batches),
            len(resolved),
        )
        return resolved

    def _resolve_batch(self, index: int, batch: Sequence[VideoReference]) -> list[VideoMetadata]:
        video_ids = [reference.video_id for reference in batch]
        label = f"videos.list:batch-{index}"
        retrying = youtube_retrying(
            label=label,
            is_retryable=is_retryable_youtube_error,
            sleep_fn=self._sleep,
        )
        try:
            response = retrying(self._list_videos, video_ids)
        except YouTubeApiError as exc:
            if exc.status == 404:
                LOGGER.warning(
                    "youtube batch not_found batch=%s requested=%s",
                    index,
                    len(video_ids),
                )
                return []
            raise

        items = as_list(response.get("items"))
        metadata: list[VideoMetadata] = []
        for item in items:
            parsed = parse_video_item(as_dict(item))
            if parsed is not None:
                metadata.append(parsed)
        LOGGER.info(
            "youtube batch resolved batch=%s requested=%s returned=%s",
            index,
            len(video_ids),
            len(metadata),
        )
        return metadata

    def _list_videos(self, video_ids: list[str]) -> dict[str, Any]:
        client = self._thread_client()
        try:
            response = (
                client.videos()
                .list(part=VIDEO_PARTS, id=",".join(video_ids), maxResults=len(video_ids))
                .execute()
            )
        except HttpError as exc:
            status = _http_error_status(exc)
            raise YouTubeApiError(
                f"YouTube videos.list failed with status {status}: "
                f"{_summarize_exception_message(exc)}",
                status=status,
            ) from exc
        except TimeoutError as exc:
            raise YouTubeApiError(
                "YouTube videos.list timed out",
                status=None,
                timed_out=True,
            ) from exc
        except (httplib2.HttpLib2Error, OSError) as exc:
            raise YouTubeApiError(
                f"YouTube videos.list connection failed: {_summarize_exception_message(exc)}",
                status=None,
                connection_failed=True,
            ) from exc
        return as_dict(response)

    def _thread_client(self) -> Any:
        # httplib2 connections are not thread-safe; keep one client per worker.
        client = getattr(self._local, "client", None)
        if client is None:
            client = self._client_factory()
            self._local.client = client
        return client


def parse_video_item(item: dict[str, Any]) -> VideoMetadata | None:
    raw_video_id = item.get("id")
    if not isinstance(raw_video_id, str) or not raw_video_id:
        return None

    statistics = as_dict(item.get("statistics"))
    snippet = as_dict(item.get("snippet"))
    thumbnails = _extract_thumbnail_urls(snippet)
    published_at = _coerce_nonempty_string(snippet.get("publishedAt"))
    title = _coerce_nonempty_string(snippet.get("title"))

    return VideoMetadata(
        video_id=raw_video_id,
        view_count=coerce_count(statistics.get("viewCount")),
        like_count=coerce_count(statistics.get("likeCount")),
        comment_count=coerce_count(statistics.get("commentCount")),
        published_at=published_at,
        title=title,
        thumbnail_url=select_thumbnail_url(thumbnails, video_id=raw_video_id),
        thumbnails=thumbnails,
    )


def select_thumbnail_url(thumbnails: dict[str, str], *, video_id: str | None = None) -> str | None:
    for quality in THUMBNAIL_PREFERENCE:
        url = thumbnails.get(quality)
        if url:
            return url
    LOGGER.info("youtube thumbnail missing video_id=%s", video_id)
    return None


def coerce_count(raw_value: object) -> int:
    parsed = _coerce_int(raw_value)
    if parsed is None or parsed < 0:
        return 0
    return parsed


def _http_error_status(exc: HttpError) -> int | None:
    response = getattr(exc, "resp", None)
    raw_status = getattr(response, "status", None)
    if isinstance(raw_status, int):
        return raw_status
    if isinstance(raw_status, str) and raw_status.isdigit():
        return int(raw_status)
    return None


def _extract_thumbnail_urls(snippet: dict[str, Any]) -> dict[str, str]:
    thumbnails = as_dict(snippet.get("thumbnails"))
    urls: dict[str, str] = {}
    for quality, payload in thumbnails.items():
        payload_dict = as_dict(payload)
        url_value = payload_dict.get("url")
        if isinstance(url_value, str) and url_value.strip():
            urls[quality] = url_value
    return urls


def _coerce_nonempty_string(raw_value: object) -> str | None:
    if isinstance(raw_value, str) and raw_value.strip():
        return raw_value
    return None


def _coerce_int(raw_value: object) -> int | None:
    if isinstance(raw_value, bool):
        return None
    if isinstance(raw_value, int):
        return raw_value
    if isinstance(raw_value, float):
        if not math.isfinite(raw_value):
            return None
        return int(raw_value)
    if isinstance(raw_value, str):
        try:
            return int(raw_value.strip())
        except ValueError:
            return None
    return None


def _summarize_exception_message(exc: Exception, *, max_length: int = 400) -> str:
    raw = str(exc).strip()
    if not raw:
        raw = repr(exc)
    if len(raw) <= max_length:
        return raw
    return f"{raw[: max_length - 3]}..."
