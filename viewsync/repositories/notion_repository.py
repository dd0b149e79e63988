from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from time import sleep
from typing import Any, cast

import httpx
from notion_client import Client
from notion_client.errors import HTTPResponseError, RequestTimeoutError

from viewsync.errors import ConfigurationError, NotionApiError, RecordFetchError
from viewsync.models.sync_contracts import NOTION_PAGE_SIZE, NotionRecord, PageUpdate
from viewsync.repositories.common import as_dict, as_list
from viewsync.services.rate_limiter import RATE_LIMIT_FALLBACK_SECONDS, SpacingRateLimiter
from viewsync.services.retry_policies import RETRYABLE_NOTION_STATUSES, notion_retrying

LOGGER = logging.getLogger("viewsync.notion")

YOUTUBE_URL_MARKERS: tuple[str, ...] = ("youtube.com", "youtu.be")
LISTED_PROPERTY_KINDS: tuple[str, ...] = ("title", "rich_text", "url", "number", "date")


def build_notion_client(token: str, *, timeout_seconds: float) -> Client:
    return Client(
        auth=token,
        timeout_ms=int(max(1.0, timeout_seconds) * 1000),
        logger=logging.getLogger("viewsync.notion.client"),
    )


def build_youtube_url_filter(url_property: str) -> dict[str, Any]:
    return {
        "or": [
            {"property": url_property, "url": {"contains": marker}}
            for marker in YOUTUBE_URL_MARKERS
        ]
    }


def notion_rate_limit_delay(exc: Exception) -> float | None:
    if not isinstance(exc, NotionApiError) or exc.status != 429:
        return None
    if exc.retry_after_seconds is None:
        return RATE_LIMIT_FALLBACK_SECONDS
    return exc.retry_after_seconds


def is_retryable_notion_error(exc: BaseException) -> bool:
    if not isinstance(exc, NotionApiError):
        return False
    if exc.timed_out:
        return True
    return exc.status in RETRYABLE_NOTION_STATUSES


def is_fatal_client_status(status: int | None) -> bool:
    return status is not None and 400 <= status <= 409


class NotionRepository:
    def __init__(
        self,
        client: Any,
        *,
        read_limiter: SpacingRateLimiter,
        sleep_fn: Callable[[float], None] = sleep,
    ) -> None:
        self._client = client
        self._read_limiter = read_limiter
        self._sleep = sleep_fn

    def fetch_video_records(self, *, database_id: str, url_property: str) -> list[NotionRecord]:
        records: list[NotionRecord] = []
        cursor: str | None = None
        has_more = True
        page_number = 0

        while has_more:
            page_number += 1
            try:
                response = self._query_page(
                    database_id=database_id,
                    url_property=url_property,
                    cursor=cursor,
                    page_number=page_number,
                )
            except NotionApiError as exc:
                raise RecordFetchError(
                    "Error querying Notion to fetch videos. "
                    f"Full error details:\n\n{exc}"
                ) from exc

            results = as_list(response.get("results"))
            records.extend(_record_from_page(as_dict(row), url_property) for row in results)
            has_more = response.get("has_more") is True
            raw_cursor = response.get("next_cursor")
            cursor = raw_cursor if isinstance(raw_cursor, str) and raw_cursor else None
            LOGGER.info(
                "notion fetch page_loaded page=%s rows=%s total=%s has_more=%s",
                page_number,
                len(results),
                len(records),
                has_more,
            )
            if has_more and cursor is None:
                raise RecordFetchError(
                    "Error querying Notion to fetch videos. "
                    f"Page {page_number} reported more results without a next cursor."
                )

        return records

    def retrieve_schema(self, database_id: str) -> dict[str, str]:
        job_id = f"databases.retrieve:{database_id}"
        try:
            response = self._read(
                job_id,
                lambda: self._call(self._client.databases.retrieve, database_id=database_id),
            )
        except NotionApiError as exc:
            raise ConfigurationError(
                f"Could not retrieve the Notion database schema for {database_id}: {exc}"
            ) from exc

        schema: dict[str, str] = {}
        for name, raw_property in as_dict(response.get("properties")).items():
            property_type = as_dict(raw_property).get("type")
            if isinstance(property_type, str):
                schema[name] = property_type
        return schema

    def list_properties_by_kind(self, database_id: str) -> dict[str, list[str]]:
        schema = self.retrieve_schema(database_id)
        grouped: dict[str, list[str]] = {kind: [] for kind in LISTED_PROPERTY_KINDS}
        for name, kind in schema.items():
            if kind in grouped:
                grouped[kind].append(name)
        return {kind: sorted(names) for kind, names in grouped.items()}

    def update_page(self, update: PageUpdate) -> None:
        kwargs: dict[str, Any] = {
            "page_id": update.record_id,
            "properties": update.properties,
        }
        if update.cover is not None:
            kwargs["cover"] = update.cover
        self._call(self._client.pages.update, **kwargs)

    def _query_page(
        self,
        *,
        database_id: str,
        url_property: str,
        cursor: str | None,
        page_number: int,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "database_id": database_id,
            "page_size": NOTION_PAGE_SIZE,
            "filter": build_youtube_url_filter(url_property),
        }
        if cursor is not None:
            params["start_cursor"] = cursor

        job_id = f"databases.query:page-{page_number}"
        return self._read(job_id, lambda: self._call(self._client.databases.query, **params))

    def _read(self, job_id: str, job: Callable[[], dict[str, Any]]) -> dict[str, Any]:
        retrying = notion_retrying(
            label=job_id,
            is_retryable=is_retryable_notion_error,
            sleep_fn=self._sleep,
        )
        return retrying(self._read_limiter.schedule, job_id, job)

    def _call(self, method: Callable[..., Any], **kwargs: Any) -> dict[str, Any]:
        try:
            response = method(**kwargs)
        except RequestTimeoutError as exc:
            raise NotionApiError(
                "Notion request timed out",
                status=None,
                code="request_timeout",
                timed_out=True,
            ) from exc
        except HTTPResponseError as exc:
            raise _translate_http_error(exc) from exc
        except httpx.TimeoutException as exc:
            raise NotionApiError(
                f"Notion request timed out: {exc}",
                status=None,
                code="request_timeout",
                timed_out=True,
            ) from exc
        except httpx.TransportError as exc:
            raise NotionApiError(f"Notion transport error: {exc}", status=None) from exc
        return as_dict(response)


def _translate_http_error(exc: HTTPResponseError) -> NotionApiError:
    raw_status = getattr(exc, "status", None)
    status = raw_status if isinstance(raw_status, int) else None
    raw_code = getattr(exc, "code", None)
    code = str(raw_code) if raw_code is not None else None
    retry_after_seconds = _parse_retry_after_header(getattr(exc, "headers", None))
    return NotionApiError(
        f"Notion API responded with status {status}: {exc}",
        status=status,
        code=code,
        retry_after_seconds=retry_after_seconds,
    )


def _parse_retry_after_header(headers: object) -> float | None:
    if not isinstance(headers, Mapping):
        return None
    header_map = cast(Mapping[str, Any], headers)
    raw_value = header_map.get("retry-after") or header_map.get("Retry-After")
    if raw_value is None:
        return None
    try:
        parsed = float(str(raw_value).strip())
    except ValueError:
        return None
    if parsed < 0:
        return None
    return parsed


def _record_from_page(page: dict[str, Any], url_property: str) -> NotionRecord:
    properties = as_dict(page.get("properties"))
    url_value = as_dict(properties.get(url_property)).get("url")
    url = url_value if isinstance(url_value, str) and url_value.strip() else None
    raw_id = page.get("id")
    return NotionRecord(
        record_id=raw_id if isinstance(raw_id, str) else "",
        url=url,
        properties=properties,
    )
