from __future__ import annotations

import os
from collections.abc import Iterator
from threading import Lock
from typing import Any

import httplib2
import pytest
from googleapiclient.errors import HttpError
from notion_client.errors import HTTPResponseError


@pytest.fixture(autouse=True)
def isolated_viewsync_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in list(os.environ):
        if name.startswith("VIEWSYNC_"):
            monkeypatch.delenv(name, raising=False)
    yield


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self._lock = Lock()

    def time(self) -> float:
        with self._lock:
            return self.now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            self.now += seconds


class FakeNotionHttpError(HTTPResponseError):
    def __init__(
        self,
        status: int,
        *,
        headers: dict[str, str] | None = None,
        code: str | None = None,
    ) -> None:
        Exception.__init__(self, f"notion responded with {status}")
        self.status = status
        self.headers = headers or {}
        self.code = code
        self.body = ""


class FakeDatabases:
    def __init__(
        self,
        pages: list[list[dict[str, Any]]],
        *,
        schema: dict[str, str] | None = None,
        failures: dict[int, list[Exception]] | None = None,
    ) -> None:
        self._pages = pages
        self._schema = schema or {}
        self._failures = failures or {}
        self.query_calls: list[dict[str, Any]] = []
        self.retrieve_calls = 0

    def query(self, **kwargs: Any) -> dict[str, Any]:
        self.query_calls.append(kwargs)
        cursor = kwargs.get("start_cursor")
        page_index = 0 if cursor is None else int(str(cursor).removeprefix("cursor-"))
        pending_failures = self._failures.get(page_index)
        if pending_failures:
            raise pending_failures.pop(0)
        has_more = page_index + 1 < len(self._pages)
        return {
            "object": "list",
            "results": self._pages[page_index] if self._pages else [],
            "has_more": has_more,
            "next_cursor": f"cursor-{page_index + 1}" if has_more else None,
        }

    def retrieve(self, **kwargs: Any) -> dict[str, Any]:
        _ = kwargs
        self.retrieve_calls += 1
        return {
            "object": "database",
            "properties": {
                name: {"id": name.lower(), "name": name, "type": kind}
                for name, kind in self._schema.items()
            },
        }


class FakePages:
    def __init__(self, failures: dict[str, list[Exception]] | None = None) -> None:
        self._failures = failures or {}
        self._lock = Lock()
        self.updates: list[dict[str, Any]] = []

    def update(self, **kwargs: Any) -> dict[str, Any]:
        page_id = str(kwargs["page_id"])
        with self._lock:
            self.updates.append(kwargs)
            pending_failures = self._failures.get(page_id)
            failure = pending_failures.pop(0) if pending_failures else None
        if failure is not None:
            raise failure
        return {"object": "page", "id": page_id}

    def calls_for(self, page_id: str) -> int:
        return sum(1 for update in self.updates if update["page_id"] == page_id)


class FakeNotionClient:
    def __init__(self, databases: FakeDatabases, pages: FakePages | None = None) -> None:
        self.databases = databases
        self.pages = pages or FakePages()


class _FakeVideosRequest:
    def __init__(self, client: FakeYouTubeClient, video_ids: list[str]) -> None:
        self._client = client
        self._video_ids = video_ids

    def execute(self) -> dict[str, Any]:
        return self._client.execute_list(self._video_ids)


class _FakeVideosResource:
    def __init__(self, client: FakeYouTubeClient) -> None:
        self._client = client

    def list(self, *, part: str, id: str, maxResults: int) -> _FakeVideosRequest:
        assert part == "statistics,snippet"
        video_ids = id.split(",")
        assert maxResults == len(video_ids)
        return _FakeVideosRequest(self._client, video_ids)


class FakeYouTubeClient:
    """Serves `videos().list()` from a catalog; failures are keyed by a batch's first id."""

    def __init__(
        self,
        catalog: dict[str, dict[str, Any]],
        *,
        failures: dict[str, list[Exception]] | None = None,
    ) -> None:
        self._catalog = catalog
        self._failures = failures or {}
        self._lock = Lock()
        self.requests: list[list[str]] = []

    def videos(self) -> _FakeVideosResource:
        return _FakeVideosResource(self)

    def execute_list(self, video_ids: list[str]) -> dict[str, Any]:
        with self._lock:
            self.requests.append(list(video_ids))
            pending_failures = self._failures.get(video_ids[0])
            failure = pending_failures.pop(0) if pending_failures else None
        if failure is not None:
            raise failure
        items = [self._catalog[video_id] for video_id in video_ids if video_id in self._catalog]
        return {"kind": "youtube#videoListResponse", "items": items}


def youtube_http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": status}), b"{}")


def notion_page(record_id: str, url: str | None, *, url_property: str = "URL") -> dict[str, Any]:
    return {
        "object": "page",
        "id": record_id,
        "properties": {
            url_property: {"id": "url", "type": "url", "url": url},
            "Views": {"id": "views", "type": "number", "number": None},
        },
    }


def video_id_for(index: int) -> str:
    return f"vid{index:08d}"


def youtube_item(
    video_id: str,
    *,
    views: object = "100",
    likes: object = "10",
    comments: object = "1",
    title: str = "A video",
    published_at: str = "2024-05-01T12:00:00Z",
    thumbnails: dict[str, str] | None = None,
) -> dict[str, Any]:
    statistics: dict[str, Any] = {}
    if views is not None:
        statistics["viewCount"] = views
    if likes is not None:
        statistics["likeCount"] = likes
    if comments is not None:
        statistics["commentCount"] = comments
    thumbnail_urls = (
        thumbnails
        if thumbnails is not None
        else {"high": f"https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"}
    )
    return {
        "kind": "youtube#video",
        "id": video_id,
        "statistics": statistics,
        "snippet": {
            "publishedAt": published_at,
            "title": title,
            "thumbnails": {
                quality: {"url": url, "width": 120, "height": 90}
                for quality, url in thumbnail_urls.items()
            },
        },
    }


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


