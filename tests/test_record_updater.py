from __future__ import annotations

import pytest
from conftest import FakeClock, FakeDatabases, FakeNotionClient, FakeNotionHttpError, FakePages

from viewsync.models.sync_contracts import (
    FieldDescriptor,
    FieldMap,
    UpdateOptions,
    UpdatePlan,
    VideoMetadata,
    VideoReference,
)
from viewsync.repositories.notion_repository import NotionRepository, notion_rate_limit_delay
from viewsync.services.rate_limiter import SpacingRateLimiter
from viewsync.services.record_updater import (
    RecordUpdater,
    build_page_update,
    build_update_plans,
)

MINIMAL_FIELD_MAP = FieldMap(
    video_url=FieldDescriptor(name="URL", kind="url"),
    view_count=FieldDescriptor(name="Views", kind="number"),
)
FULL_FIELD_MAP = FieldMap(
    video_url=FieldDescriptor(name="URL", kind="url"),
    view_count=FieldDescriptor(name="Views", kind="number"),
    like_count=FieldDescriptor(name="Likes", kind="number"),
    comment_count=FieldDescriptor(name="Comments", kind="number"),
    publish_date=FieldDescriptor(name="Published", kind="date"),
    title=FieldDescriptor(name="Name", kind="title"),
)
THUMBNAIL_URL = "https://i.ytimg.com/vi/dQw4w9WgXcQ/maxresdefault.jpg"


def _metadata(video_id: str, *, views: int = 100) -> VideoMetadata:
    return VideoMetadata(
        video_id=video_id,
        view_count=views,
        like_count=9,
        comment_count=3,
        published_at="2024-05-01T12:00:00Z",
        title="Launch day",
        thumbnail_url=THUMBNAIL_URL,
    )


def _plan(record_id: str, video_id: str = "dQw4w9WgXcQ") -> UpdatePlan:
    return UpdatePlan(
        record_id=record_id,
        video_id=video_id,
        url=f"https://youtu.be/{video_id}",
        metadata=_metadata(video_id),
    )


def _reference(record_id: str, video_id: str) -> VideoReference:
    return VideoReference(
        record_id=record_id,
        video_id=video_id,
        url=f"https://youtu.be/{video_id}",
    )


def _updater(pages: FakePages, clock: FakeClock, *, max_concurrent: int = 20) -> RecordUpdater:
    read_limiter = SpacingRateLimiter(
        "notion-read",
        min_interval_seconds=0.0,
        max_concurrent=1,
        rate_limit_delay=notion_rate_limit_delay,
        sleep_fn=clock.sleep,
        clock=clock.time,
    )
    repository = NotionRepository(
        FakeNotionClient(FakeDatabases([]), pages),
        read_limiter=read_limiter,
        sleep_fn=clock.sleep,
    )
    return RecordUpdater(
        repository,
        write_limiter=SpacingRateLimiter(
            "notion-write",
            min_interval_seconds=0.0,
            max_concurrent=max_concurrent,
            rate_limit_delay=notion_rate_limit_delay,
            sleep_fn=clock.sleep,
            clock=clock.time,
        ),
        sleep_fn=clock.sleep,
    )


def test_build_update_plans_joins_on_exact_video_id(caplog: pytest.LogCaptureFixture) -> None:
    references = [
        _reference("page-1", "aaaaaaaaaaa"),
        _reference("page-2", "bbbbbbbbbbb"),
        _reference("page-3", "aaaaaaaaaaa"),
        _reference("page-4", "ccccccccccc"),
    ]
    metadata = [_metadata("aaaaaaaaaaa", views=11), _metadata("ccccccccccc", views=33)]

    with caplog.at_level("WARNING", logger="viewsync.updater"):
        plans = build_update_plans(references, metadata)

    assert [(plan.record_id, plan.metadata.view_count) for plan in plans] == [
        ("page-1", 11),
        ("page-3", 11),
        ("page-4", 33),
    ]
    assert any(
        "video metadata missing record_id=page-2" in record.getMessage()
        for record in caplog.records
    )


def test_build_update_plans_ignores_urls_that_merely_contain_the_id() -> None:
    references = [
        VideoReference(
            record_id="page-1",
            video_id="abcdefghijk",
            url="https://www.youtube.com/watch?v=abcdefghijk&list=ccccccccccc",
        )
    ]

    plans = build_update_plans(references, [_metadata("ccccccccccc")])

    assert plans == []


def test_build_page_update_writes_only_view_count_by_default() -> None:
    update = build_page_update(_plan("page-1"), MINIMAL_FIELD_MAP, UpdateOptions())

    assert update.record_id == "page-1"
    assert update.properties == {"Views": {"number": 100}}
    assert update.cover is None


def test_build_page_update_fills_every_configured_field() -> None:
    update = build_page_update(
        _plan("page-1"),
        FULL_FIELD_MAP,
        UpdateOptions(update_title=True, set_thumbnail=True),
    )

    assert update.properties == {
        "Views": {"number": 100},
        "Likes": {"number": 9},
        "Comments": {"number": 3},
        "Published": {"date": {"start": "2024-05-01T12:00:00Z"}},
        "Name": {"title": [{"type": "text", "text": {"content": "Launch day"}}]},
    }
    assert update.cover == {"type": "external", "external": {"url": THUMBNAIL_URL}}


def test_build_page_update_uses_rich_text_for_text_title_properties() -> None:
    field_map = FieldMap(
        video_url=FieldDescriptor(name="URL", kind="url"),
        view_count=FieldDescriptor(name="Views", kind="number"),
        title=FieldDescriptor(name="Video title", kind="rich_text"),
    )

    update = build_page_update(_plan("page-1"), field_map, UpdateOptions(update_title=True))

    assert update.properties["Video title"] == {
        "rich_text": [{"type": "text", "text": {"content": "Launch day"}}]
    }


def test_build_page_update_skips_title_and_cover_when_disabled_or_missing() -> None:
    plan = UpdatePlan(
        record_id="page-1",
        video_id="dQw4w9WgXcQ",
        url="https://youtu.be/dQw4w9WgXcQ",
        metadata=VideoMetadata(video_id="dQw4w9WgXcQ", view_count=5),
    )

    disabled = build_page_update(_plan("page-1"), FULL_FIELD_MAP, UpdateOptions())
    missing = build_page_update(
        plan,
        FULL_FIELD_MAP,
        UpdateOptions(update_title=True, set_thumbnail=True),
    )

    assert "Name" not in disabled.properties
    assert disabled.cover is None
    assert "Name" not in missing.properties
    assert "Published" not in missing.properties
    assert missing.cover is None
    assert missing.properties["Likes"] == {"number": 0}


def test_apply_reports_records_in_plan_order(fake_clock: FakeClock) -> None:
    pages = FakePages()
    plans = [_plan(f"page-{index}") for index in range(25)]

    result = _updater(pages, fake_clock).apply(plans, MINIMAL_FIELD_MAP, UpdateOptions())

    assert result.updated_ids == [f"page-{index}" for index in range(25)]
    assert result.failed_ids == []
    assert len(pages.updates) == 25


def test_apply_isolates_client_error_to_one_record(fake_clock: FakeClock) -> None:
    pages = FakePages(failures={"page-3": [FakeNotionHttpError(409, code="conflict_error")]})
    plans = [_plan(f"page-{index}") for index in range(10)]

    result = _updater(pages, fake_clock).apply(plans, MINIMAL_FIELD_MAP, UpdateOptions())

    assert len(result.updated_ids) == 9
    assert "page-3" not in result.updated_ids
    assert result.failed_ids == ["page-3"]
    assert pages.calls_for("page-3") == 1


def test_apply_fails_record_on_non_retryable_server_error(fake_clock: FakeClock) -> None:
    pages = FakePages(failures={"page-1": [FakeNotionHttpError(502)]})
    plans = [_plan("page-0"), _plan("page-1")]

    result = _updater(pages, fake_clock).apply(plans, MINIMAL_FIELD_MAP, UpdateOptions())

    assert result.updated_ids == ["page-0"]
    assert result.failed_ids == ["page-1"]
    assert pages.calls_for("page-1") == 1


def test_apply_retries_server_errors_per_record(fake_clock: FakeClock) -> None:
    plans = [_plan("page-0"), _plan("page-1")]
    pages = FakePages(failures={"page-1": [FakeNotionHttpError(503), FakeNotionHttpError(500)]})

    result = _updater(pages, fake_clock).apply(plans, MINIMAL_FIELD_MAP, UpdateOptions())

    assert result.updated_ids == ["page-0", "page-1"]
    assert pages.calls_for("page-1") == 3


def test_apply_reruns_rate_limited_writes(fake_clock: FakeClock) -> None:
    pages = FakePages(
        failures={"page-0": [FakeNotionHttpError(429, headers={"Retry-After": "1.5"})]}
    )

    result = _updater(pages, fake_clock, max_concurrent=1).apply(
        [_plan("page-0")],
        MINIMAL_FIELD_MAP,
        UpdateOptions(),
    )

    assert result.updated_ids == ["page-0"]
    assert pages.calls_for("page-0") == 2
    assert 1.5 in fake_clock.sleeps


def test_apply_dry_run_skips_writes(fake_clock: FakeClock) -> None:
    pages = FakePages()
    plans = [_plan("page-0"), _plan("page-1")]

    result = _updater(pages, fake_clock).apply(
        plans,
        MINIMAL_FIELD_MAP,
        UpdateOptions(dry_run=True),
    )

    assert result.updated_ids == []
    assert result.skipped_ids == ["page-0", "page-1"]
    assert pages.updates == []


def test_apply_with_no_plans_is_a_no_op(fake_clock: FakeClock) -> None:
    pages = FakePages()

    result = _updater(pages, fake_clock).apply([], MINIMAL_FIELD_MAP, UpdateOptions())

    assert result.updated_ids == []
    assert pages.updates == []
