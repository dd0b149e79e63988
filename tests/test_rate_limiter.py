from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from threading import Lock

import pytest
from conftest import FakeClock

from viewsync.errors import NotionApiError
from viewsync.repositories.notion_repository import notion_rate_limit_delay
from viewsync.services.rate_limiter import (
    CONSERVATIVE_PRESET,
    FAST_PRESET,
    SpacingRateLimiter,
    resolve_rate_limit_preset,
)


def _limiter(
    clock: FakeClock,
    *,
    min_interval_seconds: float = 0.0,
    max_concurrent: int = 1,
    max_rate_limit_retries: int = 5,
) -> SpacingRateLimiter:
    return SpacingRateLimiter(
        "test",
        min_interval_seconds=min_interval_seconds,
        max_concurrent=max_concurrent,
        rate_limit_delay=notion_rate_limit_delay,
        max_rate_limit_retries=max_rate_limit_retries,
        sleep_fn=clock.sleep,
        clock=clock.time,
    )


def _rate_limited(retry_after_seconds: float | None = None) -> NotionApiError:
    return NotionApiError(
        "rate limited",
        status=429,
        code="rate_limited",
        retry_after_seconds=retry_after_seconds,
    )


def test_resolve_rate_limit_preset_knows_both_modes() -> None:
    assert resolve_rate_limit_preset("fast") is FAST_PRESET
    assert resolve_rate_limit_preset(" Conservative ") is CONSERVATIVE_PRESET
    assert FAST_PRESET.notion_read.max_concurrent == 1
    assert FAST_PRESET.notion_write.max_concurrent == 20
    assert CONSERVATIVE_PRESET.notion_write.max_concurrent == 1
    assert CONSERVATIVE_PRESET.notion_write.min_interval_seconds == pytest.approx(0.333)

    with pytest.raises(ValueError, match="Unknown rate limit mode"):
        resolve_rate_limit_preset("turbo")


def test_limiter_spaces_job_starts(fake_clock: FakeClock) -> None:
    limiter = _limiter(fake_clock, min_interval_seconds=0.05)
    started_at: list[float] = []

    for index in range(3):
        limiter.schedule(f"job-{index}", lambda: started_at.append(fake_clock.time()))

    assert fake_clock.sleeps == [pytest.approx(0.05), pytest.approx(0.05)]
    assert started_at == [0.0, pytest.approx(0.05), pytest.approx(0.1)]


def test_limiter_returns_job_result(fake_clock: FakeClock) -> None:
    limiter = _limiter(fake_clock)

    assert limiter.schedule("job", lambda: {"ok": True}) == {"ok": True}


def test_limiter_reruns_rate_limited_job_after_retry_after(fake_clock: FakeClock) -> None:
    limiter = _limiter(fake_clock)
    calls: list[float] = []

    def job() -> str:
        calls.append(fake_clock.time())
        if len(calls) == 1:
            raise _rate_limited(retry_after_seconds=2.0)
        return "done"

    assert limiter.schedule("databases.query:page-3", job) == "done"
    assert fake_clock.sleeps == [2.0]
    assert calls == [0.0, 2.0]


def test_limiter_falls_back_when_retry_after_is_missing(fake_clock: FakeClock) -> None:
    limiter = _limiter(fake_clock)
    attempts = 0

    def job() -> str:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise _rate_limited()
        return "done"

    assert limiter.schedule("job", job) == "done"
    assert fake_clock.sleeps == [0.4]


def test_limiter_gives_up_after_bounded_rate_limit_reruns(fake_clock: FakeClock) -> None:
    limiter = _limiter(fake_clock, max_rate_limit_retries=2)
    attempts = 0

    def job() -> None:
        nonlocal attempts
        attempts += 1
        raise _rate_limited()

    with pytest.raises(NotionApiError) as exc_info:
        limiter.schedule("job", job)

    assert exc_info.value.status == 429
    assert attempts == 3
    assert fake_clock.sleeps == [0.4, 0.4]


def test_limiter_propagates_other_errors_without_rerun(fake_clock: FakeClock) -> None:
    limiter = _limiter(fake_clock)
    attempts = 0

    def job() -> None:
        nonlocal attempts
        attempts += 1
        raise NotionApiError("server error", status=500)

    with pytest.raises(NotionApiError):
        limiter.schedule("job", job)

    assert attempts == 1
    assert fake_clock.sleeps == []


def test_limiter_bounds_concurrent_jobs() -> None:
    limiter = SpacingRateLimiter(
        "concurrency",
        min_interval_seconds=0.0,
        max_concurrent=2,
        rate_limit_delay=notion_rate_limit_delay,
    )
    lock = Lock()
    active = 0
    peak = 0

    def job() -> None:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.02)
        with lock:
            active -= 1

    with ThreadPoolExecutor(max_workers=6) as executor:
        futures = [executor.submit(limiter.schedule, f"job-{index}", job) for index in range(12)]
        for future in futures:
            future.result()

    assert 1 <= peak <= 2
