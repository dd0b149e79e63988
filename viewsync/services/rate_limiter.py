from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from threading import BoundedSemaphore, Lock
from time import monotonic, sleep
from typing import TypeVar

LOGGER = logging.getLogger("viewsync.rate_limiter")

RATE_LIMIT_FALLBACK_SECONDS = 0.4

T = TypeVar("T")


@dataclass(frozen=True)
class RateLimitProfile:
    min_interval_seconds: float
    max_concurrent: int


@dataclass(frozen=True)
class RateLimitPreset:
    name: str
    notion_read: RateLimitProfile
    notion_write: RateLimitProfile


FAST_PRESET = RateLimitPreset(
    name="fast",
    notion_read=RateLimitProfile(min_interval_seconds=0.05, max_concurrent=1),
    notion_write=RateLimitProfile(min_interval_seconds=0.01, max_concurrent=20),
)
# Notion's published steady-state limit is 3 requests/second.
CONSERVATIVE_PRESET = RateLimitPreset(
    name="conservative",
    notion_read=RateLimitProfile(min_interval_seconds=0.333, max_concurrent=1),
    notion_write=RateLimitProfile(min_interval_seconds=0.333, max_concurrent=1),
)
_PRESETS: dict[str, RateLimitPreset] = {
    FAST_PRESET.name: FAST_PRESET,
    CONSERVATIVE_PRESET.name: CONSERVATIVE_PRESET,
}


def resolve_rate_limit_preset(mode: str) -> RateLimitPreset:
    normalized = mode.strip().lower()
    preset = _PRESETS.get(normalized)
    if preset is None:
        raise ValueError(f"Unknown rate limit mode: {mode!r} (expected fast or conservative)")
    return preset


class SpacingRateLimiter:
    """
    Serializes calls to one external dependency.

    Job starts are spaced at least `min_interval_seconds` apart and at most
    `max_concurrent` jobs run at once; excess callers queue instead of failing.
    When `rate_limit_delay` recognizes an exception as a rate-limit response it
    returns the delay to honor, and the same job is re-run after that delay
    without occupying a concurrency slot.
    """

    def __init__(
        self,
        name: str,
        *,
        min_interval_seconds: float,
        max_concurrent: int,
        rate_limit_delay: Callable[[Exception], float | None],
        max_rate_limit_retries: int = 5,
        sleep_fn: Callable[[float], None] = sleep,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self._name = name
        self._min_interval_seconds = max(0.0, min_interval_seconds)
        self._max_concurrent = max(1, max_concurrent)
        self._rate_limit_delay = rate_limit_delay
        self._max_rate_limit_retries = max(0, max_rate_limit_retries)
        self._sleep = sleep_fn
        self._clock = clock
        self._lock = Lock()
        self._slots = BoundedSemaphore(self._max_concurrent)
        self._next_start_at = 0.0

    @classmethod
    def from_profile(
        cls,
        name: str,
        profile: RateLimitProfile,
        *,
        rate_limit_delay: Callable[[Exception], float | None],
        max_rate_limit_retries: int = 5,
        sleep_fn: Callable[[float], None] = sleep,
        clock: Callable[[], float] = monotonic,
    ) -> SpacingRateLimiter:
        return cls(
            name,
            min_interval_seconds=profile.min_interval_seconds,
            max_concurrent=profile.max_concurrent,
            rate_limit_delay=rate_limit_delay,
            max_rate_limit_retries=max_rate_limit_retries,
            sleep_fn=sleep_fn,
            clock=clock,
        )

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def min_interval_seconds(self) -> float:
        return self._min_interval_seconds

    def schedule(self, job_id: str, job: Callable[[], T]) -> T:
        rate_limited_runs = 0
        while True:
            with self._slots:
                self._wait_for_start_slot()
                try:
                    return job()
                except Exception as exc:
                    delay_seconds = self._rate_limit_delay(exc)
                    if delay_seconds is None:
                        LOGGER.info(
                            "limiter job_failed limiter=%s job=%s error=%s",
                            self._name,
                            job_id,
                            type(exc).__name__,
                        )
                        raise
                    if rate_limited_runs >= self._max_rate_limit_retries:
                        LOGGER.warning(
                            "limiter rate_limit_exhausted limiter=%s job=%s runs=%s",
                            self._name,
                            job_id,
                            rate_limited_runs,
                        )
                        raise
            rate_limited_runs += 1
            LOGGER.info(
                "limiter job_rate_limited limiter=%s job=%s retry_after_seconds=%s attempt=%s",
                self._name,
                job_id,
                delay_seconds,
                rate_limited_runs,
            )
            self._sleep(delay_seconds)

    def _wait_for_start_slot(self) -> None:
        with self._lock:
            now = self._clock()
            start_at = max(now, self._next_start_at)
            self._next_start_at = start_at + self._min_interval_seconds
        wait_seconds = start_at - now
        if wait_seconds > 0:
            self._sleep(wait_seconds)
