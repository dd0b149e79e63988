from __future__ import annotations

import logging
from collections.abc import Callable
from time import sleep

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

LOGGER = logging.getLogger("viewsync.retry")

# Attempts are totals: one call plus two retries.
NOTION_READ_ATTEMPTS = 3
NOTION_WRITE_ATTEMPTS = 3
YOUTUBE_ATTEMPTS = 3
RETRYABLE_NOTION_STATUSES: frozenset[int] = frozenset({500, 503, 504})


def notion_retrying(
    *,
    label: str,
    is_retryable: Callable[[BaseException], bool],
    attempts: int = NOTION_READ_ATTEMPTS,
    sleep_fn: Callable[[float], None] = sleep,
) -> Retrying:
    return Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, min=1),
        retry=retry_if_exception(is_retryable),
        reraise=True,
        sleep=sleep_fn,
        before_sleep=_log_before_sleep(label),
    )


def youtube_retrying(
    *,
    label: str,
    is_retryable: Callable[[BaseException], bool],
    sleep_fn: Callable[[float], None] = sleep,
) -> Retrying:
    return Retrying(
        stop=stop_after_attempt(YOUTUBE_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception(is_retryable),
        reraise=True,
        sleep=sleep_fn,
        before_sleep=_log_before_sleep(label),
    )


def _log_before_sleep(label: str) -> Callable[[RetryCallState], None]:
    def _log(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        next_action = retry_state.next_action
        LOGGER.info(
            "retry attempt_failed job=%s attempt=%s wait_seconds=%s error=%s",
            label,
            retry_state.attempt_number,
            next_action.sleep if next_action is not None else None,
            _summarize_exception_message(error) if error is not None else None,
        )

    return _log


def _summarize_exception_message(exc: BaseException, *, max_length: int = 400) -> str:
    raw = str(exc).strip()
    if not raw:
        raw = repr(exc)
    if len(raw) <= max_length:
        return raw
    return f"{raw[: max_length - 3]}..."
