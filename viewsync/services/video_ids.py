from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence

from viewsync.models.sync_contracts import YOUTUBE_BATCH_SIZE, NotionRecord, VideoReference

LOGGER = logging.getLogger("viewsync.video_ids")

SHORTS_URL_PATTERN = re.compile(r"youtube\.com/shorts/([a-zA-Z0-9_-]{11})")
# watch?v=, /embed/, /v/, /vi/, /e/, nested paths and youtu.be short links.
CANONICAL_URL_PATTERN = re.compile(
    r"(?:youtube(?:-nocookie)?\.com/"
    r"(?:[^/\n\s]+/\S+/|(?:v|vi|e(?:mbed)?)/|\S*?[?&]v=)"
    r"|youtu\.be/)"
    r"([a-zA-Z0-9_-]{11})"
)


def extract_video_id(url: str | None) -> str | None:
    if not url:
        return None
    shorts_match = SHORTS_URL_PATTERN.search(url)
    if shorts_match is not None:
        return shorts_match.group(1)
    canonical_match = CANONICAL_URL_PATTERN.search(url)
    if canonical_match is not None:
        return canonical_match.group(1)
    return None


def build_video_references(records: Iterable[NotionRecord]) -> list[VideoReference]:
    references: list[VideoReference] = []
    for record in records:
        if record.url is None:
            LOGGER.warning("video url missing record_id=%s", record.record_id)
            continue
        video_id = extract_video_id(record.url)
        if video_id is None:
            LOGGER.warning(
                "video url unmatched record_id=%s url=%s",
                record.record_id,
                record.url,
            )
            continue
        references.append(
            VideoReference(record_id=record.record_id, video_id=video_id, url=record.url)
        )
    return references


def chunk_references(
    references: Sequence[VideoReference],
    size: int = YOUTUBE_BATCH_SIZE,
) -> list[list[VideoReference]]:
    if size < 1:
        raise ValueError("Batch size must be at least 1.")
    return [list(references[index : index + size]) for index in range(0, len(references), size)]
