from __future__ import annotations

import re

VIDEO_URL_PATTERN = re.compile(r"(?:youtube\.com/watch\?(?:.*&)?v=|youtu\.be/|youtube\.com/embed/)([A-Za-z0-9_-]+)")
BARE_VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")


def extract_video_id(value: str) -> str:
    """Return the video id from a watch/short/embed URL or a bare 11-character id."""

    candidate = value.strip()
    match = VIDEO_URL_PATTERN.search(candidate)
    if match:
        return match.group(1)
    if BARE_VIDEO_ID_PATTERN.match(candidate):
        return candidate
    raise ValueError(f"Not a recognizable video URL or id: {value!r}")
