from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Awaitable, Callable, Iterable
from urllib.parse import parse_qs, urljoin, urlsplit

from captionline.ingest.http import FETCH_ERRORS, Fetch
from captionline.models import CaptionTrack

DEFAULT_WATCH_URL_TEMPLATE = "https://www.youtube.com/watch?v={video_id}"
DEFAULT_BASE_URL = "https://www.youtube.com"
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY_SECONDS = 1.0

CAPTIONS_BLOCK_PATTERN = re.compile(r'"captions":(\{.*?playerCaptionsTracklistRenderer.*?\}\}\})', re.DOTALL)
BASE_URL_PATTERN = re.compile(r'"baseUrl":"((?:[^"\\]|\\.)*)"')
LANGUAGE_CODE_PATTERN = re.compile(r'"languageCode":"([^"]+)"')
ASR_KIND = "asr"

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class ManifestNotFound(Exception):
    """The page markup carries no caption manifest."""


def locate_caption_tracks(markup: str, *, base_url: str = DEFAULT_BASE_URL) -> list[CaptionTrack]:
    """Find the embedded caption manifest in page markup and return its tracks in manifest order.

    Raises ``ManifestNotFound`` when the markup has no caption manifest at all. A manifest
    without any usable track yields an empty list.
    """

    block_match = CAPTIONS_BLOCK_PATTERN.search(markup)
    if not block_match:
        raise ManifestNotFound("No caption manifest found in page markup.")

    manifest = block_match.group(1)
    url_matches = list(BASE_URL_PATTERN.finditer(manifest))

    tracks: list[CaptionTrack] = []
    for idx, url_match in enumerate(url_matches):
        segment_end = url_matches[idx + 1].start() if idx + 1 < len(url_matches) else len(manifest)
        language_match = LANGUAGE_CODE_PATTERN.search(manifest, url_match.end(), segment_end)
        if not language_match:
            logger.debug("Skipping caption descriptor without languageCode at offset %d", url_match.start())
            continue

        source_url = urljoin(base_url.rstrip("/") + "/", decode_escaped_url(url_match.group(1)))
        tracks.append(
            CaptionTrack(
                language_code=language_match.group(1),
                is_auto_generated=is_asr_url(source_url),
                source_url=source_url,
            )
        )

    return tracks


def decode_escaped_url(raw_url: str) -> str:
    """Undo JSON string escaping (``\\u0026``, ``\\/``, ``\\"``) and HTML-escaped ampersands."""

    try:
        decoded = json.loads(f'"{raw_url}"')
    except json.JSONDecodeError:
        decoded = raw_url.replace("\\u0026", "&").replace('\\"', '"').replace("\\\\", "\\")
    return decoded.replace("&amp;", "&")


def is_asr_url(url: str) -> bool:
    query = parse_qs(urlsplit(url).query)
    return ASR_KIND in query.get("kind", [])


def language_matches(language_code: str, wanted: str) -> bool:
    return _primary_subtag(language_code) == _primary_subtag(wanted)


def select_tracks(tracks: Iterable[CaptionTrack], languages: Iterable[str]) -> dict[str, CaptionTrack]:
    """Choose at most one track per wanted language.

    A manual track wins over an auto-generated one regardless of manifest order; among tracks
    of the same origin the first one listed is kept.
    """

    wanted = list(dict.fromkeys(languages))
    chosen: dict[str, CaptionTrack] = {}

    for track in tracks:
        for language in wanted:
            if not language_matches(track.language_code, language):
                continue
            current = chosen.get(language)
            if current is None or (current.is_auto_generated and not track.is_auto_generated):
                chosen[language] = track

    return chosen


async def resolve_caption_tracks(
    video_id: str,
    fetch: Fetch,
    *,
    languages: Iterable[str],
    watch_url_template: str = DEFAULT_WATCH_URL_TEMPLATE,
    base_url: str = DEFAULT_BASE_URL,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    retry_base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY_SECONDS,
    sleep: Sleep = asyncio.sleep,
) -> dict[str, CaptionTrack]:
    """Fetch the watch page and pick the best caption track per language.

    The page fetch is retried up to ``max_attempts`` times, waiting
    ``attempt_index * retry_base_delay_seconds`` between attempts. Raises
    ``ManifestNotFound`` once every attempt failed.
    """

    wanted = list(languages)
    page_url = watch_url_template.format(video_id=video_id)
    attempts = max(1, max_attempts)
    last_error: Exception | None = None

    for attempt_index in range(1, attempts + 1):
        try:
            markup = await fetch(page_url)
            tracks = locate_caption_tracks(markup, base_url=base_url)
        except (ManifestNotFound, *FETCH_ERRORS) as exc:
            last_error = exc
            logger.info(
                "Caption manifest lookup failed for %s (attempt %d/%d): %s",
                video_id,
                attempt_index,
                attempts,
                exc,
            )
            if attempt_index < attempts:
                await sleep(attempt_index * retry_base_delay_seconds)
            continue

        chosen = select_tracks(tracks, wanted)
        logger.debug(
            "Resolved %d of %d manifest tracks for %s: %s",
            len(chosen),
            len(tracks),
            video_id,
            {language: track.is_auto_generated for language, track in chosen.items()},
        )
        return chosen

    raise ManifestNotFound(f"Caption manifest not found for {video_id} after {attempts} attempts.") from last_error


def _primary_subtag(language_code: str) -> str:
    return language_code.replace("_", "-").split("-", 1)[0].lower()
