from __future__ import annotations

import asyncio
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field

from captionline.ingest.http import Fetch
from captionline.ingest.manifest import (
    DEFAULT_BASE_URL,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_BASE_DELAY_SECONDS,
    DEFAULT_WATCH_URL_TEMPLATE,
    ManifestNotFound,
    Sleep,
    resolve_caption_tracks,
)
from captionline.ingest.timed_text import TrackUnusable, XmlParse, fetch_track_captions
from captionline.models import Caption, CaptionTrack, MergedCaption
from captionline.timeline.align import align_translations
from captionline.timeline.sentence_merger import SentenceMerger

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CaptionLoadResult:
    """Everything one video load produced; empty collections mean degraded, not failed."""

    video_id: str
    source_language: str
    target_language: str
    tracks: dict[str, CaptionTrack] = field(default_factory=dict)
    captions: list[Caption] = field(default_factory=list)
    timeline: tuple[MergedCaption, ...] = ()
    issues: list[str] = field(default_factory=list)


async def load_caption_timeline(
    video_id: str,
    *,
    fetch: Fetch,
    source_language: str = "en",
    target_language: str = "ja",
    merger: SentenceMerger | None = None,
    parse: XmlParse = ET.fromstring,
    watch_url_template: str = DEFAULT_WATCH_URL_TEMPLATE,
    base_url: str = DEFAULT_BASE_URL,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    retry_base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY_SECONDS,
    sleep: Sleep = asyncio.sleep,
) -> CaptionLoadResult:
    """Resolve, fetch, align and merge the captions of one video.

    Never raises for upstream problems: a missing manifest yields an empty result and an
    unusable track contributes an empty caption list.
    """

    result = CaptionLoadResult(video_id=video_id, source_language=source_language, target_language=target_language)
    resolved_merger = merger or SentenceMerger()

    try:
        tracks = await resolve_caption_tracks(
            video_id,
            fetch,
            languages=[source_language, target_language],
            watch_url_template=watch_url_template,
            base_url=base_url,
            max_attempts=max_attempts,
            retry_base_delay_seconds=retry_base_delay_seconds,
            sleep=sleep,
        )
    except ManifestNotFound as exc:
        logger.warning("No captions for %s: %s", video_id, exc)
        result.issues.append(f"manifest: {exc}")
        return result

    result.tracks = tracks
    source_track = tracks.get(source_language)
    if source_track is None:
        logger.warning("No %s caption track for %s", source_language, video_id)
        result.issues.append(f"track:{source_language}: not listed")
        return result

    target_track = tracks.get(target_language)
    source_captions, target_captions = await asyncio.gather(
        _decode_or_empty(source_track, fetch, parse, result.issues),
        _decode_or_empty(target_track, fetch, parse, result.issues),
    )

    result.captions = align_translations(source_captions, target_captions)
    result.timeline = resolved_merger.merge(result.captions)
    logger.info(
        "Loaded %s: %d captions, %d merged, translations from %s",
        video_id,
        len(result.captions),
        len(result.timeline),
        "track" if target_captions else "none",
    )
    return result


async def _decode_or_empty(
    track: CaptionTrack | None,
    fetch: Fetch,
    parse: XmlParse,
    issues: list[str],
) -> list[Caption]:
    if track is None:
        return []
    try:
        return await fetch_track_captions(track, fetch, parse=parse)
    except TrackUnusable as exc:
        logger.warning("Skipping unusable %s track: %s", track.language_code, exc)
        issues.append(f"track:{track.language_code}: {exc}")
        return []
