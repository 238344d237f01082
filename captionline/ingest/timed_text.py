from __future__ import annotations

import html
import logging
import re
import xml.etree.ElementTree as ET
from typing import Callable

from captionline.ingest.http import FETCH_ERRORS, Fetch
from captionline.models import Caption, CaptionTrack

LINE_BREAK_PATTERN = re.compile(r"\s*[\r\n]+\s*")
WHITESPACE_PATTERN = re.compile(r"[ \t\u00a0]+")
INLINE_TAG_PATTERN = re.compile(r"</?(?:font|b|i|u)\b[^>]*>", re.IGNORECASE)

logger = logging.getLogger(__name__)

XmlParse = Callable[[str], ET.Element]


class TrackUnusable(Exception):
    """A caption track could not be fetched or parsed."""


def decode_timed_text(
    document: str,
    *,
    is_auto_generated: bool = False,
    parse: XmlParse = ET.fromstring,
) -> list[Caption]:
    """Decode a timed-text XML document into captions with sequential ids.

    Understands the classic ``<text start="s" dur="s">`` layout and the format 3
    ``<p t="ms" d="ms">`` layout. Nodes whose millisecond-rounded span is empty are
    dropped, so every returned caption satisfies ``start_time < end_time``. Nodes without
    text are kept as empty captions so index pairing against another track stays aligned.
    """

    if not document.strip():
        return []

    try:
        root = parse(document)
    except ET.ParseError as exc:
        raise TrackUnusable(f"Timed-text document is not valid XML: {exc}") from exc

    captions: list[Caption] = []
    skipped = 0
    for node in root.iter():
        timing = _node_timing(node)
        if timing is None:
            continue

        start, duration = timing
        start_time = round(start, 3)
        end_time = round(start + duration, 3)
        if end_time <= start_time:
            skipped += 1
            continue

        captions.append(
            Caption(
                id=len(captions) + 1,
                start_time=start_time,
                end_time=end_time,
                text=clean_caption_text("".join(node.itertext())),
                is_auto_generated=is_auto_generated,
            )
        )

    if skipped:
        logger.debug("Dropped %d timed-text nodes without a positive duration", skipped)
    return captions


def clean_caption_text(raw_text: str) -> str:
    """Normalize node text that the XML parser has already entity-decoded once."""

    # track payloads are frequently double-escaped (&amp;#39; arrives here as &#39;)
    text = html.unescape(raw_text)
    text = INLINE_TAG_PATTERN.sub("", text)
    text = LINE_BREAK_PATTERN.sub(" ", text)
    text = WHITESPACE_PATTERN.sub(" ", text)
    return text.strip()


async def fetch_track_captions(
    track: CaptionTrack,
    fetch: Fetch,
    *,
    parse: XmlParse = ET.fromstring,
) -> list[Caption]:
    """Fetch one track and decode it. Raises ``TrackUnusable`` on fetch or parse failure."""

    try:
        document = await fetch(track.source_url)
    except FETCH_ERRORS as exc:
        raise TrackUnusable(f"Failed to fetch {track.language_code} track: {exc}") from exc

    captions = decode_timed_text(document, is_auto_generated=track.is_auto_generated, parse=parse)
    logger.info(
        "Decoded %d captions from %s track (auto=%s)",
        len(captions),
        track.language_code,
        track.is_auto_generated,
    )
    return captions


def _node_timing(node: ET.Element) -> tuple[float, float] | None:
    if node.tag == "text" and "start" in node.attrib:
        return _to_float(node.get("start")), _to_float(node.get("dur"))
    if node.tag == "p" and "t" in node.attrib:
        return _to_float(node.get("t")) / 1000.0, _to_float(node.get("d")) / 1000.0
    return None


def _to_float(raw_value: str | None) -> float:
    if raw_value in (None, ""):
        return 0.0
    try:
        return float(raw_value)
    except ValueError:
        return 0.0
