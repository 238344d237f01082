from __future__ import annotations

import asyncio
from http.client import IncompleteRead
from urllib.error import URLError

import pytest

from captionline.ingest.timed_text import (
    TrackUnusable,
    clean_caption_text,
    decode_timed_text,
    fetch_track_captions,
)
from captionline.models import CaptionTrack

CLASSIC_DOCUMENT = """<?xml version="1.0" encoding="utf-8" ?>
<transcript>
  <text start="0.5" dur="2.0">Hello
world</text>
  <text start="2.5" dur="1.5">It&amp;#39;s fine</text>
  <text start="4" dur="0">zero length</text>
  <text start="5">no duration</text>
  <text start="6" dur="1"></text>
  <text start="7.25" dur="1.5">&lt;font color=&quot;#E5E5E5&quot;&gt;ok&lt;/font&gt; then</text>
</transcript>
"""

FORMAT3_DOCUMENT = """<?xml version="1.0" encoding="utf-8" ?>
<timedtext format="3">
  <body>
    <p t="1000" d="2500">Hi <s>there</s></p>
    <p t="4000" d="1000">Bye</p>
  </body>
</timedtext>
"""


def test_decode_timed_text_classic_format() -> None:
    captions = decode_timed_text(CLASSIC_DOCUMENT, is_auto_generated=True)

    assert [caption.id for caption in captions] == [1, 2, 3, 4]
    assert [caption.text for caption in captions] == ["Hello world", "It's fine", "", "ok then"]
    assert captions[0].start_time == pytest.approx(0.5)
    assert captions[0].end_time == pytest.approx(2.5)
    assert (captions[2].start_time, captions[2].end_time) == (6.0, 7.0)
    assert captions[3].end_time == pytest.approx(8.75)
    assert all(caption.is_auto_generated for caption in captions)
    assert all(caption.start_time < caption.end_time for caption in captions)
    assert all(caption.translation is None for caption in captions)


def test_decode_timed_text_format3_uses_milliseconds() -> None:
    captions = decode_timed_text(FORMAT3_DOCUMENT)

    assert [(caption.start_time, caption.end_time, caption.text) for caption in captions] == [
        (1.0, 3.5, "Hi there"),
        (4.0, 5.0, "Bye"),
    ]
    assert not captions[0].is_auto_generated


def test_decode_timed_text_drops_spans_that_round_to_nothing() -> None:
    document = '<transcript><text start="1.0" dur="0.0004">blip</text><text start="2" dur="1">ok</text></transcript>'

    captions = decode_timed_text(document)

    assert [(caption.id, caption.text) for caption in captions] == [(1, "ok")]
    assert captions[0].start_time < captions[0].end_time


def test_decode_timed_text_keeps_literal_markup_from_single_escape() -> None:
    document = '<transcript><text start="1" dur="2">use a &lt;div&gt; tag</text></transcript>'

    captions = decode_timed_text(document)

    assert captions[0].text == "use a <div> tag"


def test_decode_timed_text_empty_document_yields_no_captions() -> None:
    assert decode_timed_text("   ") == []


def test_decode_timed_text_rejects_invalid_xml() -> None:
    with pytest.raises(TrackUnusable, match="not valid XML"):
        decode_timed_text("<transcript><text start='1'>broken")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("I&#39;m here", "I'm here"),
        ("Tom &amp; Jerry", "Tom & Jerry"),
        ("use a <div> tag", "use a <div> tag"),
        ("<FONT color=\"#fff\">loud</FONT>", "loud"),
        ("  spaced  out \n line  ", "spaced out line"),
        ("<i>whisper</i>", "whisper"),
        ("1 < 2", "1 < 2"),
    ],
)
def test_clean_caption_text(raw: str, expected: str) -> None:
    assert clean_caption_text(raw) == expected


def test_fetch_track_captions_wraps_fetch_errors() -> None:
    track = CaptionTrack(language_code="ja", is_auto_generated=False, source_url="https://host/ja")

    async def fetch(url: str) -> str:
        raise URLError("HTTP 404")

    with pytest.raises(TrackUnusable, match="ja track"):
        asyncio.run(fetch_track_captions(track, fetch))


def test_fetch_track_captions_wraps_truncated_body() -> None:
    track = CaptionTrack(language_code="en", is_auto_generated=True, source_url="https://host/en")

    async def fetch(url: str) -> str:
        raise IncompleteRead(b"<transcript>")

    with pytest.raises(TrackUnusable, match="en track"):
        asyncio.run(fetch_track_captions(track, fetch))


def test_fetch_track_captions_marks_auto_generated_from_track() -> None:
    track = CaptionTrack(language_code="en", is_auto_generated=True, source_url="https://host/en")
    requested: list[str] = []

    async def fetch(url: str) -> str:
        requested.append(url)
        return FORMAT3_DOCUMENT

    captions = asyncio.run(fetch_track_captions(track, fetch))

    assert requested == ["https://host/en"]
    assert [caption.is_auto_generated for caption in captions] == [True, True]
