from __future__ import annotations

import asyncio
from http.client import IncompleteRead
from urllib.error import URLError

from captionline.pipeline import load_caption_timeline
from captionline.timeline.sentence_merger import SentenceMerger

VIDEO_ID = "abcdefghijk"
WATCH_URL = f"https://www.youtube.com/watch?v={VIDEO_ID}"
EN_AUTO_URL = f"https://www.youtube.com/api/timedtext?v={VIDEO_ID}&lang=en&kind=asr"
EN_MANUAL_URL = f"https://www.youtube.com/api/timedtext?v={VIDEO_ID}&lang=en"
JA_MANUAL_URL = f"https://www.youtube.com/api/timedtext?v={VIDEO_ID}&lang=ja"

EN_AUTO_DOCUMENT = (
    "<transcript>"
    '<text start="0.0" dur="2.0">Hello</text>'
    '<text start="2.5" dur="1.5">and how</text>'
    '<text start="4.0" dur="2.0">are you today.</text>'
    "</transcript>"
)
EN_MANUAL_DOCUMENT = (
    "<transcript>"
    '<text start="0.0" dur="2.0">Good morning.</text>'
    '<text start="2.5" dur="1.5">How are you?</text>'
    "</transcript>"
)
JA_MANUAL_DOCUMENT = (
    "<transcript>"
    '<text start="0.0" dur="2.0">おはようございます。</text>'
    '<text start="2.5" dur="1.5">お元気ですか？</text>'
    "</transcript>"
)


def _player_markup(*tracks: tuple[str, str]) -> str:
    descriptors = ",".join(
        '{"baseUrl":"%s","name":{"simpleText":"%s"},"languageCode":"%s"}'
        % (url.replace("&", "\\u0026"), language, language)
        for url, language in tracks
    )
    return (
        "<script>var ytInitialPlayerResponse = "
        '{"captions":{"playerCaptionsTracklistRenderer":{"captionTracks":['
        + descriptors
        + '],"translationLanguages":[{"languageCode":"ja","languageName":{"simpleText":"Japanese"}}]}}};</script>'
    )


def _fake_fetch(pages: dict[str, str], requested: list[str] | None = None, delays: dict[str, int] | None = None):
    async def fetch(url: str) -> str:
        if requested is not None:
            requested.append(url)
        for _ in range((delays or {}).get(url, 0)):
            await asyncio.sleep(0)
        if url not in pages:
            raise URLError(f"404 for {url}")
        return pages[url]

    return fetch


async def _no_sleep(seconds: float) -> None:
    return None


def test_manual_tracks_are_aligned_without_merging() -> None:
    pages = {
        WATCH_URL: _player_markup((EN_AUTO_URL, "en"), (EN_MANUAL_URL, "en"), (JA_MANUAL_URL, "ja")),
        EN_MANUAL_URL: EN_MANUAL_DOCUMENT,
        JA_MANUAL_URL: JA_MANUAL_DOCUMENT,
    }
    requested: list[str] = []

    result = asyncio.run(load_caption_timeline(VIDEO_ID, fetch=_fake_fetch(pages, requested), sleep=_no_sleep))

    assert EN_AUTO_URL not in requested
    assert result.tracks["en"].is_auto_generated is False
    assert [caption.translation for caption in result.captions] == ["おはようございます。", "お元気ですか？"]
    assert [caption.text for caption in result.timeline] == ["Good morning.", "How are you?"]
    assert [caption.translation for caption in result.timeline] == ["おはようございます。", "お元気ですか？"]
    assert result.issues == []


def test_auto_track_without_target_is_merged_with_empty_translations() -> None:
    pages = {
        WATCH_URL: _player_markup((EN_AUTO_URL, "en")),
        EN_AUTO_URL: EN_AUTO_DOCUMENT,
    }

    result = asyncio.run(load_caption_timeline(VIDEO_ID, fetch=_fake_fetch(pages), sleep=_no_sleep))

    assert "ja" not in result.tracks
    assert [caption.translation for caption in result.captions] == ["", "", ""]
    assert len(result.timeline) == 1
    assert result.timeline[0].text == "Hello and how are you today."
    assert result.timeline[0].member_ids == (1, 2, 3)
    assert result.timeline[0].translation == ""


def test_missing_manifest_yields_empty_result_after_retries() -> None:
    delays: list[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    result = asyncio.run(
        load_caption_timeline(VIDEO_ID, fetch=_fake_fetch({WATCH_URL: "<html></html>"}), sleep=sleep)
    )

    assert delays == [1.0, 2.0]
    assert result.tracks == {}
    assert result.captions == []
    assert result.timeline == ()
    assert result.issues and result.issues[0].startswith("manifest:")


def test_missing_source_track_yields_empty_timeline() -> None:
    pages = {WATCH_URL: _player_markup((JA_MANUAL_URL, "ja")), JA_MANUAL_URL: JA_MANUAL_DOCUMENT}
    requested: list[str] = []

    result = asyncio.run(load_caption_timeline(VIDEO_ID, fetch=_fake_fetch(pages, requested), sleep=_no_sleep))

    assert requested == [WATCH_URL]
    assert result.timeline == ()
    assert result.issues == ["track:en: not listed"]


def test_unusable_target_track_degrades_to_empty_translations() -> None:
    pages = {
        WATCH_URL: _player_markup((EN_MANUAL_URL, "en"), (JA_MANUAL_URL, "ja")),
        EN_MANUAL_URL: EN_MANUAL_DOCUMENT,
    }

    result = asyncio.run(load_caption_timeline(VIDEO_ID, fetch=_fake_fetch(pages), sleep=_no_sleep))

    assert [caption.text for caption in result.timeline] == ["Good morning.", "How are you?"]
    assert [caption.translation for caption in result.timeline] == ["", ""]
    assert len(result.issues) == 1
    assert result.issues[0].startswith("track:ja:")


def test_unusable_source_track_yields_empty_timeline() -> None:
    pages = {
        WATCH_URL: _player_markup((EN_MANUAL_URL, "en"), (JA_MANUAL_URL, "ja")),
        EN_MANUAL_URL: "<transcript><text start='0'",
        JA_MANUAL_URL: JA_MANUAL_DOCUMENT,
    }

    result = asyncio.run(load_caption_timeline(VIDEO_ID, fetch=_fake_fetch(pages), sleep=_no_sleep))

    assert result.captions == []
    assert result.timeline == ()
    assert result.issues[0].startswith("track:en:")


def test_alignment_is_independent_of_fetch_completion_order() -> None:
    pages = {
        WATCH_URL: _player_markup((EN_MANUAL_URL, "en"), (JA_MANUAL_URL, "ja")),
        EN_MANUAL_URL: EN_MANUAL_DOCUMENT,
        JA_MANUAL_URL: JA_MANUAL_DOCUMENT,
    }
    requested: list[str] = []
    fetch = _fake_fetch(pages, requested, delays={EN_MANUAL_URL: 5})

    result = asyncio.run(load_caption_timeline(VIDEO_ID, fetch=fetch, sleep=_no_sleep))

    assert requested[1:] == [EN_MANUAL_URL, JA_MANUAL_URL]
    assert [(caption.text, caption.translation) for caption in result.captions] == [
        ("Good morning.", "おはようございます。"),
        ("How are you?", "お元気ですか？"),
    ]


def test_custom_languages_and_shared_merger() -> None:
    de_url = f"https://www.youtube.com/api/timedtext?v={VIDEO_ID}&lang=de"
    pages = {
        WATCH_URL: _player_markup((EN_MANUAL_URL, "en"), (de_url, "de")),
        EN_MANUAL_URL: EN_MANUAL_DOCUMENT,
        de_url: '<transcript><text start="0" dur="2">Guten Morgen.</text></transcript>',
    }
    merger = SentenceMerger()

    result = asyncio.run(
        load_caption_timeline(
            VIDEO_ID,
            fetch=_fake_fetch(pages),
            target_language="de",
            merger=merger,
            sleep=_no_sleep,
        )
    )

    assert result.target_language == "de"
    assert [caption.translation for caption in result.timeline] == ["Guten Morgen.", ""]
    assert merger.merge(result.captions) is result.timeline


def test_truncated_target_track_body_degrades_to_empty_translations() -> None:
    pages = {
        WATCH_URL: _player_markup((EN_MANUAL_URL, "en"), (JA_MANUAL_URL, "ja")),
        EN_MANUAL_URL: EN_MANUAL_DOCUMENT,
    }
    base_fetch = _fake_fetch(pages)

    async def fetch(url: str) -> str:
        if url == JA_MANUAL_URL:
            raise IncompleteRead(b"<transcript>")
        return await base_fetch(url)

    result = asyncio.run(load_caption_timeline(VIDEO_ID, fetch=fetch, sleep=_no_sleep))

    assert [caption.translation for caption in result.timeline] == ["", ""]
    assert len(result.issues) == 1
    assert result.issues[0].startswith("track:ja:")
