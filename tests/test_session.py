from __future__ import annotations

import asyncio
import json
from urllib.error import URLError

from captionline.config import Settings
from captionline.session import LAST_SESSION_KEY, CaptionSession, restore_last_session
from captionline.store import MemoryStore

FIRST_VIDEO = "aaaaaaaaaaa"
SECOND_VIDEO = "bbbbbbbbbbb"


def _track_url(video_id: str, language: str) -> str:
    return f"https://www.youtube.com/api/timedtext?v={video_id}&lang={language}"


def _watch_page(video_id: str, *languages: str) -> str:
    descriptors = ",".join(
        '{"baseUrl":"%s","languageCode":"%s"}' % (_track_url(video_id, language).replace("&", "\\u0026"), language)
        for language in languages
    )
    return (
        '{"captions":{"playerCaptionsTracklistRenderer":{"captionTracks":['
        + descriptors
        + '],"audioTracks":[{"captionTrackIndices":[0]}]}}}'
    )


PAGES = {
    f"https://www.youtube.com/watch?v={FIRST_VIDEO}": _watch_page(FIRST_VIDEO, "en"),
    _track_url(FIRST_VIDEO, "en"): (
        "<transcript>"
        '<text start="0" dur="2">First video opening line.</text>'
        '<text start="4" dur="2">Second line of the first video.</text>'
        "</transcript>"
    ),
    f"https://www.youtube.com/watch?v={SECOND_VIDEO}": _watch_page(SECOND_VIDEO, "en", "ja"),
    _track_url(SECOND_VIDEO, "en"): '<transcript><text start="1" dur="3">Welcome back.</text></transcript>',
    _track_url(SECOND_VIDEO, "ja"): '<transcript><text start="1" dur="3">おかえりなさい。</text></transcript>',
}


class _FakePlayer:
    def __init__(self) -> None:
        self.position: float | None = None
        self.seeks: list[float] = []

    async def current_time(self) -> float | None:
        return self.position

    async def seek(self, seconds: float) -> None:
        self.seeks.append(seconds)
        self.position = seconds


async def _fetch(url: str) -> str:
    if url not in PAGES:
        raise URLError(f"404 for {url}")
    return PAGES[url]


async def _no_sleep(seconds: float) -> None:
    await asyncio.sleep(0)


def _session(store: MemoryStore, events: list[object], translations: list[str]) -> CaptionSession:
    async def translate(text: str, target_language: str) -> str | None:
        translations.append(text)
        return f"[{target_language}] {text}"

    return CaptionSession(
        Settings(),
        player=_FakePlayer(),
        fetch=_fetch,
        translate=translate,
        store=store,
        on_caption=lambda caption: events.append(caption.id),
        on_clear=lambda: events.append("clear"),
        sleep=_no_sleep,
        clock=lambda: 1234.5,
    )


def test_load_installs_timeline_and_remembers_session() -> None:
    store = MemoryStore()
    events: list[object] = []

    async def scenario() -> CaptionSession:
        session = _session(store, events, [])
        await session.load(FIRST_VIDEO)
        return session

    session = asyncio.run(scenario())

    assert session.video_id == FIRST_VIDEO
    assert [caption.text for caption in session.timeline] == [
        "First video opening line.",
        "Second line of the first video.",
    ]
    remembered = restore_last_session(store)
    assert remembered is not None
    assert remembered["video_id"] == FIRST_VIDEO
    assert remembered["saved_at"] == 1234.5
    assert remembered["tracks"]["en"]["is_auto_generated"] is False


def test_samples_enqueue_missing_translations() -> None:
    store = MemoryStore()
    events: list[object] = []
    translations: list[str] = []

    async def scenario() -> CaptionSession:
        session = _session(store, events, translations)
        await session.load(FIRST_VIDEO)
        session.synchronizer.sample(0.5)
        await session.queue.drain()
        return session

    session = asyncio.run(scenario())

    assert events == [1]
    assert translations == ["First video opening line.", "Second line of the first video."]
    assert session.translation_for(2) == "[ja] Second line of the first video."


def test_loading_a_new_video_resets_playback_and_queue() -> None:
    store = MemoryStore()
    events: list[object] = []

    async def scenario() -> CaptionSession:
        session = _session(store, events, [])
        await session.load(FIRST_VIDEO)
        session.synchronizer.sample(0.5)
        assert session.queue.state.pending == [1, 2]

        await session.load(SECOND_VIDEO)
        assert session.synchronizer.state.current_id is None
        assert session.queue.state.pending == []
        assert session.queue.state.completed == {}

        landed = await session.seek(2.0)
        assert landed is not None and landed.text == "Welcome back."
        return session

    session = asyncio.run(scenario())

    assert events == [1, 1]
    assert session.timeline[0].translation == "おかえりなさい。"
    assert session.translation_for(1) == "おかえりなさい。"
    assert json.loads(store.get(LAST_SESSION_KEY))["video_id"] == SECOND_VIDEO


def test_start_and_stop_background_tasks() -> None:
    async def scenario() -> tuple[bool, bool]:
        session = _session(MemoryStore(), [], [])
        await session.load(FIRST_VIDEO)
        session.start()
        running = session.synchronizer.running and session.queue.running
        await asyncio.sleep(0)
        await session.stop()
        return running, session.synchronizer.running or session.queue.running

    assert asyncio.run(scenario()) == (True, False)


def test_missing_captions_give_empty_session() -> None:
    async def scenario() -> CaptionSession:
        session = _session(MemoryStore(), [], [])
        await session.load("zzzzzzzzzzz")
        return session

    session = asyncio.run(scenario())

    assert session.timeline == ()
    assert session.result is not None
    assert session.result.issues


def test_restore_last_session_handles_missing_or_corrupt_entries() -> None:
    store = MemoryStore()
    assert restore_last_session(store) is None

    store.set(LAST_SESSION_KEY, "{oops")
    assert restore_last_session(store) is None

    store.set(LAST_SESSION_KEY, "[]")
    assert restore_last_session(store) is None
