from __future__ import annotations

import asyncio
import json
import logging
import time
import xml.etree.ElementTree as ET
from typing import Any, Callable

from captionline.config import Settings
from captionline.ingest.http import Fetch
from captionline.ingest.manifest import Sleep
from captionline.ingest.timed_text import XmlParse
from captionline.models import MergedCaption
from captionline.pipeline import CaptionLoadResult, load_caption_timeline
from captionline.playback.synchronizer import CaptionListener, ClearListener, MediaPlayer, PlaybackSynchronizer
from captionline.store import KeyValueStore
from captionline.timeline.sentence_merger import MergeThresholds, SentenceMerger
from captionline.translate.cache import CachedTranslator, TranslationCache
from captionline.translate.client import Translate
from captionline.translate.queue import TranslatedListener, TranslationOnDemandQueue

LAST_SESSION_KEY = "last_session"
SECONDS_PER_DAY = 24 * 60 * 60

logger = logging.getLogger(__name__)


class CaptionSession:
    """Owns the timeline, synchronizer and translation queue for one video at a time.

    ``load`` tears down everything tied to the previous video before the first fetch for
    the new one, so no caption or translation event crosses videos.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        player: MediaPlayer,
        fetch: Fetch,
        translate: Translate,
        store: KeyValueStore,
        on_caption: CaptionListener | None = None,
        on_clear: ClearListener | None = None,
        on_translated: TranslatedListener | None = None,
        parse: XmlParse = ET.fromstring,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self._fetch = fetch
        self._parse = parse
        self._sleep = sleep
        self._store = store
        self._clock = clock
        self._load_generation = 0
        self.result: CaptionLoadResult | None = None

        self.merger = SentenceMerger(MergeThresholds.from_settings(settings.merge))
        self.translator = CachedTranslator(
            translate,
            TranslationCache(
                store,
                target_language=settings.languages.target,
                ttl_seconds=settings.translation.cache_ttl_days * SECONDS_PER_DAY,
                clock=clock,
            ),
        )
        self.synchronizer = PlaybackSynchronizer(
            player,
            on_caption=on_caption,
            on_clear=on_clear,
            on_sample=self._on_sample,
            sample_interval_seconds=settings.playback.sample_interval_seconds,
            debounce_seconds=settings.playback.debounce_seconds,
            sleep=sleep,
        )
        self.queue = TranslationOnDemandQueue(
            self.translator,
            lookahead_seconds=settings.translation.lookahead_seconds,
            on_translated=on_translated,
        )

    @property
    def video_id(self) -> str | None:
        return self.result.video_id if self.result else None

    @property
    def timeline(self) -> tuple[MergedCaption, ...]:
        return self.result.timeline if self.result else ()

    async def load(self, video_id: str) -> CaptionLoadResult:
        await self.stop()
        self._load_generation += 1
        generation = self._load_generation
        self.result = None
        self.synchronizer.set_timeline(())
        self.queue.set_timeline(())

        resolver = self.settings.resolver
        result = await load_caption_timeline(
            video_id,
            fetch=self._fetch,
            source_language=self.settings.languages.source,
            target_language=self.settings.languages.target,
            merger=self.merger,
            parse=self._parse,
            watch_url_template=resolver.watch_url_template,
            base_url=resolver.base_url,
            max_attempts=resolver.max_attempts,
            retry_base_delay_seconds=resolver.retry_base_delay_seconds,
            sleep=self._sleep,
        )

        if generation != self._load_generation:
            logger.info("Discarding stale caption load for %s", video_id)
            return result

        self.result = result
        self.synchronizer.set_timeline(result.timeline)
        self.queue.set_timeline(result.timeline)
        self._remember(result)
        return result

    def start(self) -> None:
        self.synchronizer.start()
        self.queue.start()

    async def stop(self) -> None:
        await self.synchronizer.stop()
        await self.queue.stop()

    async def seek(self, seconds: float) -> MergedCaption | None:
        return await self.synchronizer.seek(seconds)

    def translation_for(self, caption_id: int) -> str | None:
        return self.queue.translation_for(caption_id)

    def _on_sample(self, seconds: float) -> None:
        self.queue.enqueue_eligible(seconds)

    def _remember(self, result: CaptionLoadResult) -> None:
        payload = {
            "video_id": result.video_id,
            "tracks": {
                language: {
                    "language_code": track.language_code,
                    "is_auto_generated": track.is_auto_generated,
                    "source_url": track.source_url,
                }
                for language, track in result.tracks.items()
            },
            "saved_at": self._clock(),
        }
        self._store.set(LAST_SESSION_KEY, json.dumps(payload, ensure_ascii=False))


def restore_last_session(store: KeyValueStore) -> dict[str, Any] | None:
    """Return the last persisted video/track selection, or None if absent or unreadable."""

    raw = store.get(LAST_SESSION_KEY)
    if raw is None:
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring unreadable %s entry", LAST_SESSION_KEY)
        return None
    return payload if isinstance(payload, dict) else None
