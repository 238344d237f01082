from __future__ import annotations

import json
import logging
import re
import time
from typing import Callable

from captionline.models import TranslationCacheEntry
from captionline.store import KeyValueStore
from captionline.translate.client import Translate

CACHE_KEY_PREFIX = "translation_cache_"
DEFAULT_TTL_SECONDS = 30 * 24 * 60 * 60
WHITESPACE_PATTERN = re.compile(r"\s+")

logger = logging.getLogger(__name__)


def normalize_text(text: str) -> str:
    return WHITESPACE_PATTERN.sub(" ", text).strip()


class TranslationCache:
    """Translations keyed by normalized source text, expiring after ``ttl_seconds``."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        target_language: str,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.target_language = target_language
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def get(self, text: str) -> TranslationCacheEntry | None:
        normalized = normalize_text(text)
        raw = self._store.get(self._key(normalized))
        if raw is None:
            return None

        try:
            payload = json.loads(raw)
            entry = TranslationCacheEntry(
                normalized_text=normalized,
                translation=str(payload["translation"]),
                timestamp=float(payload["timestamp"]),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            logger.debug("Ignoring malformed cache entry for %r: %s", normalized[:60], exc)
            return None

        if self._clock() - entry.timestamp >= self.ttl_seconds:
            return None
        return entry

    def put(self, text: str, translation: str) -> TranslationCacheEntry:
        normalized = normalize_text(text)
        entry = TranslationCacheEntry(normalized_text=normalized, translation=translation, timestamp=self._clock())
        self._store.set(
            self._key(normalized),
            json.dumps({"translation": entry.translation, "timestamp": entry.timestamp}, ensure_ascii=False),
        )
        return entry

    def _key(self, normalized_text: str) -> str:
        return f"{CACHE_KEY_PREFIX}{self.target_language}_{normalized_text}"


class CachedTranslator:
    """Wraps a translate collaborator so repeated source text costs one network call."""

    def __init__(self, translate: Translate, cache: TranslationCache) -> None:
        self._translate = translate
        self.cache = cache
        self.network_calls = 0

    async def __call__(self, text: str) -> str | None:
        cached = self.cache.get(text)
        if cached is not None:
            logger.debug("Translation cache hit for %r", cached.normalized_text[:60])
            return cached.translation

        self.network_calls += 1
        translation = await self._translate(normalize_text(text), self.cache.target_language)
        if not translation:
            return None

        self.cache.put(text, translation)
        return translation
