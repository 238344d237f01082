from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import replace
from typing import Awaitable, Callable, Sequence

from captionline.models import MergedCaption, TranslationQueueState

DEFAULT_LOOKAHEAD_SECONDS = 10.0

logger = logging.getLogger(__name__)

CaptionTranslator = Callable[[str], Awaitable[str | None]]
TranslatedListener = Callable[[MergedCaption, str], None]


class TranslationOnDemandQueue:
    """FIFO of captions awaiting translation, served by at most one in-flight request.

    Captions become eligible when they start within ``lookahead_seconds`` of the playback
    position (or are still playing), have text, carry no bundled translation and are not already
    pending, loading, completed or failed. Failed captions are not retried for the video.
    """

    def __init__(
        self,
        translator: CaptionTranslator,
        timeline: Sequence[MergedCaption] = (),
        *,
        lookahead_seconds: float = DEFAULT_LOOKAHEAD_SECONDS,
        on_translated: TranslatedListener | None = None,
    ) -> None:
        if lookahead_seconds < 0:
            raise ValueError("lookahead_seconds must be non-negative.")

        self._translator = translator
        self.lookahead_seconds = lookahead_seconds
        self.on_translated = on_translated
        self.state = TranslationQueueState()
        self._timeline: Sequence[MergedCaption] = ()
        self._by_id: dict[int, MergedCaption] = {}
        self._generation = 0
        self._flight = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.set_timeline(timeline)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def set_timeline(self, timeline: Sequence[MergedCaption]) -> None:
        self._timeline = timeline
        self._by_id = {caption.id: caption for caption in timeline}
        self.reset()

    def reset(self) -> None:
        """Forget all per-video state; an in-flight result from before the reset is dropped."""

        self._generation += 1
        self.state = TranslationQueueState()
        self._wakeup.clear()

    def translation_for(self, caption_id: int) -> str | None:
        caption = self._by_id.get(caption_id)
        if caption is not None and caption.translation:
            return caption.translation
        return self.state.completed.get(caption_id)

    def is_eligible(self, caption: MergedCaption, current_time: float) -> bool:
        if caption.translation or not caption.text.strip():
            return False
        if caption.end_time <= current_time or caption.start_time > current_time + self.lookahead_seconds:
            return False
        state = self.state
        return not (
            caption.id in state.completed
            or caption.id in state.failed
            or caption.id == state.loading_id
            or caption.id in state.pending
        )

    def enqueue_eligible(self, current_time: float) -> list[int]:
        """Append newly eligible captions in timeline order and wake the worker."""

        added = [caption.id for caption in self._timeline if self.is_eligible(caption, current_time)]
        if added:
            self.state.pending.extend(added)
            self._wakeup.set()
            logger.debug("Queued %d captions for translation at %.2fs", len(added), current_time)
        return added

    async def process_next(self) -> bool:
        """Translate the head of the queue. Returns False when nothing was pending."""

        async with self._flight:
            state = self.state
            if not state.pending:
                return False

            caption_id = state.pending.pop(0)
            caption = self._by_id[caption_id]
            generation = self._generation
            state.loading_id = caption_id

            try:
                translation = await self._translator(caption.text)
            except Exception:
                logger.exception("Translator raised for caption %d", caption_id)
                translation = None
            finally:
                if generation == self._generation:
                    state.loading_id = None

            if generation != self._generation:
                logger.debug("Discarding translation for caption %d from a previous video", caption_id)
                return True

            if translation:
                state.completed[caption_id] = translation
                if self.on_translated is not None:
                    self.on_translated(caption, translation)
            else:
                state.failed.add(caption_id)
                logger.info("No translation available for caption %d", caption_id)
            return True

    async def drain(self) -> int:
        processed = 0
        while await self.process_next():
            processed += 1
        return processed

    def start(self) -> asyncio.Task[None]:
        if self.running:
            return self._task  # type: ignore[return-value]
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            await self.drain()


def apply_translations(
    timeline: Sequence[MergedCaption],
    completed: dict[int, str],
) -> tuple[MergedCaption, ...]:
    """Return a new timeline snapshot with queue results folded into captions lacking one."""

    return tuple(
        replace(caption, translation=completed[caption.id])
        if not caption.translation and caption.id in completed
        else caption
        for caption in timeline
    )
