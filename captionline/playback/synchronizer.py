from __future__ import annotations

import asyncio
import bisect
import contextlib
import logging
from typing import Awaitable, Callable, Protocol, Sequence

from captionline.models import ActiveCaptionState, MergedCaption

DEFAULT_SAMPLE_INTERVAL_SECONDS = 0.1
DEFAULT_DEBOUNCE_SECONDS = 0.05

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
CaptionListener = Callable[[MergedCaption], None]
ClearListener = Callable[[], None]
SampleListener = Callable[[float], None]


class MediaPlayer(Protocol):
    async def current_time(self) -> float | None: ...

    async def seek(self, seconds: float) -> None: ...


class CaptionIndex:
    """Point lookup of the caption under a playback time."""

    def __init__(self, timeline: Sequence[MergedCaption]) -> None:
        self.timeline = timeline
        self._starts = [caption.start_time for caption in timeline]
        self._max_ends: list[float] = []
        running = float("-inf")
        for caption in timeline:
            running = max(running, caption.end_time)
            self._max_ends.append(running)

    def find(self, seconds: float) -> MergedCaption | None:
        """Return the latest-starting caption with ``start <= seconds < end``."""

        idx = bisect.bisect_right(self._starts, seconds) - 1
        while idx >= 0 and self._max_ends[idx] > seconds:
            caption = self.timeline[idx]
            if caption.contains(seconds):
                return caption
            idx -= 1
        return None


class PlaybackSynchronizer:
    """Tracks which merged caption is active for a sampled playback position.

    ``on_caption`` fires once each time a different caption becomes active; ``on_clear`` fires
    when playback leaves captions for a gap, pre-roll or post-roll. Sample moves smaller
    than ``debounce_seconds`` are ignored. ``seek`` bypasses the debounce and always reports.
    """

    def __init__(
        self,
        player: MediaPlayer,
        timeline: Sequence[MergedCaption] = (),
        *,
        on_caption: CaptionListener | None = None,
        on_clear: ClearListener | None = None,
        on_sample: SampleListener | None = None,
        sample_interval_seconds: float = DEFAULT_SAMPLE_INTERVAL_SECONDS,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if sample_interval_seconds <= 0:
            raise ValueError("sample_interval_seconds must be positive.")
        if debounce_seconds < 0:
            raise ValueError("debounce_seconds must be non-negative.")

        self._player = player
        self._index = CaptionIndex(timeline)
        self.on_caption = on_caption
        self.on_clear = on_clear
        self.on_sample = on_sample
        self.sample_interval_seconds = sample_interval_seconds
        self.debounce_seconds = debounce_seconds
        self._sleep = sleep
        self.state = ActiveCaptionState()
        self._active: MergedCaption | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def timeline(self) -> Sequence[MergedCaption]:
        return self._index.timeline

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def active_caption(self) -> MergedCaption | None:
        return self._active

    def set_timeline(self, timeline: Sequence[MergedCaption]) -> None:
        self._index = CaptionIndex(timeline)
        self.reset()

    def reset(self) -> None:
        self.state = ActiveCaptionState()
        self._active = None

    def sample(self, seconds: float) -> bool:
        """Process one live time sample. Returns True when the active caption changed."""

        if abs(seconds - self.state.last_sampled_time) < self.debounce_seconds:
            return False

        self.state.last_sampled_time = seconds
        changed = self._update(seconds, force=False)
        if self.on_sample is not None:
            self.on_sample(seconds)
        return changed

    async def seek(self, seconds: float) -> MergedCaption | None:
        """Move the player and report the caption at the new position immediately."""

        await self._player.seek(seconds)
        self.state.last_sampled_time = seconds
        self._update(seconds, force=True)
        if self.on_sample is not None:
            self.on_sample(seconds)
        return self._index.find(seconds)

    def start(self) -> asyncio.Task[None]:
        if self.running:
            return self._task  # type: ignore[return-value]
        self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def run(self) -> None:
        while True:
            try:
                seconds = await self._player.current_time()
            except (OSError, RuntimeError, ValueError) as exc:
                logger.debug("Playback time sample failed: %s", exc)
                seconds = None

            if seconds is not None:
                self.sample(float(seconds))
            await self._sleep(self.sample_interval_seconds)

    def _update(self, seconds: float, *, force: bool) -> bool:
        caption = self._index.find(seconds)
        new_id = caption.id if caption is not None else None
        if new_id == self.state.current_id and not force:
            return False

        changed = new_id != self.state.current_id
        self.state.current_id = new_id
        self._active = caption
        if caption is not None:
            if self.on_caption is not None:
                self.on_caption(caption)
        elif changed and self.on_clear is not None:
            self.on_clear()
        return changed
