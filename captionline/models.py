from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class CaptionTrack:
    """One language- and origin-specific caption stream for a video."""

    language_code: str
    is_auto_generated: bool
    source_url: str


@dataclass(frozen=True, slots=True)
class Caption:
    """A single timed caption decoded from a track, optionally carrying a translation."""

    id: int
    start_time: float
    end_time: float
    text: str
    translation: str | None = None
    is_auto_generated: bool = False

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True, slots=True)
class MergedCaption:
    """Sentence-level unit built from one or more adjacent captions."""

    id: int
    start_time: float
    end_time: float
    text: str
    translation: str | None = None
    is_auto_generated: bool = False
    member_ids: tuple[int, ...] = ()

    def contains(self, seconds: float) -> bool:
        return self.start_time <= seconds < self.end_time


@dataclass(slots=True)
class ActiveCaptionState:
    """Synchronizer-owned pointer to the caption under the playhead."""

    current_id: int | None = None
    last_sampled_time: float = float("-inf")


@dataclass(frozen=True, slots=True)
class TranslationCacheEntry:
    normalized_text: str
    translation: str
    timestamp: float


@dataclass(slots=True)
class TranslationQueueState:
    """Per-video queue bookkeeping; only the queue worker mutates it."""

    pending: list[int] = field(default_factory=list)
    loading_id: int | None = None
    completed: dict[int, str] = field(default_factory=dict)
    failed: set[int] = field(default_factory=set)
