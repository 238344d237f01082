from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Sequence

from captionline.config import MergeSettings
from captionline.models import Caption, MergedCaption

COORDINATING_CONJUNCTIONS = frozenset(
    {
        "and",
        "but",
        "or",
        "because",
        "so",
        "however",
        "therefore",
        "thus",
        "moreover",
        "furthermore",
        "additionally",
    }
)
TRAILING_PREPOSITIONS = frozenset({"in", "on", "at", "to", "for", "with", "by", "from", "of", "about"})
QUOTE_CHARACTERS = ('"', "“", "”")
TERMINAL_PUNCTUATION_PATTERN = re.compile(r"[.!?][\"'”’)\]]*$")
WORD_EDGE_PUNCTUATION = "\"'“”‘’()[]{},.;:!?-"

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MergeThresholds:
    """Empirical merge limits; override per call rather than editing the heuristic."""

    forced_merge_gap_seconds: float = 1.0
    fallback_gap_seconds: float = 3.0
    max_merged_chars: int = 200
    short_caption_words: int = 5
    small_group_words: int = 10

    def __post_init__(self) -> None:
        for name in (
            "forced_merge_gap_seconds",
            "fallback_gap_seconds",
            "max_merged_chars",
            "short_caption_words",
            "small_group_words",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative.")

    @classmethod
    def from_settings(cls, settings: MergeSettings) -> MergeThresholds:
        return cls(**settings.model_dump(mode="python"))


class _OpenGroup:
    __slots__ = ("members", "text", "end_time", "word_count", "quote_count")

    def __init__(self, first: Caption) -> None:
        self.members: list[Caption] = [first]
        self.text = first.text.strip()
        self.end_time = first.end_time
        self.word_count = _word_count(first.text)
        self.quote_count = _quote_count(first.text)

    def extend(self, caption: Caption) -> None:
        self.members.append(caption)
        addition = caption.text.strip()
        if addition:
            self.text = f"{self.text} {addition}" if self.text else addition
        self.end_time = max(self.end_time, caption.end_time)
        self.word_count += _word_count(caption.text)
        self.quote_count += _quote_count(caption.text)


def merge_sentences(
    captions: Sequence[Caption],
    thresholds: MergeThresholds | None = None,
) -> list[MergedCaption]:
    """Coalesce adjacent auto-generated caption fragments into sentence-level captions.

    Single greedy pass with one open group. For each next caption the rules apply in order:

    1) forced split: group ends in ``.!?`` and the next caption is not short
    2) forced merge: gap to the next caption <= ``forced_merge_gap_seconds``
    3) continuity: leading conjunction, trailing preposition or unterminated quote,
       within ``max_merged_chars``
    4) fallback: gap <= ``fallback_gap_seconds`` within ``max_merged_chars`` when the next
       caption is short or the group is still small
    5) otherwise split

    Manual captions are never merged. Finalized groups are never revisited.
    """

    resolved = thresholds or MergeThresholds()
    if not captions:
        return []

    merged: list[MergedCaption] = []
    group = _OpenGroup(captions[0])

    for caption in captions[1:]:
        reason = _merge_reason(group, caption, resolved)
        if reason is None:
            merged.append(_finalize(group.members))
            group = _OpenGroup(caption)
            continue

        logger.debug("Merging caption %d into group %d (%s)", caption.id, group.members[0].id, reason)
        group.extend(caption)

    merged.append(_finalize(group.members))
    return merged


class SentenceMerger:
    """Merges caption snapshots, memoized on the identity of the last input snapshot."""

    def __init__(self, thresholds: MergeThresholds | None = None) -> None:
        self.thresholds = thresholds or MergeThresholds()
        self._last_input: Sequence[Caption] | None = None
        self._last_output: tuple[MergedCaption, ...] = ()

    def merge(self, captions: Sequence[Caption]) -> tuple[MergedCaption, ...]:
        if captions is self._last_input:
            return self._last_output

        output = tuple(merge_sentences(captions, self.thresholds))
        self._last_input = captions
        self._last_output = output
        logger.info("Merged %d captions into %d sentence units", len(captions), len(output))
        return output


def ends_with_terminal_punctuation(text: str) -> bool:
    return bool(TERMINAL_PUNCTUATION_PATTERN.search(text.rstrip()))


def _merge_reason(group: _OpenGroup, candidate: Caption, thresholds: MergeThresholds) -> str | None:
    last = group.members[-1]
    if not (last.is_auto_generated and candidate.is_auto_generated):
        return None

    candidate_words = _word_count(candidate.text)
    candidate_is_short = candidate_words <= thresholds.short_caption_words

    if ends_with_terminal_punctuation(group.text) and not candidate_is_short:
        return None

    gap = candidate.start_time - group.end_time
    if gap <= thresholds.forced_merge_gap_seconds:
        return "gap"

    within_size = len(group.text) + len(candidate.text.strip()) < thresholds.max_merged_chars

    if within_size and _has_textual_continuity(group, candidate):
        return "continuity"

    if (
        gap <= thresholds.fallback_gap_seconds
        and within_size
        and (
            candidate_is_short
            or group.word_count < thresholds.small_group_words
            or gap <= thresholds.forced_merge_gap_seconds
        )
    ):
        return "fallback"

    return None


def _has_textual_continuity(group: _OpenGroup, candidate: Caption) -> bool:
    if _first_word(candidate.text) in COORDINATING_CONJUNCTIONS:
        return True
    if _last_word(group.text) in TRAILING_PREPOSITIONS:
        return True
    return group.quote_count % 2 == 1


def _finalize(members: list[Caption]) -> MergedCaption:
    first = members[0]
    if len(members) == 1:
        return MergedCaption(
            id=first.id,
            start_time=first.start_time,
            end_time=first.end_time,
            text=first.text,
            translation=first.translation,
            is_auto_generated=first.is_auto_generated,
            member_ids=(first.id,),
        )

    text = " ".join(member.text.strip() for member in members if member.text.strip())
    if text and not ends_with_terminal_punctuation(text) and not text.endswith((",", ";")):
        text = f"{text}."

    translation = " ".join(
        member.translation.strip() for member in members if member.translation and member.translation.strip()
    )

    return MergedCaption(
        id=first.id,
        start_time=first.start_time,
        end_time=max(member.end_time for member in members),
        text=text,
        translation=translation,
        is_auto_generated=True,
        member_ids=tuple(member.id for member in members),
    )


def _word_count(text: str) -> int:
    return len(text.split())


def _quote_count(text: str) -> int:
    return sum(text.count(mark) for mark in QUOTE_CHARACTERS)


def _first_word(text: str) -> str:
    words = text.split()
    return words[0].strip(WORD_EDGE_PUNCTUATION).lower() if words else ""


def _last_word(text: str) -> str:
    words = text.split()
    return words[-1].strip(WORD_EDGE_PUNCTUATION).lower() if words else ""
