from __future__ import annotations

import logging
from dataclasses import replace

from captionline.models import Caption

logger = logging.getLogger(__name__)


def align_translations(source: list[Caption], target: list[Caption]) -> list[Caption]:
    """Pair source captions with target-language captions by array index.

    No timestamp alignment is attempted: ``source[i]`` receives ``target[i].text`` or ``""``
    when the target track is shorter. Tracks that segment differently will mis-pair; that is
    logged as degraded quality, not raised.
    """

    if source and target and len(source) != len(target):
        logger.warning(
            "Caption tracks differ in length (source=%d, target=%d); translations paired by index",
            len(source),
            len(target),
        )

    return [
        replace(caption, translation=target[idx].text if idx < len(target) else "")
        for idx, caption in enumerate(source)
    ]
