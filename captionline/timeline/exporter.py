from __future__ import annotations

import csv
import json
from dataclasses import asdict
from pathlib import Path
from typing import Sequence

from captionline.models import MergedCaption


def export_timeline(timeline: Sequence[MergedCaption], output_path: str | Path) -> Path:
    """Export a caption timeline to JSON (default), CSV or SRT, based on file extension."""

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    suffix = path.suffix.lower()
    if suffix == ".csv":
        _write_csv(timeline, path)
    elif suffix == ".srt":
        path.write_text(to_srt(timeline), encoding="utf-8")
    else:
        _write_json(timeline, path)

    return path


def export_final_outputs(
    timeline: Sequence[MergedCaption],
    output_dir: str | Path,
    *,
    basename: str = "captions",
    formats: Sequence[str] = ("json", "csv", "srt"),
) -> dict[str, Path]:
    """Write the timeline once per requested format and return the written paths."""

    unknown = sorted(set(formats) - {"json", "csv", "srt"})
    if unknown:
        raise ValueError(f"Unsupported export formats: {unknown}")

    resolved_output_dir = Path(output_dir)
    resolved_output_dir.mkdir(parents=True, exist_ok=True)

    return {fmt: export_timeline(timeline, resolved_output_dir / f"{basename}.{fmt}") for fmt in formats}


def load_timeline(path: str | Path) -> list[MergedCaption]:
    """Load a timeline from the JSON export contract."""

    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError("Timeline contract must be a JSON array.")

    timeline: list[MergedCaption] = []
    for idx, row in enumerate(payload, start=1):
        if not isinstance(row, dict):
            raise ValueError(f"Timeline row {idx} must be an object.")
        timeline.append(
            MergedCaption(
                id=int(row["id"]),
                start_time=float(row["start_time"]),
                end_time=float(row["end_time"]),
                text=str(row["text"]),
                translation=str(row["translation"]) if row.get("translation") is not None else None,
                is_auto_generated=bool(row.get("is_auto_generated", False)),
                member_ids=tuple(int(member) for member in row.get("member_ids", [row["id"]])),
            )
        )

    return timeline


def to_srt(timeline: Sequence[MergedCaption]) -> str:
    blocks: list[str] = []
    for idx, caption in enumerate(timeline, start=1):
        lines = [caption.text]
        if caption.translation:
            lines.append(caption.translation)
        blocks.append(
            f"{idx}\n"
            f"{format_srt_timestamp(caption.start_time)} --> {format_srt_timestamp(caption.end_time)}\n"
            + "\n".join(lines)
            + "\n"
        )
    return "\n".join(blocks)


def format_srt_timestamp(seconds: float) -> str:
    """Format seconds as an SRT timestamp (HH:MM:SS,mmm)."""

    total_millis = int(round(max(0.0, seconds) * 1000))
    hours, remainder = divmod(total_millis, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, millis = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def _write_json(timeline: Sequence[MergedCaption], path: Path) -> None:
    payload = [asdict(caption) for caption in timeline]
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")


def _write_csv(timeline: Sequence[MergedCaption], path: Path) -> None:
    fields = [
        "id",
        "start_time",
        "end_time",
        "duration",
        "text",
        "translation",
        "is_auto_generated",
        "member_count",
        "member_ids",
    ]

    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=fields)
        writer.writeheader()
        for caption in timeline:
            writer.writerow(
                {
                    "id": caption.id,
                    "start_time": f"{caption.start_time:.3f}",
                    "end_time": f"{caption.end_time:.3f}",
                    "duration": f"{caption.end_time - caption.start_time:.3f}",
                    "text": caption.text,
                    "translation": caption.translation or "",
                    "is_auto_generated": "true" if caption.is_auto_generated else "false",
                    "member_count": len(caption.member_ids),
                    "member_ids": "|".join(str(member) for member in caption.member_ids),
                }
            )
