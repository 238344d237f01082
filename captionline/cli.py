from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict
from pathlib import Path
from time import perf_counter
from typing import Callable, TypeVar

import typer

from captionline.config import Settings, load_settings
from captionline.ingest.http import make_fetch
from captionline.ingest.manifest import ManifestNotFound, resolve_caption_tracks
from captionline.ingest.video_id import extract_video_id
from captionline.logging_config import configure_logging
from captionline.models import MergedCaption
from captionline.pipeline import CaptionLoadResult, load_caption_timeline
from captionline.store import JsonFileStore
from captionline.timeline.exporter import export_final_outputs
from captionline.timeline.sentence_merger import MergeThresholds, SentenceMerger
from captionline.translate.cache import CachedTranslator, TranslationCache
from captionline.translate.client import make_translator
from captionline.translate.queue import TranslationOnDemandQueue, apply_translations

app = typer.Typer(help="Bilingual caption timelines for online videos.")
config_app = typer.Typer(help="Configuration commands.")

app.add_typer(config_app, name="config")

logger = logging.getLogger(__name__)

T = TypeVar("T")

SECONDS_PER_DAY = 24 * 60 * 60


def _run_with_progress(step_index: int, total_steps: int, label: str, work: Callable[[], T]) -> T:
    typer.echo(f"[{step_index}/{total_steps}] {label}...", err=True)
    started_at = perf_counter()
    try:
        result = work()
    except Exception:
        elapsed = perf_counter() - started_at
        typer.echo(f"[{step_index}/{total_steps}] {label} failed after {elapsed:.1f}s", err=True)
        raise
    elapsed = perf_counter() - started_at
    typer.echo(f"[{step_index}/{total_steps}] {label} done in {elapsed:.1f}s", err=True)
    return result


def _bootstrap(config_path: Path) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


def _config_option() -> Path:
    return typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="CAPTIONLINE_CONFIG",
        help="Path to YAML configuration file.",
    )


@config_app.command("show")
def show_config(config_path: Path = _config_option()) -> None:
    """Print resolved runtime configuration."""

    settings = _bootstrap(config_path)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@app.command("tracks")
def show_tracks(
    video: str = typer.Argument(..., help="Video URL or id."),
    config_path: Path = _config_option(),
) -> None:
    """List the caption track chosen for the source and target language."""

    settings = _bootstrap(config_path)
    try:
        video_id = extract_video_id(video)
        tracks = asyncio.run(
            resolve_caption_tracks(
                video_id,
                make_fetch(settings.resolver.timeout_seconds),
                languages=[settings.languages.source, settings.languages.target],
                watch_url_template=settings.resolver.watch_url_template,
                base_url=settings.resolver.base_url,
                max_attempts=settings.resolver.max_attempts,
                retry_base_delay_seconds=settings.resolver.retry_base_delay_seconds,
            )
        )
    except (ManifestNotFound, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(json.dumps({language: asdict(track) for language, track in tracks.items()}, indent=2))


@app.command("run")
def run_pipeline(
    video: str = typer.Argument(..., help="Video URL or id."),
    config_path: Path = _config_option(),
    output_dir: Path = typer.Option(Path("data/outputs"), "--output-dir", "-o", help="Directory for exported timelines."),
    basename: str | None = typer.Option(None, help="Base filename for exports. Defaults to the video id."),
    export_format: list[str] = typer.Option(["json", "srt"], "--format", "-f", help="Export format: json, csv, srt."),
    raw: bool = typer.Option(False, help="Export the aligned captions without sentence merging."),
    backfill_translations: bool = typer.Option(
        False,
        help="Translate captions that have no target-language counterpart through the translation service.",
    ),
) -> None:
    """Load, merge and export the caption timeline of one video."""

    settings = _bootstrap(config_path)
    total_steps = 3

    try:
        video_id = extract_video_id(video)
        result = _run_with_progress(1, total_steps, "Load captions", lambda: asyncio.run(_load(settings, video_id)))
        timeline = _as_raw_timeline(result) if raw else result.timeline

        if backfill_translations:
            timeline = _run_with_progress(
                2,
                total_steps,
                "Backfill translations",
                lambda: asyncio.run(_backfill(settings, timeline)),
            )
        else:
            typer.echo(f"[2/{total_steps}] Backfill translations skipped", err=True)

        exported = _run_with_progress(
            3,
            total_steps,
            "Export outputs",
            lambda: export_final_outputs(
                timeline,
                output_dir,
                basename=basename or video_id,
                formats=export_format,
            ),
        )
    except (RuntimeError, ValueError) as exc:
        logger.error("Pipeline failed: %s", exc)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(
        json.dumps(
            {
                "status": "ok" if timeline else "empty",
                "video_id": video_id,
                "tracks": {language: asdict(track) for language, track in result.tracks.items()},
                "caption_count": len(result.captions),
                "timeline_count": len(timeline),
                "translated_count": sum(1 for caption in timeline if caption.translation),
                "issues": result.issues,
                "outputs": {key: str(path) for key, path in exported.items()},
            },
            indent=2,
            ensure_ascii=False,
        )
    )


async def _load(settings: Settings, video_id: str) -> CaptionLoadResult:
    resolver = settings.resolver
    return await load_caption_timeline(
        video_id,
        fetch=make_fetch(resolver.timeout_seconds),
        source_language=settings.languages.source,
        target_language=settings.languages.target,
        merger=SentenceMerger(MergeThresholds.from_settings(settings.merge)),
        watch_url_template=resolver.watch_url_template,
        base_url=resolver.base_url,
        max_attempts=resolver.max_attempts,
        retry_base_delay_seconds=resolver.retry_base_delay_seconds,
    )


async def _backfill(settings: Settings, timeline: tuple[MergedCaption, ...]) -> tuple[MergedCaption, ...]:
    translation = settings.translation
    translator = CachedTranslator(
        make_translator(
            source_language=settings.languages.source,
            endpoint=translation.endpoint,
            contact_email=translation.contact_email,
            timeout_seconds=translation.timeout_seconds,
        ),
        TranslationCache(
            JsonFileStore(settings.storage.state_path),
            target_language=settings.languages.target,
            ttl_seconds=translation.cache_ttl_days * SECONDS_PER_DAY,
        ),
    )
    # whole-video lookahead: every untranslated caption is eligible at t=0
    queue = TranslationOnDemandQueue(translator, timeline, lookahead_seconds=float("inf"))
    queue.enqueue_eligible(0.0)
    await queue.drain()
    logger.info(
        "Backfilled %d translations (%d network calls, %d failed)",
        len(queue.state.completed),
        translator.network_calls,
        len(queue.state.failed),
    )
    return apply_translations(timeline, queue.state.completed)


def _as_raw_timeline(result: CaptionLoadResult) -> tuple[MergedCaption, ...]:
    return tuple(
        MergedCaption(
            id=caption.id,
            start_time=caption.start_time,
            end_time=caption.end_time,
            text=caption.text,
            translation=caption.translation,
            is_auto_generated=caption.is_auto_generated,
            member_ids=(caption.id,),
        )
        for caption in result.captions
    )


if __name__ == "__main__":
    app()
