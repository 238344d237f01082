from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "CAPTIONLINE_"


class LanguageSettings(BaseModel):
    source: str = "en"
    target: str = "ja"


class ResolverSettings(BaseModel):
    watch_url_template: str = "https://www.youtube.com/watch?v={video_id}"
    base_url: str = "https://www.youtube.com"
    max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    timeout_seconds: int = 20


class MergeSettings(BaseModel):
    forced_merge_gap_seconds: float = 1.0
    fallback_gap_seconds: float = 3.0
    max_merged_chars: int = 200
    short_caption_words: int = 5
    small_group_words: int = 10


class PlaybackSettings(BaseModel):
    sample_interval_seconds: float = 0.1
    debounce_seconds: float = 0.05


class TranslationSettings(BaseModel):
    endpoint: str = "https://api.mymemory.translated.net/get"
    contact_email: str | None = None
    timeout_seconds: int = 15
    lookahead_seconds: float = 10.0
    cache_ttl_days: int = 30


class StorageSettings(BaseModel):
    state_path: Path = Path("data/state.json")


class LoggingSettings(BaseModel):
    level: str = "INFO"


class Settings(BaseModel):
    languages: LanguageSettings = Field(default_factory=LanguageSettings)
    resolver: ResolverSettings = Field(default_factory=ResolverSettings)
    merge: MergeSettings = Field(default_factory=MergeSettings)
    playback: PlaybackSettings = Field(default_factory=PlaybackSettings)
    translation: TranslationSettings = Field(default_factory=TranslationSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML with environment-variable overrides."""

    resolved_path = Path(
        config_path
        or os.getenv(f"{ENV_PREFIX}CONFIG")
        or DEFAULT_CONFIG_PATH
    )
    if resolved_path == DEFAULT_CONFIG_PATH and not resolved_path.exists():
        raw_config: dict[str, Any] = {}
    else:
        raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    data = Settings.model_validate(raw_config).model_dump(mode="python")

    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        suffix = key[len(ENV_PREFIX) :]
        if suffix == "CONFIG":
            continue

        path = [part.lower() for part in suffix.split("__")]
        _apply_override(data, path, raw_value)

    return Settings.model_validate(data)


def _apply_override(data: dict[str, Any], path: list[str], raw_value: str) -> None:
    current: Any = data
    for segment in path[:-1]:
        if not isinstance(current, dict) or segment not in current:
            return
        current = current[segment]

    if not isinstance(current, dict):
        return

    final_key = path[-1]
    if final_key not in current:
        return

    current[final_key] = _coerce_value(raw_value, current[final_key])


def _coerce_value(raw_value: str, existing_value: Any) -> Any:
    if isinstance(existing_value, bool):
        return raw_value.lower() in {"1", "true", "yes", "on"}
    if isinstance(existing_value, int) and not isinstance(existing_value, bool):
        return int(raw_value)
    if isinstance(existing_value, float):
        return float(raw_value)
    if isinstance(existing_value, list | dict):
        return json.loads(raw_value)
    if isinstance(existing_value, Path):
        return Path(raw_value)
    return raw_value
