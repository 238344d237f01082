from __future__ import annotations

import asyncio
import json
import logging
from http.client import HTTPException
from typing import Any, Awaitable, Callable
from urllib import parse, request
from urllib.error import HTTPError, URLError

DEFAULT_ENDPOINT = "https://api.mymemory.translated.net/get"
DEFAULT_TIMEOUT_SECONDS = 15
DEFAULT_SOURCE_LANGUAGE = "en"

logger = logging.getLogger(__name__)

Translate = Callable[[str, str], Awaitable[str | None]]


class TranslationFailure(Exception):
    """The translation service rejected or could not answer a request."""


async def translate_text(
    text: str,
    target_language: str,
    *,
    source_language: str = DEFAULT_SOURCE_LANGUAGE,
    endpoint: str = DEFAULT_ENDPOINT,
    contact_email: str | None = None,
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
) -> str | None:
    """Translate one caption through the MyMemory API. Any failure yields ``None``."""

    if not text.strip():
        return None

    try:
        translation = await asyncio.to_thread(
            _request_translation,
            endpoint=endpoint,
            text=_prepare_query_text(text),
            langpair=f"{source_language}|{target_language}",
            contact_email=contact_email,
            timeout_seconds=timeout_seconds,
        )
    except (TranslationFailure, HTTPError, URLError, HTTPException, TimeoutError, OSError, json.JSONDecodeError) as exc:
        logger.warning("Translation failed for %r: %s", text[:60], exc)
        return None

    return translation or None


def make_translator(
    *,
    source_language: str = DEFAULT_SOURCE_LANGUAGE,
    endpoint: str = DEFAULT_ENDPOINT,
    contact_email: str | None = None,
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
) -> Translate:
    async def _translate(text: str, target_language: str) -> str | None:
        return await translate_text(
            text,
            target_language,
            source_language=source_language,
            endpoint=endpoint,
            contact_email=contact_email,
            timeout_seconds=timeout_seconds,
        )

    return _translate


def _prepare_query_text(text: str) -> str:
    # the service mangles straight apostrophes in contractions
    return text.replace("'", "`")


def _request_translation(
    *,
    endpoint: str,
    text: str,
    langpair: str,
    contact_email: str | None,
    timeout_seconds: int,
) -> str:
    params = {"q": text, "langpair": langpair}
    if contact_email:
        params["de"] = contact_email

    req = request.Request(f"{endpoint}?{parse.urlencode(params)}", method="GET")
    with request.urlopen(req, timeout=timeout_seconds) as response:
        payload = json.loads(response.read().decode("utf-8"))

    return _extract_translation(payload)


def _extract_translation(payload: Any) -> str:
    if not isinstance(payload, dict):
        raise TranslationFailure("Translation response is not a JSON object.")

    status = payload.get("responseStatus")
    if str(status) != "200":
        raise TranslationFailure(str(payload.get("responseDetails") or f"responseStatus={status}"))

    data = payload.get("responseData") or {}
    translated = data.get("translatedText") if isinstance(data, dict) else None
    if not isinstance(translated, str):
        raise TranslationFailure("Translation response missing responseData.translatedText.")
    return translated.strip()
