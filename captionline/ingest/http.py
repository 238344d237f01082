from __future__ import annotations

import asyncio
from http.client import HTTPException
from typing import Awaitable, Callable
from urllib import request

DEFAULT_TIMEOUT_SECONDS = 20
DEFAULT_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) captionline/0.1"

Fetch = Callable[[str], Awaitable[str]]

# everything a urllib fetch raises for transport trouble; a truncated body is an HTTPException
FETCH_ERRORS = (OSError, HTTPException)


async def fetch_text(url: str, *, timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS) -> str:
    """Fetch a URL body as text without blocking the event loop.

    Non-2xx responses surface as ``urllib.error.HTTPError``; connection problems as
    ``URLError``/``TimeoutError`` and truncated bodies as ``http.client.IncompleteRead``.
    Callers catch ``FETCH_ERRORS``.
    """

    return await asyncio.to_thread(_request_text, url, timeout_seconds)


def make_fetch(timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS) -> Fetch:
    async def _fetch(url: str) -> str:
        return await fetch_text(url, timeout_seconds=timeout_seconds)

    return _fetch


def _request_text(url: str, timeout_seconds: int) -> str:
    req = request.Request(
        url,
        method="GET",
        headers={
            "User-Agent": DEFAULT_USER_AGENT,
            "Accept-Language": "en-US,en;q=0.8",
        },
    )
    with request.urlopen(req, timeout=timeout_seconds) as response:
        charset = response.headers.get_content_charset() or "utf-8"
        return response.read().decode(charset, errors="replace")
