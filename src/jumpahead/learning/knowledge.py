# SPDX-FileCopyrightText: 2025 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

import asyncio
import json
from dataclasses import dataclass, field
from typing import Final

import httpx
from flask import current_app

SOURCE_SEPARATOR: Final = "\n\n--- SOURCE SEPARATOR ---\n\n"
FAILED_PREFIX: Final = "[Failed to load source:"
DEFAULT_TIMEOUT: Final = 10.0

_ACCEPT_HEADER: Final = "text/plain, text/html, application/json, */*"


@dataclass(frozen=True)
class KnowledgeResult:
    text: str
    loaded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def _placeholder(url: str, reason: str) -> str:
    return f"{FAILED_PREFIX} {url} ({reason})]"


async def _fetch_one(client: httpx.AsyncClient, url: str) -> tuple[str, bool]:
    """ Fetch a single knowledge source.  Returns its text and whether it loaded. """
    try:
        response = await client.get(url, headers={'Accept': _ACCEPT_HEADER})
    except httpx.TimeoutException:
        current_app.logger.warning(f"Timed out fetching knowledge source: {url}")
        return _placeholder(url, "timed out"), False
    except httpx.HTTPError as e:
        current_app.logger.warning(f"Error fetching knowledge source: {url} ({e})")
        return _placeholder(url, type(e).__name__), False

    if not response.is_success:
        current_app.logger.warning(f"Failed to fetch knowledge source ({response.status_code}): {url}")
        return _placeholder(url, str(response.status_code)), False

    content_type = response.headers.get('content-type', '')
    if 'application/json' in content_type:
        try:
            return json.dumps(response.json(), indent=2), True
        except ValueError:
            current_app.logger.warning(f"Invalid JSON in knowledge source: {url}")
            return _placeholder(url, "invalid JSON"), False

    return response.text, True


async def fetch_knowledge_sources(urls: list[str], *, timeout: float = DEFAULT_TIMEOUT, transport: httpx.AsyncBaseTransport | None = None) -> KnowledgeResult:
    """ Fetch all knowledge sources concurrently.

    Sources that fail (timeout, network error, non-2xx status) are left out of
    the combined text and listed in the result's `failed` list; a failure
    never aborts the rest of the batch.
    """
    if not urls:
        return KnowledgeResult(text="")

    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=transport) as client:
        results = await asyncio.gather(*(_fetch_one(client, url) for url in urls))

    loaded = []
    failed = []
    valid_texts = []
    for url, (text, ok) in zip(urls, results, strict=True):
        if not ok:
            failed.append(url)
        else:
            loaded.append(url)
            if text:
                valid_texts.append(text)

    return KnowledgeResult(
        text=SOURCE_SEPARATOR.join(valid_texts),
        loaded=loaded,
        failed=failed,
    )
