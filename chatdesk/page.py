from __future__ import annotations

import asyncio
import html
import logging
import re
from typing import Optional

import httpx

from .errors import PageAnalysisError, ValidationError
from .generator import PageContext

logger = logging.getLogger(__name__)

_SCRIPT_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")


def validate_url(url: str) -> str:
    """Return the trimmed URL, or raise ValidationError if it is not absolute http(s)."""
    candidate = (url or "").strip()
    if not candidate:
        raise ValidationError("Enter a URL to analyse")
    try:
        parsed = httpx.URL(candidate)
    except httpx.InvalidURL as e:
        raise ValidationError(f"Malformed URL: {candidate}", details=str(e)) from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ValidationError(f"Malformed URL: {candidate}")
    return candidate


def extract_text(markup: str) -> str:
    text = _SCRIPT_RE.sub(" ", markup)
    text = _TAG_RE.sub(" ", text)
    return _SPACE_RE.sub(" ", html.unescape(text)).strip()


class PageAnalyzer:
    async def analyze(self, url: str) -> PageContext:
        raise NotImplementedError


class SimulatedPageAnalyzer(PageAnalyzer):
    def __init__(self, delay: float = 2.0) -> None:
        self._delay = delay

    async def analyze(self, url: str) -> PageContext:
        url = validate_url(url)
        if self._delay > 0:
            await asyncio.sleep(self._delay)
        content = (
            f"Web page content: {url}\n\n"
            "This is a simulated page analysis. A real analysis would provide:\n"
            "- Extracted text content\n"
            "- Page metadata\n"
            "- Structured information\n"
            "- Key data for analysis"
        )
        return PageContext(content=content, url=url)


class HttpPageAnalyzer(PageAnalyzer):
    """Fetches the page with httpx and keeps its visible text."""

    def __init__(
        self,
        timeout: float = 10.0,
        max_chars: int = 20000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = timeout
        self._max_chars = max_chars
        self._transport = transport

    async def analyze(self, url: str) -> PageContext:
        url = validate_url(url)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, follow_redirects=True, transport=self._transport
            ) as client:
                resp = await client.get(url)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Page fetch failed for %s: %s", url, e)
            raise PageAnalysisError(f"Failed to fetch {url}: {e}") from e

        text = extract_text(resp.text)
        if not text:
            raise PageAnalysisError(f"No readable text at {url}")
        return PageContext(content=text[: self._max_chars], url=url)
