"""
Source extraction heuristics for provider answers.

Two prompt conventions are handled:

* "marked": the model was asked to end with a ``SOURCES:`` section of numbered
  links (Perplexity, Gemini, OpenAI).
* "loose": the model was only asked to "include sources with URLs at the end"
  (OpenRouter, ModelBox), so the section is found case-insensitively and may be
  labelled Source/Sources/References.

Extraction is best effort. It never raises; a malformed answer yields fewer
sources, not an error.
"""

import json
import re
from typing import Any, Iterable

from models.search_result import Source
from utils.logger import get_logger, log_fields

logger = get_logger(__name__)

SOURCES_MARKER = "SOURCES:"

_URL_RE = re.compile(r"https?://[^\s)]+")
_NUMBERED_RE = re.compile(r"\d+\.\s+([^\n]+)")
_BOLD_RE = re.compile(r"\*\*([^*]+)\*\*")
_BRACKET_RE = re.compile(r"\[([^\]]+)\]")
# On the URL's own line markup is more specific than the list number
_LINE_TITLE_PATTERNS = (_BOLD_RE, _BRACKET_RE, _NUMBERED_RE)
_WINDOW_TITLE_PATTERNS = (_NUMBERED_RE, _BOLD_RE, _BRACKET_RE)
_TITLE_WINDOW = 100
_TITLE_STRIP = " \t-–—:()<>*[]"

_LOOSE_SECTION_RE = re.compile(r"sources?:?.*?(?:\n\n|$)", re.IGNORECASE | re.DOTALL)
_LOOSE_HEADING_RE = re.compile(r"\b(?:sources?|references?)(?:\s*:|\s*\n)", re.IGNORECASE)


# ---------- marked (SOURCES:) convention ----------


def clean_marked_content(text: str) -> str:
    """Answer text without its trailing ``SOURCES:`` section."""
    if SOURCES_MARKER in text:
        return text.split(SOURCES_MARKER, 1)[0].strip()
    return text


def extract_marked_sources(text: str) -> list[Source]:
    """URLs listed after ``SOURCES:``, titled from nearby numbered, bold or bracketed text."""
    if SOURCES_MARKER not in text:
        return []

    section = text.split(SOURCES_MARKER, 1)[1].strip()
    sources: list[Source] = []
    for index, match in enumerate(_URL_RE.finditer(section)):
        url = match.group(0)
        position = match.start()
        line_start = section.rfind("\n", 0, position) + 1
        line_end = section.find("\n", position)
        line = section[line_start: line_end if line_end != -1 else len(section)]
        window = section[max(0, position - _TITLE_WINDOW): position + _TITLE_WINDOW]

        title = (
            _match_title(line, url, _LINE_TITLE_PATTERNS)
            or _match_title(window, url, _WINDOW_TITLE_PATTERNS)
            or f"Source {index + 1}"
        )
        sources.append(Source(title=title, url=url))
    return sources


def _match_title(text: str, url: str, patterns) -> str | None:
    for pattern in patterns:
        for match in pattern.finditer(text):
            # "1. Title - https://..." puts the URL inside the numbered line
            title = match.group(1).replace(url, "").strip(_TITLE_STRIP)
            if title and "http" not in title:
                return title
    return None


# ---------- loose (Sources / References paragraph) convention ----------


def clean_loose_content(text: str) -> str:
    """Answer text cut at the first Source(s)/Reference(s) heading."""
    match = _LOOSE_HEADING_RE.search(text)
    if match:
        return text[: match.start()].strip()
    return text.strip()


def extract_loose_sources(text: str) -> list[Source]:
    """URLs from the first paragraph that starts at a ``source``/``sources`` mention."""
    match = _LOOSE_SECTION_RE.search(text)
    if not match:
        return []

    section = match.group(0)
    sources: list[Source] = []
    for url in _URL_RE.findall(section):
        escaped = re.escape(url)
        title_match = re.search(
            rf"([^\n.]+)\s*(?:[-–—]\s*)?{escaped}|{escaped}\s*(?:[-–—]\s*)?([^\n.]+)",
            section,
            re.IGNORECASE,
        )
        title = None
        if title_match:
            raw = title_match.group(1) or title_match.group(2)
            title = raw.strip(_TITLE_STRIP) if raw else None
        sources.append(Source(title=title or None, url=url))
    return sources


# ---------- structured payloads ----------


def sources_from_tool_calls(tool_calls: Iterable[dict[str, Any]] | None) -> list[Source]:
    """Results reported by ``web_search`` tool calls; unparseable arguments are skipped."""
    sources: list[Source] = []
    for call in tool_calls or []:
        function = (call or {}).get("function") or {}
        if function.get("name") != "web_search" or not function.get("arguments"):
            continue
        try:
            args = json.loads(function["arguments"])
        except (TypeError, ValueError) as e:
            logger.warning("Failed to parse web search tool call results", extra=log_fields(error=str(e)))
            continue

        results = args.get("results") if isinstance(args, dict) else None
        if not isinstance(results, list):
            continue
        for item in results:
            if isinstance(item, dict):
                sources.append(
                    Source(title=item.get("title"), url=item.get("url"), snippet=item.get("snippet"))
                )
    return sources


def sources_from_citations(
    citations: Iterable[Any] | None,
    search_results: Iterable[dict[str, Any]] | None = None,
) -> list[Source]:
    """
    Native citation payloads (Perplexity).

    ``search_results`` entries carry titles; bare ``citations`` are URL strings and
    get positional titles.
    """
    sources: list[Source] = []
    for item in search_results or []:
        if isinstance(item, dict) and item.get("url"):
            sources.append(
                Source(title=item.get("title"), url=item["url"], snippet=item.get("snippet"))
            )
    if sources:
        return sources

    for index, item in enumerate(citations or []):
        if isinstance(item, str):
            sources.append(Source(title=f"Source {index + 1}", url=item))
        elif isinstance(item, dict) and item.get("url"):
            sources.append(Source(title=item.get("title") or f"Source {index + 1}", url=item["url"]))
    return sources
