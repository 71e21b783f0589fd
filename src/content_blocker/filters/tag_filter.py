"""Remove tag-delimited spans from prompt segments before they are combined."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from re import Pattern

import structlog

from ..config.schema import FilterConfig

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TaggedSpan:
    start: int
    end: int
    text: str


def find_tagged_spans(text: str, pattern: Pattern[str] | None) -> list[TaggedSpan]:
    """Return every fully delimited span, leftmost first and non-overlapping."""
    if pattern is None or not text:
        return []
    return [
        TaggedSpan(start=m.start(), end=m.end(), text=m.group(0))
        for m in pattern.finditer(text)
    ]


def strip_tagged_spans(text: str, pattern: Pattern[str] | None) -> str:
    if pattern is None or not text:
        return text
    return pattern.sub("", text)


def filter_segments(
    segments: Sequence[str],
    config: FilterConfig,
    exemptions: Iterable[int] = (),
) -> list[str]:
    """Strip tagged spans from every segment whose index is not exempt.

    The result always has the same length and ordering as ``segments``.
    Nothing is raised for odd tags: an empty tag, or a start tag without a
    matching end tag, simply leaves the text as it was.
    """
    # Snapshot the mutable inputs once so a concurrent edit cannot tear the scan.
    exempt = frozenset(exemptions)
    if not config.enabled:
        return list(segments)

    pattern = config.compiled_pattern
    if pattern is None:
        return list(segments)

    filtered: list[str] = []
    stripped_count = 0
    for index, segment in enumerate(segments):
        if index in exempt:
            filtered.append(segment)
            continue
        result = strip_tagged_spans(segment, pattern)
        if result != segment:
            stripped_count += 1
        filtered.append(result)

    if stripped_count:
        logger.debug(
            "Stripped tagged content",
            segments=len(segments),
            modified=stripped_count,
            exempt=sorted(exempt),
        )
    return filtered
