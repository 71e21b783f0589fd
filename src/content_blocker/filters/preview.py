"""Read-only annotation of what the tag filter would remove.

The preview uses the same compiled pattern as :func:`filter_segments`, so a
span shown as ``removed`` here is exactly the span the filter deletes.
"""

from __future__ import annotations

import html
from collections.abc import Iterable, Sequence
from enum import Enum

from pydantic import BaseModel

from ..config.schema import FilterConfig
from .tag_filter import find_tagged_spans

BLOCKED_CSS_CLASS = "content-blocker-blocked"
PRESERVED_CSS_CLASS = "content-blocker-highlighted"
DEFAULT_SUMMARY_LIMIT = 100


class SpanStatus(str, Enum):
    REMOVED = "removed"
    PRESERVED = "preserved"


class SpanAnnotation(BaseModel):
    start: int
    end: int
    text: str
    status: SpanStatus


class SegmentPreview(BaseModel):
    index: int
    label: str
    exempt: bool
    text: str
    spans: list[SpanAnnotation]

    @property
    def removed_count(self) -> int:
        return sum(1 for span in self.spans if span.status is SpanStatus.REMOVED)


class SegmentSummary(BaseModel):
    index: int
    label: str
    exempt: bool
    excerpt: str


def _label(index: int) -> str:
    return f"Prompt #{index + 1}"


def preview_segments(
    segments: Sequence[str],
    config: FilterConfig,
    exemptions: Iterable[int] = (),
) -> list[SegmentPreview]:
    """Annotate every tagged span in ``segments`` as removed or preserved.

    Spans in exempt segments are preserved. When the filter is disabled nothing
    is removed, so every span is reported as preserved.
    """
    exempt = frozenset(exemptions)
    pattern = config.compiled_pattern
    previews: list[SegmentPreview] = []
    for index, segment in enumerate(segments):
        is_exempt = index in exempt
        status = (
            SpanStatus.PRESERVED
            if is_exempt or not config.enabled
            else SpanStatus.REMOVED
        )
        spans = [
            SpanAnnotation(start=s.start, end=s.end, text=s.text, status=status)
            for s in find_tagged_spans(segment, pattern)
        ]
        previews.append(
            SegmentPreview(
                index=index,
                label=_label(index),
                exempt=is_exempt,
                text=segment,
                spans=spans,
            )
        )
    return previews


def render_preview_markup(preview: SegmentPreview) -> str:
    """Render one segment as escaped HTML with each tagged span wrapped."""
    parts: list[str] = []
    cursor = 0
    for span in preview.spans:
        parts.append(html.escape(preview.text[cursor : span.start]))
        css_class = (
            BLOCKED_CSS_CLASS
            if span.status is SpanStatus.REMOVED
            else PRESERVED_CSS_CLASS
        )
        parts.append(f'<span class="{css_class}">{html.escape(span.text)}</span>')
        cursor = span.end
    parts.append(html.escape(preview.text[cursor:]))
    return "".join(parts)


def summarize_segments(
    segments: Sequence[str],
    exemptions: Iterable[int] = (),
    limit: int = DEFAULT_SUMMARY_LIMIT,
) -> list[SegmentSummary]:
    """Short per-segment listing used next to the exemption checkboxes."""
    exempt = frozenset(exemptions)
    return [
        SegmentSummary(
            index=index,
            label=_label(index),
            exempt=index in exempt,
            excerpt=segment if len(segment) <= limit else segment[:limit] + "...",
        )
        for index, segment in enumerate(segments)
    ]
