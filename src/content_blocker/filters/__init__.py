from .exemptions import ExemptionSet
from .preview import (
    SegmentPreview,
    SegmentSummary,
    SpanAnnotation,
    SpanStatus,
    preview_segments,
    render_preview_markup,
    summarize_segments,
)
from .tag_filter import (
    TaggedSpan,
    filter_segments,
    find_tagged_spans,
    strip_tagged_spans,
)

__all__ = [
    "ExemptionSet",
    "SegmentPreview",
    "SegmentSummary",
    "SpanAnnotation",
    "SpanStatus",
    "TaggedSpan",
    "filter_segments",
    "find_tagged_spans",
    "preview_segments",
    "render_preview_markup",
    "strip_tagged_spans",
    "summarize_segments",
]
