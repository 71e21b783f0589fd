from src.content_blocker.config.schema import FilterConfig
from src.content_blocker.filters.preview import (
    SpanStatus,
    preview_segments,
    render_preview_markup,
    summarize_segments,
)
from src.content_blocker.filters.tag_filter import filter_segments

T_TAGS = FilterConfig(start_tag="<t>", end_tag="</t>")


def test_spans_marked_removed_or_preserved_by_exemption():
    segments = ["a<t>x</t>b", "c<t>y</t>d"]
    previews = preview_segments(segments, T_TAGS, {1})

    assert [p.exempt for p in previews] == [False, True]
    assert [s.status for s in previews[0].spans] == [SpanStatus.REMOVED]
    assert [s.status for s in previews[1].spans] == [SpanStatus.PRESERVED]
    assert previews[0].removed_count == 1
    assert previews[1].removed_count == 0


def test_preview_agrees_with_filter():
    segments = ["<t>A</t>B<t>C</t>", "x <t>orphan", "<t>1\n2</t>tail"]
    previews = preview_segments(segments, T_TAGS)
    filtered = filter_segments(segments, T_TAGS)

    for preview, expected in zip(previews, filtered):
        text = preview.text
        for span in reversed(preview.spans):
            text = text[: span.start] + text[span.end :]
        assert text == expected


def test_disabled_filter_preserves_everything():
    previews = preview_segments(
        ["<t>a</t>"], T_TAGS.model_copy(update={"enabled": False})
    )
    assert [s.status for s in previews[0].spans] == [SpanStatus.PRESERVED]


def test_empty_tags_produce_no_spans():
    previews = preview_segments(["<t>a</t>"], FilterConfig(start_tag="", end_tag=""))
    assert previews[0].spans == []


def test_markup_wraps_spans_and_escapes_text():
    previews = preview_segments(["1 < 2 <t>gone & done</t> end", "<t>kept</t>"], T_TAGS, {1})

    assert render_preview_markup(previews[0]) == (
        '1 &lt; 2 <span class="content-blocker-blocked">'
        "&lt;t&gt;gone &amp; done&lt;/t&gt;</span> end"
    )
    assert render_preview_markup(previews[1]) == (
        '<span class="content-blocker-highlighted">&lt;t&gt;kept&lt;/t&gt;</span>'
    )


def test_summaries_truncate_long_segments():
    segments = ["short", "x" * 150]
    summaries = summarize_segments(segments, {0}, limit=100)

    assert summaries[0].excerpt == "short"
    assert summaries[0].exempt is True
    assert summaries[0].label == "Prompt #1"
    assert summaries[1].excerpt == "x" * 100 + "..."
    assert summaries[1].exempt is False
