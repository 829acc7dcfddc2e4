"""Tests for org-mode directives, rendering and link annotation."""

from datetime import UTC, datetime

import pytest

from groundwave.errors import OrgParseError, ValidationError
from groundwave.org import (
    UNTITLED,
    annotate_external_links,
    build_preview,
    extract_date_directive,
    extract_id,
    extract_links,
    extract_title,
    is_external_link,
    is_home_access,
    is_public_access,
    merge_rel_values,
    normalize_base_path,
    parse_to_html,
    validate_uuid,
)

NOTE = """:PROPERTIES:
:ID:       0f1e2d3c-4b5a-6978-8695-a4b3c2d1e0f9
:END:
#+TITLE: Antenna notes
#+DATE: <2024-03-01 Fri>
#+access: home

First paragraph links [[id:11111111-2222][the tuner]].

Second paragraph.

Third paragraph.
"""


class TestDirectives:
    """Tests for property and directive extraction."""

    def test_extract_id(self) -> None:
        assert extract_id(NOTE) == "0f1e2d3c-4b5a-6978-8695-a4b3c2d1e0f9"

    def test_extract_id_missing(self) -> None:
        with pytest.raises(OrgParseError):
            extract_id("#+TITLE: nothing here")

    def test_title_prefers_directive(self) -> None:
        assert extract_title(NOTE) == "Antenna notes"

    def test_title_falls_back_to_heading(self) -> None:
        assert extract_title("intro\n** Second level\n* First") == "Second level"

    def test_title_placeholder(self) -> None:
        assert extract_title("just text") == UNTITLED

    def test_access_flags(self) -> None:
        assert is_home_access(NOTE)
        assert not is_public_access(NOTE)
        assert is_public_access("#+ACCESS: Public\n")
        assert not is_public_access("#+access: publicly\n")

    def test_date_directive(self) -> None:
        assert extract_date_directive(NOTE) == datetime(2024, 3, 1, tzinfo=UTC)
        assert extract_date_directive("#+DATE: 2024-13-40") is None
        assert extract_date_directive("no date") is None

    def test_extract_links_dedupes_in_order(self) -> None:
        body = "[[id:bbbb-cccc][B]] then [[id:aaaa-dddd]] and [[id:bbbb-cccc]]"
        assert extract_links(body) == ["bbbb-cccc", "aaaa-dddd"]


class TestValidateUUID:
    """Tests for note id validation."""

    def test_accepts_uuid(self) -> None:
        validate_uuid("0f1e2d3c-4b5a-6978-8695-a4b3c2d1e0f9")

    @pytest.mark.parametrize(
        "value",
        ["abc", "a" * 101, "ABCDEF123456", "0f1e2d3c/../etc", "0f1e2d3c 4b5a"],
    )
    def test_rejects(self, value: str) -> None:
        with pytest.raises(ValidationError):
            validate_uuid(value)


class TestBuildPreview:
    """Tests for list-view previews."""

    def test_skips_drawer_and_title(self) -> None:
        preview, more = build_preview(NOTE)
        assert preview.startswith("#+DATE:")
        assert "PROPERTIES" not in preview
        assert "Antenna notes" not in preview
        assert more is True

    def test_two_paragraphs(self) -> None:
        preview, more = build_preview("one\n\ntwo")
        assert preview == "one\n\ntwo"
        assert more is False

    def test_truncates_long_text(self) -> None:
        preview, more = build_preview("x" * 500)
        assert len(preview) == 480
        assert more is True

    def test_empty(self) -> None:
        assert build_preview(":PROPERTIES:\n:END:\n") == ("", False)


class TestRender:
    """Tests for org to HTML rendering."""

    def test_heading_and_inline_markup(self) -> None:
        html = parse_to_html("* Heading :tag:\nSome *bold* and /italic/ text.", base_url="")
        assert html == "<h1>Heading</h1>\n<p>Some <b>bold</b> and <i>italic</i> text.</p>"

    def test_id_links_follow_base_path(self) -> None:
        body = "See [[id:abcdef1234][a note]]."
        assert '<a href="/zk/abcdef1234">a note</a>' in parse_to_html(body, base_url="")
        assert '<a href="/note/abcdef1234">' in parse_to_html(body, "/note/", base_url="")

    def test_escapes_text(self) -> None:
        assert parse_to_html("a < b & c", base_url="") == "<p>a &lt; b &amp; c</p>"

    def test_drops_keywords_and_drawers(self) -> None:
        html = parse_to_html(":PROPERTIES:\n:ID: abc\n:END:\n#+TITLE: T\n# comment\nText", base_url="")
        assert html == "<p>Text</p>"

    def test_nested_list(self) -> None:
        html = parse_to_html("- one\n- two\n  - nested", base_url="")
        assert html == "<ul><li>one</li><li>two<ul><li>nested</li></ul></li></ul>"

    def test_ordered_list(self) -> None:
        assert parse_to_html("1. a\n2. b", base_url="") == "<ol><li>a</li><li>b</li></ol>"

    def test_source_block_is_escaped(self) -> None:
        html = parse_to_html("#+BEGIN_SRC python\nx = 1 < 2\n#+END_SRC", base_url="")
        assert html == '<pre><code class="code-block">x = 1 &lt; 2</code></pre>'

    def test_quote_block(self) -> None:
        html = parse_to_html("#+BEGIN_QUOTE\nhi\n#+END_QUOTE", base_url="")
        assert html == "<blockquote><p>hi</p></blockquote>"

    def test_fixed_width(self) -> None:
        assert parse_to_html(": code", base_url="") == '<pre><code class="code-block">code</code></pre>'

    def test_inline_code_keeps_markup_literal(self) -> None:
        html = parse_to_html("Use =foo*bar*= here", base_url="")
        assert html == '<p>Use <code class="inline-code">foo*bar*</code> here</p>'

    def test_image_link(self) -> None:
        assert parse_to_html("[[file:pic.png]]", base_url="") == '<p><img src="pic.png" alt=""></p>'

    def test_rule_and_strike(self) -> None:
        html = parse_to_html("a +gone+ b\n-----", base_url="")
        assert html == "<p>a <del>gone</del> b</p>\n<hr>"

    def test_tables_render_as_text(self) -> None:
        html = parse_to_html("| a | b |\n| c | d |", base_url="")
        assert html == "<p>| a | b | | c | d |</p>"

    def test_whitespace_only(self) -> None:
        assert parse_to_html("  \n ") == "  \n "

    def test_normalize_base_path(self) -> None:
        assert normalize_base_path(" /home/ ") == "/home"
        assert normalize_base_path("") == "/zk"


class TestExternalLinks:
    """Tests for external anchor annotation."""

    def test_is_external(self) -> None:
        assert is_external_link("https://example.com")
        assert not is_external_link("#top")
        assert not is_external_link("/zk/abc")
        assert not is_external_link("")

    def test_base_url_links_are_internal(self) -> None:
        base = "https://me.example/groundwave"
        assert not is_external_link("https://me.example/groundwave/zk", base)
        assert not is_external_link("https://ME.example/groundwave/x", base)
        assert is_external_link("https://me.example/other", base)
        assert is_external_link("https://evil.example/groundwave", base)

    def test_merge_rel_values(self) -> None:
        assert merge_rel_values("") == "noopener noreferrer"
        assert merge_rel_values("NoOpener nofollow") == "NoOpener nofollow noreferrer"

    def test_annotates_external_anchor(self) -> None:
        out = annotate_external_links('<p><a href="https://example.com">Ex</a></p>')
        assert out == (
            '<p><a href="https://example.com" target="_blank" '
            'rel="noopener noreferrer">↗ Ex</a></p>'
        )

    def test_rewrites_existing_target_and_rel(self) -> None:
        out = annotate_external_links('<a href="https://x.org" target="_self" rel="me">x</a>')
        assert 'target="_blank"' in out
        assert 'rel="me noopener noreferrer"' in out

    def test_internal_anchor_untouched(self) -> None:
        fragment = '<a href="/zk/abc">note</a>'
        assert annotate_external_links(fragment) == fragment

    def test_idempotent(self) -> None:
        once = annotate_external_links('<a href="https://example.com">Ex &amp; co</a>')
        assert annotate_external_links(once) == once
        assert "Ex &amp; co" in once
