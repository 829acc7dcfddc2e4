"""Org-mode to HTML rendering.

Only the subset of org the notes use is understood:

- Headings (``*`` to ``******``, trailing ``:tags:`` removed) as ``<h1>``..``<h6>``
- Paragraphs; a blank line ends one
- Plain lists, unordered (``-``/``+``) and ordered (``1.``/``1)``), nested by indent
- ``#+BEGIN_QUOTE`` as ``<blockquote>``; every other ``#+BEGIN_<kind>``
  block (SRC, EXAMPLE, ...) as an escaped ``<pre><code>`` block
- Fixed-width ``: `` lines as a code block
- Horizontal rules of five or more dashes
- Inline ``*bold*``, ``/italic/``, ``+strike+``, ``=verbatim=`` and ``~code~``
- Links ``[[target]]`` and ``[[target][description]]``; ``id:`` targets
  resolve under the mount's base path, ``file:`` is stripped and bare
  image targets become ``<img>``

``#+KEYWORD:`` lines, ``#`` comments and ``:DRAWER:`` ... ``:END:`` blocks
are dropped. Tables, footnotes, timestamps, macros, LaTeX and export
options are not interpreted and render as plain paragraph text.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field

from groundwave.config import settings
from groundwave.org.links import annotate_external_links

DEFAULT_BASE_PATH = "/zk"

_HEADING = re.compile(r"^(\*+)\s+(.*?)\s*$")
_BLOCK_BEGIN = re.compile(r"^\s*#\+BEGIN_(\w+)(?:\s+(.*))?$", re.IGNORECASE)
_KEYWORD = re.compile(r"^\s*#\+\w+:")
_COMMENT = re.compile(r"^\s*#(\s|$)")
_DRAWER_BEGIN = re.compile(r"^\s*:([A-Za-z_-]+):\s*$")
_DRAWER_END = re.compile(r"^\s*:END:\s*$", re.IGNORECASE)
_FIXED_WIDTH = re.compile(r"^\s*:(\s|$)")
_LIST_ITEM = re.compile(r"^(\s*)([-+]|\d+[.)])\s+(.*)$")
_RULE = re.compile(r"^\s*-{5,}\s*$")
_HEADING_TAGS = re.compile(r"\s+(:[\w@#%:]+:)\s*$")

_LINK = re.compile(r"\[\[([^\]]+)\](?:\[([^\]]+)\])?\]")
_INLINE_CODE = re.compile(r"(?<![\w=~])([=~])(?=\S)(.+?)(?<=\S)\1(?![\w=~])")
_BOLD = re.compile(r"(?<![\w*])\*(?=\S)(.+?)(?<=\S)\*(?![\w*])")
_ITALIC = re.compile(r"(?<![\w/])/(?=\S)(.+?)(?<=\S)/(?![\w/])")
_STRIKE = re.compile(r"(?<![\w+])\+(?=\S)(.+?)(?<=\S)\+(?![\w+])")
_PLACEHOLDER = re.compile(r"\x00(\d+)\x00")
_IMAGE_EXT = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp")


def normalize_base_path(base_path: str) -> str:
    """Trim whitespace and trailing slashes; empty means the default mount."""
    trimmed = base_path.strip().rstrip("/")
    return trimmed or DEFAULT_BASE_PATH


@dataclass
class _ListFrame:
    indent: int
    ordered: bool
    items: list[list[str]] = field(default_factory=list)


class OrgRenderer:
    """Renders one org document. Not thread-safe; create one per call."""

    def __init__(self, base_path: str = DEFAULT_BASE_PATH) -> None:
        self.base_path = normalize_base_path(base_path)

    # ------------------------------------------------------------------
    # Inline markup
    # ------------------------------------------------------------------

    def _link_html(self, target: str, description: str | None) -> str:
        target = target.strip()
        if target.startswith("id:"):
            note_id = target[3:].strip()
            href = f"{self.base_path}/{note_id}"
            text = description if description is not None else note_id
            return f'<a href="{html.escape(href)}">{self.inline(text)}</a>'

        if target.startswith("file:"):
            target = target[5:]

        if description is None and target.lower().endswith(_IMAGE_EXT):
            return f'<img src="{html.escape(target)}" alt="">'

        text = self.inline(description) if description is not None else html.escape(target)
        return f'<a href="{html.escape(target)}">{text}</a>'

    def inline(self, text: str) -> str:
        """Render inline markup of a single line or paragraph."""
        stash: list[str] = []

        def keep(fragment: str) -> str:
            stash.append(fragment)
            return f"\x00{len(stash) - 1}\x00"

        text = _LINK.sub(lambda m: keep(self._link_html(m.group(1), m.group(2))), text)
        text = _INLINE_CODE.sub(
            lambda m: keep(f'<code class="inline-code">{html.escape(m.group(2))}</code>'), text
        )

        # Placeholders survive escaping because \x00 is never escaped.
        text = html.escape(text, quote=False)
        text = _ITALIC.sub(r"<i>\1</i>", text)
        text = _BOLD.sub(r"<b>\1</b>", text)
        text = _STRIKE.sub(r"<del>\1</del>", text)

        while _PLACEHOLDER.search(text):
            text = _PLACEHOLDER.sub(lambda m: stash[int(m.group(1))], text)
        return text

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    @staticmethod
    def _code_block(source: str) -> str:
        return f'<pre><code class="code-block">{html.escape(source)}</code></pre>'

    def _paragraph(self, lines: list[str]) -> str:
        return "<p>" + self.inline(" ".join(line.strip() for line in lines)) + "</p>"

    def _render_list(self, lines: list[str]) -> str:
        stack: list[_ListFrame] = []
        out: list[str] = []

        def close_frame() -> None:
            frame = stack.pop()
            tag = "ol" if frame.ordered else "ul"
            body = "".join(f"<li>{''.join(item)}</li>" for item in frame.items)
            rendered = f"<{tag}>{body}</{tag}>"
            if stack:
                stack[-1].items[-1].append(rendered)
            else:
                out.append(rendered)

        for line in lines:
            match = _LIST_ITEM.match(line)
            if match is None:
                # Continuation of the current item
                if stack and stack[-1].items:
                    stack[-1].items[-1].append(" " + self.inline(line.strip()))
                continue

            indent = len(match.group(1))
            ordered = match.group(2)[0].isdigit()
            while stack and indent < stack[-1].indent:
                close_frame()
            if not stack or indent > stack[-1].indent:
                stack.append(_ListFrame(indent=indent, ordered=ordered))
            stack[-1].items.append([self.inline(match.group(3))])

        while stack:
            close_frame()
        return "".join(out)

    def render(self, body: str) -> str:
        lines = body.replace("\r\n", "\n").split("\n")
        out: list[str] = []
        paragraph: list[str] = []
        list_lines: list[str] = []
        i = 0

        def flush() -> None:
            if paragraph:
                out.append(self._paragraph(paragraph))
                paragraph.clear()
            if list_lines:
                out.append(self._render_list(list_lines))
                list_lines.clear()

        while i < len(lines):
            line = lines[i]

            block = _BLOCK_BEGIN.match(line)
            if block:
                flush()
                kind = block.group(1).upper()
                end = re.compile(rf"^\s*#\+END_{kind}\s*$", re.IGNORECASE)
                content: list[str] = []
                i += 1
                while i < len(lines) and not end.match(lines[i]):
                    content.append(lines[i])
                    i += 1
                i += 1
                if kind == "QUOTE":
                    inner = OrgRenderer(self.base_path).render("\n".join(content))
                    out.append(f"<blockquote>{inner}</blockquote>")
                else:
                    out.append(self._code_block("\n".join(content)))
                continue

            if _DRAWER_BEGIN.match(line) and any(_DRAWER_END.match(rest) for rest in lines[i + 1 :]):
                flush()
                i += 1
                while i < len(lines) and not _DRAWER_END.match(lines[i]):
                    i += 1
                i += 1
                continue

            if _KEYWORD.match(line) or _COMMENT.match(line):
                flush()
                i += 1
                continue

            if _FIXED_WIDTH.match(line):
                flush()
                fixed: list[str] = []
                while i < len(lines) and _FIXED_WIDTH.match(lines[i]):
                    fixed.append(lines[i].lstrip()[2:])
                    i += 1
                out.append(self._code_block("\n".join(fixed)))
                continue

            heading = _HEADING.match(line)
            if heading:
                flush()
                level = min(len(heading.group(1)), 6)
                title = _HEADING_TAGS.sub("", heading.group(2))
                out.append(f"<h{level}>{self.inline(title)}</h{level}>")
                i += 1
                continue

            if _RULE.match(line):
                flush()
                out.append("<hr>")
                i += 1
                continue

            if not line.strip():
                flush()
                i += 1
                continue

            if _LIST_ITEM.match(line) or (list_lines and line.startswith((" ", "\t"))):
                if paragraph:
                    out.append(self._paragraph(paragraph))
                    paragraph.clear()
                list_lines.append(line)
                i += 1
                continue

            if list_lines:
                out.append(self._render_list(list_lines))
                list_lines.clear()
            paragraph.append(line)
            i += 1

        flush()
        return "\n".join(out)


def parse_to_html(body: str, base_path: str = DEFAULT_BASE_PATH, base_url: str | None = None) -> str:
    """Render an org document to HTML with annotated external links.

    ``id:`` links resolve under ``base_path`` (``/zk``, ``/home`` or
    ``/note`` depending on the serving mount). Whitespace-only input is
    returned unchanged.
    """
    if not body.strip():
        return body

    rendered = OrgRenderer(base_path).render(body)
    if base_url is None:
        base_url = settings.groundwave_base_url
    return annotate_external_links(rendered, base_url)
