"""External link annotation for rendered note HTML.

Anchors that leave the site open in a new tab, carry ``noopener noreferrer``
and get a visible arrow prefix. Running the annotator twice is a no-op.
"""

from __future__ import annotations

import html
from html.parser import HTMLParser
from urllib.parse import urlsplit

EXTERNAL_PREFIX = "↗"
INTERNAL_PREFIXES = ("/zk", "/note", "/home", "/groundwave")
REQUIRED_REL = ("noopener", "noreferrer")


def merge_rel_values(existing: str) -> str:
    """Add the required rel tokens, keeping existing ones and their case."""
    tokens = existing.split()
    lowered = {t.lower() for t in tokens}
    for token in REQUIRED_REL:
        if token not in lowered:
            tokens.append(token)
            lowered.add(token)
    return " ".join(tokens)


def _parse_absolute(raw: str):
    parsed = urlsplit(raw)
    if not parsed.netloc:
        parsed = urlsplit("https://" + raw)
    if not parsed.netloc:
        return None
    return parsed


def is_base_url_link(href: str, base_url: str) -> bool:
    """True when ``href`` points inside the configured public base URL."""
    trimmed_base = base_url.strip().rstrip("/")
    if not trimmed_base:
        return False

    if href.startswith(trimmed_base):
        return True

    parsed_base = _parse_absolute(trimmed_base)
    parsed_href = _parse_absolute(href)
    if parsed_base is None or parsed_href is None:
        return False

    if parsed_base.hostname is None or parsed_href.hostname is None:
        return False
    if parsed_base.hostname.lower() != parsed_href.hostname.lower():
        return False

    base_path = parsed_base.path.rstrip("/")
    if not base_path:
        return True
    return parsed_href.path == base_path or parsed_href.path.startswith(base_path + "/")


def is_external_link(href: str, base_url: str = "") -> bool:
    href = href.strip()
    if not href or href.startswith("#"):
        return False
    if href.startswith(INTERNAL_PREFIXES):
        return False
    return not is_base_url_link(href, base_url)


def _render_starttag(tag: str, attrs: list[tuple[str, str | None]], closed: bool = False) -> str:
    parts = [tag]
    for key, value in attrs:
        if value is None:
            parts.append(key)
        else:
            parts.append(f'{key}="{html.escape(value, quote=True)}"')
    end = " />" if closed else ">"
    return "<" + " ".join(parts) + end


class _AnchorAnnotator(HTMLParser):
    """Re-emits a fragment token by token, rewriting external anchors."""

    def __init__(self, base_url: str) -> None:
        super().__init__(convert_charrefs=False)
        self._base_url = base_url
        self._out: list[str] = []
        # Index into _out where the open external anchor's content starts
        self._anchor_start: int | None = None

    def result(self) -> str:
        return "".join(self._out)

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag != "a":
            self._out.append(self.get_starttag_text() or _render_starttag(tag, attrs))
            return

        href = next((v for k, v in attrs if k == "href" and v is not None), "")
        if not is_external_link(href, self._base_url):
            self._out.append(self.get_starttag_text() or _render_starttag(tag, attrs))
            self._anchor_start = None
            return

        updated: list[tuple[str, str | None]] = []
        seen_target = seen_rel = False
        for key, value in attrs:
            if key == "target":
                updated.append((key, "_blank"))
                seen_target = True
            elif key == "rel":
                updated.append((key, merge_rel_values(value or "")))
                seen_rel = True
            else:
                updated.append((key, value))
        if not seen_target:
            updated.append(("target", "_blank"))
        if not seen_rel:
            updated.append(("rel", merge_rel_values("")))

        self._out.append(_render_starttag(tag, updated))
        self._anchor_start = len(self._out)

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self._out.append(self.get_starttag_text() or _render_starttag(tag, attrs, closed=True))

    def handle_endtag(self, tag: str) -> None:
        if tag == "a" and self._anchor_start is not None:
            content = self._out[self._anchor_start :]
            if not (content and content[0].startswith(EXTERNAL_PREFIX)):
                self._out.insert(self._anchor_start, EXTERNAL_PREFIX + " ")
            self._anchor_start = None
        self._out.append(f"</{tag}>")

    def handle_data(self, data: str) -> None:
        self._out.append(data)

    def handle_entityref(self, name: str) -> None:
        self._out.append(f"&{name};")

    def handle_charref(self, name: str) -> None:
        self._out.append(f"&#{name};")

    def handle_comment(self, data: str) -> None:
        self._out.append(f"<!--{data}-->")

    def handle_decl(self, decl: str) -> None:
        self._out.append(f"<!{decl}>")

    def handle_pi(self, data: str) -> None:
        self._out.append(f"<?{data}>")

    def unknown_decl(self, data: str) -> None:
        self._out.append(f"<![{data}]>")


def annotate_external_links(fragment: str, base_url: str = "") -> str:
    """Mark external anchors in an HTML fragment.

    Whitespace-only input is returned unchanged.
    """
    if not fragment.strip():
        return fragment

    parser = _AnchorAnnotator(base_url)
    parser.feed(fragment)
    parser.close()
    return parser.result()
