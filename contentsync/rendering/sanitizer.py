"""Allowlist HTML sanitizer for rendered Markdown."""

from __future__ import annotations

import html
import re
from html.parser import HTMLParser
from urllib.parse import urlparse as _urlparse

from contentsync.content.markdown import slugify

_SAFE_ID_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9:_-]*$")
_TEXT_ALIGN_RE = re.compile(r"^text-align:\s*(left|right|center);?$")
_VOID_TAGS: frozenset[str] = frozenset({"br", "hr", "img", "input"})
_OTHER_VOID_TAGS: frozenset[str] = frozenset(
    {"area", "base", "col", "link", "meta", "param", "source", "track", "wbr"}
)
# Elements dropped together with everything inside them
_DROP_CONTENT_TAGS: frozenset[str] = frozenset({"script", "style", "iframe", "object", "embed"})
_ALLOWED_TAGS: frozenset[str] = frozenset(
    {
        "a",
        "blockquote",
        "br",
        "code",
        "dd",
        "del",
        "div",
        "dl",
        "dt",
        "em",
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        "hr",
        "img",
        "input",
        "label",
        "li",
        "ol",
        "p",
        "pre",
        "s",
        "span",
        "strong",
        "sub",
        "sup",
        "table",
        "tbody",
        "td",
        "th",
        "thead",
        "tr",
        "ul",
    }
)
_GLOBAL_ALLOWED_ATTRS: frozenset[str] = frozenset({"class", "id"})
_TAG_ALLOWED_ATTRS: dict[str, frozenset[str]] = {
    "a": frozenset({"href", "title"}),
    "img": frozenset({"alt", "src", "title"}),
    "input": frozenset({"type", "checked", "disabled"}),
    "ol": frozenset({"start"}),
    "td": frozenset({"colspan", "rowspan", "style"}),
    "th": frozenset({"colspan", "rowspan", "style"}),
}
_BOOLEAN_ATTRS: frozenset[str] = frozenset({"checked", "disabled"})


def _is_safe_url(url_value: str, *, allow_non_http: bool) -> bool:
    """Validate URL values for href/src attributes."""
    value = url_value.strip()
    if not value:
        return False
    if value.startswith(("#", "/", "./", "../")):
        return not value.startswith("//")

    parsed = _urlparse(value)
    if not parsed.scheme:
        return True

    allowed_schemes = {"http", "https"}
    if allow_non_http:
        allowed_schemes.add("mailto")
    return parsed.scheme.lower() in allowed_schemes


class _HtmlSanitizer(HTMLParser):
    """Allowlist-based HTML sanitizer for pandoc output."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=False)
        self._parts: list[str] = []
        self._open_tags: list[str | None] = []
        self._drop_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        tag_name = tag.lower()
        if tag_name in _DROP_CONTENT_TAGS:
            self._drop_depth += 1
            return
        if self._drop_depth:
            return
        if tag_name not in _ALLOWED_TAGS:
            if tag_name not in _OTHER_VOID_TAGS:
                self._open_tags.append(None)
            return

        self._parts.append(f"<{tag_name}{self._render_attrs(tag_name, attrs)}>")
        if tag_name not in _VOID_TAGS:
            self._open_tags.append(tag_name)

    def handle_endtag(self, tag: str) -> None:
        tag_name = tag.lower()
        if tag_name in _DROP_CONTENT_TAGS:
            self._drop_depth = max(0, self._drop_depth - 1)
            return
        if self._drop_depth or tag_name in _VOID_TAGS or not self._open_tags:
            return
        open_tag = self._open_tags.pop()
        if open_tag == tag_name:
            self._parts.append(f"</{tag_name}>")

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        tag_name = tag.lower()
        if self._drop_depth or tag_name not in _ALLOWED_TAGS:
            return
        self._parts.append(f"<{tag_name}{self._render_attrs(tag_name, attrs)} />")

    def handle_data(self, data: str) -> None:
        if not self._drop_depth:
            self._parts.append(html.escape(data))

    def handle_entityref(self, name: str) -> None:
        if not self._drop_depth:
            self._parts.append(f"&{name};")

    def handle_charref(self, name: str) -> None:
        if not self._drop_depth:
            self._parts.append(f"&#{name};")

    def get_sanitized_html(self) -> str:
        # Close anything the input left open so the fragment stays well-formed
        closing = [f"</{tag}>" for tag in reversed(self._open_tags) if tag is not None]
        return "".join(self._parts + closing)

    def _render_attrs(self, tag_name: str, attrs: list[tuple[str, str | None]]) -> str:
        parts: list[str] = []
        for name, value in self._sanitize_attrs(tag_name, attrs):
            if name in _BOOLEAN_ATTRS:
                parts.append(f' {name}=""')
            else:
                parts.append(f' {name}="{html.escape(value, quote=True)}"')
        return "".join(parts)

    def _sanitize_attrs(
        self,
        tag_name: str,
        attrs: list[tuple[str, str | None]],
    ) -> list[tuple[str, str]]:
        allowed_attrs = _GLOBAL_ALLOWED_ATTRS | _TAG_ALLOWED_ATTRS.get(tag_name, frozenset())
        sanitized: list[tuple[str, str]] = []

        for raw_name, raw_value in attrs:
            name = raw_name.lower()
            if name not in allowed_attrs:
                continue
            if raw_value is None:
                if name in _BOOLEAN_ATTRS:
                    sanitized.append((name, ""))
                continue

            value = raw_value.strip()
            if name == "href" and not _is_safe_url(value, allow_non_http=True):
                continue
            if name == "src" and not _is_safe_url(value, allow_non_http=False):
                continue
            if name == "id" and not _SAFE_ID_RE.fullmatch(value):
                continue
            if name == "style" and not _TEXT_ALIGN_RE.fullmatch(value):
                continue
            if name == "type" and value.lower() != "checkbox":
                continue
            if name in {"colspan", "rowspan", "start"} and not value.isdigit():
                continue

            sanitized.append((name, value))
        return sanitized


def sanitize_html(rendered_html: str) -> str:
    """Sanitize rendered HTML so it can be embedded in a page as-is."""
    sanitizer = _HtmlSanitizer()
    sanitizer.feed(rendered_html)
    sanitizer.close()
    return sanitizer.get_sanitized_html()


_HEADING_RE = re.compile(r"<(h[1-6])([^>]*)>(.*?)</\1>", re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")


def add_heading_anchors(rendered_html: str) -> str:
    """Give headings without an id the same anchor id the table of contents uses."""

    def _add_id(match: re.Match[str]) -> str:
        tag, attrs, inner = match.group(1), match.group(2), match.group(3)
        if 'id="' in attrs:
            return match.group(0)
        anchor = slugify(html.unescape(_TAG_RE.sub("", inner)))
        if not anchor or not _SAFE_ID_RE.fullmatch(anchor):
            return match.group(0)
        return f'<{tag}{attrs} id="{anchor}">{inner}</{tag}>'

    return _HEADING_RE.sub(_add_id, rendered_html)
