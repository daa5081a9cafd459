"""Crossover — exchange one sub-block between two parents.

The child starts as a copy of the primary parent and takes exactly one
block from the secondary parent: the contents of its ``<style>``
element, the contents of its ``<script>`` element, one top-level
element, or the separate ``css``/``js`` field. Only blocks present in
both parents are candidates; with none available the primary parent's
content comes back unchanged.
"""

from __future__ import annotations

import random
import re
from html.parser import HTMLParser

from artcade.types import PatternContent

_STYLE_RE = re.compile(r"(<style[^>]*>)(.*?)(</style>)", re.IGNORECASE | re.DOTALL)
_SCRIPT_RE = re.compile(r"(<script[^>]*>)(.*?)(</script>)", re.IGNORECASE | re.DOTALL)
_VOID_ELEMENTS = {
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "param", "source", "track", "wbr",
}
_BLOCK_TAGS = {"style", "script"}


class _TopLevelParser(HTMLParser):
    """Records (start, end) offsets of top-level elements other than style/script."""

    def __init__(self, html: str) -> None:
        super().__init__(convert_charrefs=False)
        self._line_offsets = [0] + [i + 1 for i, ch in enumerate(html) if ch == "\n"]
        self._html = html
        self._depth = 0
        self._start: int | None = None
        self._tag = ""
        self.spans: list[tuple[int, int]] = []

    def _offset(self) -> int:
        line, col = self.getpos()
        return self._line_offsets[line - 1] + col

    def handle_starttag(self, tag: str, attrs) -> None:
        if self._depth == 0:
            start = self._offset()
            if tag in _VOID_ELEMENTS:
                if tag not in _BLOCK_TAGS:
                    self.spans.append((start, start + len(self.get_starttag_text() or "")))
                return
            self._start, self._tag = start, tag
        if tag not in _VOID_ELEMENTS:
            self._depth += 1

    def handle_startendtag(self, tag: str, attrs) -> None:
        if self._depth == 0:
            start = self._offset()
            self.spans.append((start, start + len(self.get_starttag_text() or "")))

    def handle_endtag(self, tag: str) -> None:
        if tag in _VOID_ELEMENTS or self._depth == 0:
            return
        self._depth -= 1
        if self._depth == 0 and self._start is not None:
            end = self._html.find(">", self._offset()) + 1
            if self._tag not in _BLOCK_TAGS and end > 0:
                self.spans.append((self._start, end))
            self._start = None


def top_level_elements(html: str) -> list[tuple[int, int]]:
    parser = _TopLevelParser(html)
    parser.feed(html)
    parser.close()
    return parser.spans


def _swap_inner(pattern: re.Pattern, target: str, donor: str) -> str:
    donor_match = pattern.search(donor)
    target_match = pattern.search(target)
    return (
        target[: target_match.start(2)]
        + donor_match.group(2)
        + target[target_match.end(2):]
    )


def available_blocks(a: PatternContent, b: PatternContent) -> list[str]:
    blocks = []
    if _STYLE_RE.search(a.html) and _STYLE_RE.search(b.html):
        blocks.append("style")
    if _SCRIPT_RE.search(a.html) and _SCRIPT_RE.search(b.html):
        blocks.append("script")
    if top_level_elements(a.html) and top_level_elements(b.html):
        blocks.append("element")
    if a.css and b.css:
        blocks.append("css")
    if a.js and b.js:
        blocks.append("js")
    return blocks


def crossover(
    primary: PatternContent,
    secondary: PatternContent,
    rng: random.Random,
) -> PatternContent:
    """Child of ``primary`` carrying one block from ``secondary``."""
    blocks = available_blocks(primary, secondary)
    if not blocks:
        return primary
    block = rng.choice(blocks)

    if block == "style":
        return primary.model_copy(update={"html": _swap_inner(_STYLE_RE, primary.html, secondary.html)})
    if block == "script":
        return primary.model_copy(update={"html": _swap_inner(_SCRIPT_RE, primary.html, secondary.html)})
    if block == "css":
        return primary.model_copy(update={"css": secondary.css})
    if block == "js":
        return primary.model_copy(update={"js": secondary.js})

    start, end = rng.choice(top_level_elements(primary.html))
    d_start, d_end = rng.choice(top_level_elements(secondary.html))
    html = primary.html[:start] + secondary.html[d_start:d_end] + primary.html[end:]
    return primary.model_copy(update={"html": html})
