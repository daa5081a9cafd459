"""Structural feature extraction for pattern HTML.

A cheap pre-filter that runs before the embedding path: counts
elements, style blocks and scripts, and flags a handful of behaviours
(animations, user input, game logic). Pure and deterministic, no
network access.
"""

from __future__ import annotations

import re
from html.parser import HTMLParser

from artcade.types import PatternFeatures

_VOID_ELEMENTS = {
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "param", "source", "track", "wbr",
}
_INPUT_TAGS = {"input", "button", "form", "select", "textarea"}
_GAME_WORDS = (
    "score", "health", "level", "game", "player", "collision",
    "requestAnimationFrame", "gameLoop",
)
_COLOR_RE = re.compile(r"#[0-9a-fA-F]{3,8}\b|rgba?\(|hsla?\(")
_LISTENER_RE = re.compile(r"addEventListener\(\s*['\"](\w+)['\"]")


class _StructureParser(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.elements = 0
        self.styles = 0
        self.scripts = 0
        self.inline_styles = 0
        self.max_depth = 0
        self.inline_handlers: list[str] = []
        self.input_tags = 0
        self._depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self.elements += 1
        if tag == "style":
            self.styles += 1
        elif tag == "script":
            self.scripts += 1
        if tag in _INPUT_TAGS:
            self.input_tags += 1
        for name, _ in attrs:
            if name == "style":
                self.inline_styles += 1
            elif name.startswith("on") and len(name) > 2:
                self.inline_handlers.append(name[2:])
        if tag not in _VOID_ELEMENTS:
            self._depth += 1
            self.max_depth = max(self.max_depth, self._depth)

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self.handle_starttag(tag, attrs)
        if tag not in _VOID_ELEMENTS:
            self._depth = max(0, self._depth - 1)

    def handle_endtag(self, tag: str) -> None:
        if tag not in _VOID_ELEMENTS:
            self._depth = max(0, self._depth - 1)


def _layout_type(html: str) -> str:
    compact = html.replace(" ", "")
    if "display:grid" in compact or "grid-template" in compact:
        return "grid"
    if "display:flex" in compact:
        return "flex"
    return "standard"


def extract_pattern_features(html: str) -> PatternFeatures:
    """Summarize the structure of an HTML snippet."""
    html = html or ""
    parser = _StructureParser()
    parser.feed(html)
    parser.close()

    event_listeners: list[str] = []
    for name in parser.inline_handlers + _LISTENER_RE.findall(html):
        if name.lower() not in event_listeners:
            event_listeners.append(name.lower())

    complexity = min(
        parser.max_depth * 0.05 + parser.elements * 0.01 + parser.scripts * 0.1, 1.0
    )
    return PatternFeatures(
        element_count=parser.elements,
        style_count=parser.styles,
        script_count=parser.scripts,
        inline_style_count=parser.inline_styles,
        max_depth=parser.max_depth,
        event_listeners=event_listeners,
        color_count=len(_COLOR_RE.findall(html)),
        has_animations="@keyframes" in html or "animation" in html,
        has_user_input=parser.input_tags > 0,
        has_game_logic=any(word in html for word in _GAME_WORDS),
        layout_type=_layout_type(html),
        complexity=round(complexity, 4),
    )
