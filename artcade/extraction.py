"""Pattern extraction — split a full HTML document into typed candidates.

Each pattern type has its own extractor that looks for a characteristic
shape in the document (grid/flex containers, interactive elements with
handlers in the scripts, keyframe animations, repeated style rules,
game-loop code) and cuts out the element plus the CSS/JS that goes
with it. The results are plain ``Pattern`` objects, not yet stored;
``PatternStaging.stage_document`` runs them through the review queue.

Extracted snippets are curated material, so they start with an
effectiveness score of 1.0.
"""

from __future__ import annotations

import re
from html.parser import HTMLParser
from typing import Callable, Iterable, Iterator

from artcade.types import Pattern, PatternContent, PatternType

_VOID_ELEMENTS = {
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "param", "source", "track", "wbr",
}
_RAW_TEXT = {"style", "script"}

_KEYFRAMES_RE = re.compile(r"@keyframes\s+([^\s{]+)\s*\{")
_JS_ANIMATION_RE = re.compile(r"requestAnimationFrame|animate|transition")
_JS_ANIMATION_FN_RE = re.compile(r"function\s+\w*(?:animate|update|transition)\w*\s*\([^{]*\{[^}]*\}")
_EVENT_RE = re.compile(r"on(click|mouseover|focus|blur|change)")

_STYLE_CATEGORIES = {
    "colors": re.compile(r"#[a-f0-9]{3,6}|rgba?\(.*?\)|var\(--[^)]+\)", re.IGNORECASE),
    "typography": re.compile(r"font-family|font-size|line-height|letter-spacing"),
    "spacing": re.compile(r"margin|padding|gap"),
    "effects": re.compile(r"box-shadow|text-shadow|backdrop-filter|filter"),
}
_GAME_CATEGORIES = {
    "physics": re.compile(r"velocity|acceleration|gravity|collision"),
    "input": re.compile(r"keydown|keyup|mousedown|mouseup|mousemove"),
    "gameLoop": re.compile(r"requestAnimationFrame|setInterval|loop|update|tick"),
    "state": re.compile(r"score|lives|health|points|level"),
}


class Element:
    __slots__ = ("tag", "attrs", "html")

    def __init__(self, tag: str, attrs: dict[str, str]) -> None:
        self.tag = tag
        self.attrs = attrs
        self.html = ""

    @property
    def classes(self) -> list[str]:
        return self.attrs.get("class", "").split()

    def class_contains(self, *words: str) -> bool:
        value = self.attrs.get("class", "")
        return any(word in value for word in words)


class Document:
    """Elements in document order, plus the concatenated style and script text."""

    def __init__(self, elements: list[Element], styles: str, scripts: str) -> None:
        self.elements = elements
        self.styles = styles
        self.scripts = scripts

    def select(self, predicate: Callable[[Element], bool]) -> list[Element]:
        return [el for el in self.elements if predicate(el)]


class _DocumentParser(HTMLParser):
    def __init__(self, html: str) -> None:
        super().__init__(convert_charrefs=False)
        self._html = html
        self._line_offsets = [0] + [i + 1 for i, ch in enumerate(html) if ch == "\n"]
        self._open: list[tuple[Element, int]] = []
        self._raw: str | None = None
        self.elements: list[Element] = []
        self.styles: list[str] = []
        self.scripts: list[str] = []

    def _offset(self) -> int:
        line, col = self.getpos()
        return self._line_offsets[line - 1] + col

    def handle_starttag(self, tag: str, attrs) -> None:
        element = Element(tag, {k: v or "" for k, v in attrs})
        self.elements.append(element)
        start = self._offset()
        if tag in _VOID_ELEMENTS:
            element.html = self.get_starttag_text() or ""
            return
        if tag in _RAW_TEXT:
            self._raw = tag
        self._open.append((element, start))

    def handle_startendtag(self, tag: str, attrs) -> None:
        element = Element(tag, {k: v or "" for k, v in attrs})
        element.html = self.get_starttag_text() or ""
        self.elements.append(element)

    def handle_data(self, data: str) -> None:
        if self._raw == "style":
            self.styles.append(data)
        elif self._raw == "script":
            self.scripts.append(data)

    def handle_endtag(self, tag: str) -> None:
        if tag in _RAW_TEXT:
            self._raw = None
        for i in range(len(self._open) - 1, -1, -1):
            if self._open[i][0].tag == tag:
                end = self._html.find(">", self._offset()) + 1 or len(self._html)
                for element, start in self._open[i:]:
                    element.html = self._html[start:end]
                del self._open[i:]
                return

    def close(self) -> None:
        super().close()
        for element, start in self._open:
            element.html = self._html[start:]
        self._open.clear()


def parse_document(html: str) -> Document:
    parser = _DocumentParser(html)
    parser.feed(html)
    parser.close()
    return Document(parser.elements, "\n".join(parser.styles), "\n".join(parser.scripts))


def _keyframes(styles: str) -> Iterator[tuple[str, str]]:
    """(name, full ``@keyframes`` block) pairs, nested braces included."""
    for match in _KEYFRAMES_RE.finditer(styles):
        depth, i = 1, match.end()
        while i < len(styles) and depth:
            if styles[i] == "{":
                depth += 1
            elif styles[i] == "}":
                depth -= 1
            i += 1
        yield match.group(1), styles[match.start():i]


def _tags(use_cases: list[str], mechanics=(), interactions=(), visual_style=()) -> dict:
    return {
        "use_cases": use_cases,
        "mechanics": list(mechanics),
        "interactions": list(interactions),
        "visual_style": list(visual_style),
    }


def _candidate(
    type: PatternType, name: str, html: str, context: str,
    metadata: dict, css: str = "", js: str = "",
) -> Pattern:
    return Pattern(
        type=type,
        name=name,
        content=PatternContent(html=html, css=css, js=js, context=context, metadata=metadata),
        effectiveness_score=1.0,
    )


# ── Per-type extractors ─────────────────────────────────────────


def extract_layouts(doc: Document) -> list[Pattern]:
    found = []
    for container in doc.select(lambda el: el.class_contains("grid", "flex")):
        names = "|".join(re.escape(c) for c in container.classes)
        rules = re.findall(rf"\.(?:{names})\s*\{{[^}}]*\}}", doc.styles) if names else []
        css = "\n".join(rules)
        if "grid" not in css and "flex" not in css:
            continue
        kind = "grid" if "grid" in css else "flex"
        found.append(_candidate(
            PatternType.LAYOUT,
            f"{container.attrs.get('class', '')} Layout Pattern",
            container.html,
            "Responsive layout pattern using CSS Grid/Flexbox",
            {
                "description": f"A responsive {kind} layout pattern",
                "visual_type": kind,
                "semantic_tags": _tags(["layout", "responsive"], visual_style=["grid", "flex", "responsive"]),
            },
            css=css,
        ))
    return found


def _is_interactive(el: Element) -> bool:
    return (
        el.tag in ("button", "input", "select")
        or el.attrs.get("role") == "button"
        or "tabindex" in el.attrs
        or el.class_contains("click", "hover")
    )


def extract_interactions(doc: Document) -> list[Pattern]:
    found = []
    for el in doc.select(_is_interactive):
        names = [n for n in [el.attrs.get("id", ""), *el.classes] if n]
        if not names:
            continue
        alternatives = "|".join(re.escape(n) for n in names)
        js_re = re.compile(rf"(?:addEventListener|on(?:click|mouseover|focus)).*?(?:{alternatives})")
        js = "\n".join(m.group(0) for m in js_re.finditer(doc.scripts))
        if not js:
            continue
        events = _EVENT_RE.findall(js)
        found.append(_candidate(
            PatternType.INTERACTION,
            f"{names[0]} Interaction Pattern",
            el.html,
            "Interactive element with event handling",
            {
                "description": f"Interactive {el.tag} with {', '.join('on' + e for e in events)} events",
                "interaction_type": "event-based",
                "semantic_tags": _tags(["interaction", "user-input"], interactions=events),
            },
            js=js,
        ))
    return found


def extract_animations(doc: Document) -> list[Pattern]:
    found = []
    for name, block in _keyframes(doc.styles):
        users = doc.select(lambda el: el.class_contains("animate", name))
        if not users:
            continue
        found.append(_candidate(
            PatternType.ANIMATION,
            f"{name} Animation Pattern",
            users[0].html,
            "CSS Keyframe animation pattern",
            {
                "description": f"CSS keyframe animation named {name}",
                "animation_duration": "1s",
                "semantic_tags": _tags(["animation", "visual-feedback"], visual_style=["animated", "keyframes"]),
            },
            css=block,
        ))

    if _JS_ANIMATION_RE.search(doc.scripts):
        animated = doc.select(lambda el: el.class_contains("animate", "transition"))
        if animated:
            found.append(_candidate(
                PatternType.ANIMATION,
                "JavaScript Animation Pattern",
                animated[0].html,
                "JavaScript-based animation using requestAnimationFrame",
                {
                    "description": "JavaScript animation using requestAnimationFrame",
                    "animation_duration": "continuous",
                    "semantic_tags": _tags(
                        ["animation", "continuous-update"],
                        mechanics=["requestAnimationFrame"],
                        visual_style=["animated", "dynamic"],
                    ),
                },
                js="\n".join(_JS_ANIMATION_FN_RE.findall(doc.scripts)),
            ))
    return found


def extract_styles(doc: Document) -> list[Pattern]:
    styled = doc.select(lambda el: el.class_contains("color", "theme", "style"))
    if not styled:
        return []
    found = []
    for category, regex in _STYLE_CATEGORIES.items():
        matches = regex.findall(doc.styles)
        if not matches:
            continue
        metadata = {
            "description": f"Consistent {category} styling pattern with {len(matches)} rules",
            "visual_type": category,
            "semantic_tags": _tags(["styling", category], visual_style=[category]),
        }
        if category == "colors":
            metadata["color_scheme"] = matches
        found.append(_candidate(
            PatternType.STYLE,
            f"{category.capitalize()} Style Pattern",
            styled[0].html,
            f"Consistent {category} styling pattern",
            metadata,
            css="\n".join(matches),
        ))
    return found


def extract_game_mechanics(doc: Document) -> list[Pattern]:
    actors = doc.select(lambda el: el.class_contains("game", "player", "score"))
    if not actors:
        return []
    found = []
    for category, regex in _GAME_CATEGORIES.items():
        matches = regex.findall(doc.scripts)
        if not matches:
            continue
        fn_re = re.compile(rf"function\s+\w*(?:{category})\w*\s*\([^{{]*\{{[^}}]*\}}")
        found.append(_candidate(
            PatternType.GAME_MECHANIC,
            f"{category[0].upper() + category[1:]} Game Mechanic",
            actors[0].html,
            f"Game mechanic pattern for {category}",
            {
                "description": f"Game mechanic implementation for {category}",
                "game_mechanics": [{"type": category, "properties": {"features": matches}}],
                "semantic_tags": _tags(["game", category], mechanics=matches),
            },
            js="\n".join(fn_re.findall(doc.scripts)),
        ))
    return found


EXTRACTORS: dict[PatternType, Callable[[Document], list[Pattern]]] = {
    PatternType.LAYOUT: extract_layouts,
    PatternType.INTERACTION: extract_interactions,
    PatternType.ANIMATION: extract_animations,
    PatternType.STYLE: extract_styles,
    PatternType.GAME_MECHANIC: extract_game_mechanics,
}


def extract_patterns(
    html: str, types: Iterable[PatternType | str] | None = None
) -> list[Pattern]:
    """Candidate patterns of the requested types (all types by default)."""
    wanted = [PatternType(t) for t in types] if types is not None else list(EXTRACTORS)
    doc = parse_document(html)
    found: list[Pattern] = []
    for ptype in wanted:
        found.extend(p for p in EXTRACTORS[ptype](doc) if p.content.html.strip())
    return found
