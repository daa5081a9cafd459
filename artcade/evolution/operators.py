"""Mutation operators — small, targeted edits to a pattern's CSS or JS.

Which operators apply is decided by the pattern type alone, through the
static ``OPERATOR_TABLE``. Each operator takes the current content and
the run's random source and returns new content; CSS operators add or
rewrite rules in the snippet's style block, JS operators append script.
"""

from __future__ import annotations

import random
import re
from typing import Callable, Literal

from pydantic import BaseModel, ConfigDict, Field

from artcade.types import PatternContent, PatternType

MutationFn = Callable[[PatternContent, random.Random], PatternContent]

_CLASS_RE = re.compile(r"class=[\"']([\w-]+)")
_ID_RE = re.compile(r"id=[\"']([\w-]+)")
_TAG_RE = re.compile(r"<([a-zA-Z][a-zA-Z0-9]*)")
_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(m?s)\b")
_SKIP_TAGS = {"style", "script", "html", "head", "body", "meta", "link"}


class MutationOperator(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: Literal["css", "js"]
    weight: float = Field(ge=0.0)
    apply: MutationFn


# ── Content helpers ──────────────────────────────────────────────────────────


def pick_selector(html: str, rng: random.Random) -> str:
    """A CSS selector for some element in the snippet."""
    candidates = [f".{c}" for c in _CLASS_RE.findall(html)]
    candidates += [f"#{i}" for i in _ID_RE.findall(html)]
    if not candidates:
        candidates = [t.lower() for t in _TAG_RE.findall(html) if t.lower() not in _SKIP_TAGS]
    return rng.choice(sorted(set(candidates))) if candidates else "div"


def inject_css(content: PatternContent, css: str) -> PatternContent:
    if content.css:
        return content.model_copy(update={"css": f"{content.css}\n{css}"})
    html = content.html
    idx = html.lower().find("</style>")
    if idx >= 0:
        html = f"{html[:idx]}\n{css}\n{html[idx:]}"
    else:
        html = f"<style>\n{css}\n</style>\n{html}"
    return content.model_copy(update={"html": html})


def inject_js(content: PatternContent, js: str) -> PatternContent:
    if content.js:
        return content.model_copy(update={"js": f"{content.js}\n{js}"})
    html = content.html
    idx = html.lower().rfind("</script>")
    if idx >= 0:
        html = f"{html[:idx]}\n{js}\n{html[idx:]}"
    else:
        html = f"{html}\n<script>\n{js}\n</script>"
    return content.model_copy(update={"html": html})


# ── CSS operators ────────────────────────────────────────────────────────────


def add_transition(content: PatternContent, rng: random.Random) -> PatternContent:
    sel = pick_selector(content.html, rng)
    prop = rng.choice(["all", "transform", "opacity", "background-color"])
    duration = round(rng.uniform(0.15, 1.2), 2)
    return inject_css(content, f"{sel} {{ transition: {prop} {duration}s ease-in-out; }}")


def add_keyframe(content: PatternContent, rng: random.Random) -> PatternContent:
    sel = pick_selector(content.html, rng)
    name = f"artcade-{rng.choice(['pulse', 'bounce', 'spin'])}-{rng.randrange(1000)}"
    frames = {
        "pulse": "0%, 100% { transform: scale(1); } 50% { transform: scale(1.1); }",
        "bounce": "0%, 100% { transform: translateY(0); } 50% { transform: translateY(-10px); }",
        "spin": "from { transform: rotate(0deg); } to { transform: rotate(360deg); }",
    }[name.split("-")[1]]
    duration = round(rng.uniform(0.5, 3.0), 2)
    return inject_css(
        content,
        f"@keyframes {name} {{ {frames} }}\n{sel} {{ animation: {name} {duration}s infinite; }}",
    )


def modify_timing(content: PatternContent, rng: random.Random) -> PatternContent:
    factor = rng.uniform(0.5, 1.5)

    def scale(m: re.Match) -> str:
        return f"{round(float(m.group(1)) * factor, 2)}{m.group(2)}"

    html, n_html = _DURATION_RE.subn(scale, content.html)
    css, n_css = _DURATION_RE.subn(scale, content.css)
    if n_html or n_css:
        return content.model_copy(update={"html": html, "css": css})
    sel = pick_selector(content.html, rng)
    return inject_css(content, f"{sel} {{ transition-duration: {round(factor, 2)}s; }}")


def adjust_grid(content: PatternContent, rng: random.Random) -> PatternContent:
    sel = pick_selector(content.html, rng)
    min_width = rng.choice([80, 100, 120, 160])
    gap = rng.choice([5, 10, 15, 20])
    return inject_css(
        content,
        f"{sel} {{ display: grid; grid-template-columns: "
        f"repeat(auto-fit, minmax({min_width}px, 1fr)); gap: {gap}px; }}",
    )


def modify_flexbox(content: PatternContent, rng: random.Random) -> PatternContent:
    sel = pick_selector(content.html, rng)
    direction = rng.choice(["row", "column"])
    justify = rng.choice(["flex-start", "center", "space-between", "space-around"])
    return inject_css(
        content,
        f"{sel} {{ display: flex; flex-direction: {direction}; "
        f"justify-content: {justify}; gap: 10px; }}",
    )


def update_positioning(content: PatternContent, rng: random.Random) -> PatternContent:
    sel = pick_selector(content.html, rng)
    top, left = rng.randrange(0, 50), rng.randrange(0, 50)
    return inject_css(
        content, f"{sel} {{ position: relative; top: {top}px; left: {left}px; }}"
    )


def update_colors(content: PatternContent, rng: random.Random) -> PatternContent:
    sel = pick_selector(content.html, rng)
    fg, bg = rng.randrange(360), rng.randrange(360)
    return inject_css(
        content,
        f"{sel} {{ color: hsl({fg}, 70%, 30%); background-color: hsl({bg}, 70%, 85%); }}",
    )


def modify_typography(content: PatternContent, rng: random.Random) -> PatternContent:
    sel = pick_selector(content.html, rng)
    family = rng.choice(["'Press Start 2P', monospace", "Verdana, sans-serif", "Georgia, serif"])
    weight = rng.choice(["normal", "bold", "600"])
    spacing = round(rng.uniform(0.0, 2.0), 1)
    return inject_css(
        content,
        f"{sel} {{ font-family: {family}; font-weight: {weight}; letter-spacing: {spacing}px; }}",
    )


def enhance_visuals(content: PatternContent, rng: random.Random) -> PatternContent:
    sel = pick_selector(content.html, rng)
    radius = rng.choice([4, 8, 12, 16])
    return inject_css(
        content,
        f"{sel} {{ border-radius: {radius}px; box-shadow: 2px 2px 5px rgba(0,0,0,0.2); }}",
    )


# ── JS operators ─────────────────────────────────────────────────────────────


def add_event_listener(content: PatternContent, rng: random.Random) -> PatternContent:
    sel = pick_selector(content.html, rng)
    event = rng.choice(["click", "mouseover", "dblclick"])
    return inject_js(
        content,
        f"document.querySelectorAll('{sel}').forEach(el => "
        f"el.addEventListener('{event}', () => el.classList.toggle('active')));",
    )


def enhance_controls(content: PatternContent, rng: random.Random) -> PatternContent:
    step = rng.choice([5, 10, 20])
    return inject_js(
        content,
        "document.addEventListener('keydown', (e) => {\n"
        "  const moves = {ArrowLeft: [-1, 0], ArrowRight: [1, 0], ArrowUp: [0, -1], ArrowDown: [0, 1]};\n"
        "  const move = moves[e.key];\n"
        f"  if (move) document.dispatchEvent(new CustomEvent('artcade:move', "
        f"{{detail: {{dx: move[0] * {step}, dy: move[1] * {step}}}}}));\n"
        "});",
    )


def add_feedback(content: PatternContent, rng: random.Random) -> PatternContent:
    sel = pick_selector(content.html, rng)
    ms = rng.choice([150, 250, 400])
    return inject_js(
        content,
        f"document.querySelectorAll('{sel}').forEach(el => el.addEventListener('click', () => {{\n"
        f"  el.classList.add('flash');\n"
        f"  setTimeout(() => el.classList.remove('flash'), {ms});\n"
        f"}}));",
    )


def add_scoring(content: PatternContent, rng: random.Random) -> PatternContent:
    points = rng.choice([1, 5, 10, 100])
    return inject_js(
        content,
        "let score = 0;\n"
        f"function addScore(points = {points}) {{\n"
        "  score += points;\n"
        "  const el = document.querySelector('.score');\n"
        "  if (el) el.textContent = score;\n"
        "}",
    )


def enhance_collision(content: PatternContent, rng: random.Random) -> PatternContent:
    margin = rng.choice([0, 2, 4])
    return inject_js(
        content,
        "function checkCollision(a, b) {\n"
        "  const r1 = a.getBoundingClientRect(), r2 = b.getBoundingClientRect();\n"
        f"  return !(r1.right - {margin} < r2.left || r1.left + {margin} > r2.right ||\n"
        f"           r1.bottom - {margin} < r2.top || r1.top + {margin} > r2.bottom);\n"
        "}",
    )


def add_powerup(content: PatternContent, rng: random.Random) -> PatternContent:
    kind = rng.choice(["speed", "shield", "double-points"])
    return inject_js(
        content,
        "function spawnPowerup() {\n"
        "  const p = document.createElement('div');\n"
        f"  p.className = 'powerup powerup-{kind}';\n"
        "  p.style.left = Math.random() * 90 + '%';\n"
        "  document.body.appendChild(p);\n"
        "}",
    )


def add_obstacle(content: PatternContent, rng: random.Random) -> PatternContent:
    interval = rng.choice([1000, 1500, 2500])
    return inject_js(
        content,
        "function spawnObstacle() {\n"
        "  const o = document.createElement('div');\n"
        "  o.className = 'obstacle';\n"
        "  o.style.left = Math.random() * 90 + '%';\n"
        "  document.body.appendChild(o);\n"
        "}\n"
        f"setInterval(spawnObstacle, {interval});",
    )


def _op(fn: MutationFn, type: str, weight: float) -> MutationOperator:
    return MutationOperator(name=fn.__name__, type=type, weight=weight, apply=fn)


OPERATOR_TABLE: dict[PatternType, tuple[MutationOperator, ...]] = {
    PatternType.ANIMATION: (
        _op(add_transition, "css", 1.0),
        _op(add_keyframe, "css", 1.0),
        _op(modify_timing, "css", 0.5),
    ),
    PatternType.LAYOUT: (
        _op(adjust_grid, "css", 1.0),
        _op(modify_flexbox, "css", 1.0),
        _op(update_positioning, "css", 0.5),
    ),
    PatternType.INTERACTION: (
        _op(add_event_listener, "js", 1.0),
        _op(enhance_controls, "js", 1.0),
        _op(add_feedback, "js", 0.5),
    ),
    PatternType.STYLE: (
        _op(update_colors, "css", 1.0),
        _op(modify_typography, "css", 1.0),
        _op(enhance_visuals, "css", 0.5),
    ),
    PatternType.GAME_MECHANIC: (
        _op(add_scoring, "js", 1.0),
        _op(enhance_collision, "js", 1.0),
        _op(add_powerup, "js", 0.5),
        _op(add_obstacle, "js", 0.5),
    ),
}


def operators_for(pattern_type: PatternType) -> tuple[MutationOperator, ...]:
    return OPERATOR_TABLE.get(pattern_type, ())


def select_operator(pattern_type: PatternType, rng: random.Random) -> MutationOperator | None:
    """Draw one operator for the type, proportionally to weight."""
    ops = [op for op in operators_for(pattern_type) if op.weight > 0]
    if not ops:
        return None
    return rng.choices(ops, weights=[op.weight for op in ops], k=1)[0]


def apply_mutation(
    content: PatternContent,
    pattern_type: PatternType,
    rng: random.Random,
) -> tuple[PatternContent, str | None]:
    """Mutate once. Returns the new content and the operator name.

    A result with empty HTML is discarded: the input comes back with
    ``None`` as the operator name.
    """
    op = select_operator(pattern_type, rng)
    if op is None:
        return content, None
    mutated = op.apply(content, rng)
    if not mutated.html or not mutated.html.strip():
        return content, None
    return mutated, op.name
