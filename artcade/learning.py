"""Pattern learning — turn rated HTML snippets into staged patterns.

A reviewer rates a snippet on a 0-10 scale across several categories.
The ratings become an effectiveness score (mean of the provided
ratings, scaled to [0, 1]); the snippet's type is detected from its
markup and the ratings. The result is staged, and auto-approved into
the store when the score reaches ``auto_approve_threshold``.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Annotated, Optional

from pydantic import BaseModel, Field

from artcade.staging import PatternStaging
from artcade.types import Pattern, PatternType

logger = logging.getLogger(__name__)

Rating = Optional[Annotated[float, Field(ge=0, le=10)]]

_COLOR_RE = re.compile(r"#[0-9A-Fa-f]{6}|#[0-9A-Fa-f]{3}|rgb\([^)]+\)|rgba\([^)]+\)")
_DURATION_RE = re.compile(r"animation(?:-duration)?:\s*([0-9.]+m?s)|animation:[^;]*\s([0-9.]+m?s)")


class VisualAppeal(BaseModel):
    color_harmony: Rating = None
    animation_smoothness: Rating = None
    layout_balance: Rating = None
    spacing: Rating = None
    typography: Rating = None


class GameplayElements(BaseModel):
    player_controls: Rating = None
    collision_detection: Rating = None
    score_tracking: Rating = None
    power_ups: Rating = None
    obstacles: Rating = None


class Interactivity(BaseModel):
    responsiveness: Rating = None
    feedback: Rating = None
    controls: Rating = None
    transitions: Rating = None


class PerformanceRatings(BaseModel):
    smoothness: Rating = None
    load_time: Rating = None
    memory_usage: Rating = None


class Accessibility(BaseModel):
    keyboard_nav: Rating = None
    color_contrast: Rating = None
    screen_reader: Rating = None


class CodeQuality(BaseModel):
    maintainability: Rating = None
    reusability: Rating = None
    modularity: Rating = None


class FeedbackRatings(BaseModel):
    visual_appeal: VisualAppeal | None = None
    gameplay_elements: GameplayElements | None = None
    interactivity: Interactivity | None = None
    performance: PerformanceRatings | None = None
    accessibility: Accessibility | None = None
    code_quality: CodeQuality | None = None
    natural_language_feedback: str = ""

    def provided(self) -> list[float]:
        found = []
        for category in (
            self.visual_appeal, self.gameplay_elements, self.interactivity,
            self.performance, self.accessibility, self.code_quality,
        ):
            if category is not None:
                found.extend(v for v in category.model_dump().values() if v is not None)
        return found


class HtmlFeedback(BaseModel):
    html: str
    source_file: str = ""
    line_start: int = 0
    line_end: int = 0
    feedback: FeedbackRatings = Field(default_factory=FeedbackRatings)


class LearningOutcome(BaseModel):
    staging_id: str
    score: float
    approved: bool
    pattern: Pattern | None = None


def feedback_score(ratings: FeedbackRatings) -> float:
    """Mean of the provided ratings on a 0-1 scale; 0 with no ratings."""
    values = ratings.provided()
    return sum(v / 10 for v in values) / len(values) if values else 0.0


def detect_pattern_type(html: str, ratings: FeedbackRatings) -> PatternType:
    if "@keyframes" in html or "animation:" in html:
        return PatternType.ANIMATION
    controls = ratings.interactivity.controls if ratings.interactivity else None
    if "onclick" in html or "addEventListener" in html or controls is not None:
        return PatternType.INTERACTION
    balance = ratings.visual_appeal.layout_balance if ratings.visual_appeal else None
    if "display: grid" in html or "display: flex" in html or balance is not None:
        return PatternType.LAYOUT
    return PatternType.STYLE


def detect_visual_type(ratings: FeedbackRatings) -> str:
    visual, gameplay = ratings.visual_appeal, ratings.gameplay_elements
    if visual and (visual.animation_smoothness or 0) > 7:
        return "animated"
    if gameplay and (gameplay.player_controls or 0) > 7:
        return "interactive"
    return "static"


def detect_interaction_type(ratings: FeedbackRatings) -> str:
    gameplay, interactivity = ratings.gameplay_elements, ratings.interactivity
    if gameplay and (gameplay.player_controls or 0) > 7:
        return "game_control"
    if interactivity and (interactivity.controls or 0) > 7:
        return "user_input"
    return "passive"


def extract_color_scheme(html: str) -> list[str]:
    return list(dict.fromkeys(_COLOR_RE.findall(html)))


def extract_animation_duration(html: str) -> str | None:
    match = _DURATION_RE.search(html)
    return (match.group(1) or match.group(2)) if match else None


class PatternLearning:
    """Stages patterns from rated snippets; well-rated ones go straight to the store."""

    def __init__(self, staging: PatternStaging, auto_approve_threshold: float = 0.8) -> None:
        self._staging = staging
        self.auto_approve_threshold = auto_approve_threshold

    async def learn_from_feedback(self, feedback: HtmlFeedback) -> LearningOutcome:
        ratings = feedback.feedback
        score = feedback_score(ratings)
        metadata = {
            "visual_type": detect_visual_type(ratings),
            "interaction_type": detect_interaction_type(ratings),
            "color_scheme": extract_color_scheme(feedback.html),
            "source": {
                "file": feedback.source_file,
                "start_line": feedback.line_start,
                "end_line": feedback.line_end,
            },
        }
        duration = extract_animation_duration(feedback.html)
        if duration:
            metadata["animation_duration"] = duration

        staging_id = self._staging.stage_pattern(
            {
                "type": detect_pattern_type(feedback.html, ratings),
                "pattern_name": f"pattern_{int(time.time() * 1000)}",
                "content": {"html": feedback.html, "context": "game", "metadata": metadata},
                "effectiveness_score": score,
            },
            source="user_feedback",
        )

        if score < self.auto_approve_threshold:
            logger.info("Staged feedback pattern %s (score %.2f)", staging_id, score)
            return LearningOutcome(staging_id=staging_id, score=score, approved=False)

        stored = await self._staging.approve_pattern(
            staging_id,
            reason=ratings.natural_language_feedback or "High effectiveness score from user feedback",
        )
        return LearningOutcome(staging_id=staging_id, score=score, approved=True, pattern=stored)
