"""
Career-versus-hobby activity signals.

Interest, strength and highlight insights are classified by stage:
- established: the activity already happens in a work, study or paid setting
- developing: the user is actively building it up (courses, practice, side projects)
- hobby: anything else

The gate only fetches cards once there is at least one career-relevant
(established or developing) signal; a hobby-only picture gets a deepening
question that links the hobby to transferable skills instead.
"""

from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, Field

from memory.insight_store import Insight, InsightKind

SIGNAL_KINDS = frozenset({InsightKind.INTEREST, InsightKind.STRENGTH, InsightKind.HIGHLIGHT})

CAREER_PATTERN = re.compile(
    r"\b(?:work|job|career|project|client|customer|freelanc|business|volunteer|intern|"
    r"stud(?:y|ies|ying)|degree|portfolio|team|manag|lead|built|build|design|cod(?:e|ing)|"
    r"program|research|teach|sell|shop)\w*",
    re.IGNORECASE,
)
DEVELOPING_PATTERN = re.compile(
    r"\b(?:learn|course|class|practi[cs]|training|tutorial|side project|self[- ]taught|"
    r"bootcamp|certificat)\w*",
    re.IGNORECASE,
)


class ActivityStage(str, Enum):
    ESTABLISHED = "established"
    DEVELOPING = "developing"
    HOBBY = "hobby"


class ActivitySignalSummary(BaseModel):
    career_signal_count: int = 0
    developing_signal_count: int = 0
    hobby_signal_count: int = 0
    primary_hobby_label: str | None = None

    @property
    def career_relevant_count(self) -> int:
        return self.career_signal_count + self.developing_signal_count


def classify_activity(label: str) -> ActivityStage:
    if CAREER_PATTERN.search(label):
        return ActivityStage.ESTABLISHED
    if DEVELOPING_PATTERN.search(label):
        return ActivityStage.DEVELOPING
    return ActivityStage.HOBBY


def summarize_activity_signals(insights: list[Insight]) -> ActivitySignalSummary:
    """Count career, developing and hobby signals across interest, strength and highlight insights."""
    summary = ActivitySignalSummary()
    for insight in insights:
        if insight.kind not in SIGNAL_KINDS:
            continue
        label = insight.value.strip()
        if not label:
            continue
        stage = classify_activity(label)
        if stage == ActivityStage.ESTABLISHED:
            summary.career_signal_count += 1
        elif stage == ActivityStage.DEVELOPING:
            summary.developing_signal_count += 1
        else:
            summary.hobby_signal_count += 1
            if summary.primary_hobby_label is None:
                summary.primary_hobby_label = label
    return summary


# ---------------------------------------------------------------------------
# Hobby deepening prompts
# ---------------------------------------------------------------------------

class HobbyMapping(BaseModel):
    keywords: list[str]
    skills: list[str]
    fields: list[str]
    custom_prompt: str | None = None


HOBBY_MAPPINGS: list[HobbyMapping] = [
    HobbyMapping(
        keywords=["rugby", "football", "soccer", "hockey"],
        skills=["teamwork", "situational awareness", "communication"],
        fields=["project management", "team leadership", "event planning"],
        custom_prompt=(
            "Team sport takes teamwork. Would you say you're strong at teamwork, game awareness, "
            "and communicating under pressure? Those skills show up constantly in project "
            "management, team leadership, and even event planning."
        ),
    ),
    HobbyMapping(
        keywords=["tennis", "badminton"],
        skills=["discipline", "self-coaching", "pattern recognition"],
        fields=["coaching", "operations coordination", "product testing"],
        custom_prompt=(
            "Racket sports look solo, but they demand discipline and self-coaching. Do those "
            "strengths resonate for you? They're the backbone of coaching others, coordinating "
            "operations, and even product testing roles."
        ),
    ),
    HobbyMapping(
        keywords=["cook", "chef", "kitchen", "bake", "baking"],
        skills=["planning", "time management", "quality control"],
        fields=["operations planning", "hospitality management", "product development"],
        custom_prompt=(
            "Cooking well means planning, timing, and keeping quality high. Would you call those "
            "strengths of yours? They translate directly into operations planning, hospitality "
            "management, and even product development."
        ),
    ),
    HobbyMapping(
        keywords=["music", "band", "sing", "song", "guitar", "piano"],
        skills=["creative discipline", "audience empathy", "collaboration"],
        fields=["content production", "marketing", "community building"],
        custom_prompt=(
            "Making music sharpens creative discipline and collaboration. Does that fit how you "
            "work? Those skills power content production, marketing, and community-building roles."
        ),
    ),
]

POSITIVE_SUFFIX = (
    "If that sounds right, say so and we can work with those strengths. "
    "If not, tell me what's closer."
)

FALLBACK_SKILLS = ["planning", "communication", "self-direction"]
FALLBACK_FIELDS = ["project coordination", "people leadership", "community roles"]


class HobbyPrompt(BaseModel):
    label: str
    prompt: str
    skills: list[str] = Field(default_factory=list)
    fields: list[str] = Field(default_factory=list)


def _generic_prompt(label: str, skills: list[str], fields: list[str]) -> str:
    return (
        f"You're obviously into {label}. Would you say you're strong at {', '.join(skills)}? "
        f"Those show up a ton in {', '.join(fields)}."
    )


def build_hobby_deepening_prompt(label: str) -> HobbyPrompt:
    """Question linking a hobby to transferable skills and the fields that use them."""
    normalized = label.lower()
    mapping = next(
        (m for m in HOBBY_MAPPINGS if any(keyword in normalized for keyword in m.keywords)),
        None,
    )
    if mapping is not None:
        base = mapping.custom_prompt or _generic_prompt(label, mapping.skills, mapping.fields)
        return HobbyPrompt(
            label=label,
            prompt=f"{base.strip()} {POSITIVE_SUFFIX}",
            skills=mapping.skills,
            fields=mapping.fields,
        )

    return HobbyPrompt(
        label=label,
        prompt=f"{_generic_prompt(label, FALLBACK_SKILLS, FALLBACK_FIELDS)} {POSITIVE_SUFFIX}",
        skills=FALLBACK_SKILLS,
        fields=FALLBACK_FIELDS,
    )
