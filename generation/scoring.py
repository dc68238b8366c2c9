"""
Rule-based quality scoring for generated scripts.

Four sub-scores (hook, clarity, visuality, compliance) are each capped at 25
and summed. No I/O and no randomness: the same script and forbidden claims
always produce the same score and warnings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Sequence

from .schema import ScriptOutput, StoryboardBeat


SUBSCORE_CAP = 25

HOOK_MARKERS = ("stop", "but", "don't", "if you", "wait")

BENEFIT_WORDS = (
    "get", "achieve", "unlock", "gain", "earn", "win",
    "transform", "change", "become", "turn into", "upgrade",
    "easy", "simple", "quick", "fast", "instant", "effortless",
    "finally", "no more", "goodbye", "forget", "stop struggling",
    "save", "free", "bonus", "extra", "included",
    "help", "solve", "fix", "improve",
    "results", "outcome", "difference", "impact", "effect",
    "love", "enjoy", "amazing", "incredible", "perfect",
    "minutes", "seconds", "hours", "days", "weeks", "overnight",
)

VISUAL_ACTION_WORDS = (
    "show", "reveal", "display", "present", "demonstrate",
    "hold", "grab", "pick up", "put down", "place",
    "open", "pour", "apply", "use", "try",
    "close-up", "closeup", "close up", "wide shot", "medium shot",
    "pan", "zoom", "tilt", "track", "follow",
    "face", "hands", "smile", "reaction", "expression",
    "product", "package", "box", "bottle", "label", "texture",
    "point", "gesture", "look at", "focus on", "highlight",
    "cut to", "transition",
)


@dataclass(frozen=True)
class ScoreResult:
    score: int
    warnings: list[str] = field(default_factory=list)
    breakdown: dict[str, int] = field(default_factory=dict)


def score_hook(hook: str) -> int:
    if not hook:
        return 0
    lowered = hook.lower().replace("’", "'")
    score = 0
    if any(marker in lowered for marker in HOOK_MARKERS):
        score += 8
    if re.search(r"\d", hook):
        score += 7
    if "?" in hook:
        score += 5
    word_count = len(hook.split())
    if word_count <= 10:
        score += 5
    elif word_count <= 15:
        score += 3
    return min(SUBSCORE_CAP, score)


def score_clarity(script: ScriptOutput) -> int:
    early = " ".join(f"{beat.spoken} {beat.on_screen}" for beat in script.storyboard[:2]).lower()
    matched = {word for word in BENEFIT_WORDS if word in early}
    score = 5 * min(3, len(matched))
    if script.hook.strip() and len(script.storyboard) >= 3 and script.cta_variants:
        score += 10
    return min(SUBSCORE_CAP, score)


def score_visuality(storyboard: Sequence[StoryboardBeat]) -> int:
    if not storyboard:
        return 0
    concrete = sum(
        1
        for beat in storyboard
        if any(word in beat.shot.lower() for word in VISUAL_ACTION_WORDS)
    )
    score = round(15 * concrete / len(storyboard))
    if any(beat.broll for beat in storyboard):
        score += 5
    if len(storyboard) >= 4:
        score += 5
    return min(SUBSCORE_CAP, score)


def score_compliance(script: ScriptOutput, forbidden_claims: Sequence[str]) -> tuple[int, list[str]]:
    claims: list[str] = []
    seen: set[str] = set()
    for claim in forbidden_claims or []:
        key = claim.strip().lower()
        if key and key not in seen:
            seen.add(key)
            claims.append(claim.strip())
    if not claims:
        return SUBSCORE_CAP, []

    corpus = " ".join(
        [script.hook]
        + [f"{beat.spoken} {beat.on_screen}" for beat in script.storyboard]
        + list(script.cta_variants)
    ).lower()

    warnings = [f'Contains forbidden phrase: "{claim}"' for claim in claims if claim.lower() in corpus]
    return max(0, SUBSCORE_CAP - 8 * len(warnings)), warnings


def structural_warnings(script: ScriptOutput) -> list[str]:
    warnings: list[str] = []
    if not script.cta_variants:
        warnings.append("Missing CTA variants")
    if not script.filming_checklist:
        warnings.append("Missing filming checklist")
    if len(script.storyboard) < 3:
        warnings.append("Storyboard too short - needs at least 3 beats")
    return warnings


def score_script(script: ScriptOutput, forbidden_claims: Sequence[str]) -> ScoreResult:
    hook = score_hook(script.hook)
    clarity = score_clarity(script)
    visuality = score_visuality(script.storyboard)
    compliance, compliance_warnings = score_compliance(script, forbidden_claims)

    total = max(0, min(100, hook + clarity + visuality + compliance))
    return ScoreResult(
        score=total,
        warnings=compliance_warnings + structural_warnings(script),
        breakdown={
            "hook": hook,
            "clarity": clarity,
            "visuality": visuality,
            "compliance": compliance,
        },
    )
