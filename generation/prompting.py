from __future__ import annotations

import json
from typing import Sequence

from db.models import Persona, Project, Script
from .platforms import beat_count_guidance, get_profile, platform_prompt_block
from .schema import ScriptPlan


LANGUAGE_NAMES = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "nl": "Dutch",
    "pl": "Polish",
    "uk": "Ukrainian",
    "ja": "Japanese",
    "ko": "Korean",
    "zh": "Chinese",
    "tr": "Turkish",
}

PLAN_SYSTEM_PROMPT = "You are a UGC script planning assistant. Always respond with valid JSON."
EXPAND_SYSTEM_PROMPT = "You are a UGC script writer. Always respond with valid JSON."
REPAIR_SYSTEM_PROMPT = "You repair JSON. Return only valid JSON."
REGENERATE_SYSTEM_PROMPT = "You modify UGC scripts. Always respond with valid JSON."


def language_instruction(language: str | None) -> str:
    code = (language or "en").lower()
    name = LANGUAGE_NAMES.get(code, code)
    return f"Write every human-readable field (hooks, spoken lines, on-screen text, CTAs) in {name}."


def select_personas(personas: Sequence[Persona], persona_ids: Sequence[str] | None) -> list[Persona]:
    """Personas limited to the batch selection; an empty selection means all."""
    if not persona_ids:
        return list(personas)
    wanted = {str(pid) for pid in persona_ids}
    return [p for p in personas if str(p.id) in wanted]


def _persona_lines(personas: Sequence[Persona]) -> str:
    lines = []
    for persona in personas:
        line = f"- {persona.name}: {persona.description}"
        if persona.pain_points:
            line += f" Pain points: {', '.join(persona.pain_points)}"
        if persona.desires:
            line += f" Desires: {', '.join(persona.desires)}"
        lines.append(line)
    return "\n".join(lines) or "General audience"


def _product_block(project: Project) -> str:
    text = f"## Product\n{project.product_description}\n"
    if project.offer:
        text += f"Offer: {project.offer}\n"
    if project.brand_voice:
        text += f"\n## Brand Voice\n{project.brand_voice}\n"
    return text


def _forbidden_block(forbidden_claims: Sequence[str], header: str) -> str:
    if not forbidden_claims:
        return ""
    items = "\n".join(f'- "{claim}"' for claim in forbidden_claims)
    return f"\n## {header}\n{items}\n"


def build_plan_prompt(
    *,
    project: Project,
    personas: Sequence[Persona],
    platform: str,
    angles: Sequence[str],
    durations: Sequence[int],
    count: int,
) -> str:
    profile = get_profile(platform)
    beat_table = "\n".join(f"- {beat_count_guidance(int(d))}" for d in sorted(set(durations)))
    return (
        f"You are an expert UGC video script planner for {profile.name} ads.\n\n"
        f"{_product_block(project)}\n"
        f"## Target Audiences\n{_persona_lines(personas)}\n"
        f"{_forbidden_block(project.forbidden_claims or [], 'Forbidden Claims (DO NOT USE)')}\n"
        f"{platform_prompt_block(platform)}\n\n"
        "## Beat Count Guidelines\n"
        f"{beat_table}\n\n"
        "## Task\n"
        f"Generate exactly {count} unique script PLANS covering these angles: {', '.join(angles)}\n"
        f"Each plan must use a duration from: {', '.join(f'{d}s' for d in durations)}\n\n"
        "For each plan, provide:\n"
        "1. angle: one of the specified angles\n"
        "2. duration: target duration in seconds\n"
        "3. hookIdea: a one-line hook that grabs attention in the first 2 seconds\n"
        "4. beats: ordered beat descriptions matching the beat count guidelines\n"
        "5. complianceNotes: potential compliance risks or notes\n\n"
        "Distribute plans evenly across angles and durations.\n"
        f"{language_instruction(project.language)}\n\n"
        "Return your response as a JSON array:\n"
        "[\n"
        "  {\n"
        '    "angle": "pain_agitation",\n'
        '    "duration": 30,\n'
        '    "hookIdea": "Stop scrolling if you\'re tired of...",\n'
        '    "beats": ["Hook with pain point", "Show the struggle", "Introduce solution"],\n'
        '    "complianceNotes": ["Avoid medical claims"]\n'
        "  }\n"
        "]\n\n"
        "IMPORTANT: Return ONLY valid JSON, no markdown, no explanation."
    )


def build_expansion_prompt(
    *,
    project: Project,
    personas: Sequence[Persona],
    plan: ScriptPlan,
    platform: str,
) -> str:
    persona_context = "; ".join(f"{p.name}: {p.description}" for p in personas) or "General audience"
    profile = get_profile(platform)
    return (
        f"You are an expert UGC video script writer for {profile.name}.\n\n"
        f"{_product_block(project)}\n"
        f"## Target Audience\n{persona_context}\n"
        f"{_forbidden_block(project.forbidden_claims or [], 'FORBIDDEN (Never use these)')}\n"
        f"{platform_prompt_block(platform)}\n\n"
        "## Script Plan to Expand\n"
        f"Angle: {plan.angle}\n"
        f"Duration: {plan.duration}s\n"
        f"Hook Idea: {plan.hook_idea}\n"
        f"Beats: {' -> '.join(plan.beats)}\n"
        f"Compliance Notes: {', '.join(plan.compliance_notes) or 'None'}\n\n"
        "## Task\n"
        "Write a complete script following this EXACT JSON structure:\n"
        "{\n"
        f'  "angle": "{plan.angle}",\n'
        f'  "duration": {plan.duration},\n'
        '  "hook": "The opening hook line",\n'
        '  "storyboard": [\n'
        '    {"t": "0-3s", "shot": "What is in frame and the action", "onScreen": "Text overlay",\n'
        '     "spoken": "Exact words the creator says", "broll": ["Optional b-roll idea"]}\n'
        "  ],\n"
        '  "ctaVariants": ["CTA option 1", "CTA option 2", "CTA option 3"],\n'
        '  "filmingChecklist": ["Specific filming instruction", "Props needed", "Lighting note"],\n'
        '  "warnings": ["Any compliance warnings or notes"]\n'
        "}\n\n"
        "REQUIREMENTS:\n"
        "- The hook MUST grab attention in the first 2 seconds\n"
        f"- {beat_count_guidance(plan.duration)}\n"
        "- Spoken lines are natural and conversational\n"
        "- Shot descriptions name a concrete visual action (show, hold, point, close-up)\n"
        "- If any forbidden phrase appears, add a warning\n"
        f"- Time segments add up to about {plan.duration}s\n"
        f"- {language_instruction(project.language)}\n\n"
        "Return ONLY valid JSON, no markdown, no explanation."
    )


def build_repair_prompt(raw_output: str, error: str) -> str:
    return (
        "The following output was supposed to be valid JSON but failed to parse:\n\n"
        f"Error: {error}\n\n"
        "Raw output:\n"
        f"{raw_output}\n\n"
        "Fix the JSON and return ONLY the corrected, valid JSON. "
        "Do not include any explanation or markdown."
    )


def build_regenerate_prompt(*, script: Script, instruction: str, project: Project) -> str:
    return (
        "You are a UGC script writer. Modify the following script based on the instruction.\n\n"
        "## Original Script\n"
        f"{json.dumps(script.storyboard, indent=2, ensure_ascii=False)}\n\n"
        f"Hook: {script.hook or ''}\n"
        f"CTAs: {', '.join(script.cta_variants or [])}\n\n"
        "## Modification Instruction\n"
        f"{instruction}\n\n"
        f"{_product_block(project)}"
        f"{_forbidden_block(project.forbidden_claims or [], 'FORBIDDEN (Never use these)')}\n"
        f"{language_instruction(project.language)}\n\n"
        "Return the modified script in the same JSON format:\n"
        "{\n"
        f'  "angle": "{script.angle}",\n'
        f'  "duration": {script.duration},\n'
        '  "hook": "...",\n'
        '  "storyboard": [...],\n'
        '  "ctaVariants": [...],\n'
        '  "filmingChecklist": [...],\n'
        '  "warnings": [...]\n'
        "}\n\n"
        "Return ONLY valid JSON."
    )
