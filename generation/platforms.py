"""
Platform style profiles and storyboard beat ranges.

The profiles are injected into prompts so that scripts for different feeds
differ in pacing, hook style and CTA tone. Beat ranges drive both the prompt
guidance and the post-generation beat-count warning.
"""

from __future__ import annotations

from dataclasses import dataclass
import math


@dataclass(frozen=True)
class PlatformProfile:
    name: str
    pacing: str
    hook_style: str
    caption_density: str
    edit_notes: str
    cta_style: str
    tone: str


PLATFORM_PROFILES: dict[str, PlatformProfile] = {
    "universal": PlatformProfile(
        name="Universal (All Platforms)",
        pacing="Fast but balanced, works everywhere",
        hook_style="Strong opening that works on any feed, clear value prop upfront",
        caption_density="Medium-high, readable overlays that do not overwhelm",
        edit_notes="Clean cuts, good lighting, phone-native but polished",
        cta_style='Platform-neutral ("Link in bio", "Check it out", "Learn more")',
        tone="Authentic UGC that fits TikTok, Reels and Shorts equally",
    ),
    "tiktok": PlatformProfile(
        name="TikTok",
        pacing="Very fast, aggressive pattern interrupts, high energy throughout",
        hook_style="Bold first-frame stop-scroll, comment/objection framing, conversational and direct",
        caption_density="High, punchy text overlays on most beats with bold keywords",
        edit_notes="Jump cuts every 1-2s, handheld phone-native feel, strong visual in the first frame",
        cta_style='Direct and urgent ("Get yours", "Try it now", "Link in bio")',
        tone="Raw, unpolished creator energy, like talking to a friend",
    ),
    "reels": PlatformProfile(
        name="Instagram Reels",
        pacing="Fast but cleaner, less chaotic than TikTok",
        hook_style="Relatable setup plus aesthetic proof, polished lifestyle-oriented UGC",
        caption_density="Medium-high, clean overlays with good typography",
        edit_notes="Smoother transitions, better lighting, visually appealing",
        cta_style='Softer and brand-safe ("Learn more", "Shop the link", "Check it out")',
        tone="Elevated UGC, aspirational but authentic",
    ),
    "shorts": PlatformProfile(
        name="YouTube Shorts",
        pacing="Fast but clarity-first, structured delivery",
        hook_style="Clear promise plus here's-how framing, educational angle, less hype",
        caption_density="Medium, fewer noisy overlays and cleaner text",
        edit_notes="Voiceover-friendly, structured beats, tutorial-adjacent",
        cta_style='Straightforward and neutral ("Check the link", "See description")',
        tone="Informative creator, less slang, more substance",
    ),
}

DURATION_BEAT_RANGES: dict[int, tuple[int, int]] = {
    15: (4, 6),
    30: (6, 10),
    45: (8, 14),
}


def get_profile(platform: str) -> PlatformProfile:
    return PLATFORM_PROFILES.get(platform, PLATFORM_PROFILES["universal"])


def get_beat_range(duration: int) -> tuple[int, int]:
    if duration in DURATION_BEAT_RANGES:
        return DURATION_BEAT_RANGES[duration]
    # roughly one beat every 2.5-5 seconds
    return max(3, duration // 5), math.ceil(duration / 2.5)


def platform_prompt_block(platform: str) -> str:
    profile = get_profile(platform)
    return (
        f"## Platform: {profile.name}\n"
        f"- Pacing: {profile.pacing}\n"
        f"- Hook Style: {profile.hook_style}\n"
        f"- Caption Density: {profile.caption_density}\n"
        f"- Edit Notes: {profile.edit_notes}\n"
        f"- CTA Style: {profile.cta_style}\n"
        f"- Tone: {profile.tone}\n\n"
        "Tailor hooks, dialogue, pacing and storyboard directions to this platform's native ad style."
    )


def beat_count_guidance(duration: int) -> str:
    low, high = get_beat_range(duration)
    return (
        f"For a {duration}s script, include {low}-{high} storyboard beats. "
        f"Each beat should last {duration / high:.1f}-{duration / low:.1f} seconds on average."
    )


def validate_beat_count(storyboard: list | None, duration: int) -> str | None:
    """Return a warning when the beat count is outside the duration's range."""
    if not storyboard:
        return "Script has no storyboard"
    count = len(storyboard)
    low, high = get_beat_range(duration)
    if count < low:
        return (
            f"Script has only {count} beats for {duration}s duration (expected {low}-{high}). "
            "May feel too slow or lack visual variety."
        )
    if count > high:
        return (
            f"Script has {count} beats for {duration}s duration (expected {low}-{high}). "
            "May be unrealistic to film with this many cuts."
        )
    return None
