"""
Director prompts, script parsing and video prompt assembly.

Everything here is pure text transformation; no network access.
"""

import re
from typing import Optional

from .models import Character, ContinuityState, SceneScript

MAX_PROMPT_LENGTH = 4000
VISUAL_FALLBACK_LENGTH = 500
DEFAULT_SUMMARY = "Scene continues the story."

SECTION_LABELS = ("SCENE_VISUAL", "DIALOGUE", "CONTINUITY_HOOK", "SCENE_SUMMARY")

# A label at the start of a line, tolerating markdown bullets / bold / headings
_LABEL_RE = re.compile(
    r"^[ \t>#*_-]*(" + "|".join(SECTION_LABELS) + r")[ \t*_]*:[ \t*_]*",
    re.MULTILINE,
)


# ── Director (text backend) prompts ──────────────────────────────────────────

DIRECTOR_SYSTEM_PROMPT = """You are a professional film director and screenwriter with 20 years experience.
You write realistic cinematic scenes with strong continuity for AI video generation.

CRITICAL RULES:
1. Scenes MUST flow naturally from previous scene
2. END every scene with CONTINUOUS MOTION that leads into next scene
3. Keep dialogue SHORT and REALISTIC (movie dialogue, not prose)
4. NEVER reset story or character positions
5. Maintain consistent character wardrobes and appearances
6. Always describe VISUAL elements that can be shown on screen
7. Focus on actions, expressions, camera movements
8. Each scene should have a clear beginning, middle, and cliffhanger ending

FORMAT STRICTLY:
SCENE_VISUAL:
[Detailed visual description including camera movements, lighting, character actions]

DIALOGUE:
Character: "Line"
Character: "Line"

CONTINUITY_HOOK:
[One sentence: the exact motion, position and state of every character in the final frame]

SCENE_SUMMARY:
[One paragraph summary for continuity]"""


def _character_roster(characters: list[Character]) -> str:
    lines = []
    for c in characters:
        line = f"- {c.name}: {c.personality or 'realistic movie character'}"
        if c.base_prompt:
            line += f" ({c.base_prompt})"
        lines.append(line)
    return "\n".join(lines)


def build_director_prompt(
    story_premise: str,
    characters: list[Character],
    continuity: ContinuityState,
    scene_number: int,
    total_scenes: int,
    style_reference: Optional[str] = None,
) -> str:
    parts = [f"STORY PREMISE: {story_premise}", ""]
    if continuity.previous_scene_end:
        parts.append(f"PREVIOUS SCENE ENDED WITH: {continuity.previous_scene_end}")
        parts.append("")
    parts.append("STORY CONTINUITY SO FAR:")
    parts.append(continuity.story_so_far.strip() or "Beginning of the film.")
    parts.append("")
    parts.append("CHARACTERS:")
    parts.append(_character_roster(characters))
    if style_reference:
        parts.append("")
        parts.append(f"VISUAL STYLE REFERENCE: {style_reference}")
    parts.append("")
    parts.append(f"Write SCENE {scene_number} of {total_scenes}.")
    parts.append("""
CONTINUATION REQUIREMENTS:
- Start exactly where previous scene left off
- Describe camera movements: pan, dolly, push in, crane shot, etc.
- Include lighting and atmosphere
- Characters should be in motion when possible""")
    if scene_number < total_scenes:
        parts.append(f"- End with a moment that naturally leads into scene {scene_number + 1}")
    else:
        parts.append("- This is the final scene: resolve the story with a closing image")
    parts.append("- Dialogue should be sparse and impactful (max 3-4 lines total)")
    parts.append("- Use present tense for visual descriptions")
    return "\n".join(parts)


def filler_script(characters: list[Character]) -> str:
    """Deterministic script used when the text backend is unavailable."""
    names = " and ".join(c.name for c in characters) or "the characters"
    lead = characters[0].name if characters else "Character"
    return f"""SCENE_VISUAL:
A cinematic scene showing {names} continuing their story.
Professional camera movements, smooth transitions.

DIALOGUE:
{lead}: "We need to keep moving."

CONTINUITY_HOOK:
{names} keep walking forward as the camera slowly pushes in.

SCENE_SUMMARY:
The characters continue their journey, maintaining momentum for the next scene."""


def parse_scene_script(raw: Optional[str], fallback: bool = False) -> SceneScript:
    """
    Split a director script into its labeled sections.

    Each section runs from its label to the next known label or the end of
    the text. Never raises: missing sections fall back to defaults.
    """
    text = raw or ""
    sections: dict[str, str] = {}
    matches = list(_LABEL_RE.finditer(text))
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        sections.setdefault(match.group(1), text[match.end():end].strip())

    return SceneScript(
        raw=text,
        visual=sections.get("SCENE_VISUAL") or text[:VISUAL_FALLBACK_LENGTH].strip(),
        dialogue=sections.get("DIALOGUE", ""),
        continuity_hook=sections.get("CONTINUITY_HOOK", ""),
        summary=sections.get("SCENE_SUMMARY") or DEFAULT_SUMMARY,
        fallback=fallback,
    )


# ── Video prompt assembly ────────────────────────────────────────────────────

STYLE_LOCK = """CINEMATIC STYLE LOCK:
- cinematic lighting
- film color grading
- smooth camera movement
- ultra realistic
- high temporal consistency
- no flicker
- professional movie look
- consistent motion blur
- depth of field
- 4K quality
- Arri Alexa camera style
- Roger Deakins cinematography
- Christopher Nolan film style"""

CONTINUOUS_CINEMATOGRAPHY = """CONTINUOUS CINEMATOGRAPHY:
- smooth camera transitions
- professional camera movements
- maintain temporal consistency
- no jump cuts or scene resets
- natural motion flow
- filmic pacing"""

TECHNICAL_REQUIREMENTS = """TECHNICAL REQUIREMENTS:
- 4K resolution, film quality
- natural film grain
- cinematic 16:9 aspect ratio
- professional color grading
- realistic lighting and shadows
- consistent character appearance
- temporal stability between frames"""


def character_lock_block(character: Character) -> str:
    lines = [
        f"CHARACTER LOCK: {character.name}",
        character.base_prompt or "cinematic, realistic character",
        f"- personality: {character.personality}",
        "- same face, same body, same hairstyle across all scenes",
        "- same wardrobe style and colors",
        "- identity locked with temporal consistency",
        "- consistent facial features and proportions",
        "- unchanged clothing unless story requires",
    ]
    if character.visual_details:
        lines.append(f"- {character.visual_details}")
    if character.reference_image:
        lines.append(f"- Based on reference image: {character.reference_image}")
    return "\n".join(lines)


def build_video_prompt(
    script: SceneScript,
    characters: list[Character],
    previous_scene_end: Optional[str] = None,
) -> str:
    """Assemble the generation prompt, hard-capped at MAX_PROMPT_LENGTH chars."""
    blocks = [f"CINEMATIC SCENE DIRECTIONS:\n{script.visual}"]
    if script.dialogue:
        blocks.append(f"DIALOGUE SCENE:\n{script.dialogue}")
    if previous_scene_end:
        blocks.append(f"CONTINUE FROM PREVIOUS SCENE: {previous_scene_end}")
    else:
        blocks.append("Opening scene of the film.")
    blocks.append(STYLE_LOCK)
    blocks.extend(character_lock_block(c) for c in characters)
    blocks.append(CONTINUOUS_CINEMATOGRAPHY)
    blocks.append(TECHNICAL_REQUIREMENTS)

    prompt = "\n\n".join(blocks).strip()
    return prompt[:MAX_PROMPT_LENGTH]
