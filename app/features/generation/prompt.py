# app/features/generation/prompt.py
import re
from typing import List, Optional

STORY_PAGE_PX = "1327x2050"
COVER_PX = "1351x2103"

_PANEL_ID_RE = re.compile(r"^\s*[a-e]\)\s*", re.IGNORECASE | re.MULTILINE)


def illustration_style(s: str) -> str:
    return f"{s}; stylized fictional illustration; NOT photorealistic; simplified facial features; flat shading"


def character_prompt(*, style: str, illustration: str) -> str:
    return (
        f"Create a stylized illustrated version of the uploaded person in style: {illustration_style(illustration)}, "
        f'outfit/look: "{style}".\n'
        "The design must clearly look fictional, not photorealistic, like a character drawing or comic illustration.\n"
        "Keep recognizable features (face shape, hair, glasses, etc.) so the person is identifiable, "
        "but rendered in the chosen illustration style. Family-friendly."
    )


def _cover_base(*, style: str, illustration: str, story_description: str) -> str:
    return (
        f'Use the provided character reference AS-IS (same face, hair, outfit "{style}"); do NOT redesign. '
        f"Art style: {illustration_style(illustration)}. "
        f'Neutral cover background matching to: "{story_description}". '
        "Family-friendly, highly stylized visuals. Single dynamic composition, no panels."
    )


def _qa_suffix(issues: List[str]) -> str:
    if not issues:
        return ""
    return f" Fix these issues: {'; '.join(issues[:4])}."


def cover_prompt(
    *,
    hero_name: str,
    comic_title: str,
    style: str,
    illustration: str,
    story_description: str,
    qa_fix_issues: Optional[List[str]] = None,
) -> str:
    return (
        f"Create a beautiful comic book front cover showing very prominently the hero {hero_name} ({style}) only. "
        f'ONLY text on the cover is the title "{comic_title}" (very prominent). No other text or characters. '
        f"{_cover_base(style=style, illustration=illustration, story_description=story_description)} "
        f"Portrait composition for a {COVER_PX} px print page."
        f"{_qa_suffix(qa_fix_issues or [])}"
    )


def back_cover_prompt(
    *,
    hero_name: str,
    comic_title: str,
    style: str,
    illustration: str,
    story_description: str,
    qa_fix_issues: Optional[List[str]] = None,
) -> str:
    return (
        f'Create a comic book back cover with one panel for "{comic_title}" featuring {hero_name}. '
        f"{_cover_base(style=style, illustration=illustration, story_description=story_description)} "
        'Include the text: "mycomic-book.com". No other text. '
        f"Portrait composition for a {COVER_PX} px print page."
        f"{_qa_suffix(qa_fix_issues or [])}"
    )


def page_prompt(
    *,
    page_number: int,
    beat: str,
    panel_count: int,
    style: str,
    illustration: str,
    has_previous_page: bool,
    qa_fix_issues: Optional[List[str]] = None,
) -> str:
    beat_clean = _PANEL_ID_RE.sub("", beat.strip())
    continuity = ""
    if page_number > 1 and has_previous_page:
        continuity = "\n- CONTINUITY: continue from the previous page's state; do not restage or restart the story."

    return f"""
Render the locked beat for THIS page EXACTLY as specified.
- Do NOT add, remove, merge, or reorder panels; never draw panel IDs or labels like "a)", "b)", "c)" anywhere in the artwork.
- Use ONLY the provided character reference (same face, hair, outfit "{style}"); do NOT redesign.
- Art style: {illustration_style(illustration)}.
- At most ONE speech/thought bubble per panel, using ONLY the phrases listed on that panel's line of the beat.
- No extra text (titles, captions, page numbers, meta). Keep in-scene text explicitly described in the beat.
- If a context image of the PREVIOUS PAGE is provided, treat it as continuity ground truth for secondary characters.
- Keep poses clear and readable; family-friendly.{continuity}

Render the following locked beat for Page {page_number}/10 EXACTLY as written:
{beat_clean}

- Render EXACTLY {panel_count} distinct panels, stacked vertically, NO MORE, NO FEWER.
- Keep the hero identical to the character reference on every panel.
- Do NOT rephrase, translate, or invent bubble text; do NOT copy text from context images.
- Portrait composition for a {STORY_PAGE_PX} px print page.{_qa_suffix(qa_fix_issues or [])}
""".strip()


def edit_prompt(*, instructions: str, beat: Optional[str], whole_page: bool) -> str:
    scope = (
        "Apply the change to the FULL page."
        if whole_page
        else "Only repaint the transparent area of the mask (one panel); leave every other panel pixel-identical."
    )
    parts = [
        "EDIT MODE: You are provided with this comic book page.",
        f"Requested change: {instructions.strip()}",
        scope,
        "Keep the character style (outfit, gadgets, face, hair) the same as on the reference image, "
        "and keep the illustration style so the page continues the story seamlessly.",
        "Always correct spelling and grammar of the comic text.",
    ]
    if beat:
        parts.append(f"BEAT FOR THIS PAGE:\n{beat.strip()}")
    parts.append("Do not change the page format, size, or panel layout.")
    return "\n".join(parts)


def qa_fix_prompt(issues: List[str]) -> str:
    return (
        "Make a MINIMAL edit of this comic page. Change only what is needed to fix: "
        f"{'; '.join(issues[:4])}. Keep composition, characters, and style identical."
    )


QA_CHECKLIST = """You are a strict visual QA bot.

Inputs:
- backCover: {is_back_cover}

Checklist (flag ONLY these):
1) Unreadable bubble text (illegible or cropped).
2) Duplicated speech bubbles on the same page or same panel.
3) Bubble nonsense / wrong speaker.
4) Duplicated character within one panel.

Ignore everything else. If backCover=true, allow only "mycomic-book.com" as text.

Return ONLY a compact JSON: {{"ok": true|false, "issues": ["...","..."]}}"""
