# app/features/beats/prompt.py

SYSTEM = (
    "You are a creative comic writer. "
    "Return STRICT JSON only: an object {\"pages\": [...]} holding EXACTLY ten strings. "
    "No extra text, no comments, no markdown."
)

_LANGUAGE_RULES = {
    "de": (
        "IMPORTANT, LANGUAGE RULE:\n"
        "- Write ALL panel descriptions and ALL speech/thought bubble phrases in **German**.\n"
        "- BUT KEEP THE FORMAT TOKENS EXACTLY AS SHOWN (in English):\n"
        "  • Panel IDs: a) b) c) d) e) at the start of each line\n"
        "  • Bubble label: \"Speech bubbles [ ... ]\"\n"
        "- Do NOT use English words except those fixed tokens.\n\n"
        "Example page (style only; keep format exactly):\n"
        "a) Claudius blickt sich suchend um. Speech bubbles [Wo?, Hm?]\n"
        "b) Er tritt vorsichtig vor. Speech bubbles [Leise!]\n"
        "c) Eine Tür knarrt auf. Speech bubbles [Wer da?]\n"
    ),
    "en": (
        "IMPORTANT, LANGUAGE RULE:\n"
        "- Write ALL panel descriptions and ALL speech/thought bubble phrases in **English**.\n"
        "- KEEP FORMAT TOKENS EXACTLY: panel IDs a) b) c) d) e) at the start of each line, "
        "and the literal \"Speech bubbles [ ... ]\".\n"
    ),
}


def build_beats_prompt(*, story_description: str, hero_name: str, language: str) -> str:
    return f"""
Break this story about the hero "{hero_name}" into EXACTLY 10 comic pages. NEVER LESS THAN 10, NEVER MORE THAN 10.
Each page MUST be divided into 3–5 PANELS, one per line, labelled a) to e).
Each panel describes ONE clear visual action; no repetition.
Each panel includes at most 1 very short speech or thought bubble (1–4 simple words) that advances the scene.

**STORY:** "{story_description}"

**CONSTRAINTS:**
- Family-friendly, adventurous tone.
- Keep bubble phrases simple, natural, and unique within a page.
{_LANGUAGE_RULES.get(language, _LANGUAGE_RULES["en"])}
**JSON SCHEMA:**
```json
{{"pages": [
  "a) [Panel description] Speech bubbles [word1]\\nb) [Panel description] Speech bubbles [word1]\\nc) ...",
  "... nine more page strings ..."
]}}
```""".strip()
