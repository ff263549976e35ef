# app/features/jobs/targets.py
from __future__ import annotations

from enum import Enum
from typing import List, Optional, Tuple


class Target(str, Enum):
    """The twelve fixed page slots. Definition order is generation and assembly order."""

    COVER = "cover"
    STORY_PAGE_1 = "storyPage1"
    STORY_PAGE_2 = "storyPage2"
    STORY_PAGE_3 = "storyPage3"
    STORY_PAGE_4 = "storyPage4"
    STORY_PAGE_5 = "storyPage5"
    STORY_PAGE_6 = "storyPage6"
    STORY_PAGE_7 = "storyPage7"
    STORY_PAGE_8 = "storyPage8"
    STORY_PAGE_9 = "storyPage9"
    STORY_PAGE_10 = "storyPage10"
    BACK_COVER = "backCover"

    def __str__(self) -> str:
        return self.value


TARGETS: List[Target] = list(Target)
STORY_TARGETS: List[Target] = [t for t in TARGETS if t.value.startswith("storyPage")]

# back cover is treated as boilerplate: generated, but not gated on approval
REQUIRED_APPROVALS: List[Target] = [Target.COVER, *STORY_TARGETS]
EDITABLE_TARGETS: List[Target] = [Target.COVER, *STORY_TARGETS]

# (document key, slot) in position order
CUSTOMER_LAYOUT: List[Tuple[str, Target]] = [
    ("frontCover", Target.COVER),
    *[(t.value, t) for t in STORY_TARGETS],
    ("backCover", Target.BACK_COVER),
]
INTERIOR_LAYOUT: List[Tuple[str, Target]] = [(t.value, t) for t in STORY_TARGETS]


def is_story_page(target: Target) -> bool:
    return target in STORY_TARGETS


def story_number(target: Target) -> Optional[int]:
    """storyPage7 -> 7; covers -> None."""
    if not is_story_page(target):
        return None
    return int(target.value[len("storyPage"):])


def parse_target(raw: str) -> Target:
    try:
        return Target(raw)
    except ValueError:
        raise ValueError(f"Invalid pageKey: {raw}")
