# app/features/approval/panels.py
from __future__ import annotations

from typing import NamedTuple

from app.features.jobs.targets import Target

# pixel geometry of the delivered pages (200 DPI print size)
STORY_PAGE_SIZE = (1327, 2050)   # 168.27mm x 260.35mm
COVER_SIZE = (1351, 2103)        # 171.45mm x 266.7mm

WHOLE_PAGE = 0


class PanelRegion(NamedTuple):
    x: int
    y: int
    width: int
    height: int

    def as_fractions(self, page_size: tuple[int, int]) -> tuple[float, float, float, float]:
        pw, ph = page_size
        return (self.x / pw, self.y / ph, self.width / pw, self.height / ph)


def page_size_for(target: Target) -> tuple[int, int]:
    if target in (Target.COVER, Target.BACK_COVER):
        return COVER_SIZE
    return STORY_PAGE_SIZE


def panel_region(target: Target, panel_number: int, total_panels: int) -> PanelRegion:
    """
    Vertical slicing: panel k of n is the k-th equal horizontal band of the
    page. Covers are a single full-bleed panel whatever is asked. Panel 0 is
    the whole page.
    """
    width, height = page_size_for(target)
    if target in (Target.COVER, Target.BACK_COVER) or panel_number == WHOLE_PAGE:
        return PanelRegion(0, 0, width, height)

    if total_panels < 1 or panel_number < 1 or panel_number > total_panels:
        raise ValueError(f"Invalid panel number {panel_number}. Must be between 1 and {total_panels}")

    band = height // total_panels
    top = (panel_number - 1) * band
    # the last band runs to the bottom edge
    if panel_number == total_panels:
        return PanelRegion(0, top, width, height - top)
    return PanelRegion(0, top, width, band)
