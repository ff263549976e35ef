# app/features/approval/schemas.py
from pydantic import BaseModel, Field


class EditPageRequest(BaseModel):
    instructions: str = Field(..., min_length=1, description="What to change on the page")
    panel: int = Field(0, ge=0, le=5, description="1-based panel to repaint; 0 = whole page")
