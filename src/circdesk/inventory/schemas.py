"""Pydantic schemas for title inventory."""

from pydantic import BaseModel, Field


class TitleCreate(BaseModel):
    """Schema for adding a title to the catalog."""

    name: str = Field(..., min_length=1, max_length=500)
    total_copies: int = Field(1, ge=0, le=1000)


class TitleAvailability(BaseModel):
    """Read-only availability projection of a title."""

    title_id: str
    name: str
    total: int
    available: int
    on_loan: int
    held: int
    is_active: bool

    @property
    def is_balanced(self) -> bool:
        """Every copy is accounted for exactly once."""
        return self.available + self.on_loan + self.held == self.total
