"""
Character schema — the shape produced by `character create` and the walkthrough.

Characters are stored as a list per guild. Free-form info (race, class,
job, anything a player types) rides along as extra fields.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

# Fields with dedicated handling; everything else is free-form info.
RESERVED_FIELDS = ("name", "owner", "template", "description", "image", "stats", "retired")


class Character(BaseModel):
    """Schema for a player character."""

    name: str = Field(min_length=1)
    owner: str
    template: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    stats: Dict[str, str] = Field(default_factory=dict)
    retired: bool = False

    model_config = {"extra": "allow"}

    @field_validator("owner", mode="before")
    @classmethod
    def owner_as_string(cls, v):
        return str(v)

    @field_validator("stats", mode="before")
    @classmethod
    def stats_as_strings(cls, v):
        if not v:
            return {}
        return {str(k): str(val) for k, val in v.items() if val is not None}

    @property
    def info(self) -> Dict[str, str]:
        """Free-form info fields (everything that is not a reserved field)."""
        return {k: v for k, v in (self.model_extra or {}).items() if v is not None}
