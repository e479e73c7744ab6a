from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field


class KeyRotationRequest(BaseModel):
    old_key: str = Field(min_length=1)
    new_key: str = Field(min_length=1)


class KeyRotationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rotated: int
    failed: int
    errors: List[str] = Field(default_factory=list)
    unrotated_settings: Dict[str, str] = Field(default_factory=dict)
