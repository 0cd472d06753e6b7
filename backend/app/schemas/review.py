from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class AssignReviewersRequest(BaseModel):
    reviewer_ids: List[str] = Field(default_factory=list, max_length=50)

    @field_validator("reviewer_ids")
    @classmethod
    def strip_ids(cls, v: List[str]) -> List[str]:
        return [str(i).strip() for i in v if str(i).strip()]


class ReviewDecisionRequest(BaseModel):
    approve: bool
    notes: Optional[str] = Field(default=None, max_length=5000)
