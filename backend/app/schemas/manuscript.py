from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class ManuscriptUpdate(BaseModel):
    """
    管理员可编辑字段（状态通过 /status 单独修改）。
    """

    title: Optional[str] = Field(default=None, max_length=500)
    abstract: Optional[str] = Field(default=None, max_length=20000)
    keywords: Optional[List[str]] = Field(default=None, max_length=20)
    co_authors: Optional[List[str]] = Field(default=None, max_length=50)
    admin_notes: Optional[str] = Field(default=None, max_length=5000)


class StatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)
