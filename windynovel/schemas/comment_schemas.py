from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from windynovel.schemas.user_schemas import UserSummaryOut


class CreateCommentIn(BaseModel):
    content: str = Field(min_length=1)
    story_id: Optional[int] = None
    chapter_id: Optional[int] = None
    parent_id: Optional[int] = None


class UpdateCommentIn(BaseModel):
    content: str = Field(min_length=1)


class ReportIn(BaseModel):
    reason: str


class ApprovalIn(BaseModel):
    is_approved: bool


class CommentOut(BaseModel):
    id: int
    content: str
    story_id: Optional[int] = None
    chapter_id: Optional[int] = None
    parent_id: Optional[int] = None
    is_reply: bool
    like_count: int
    reply_count: int
    is_liked: bool = False
    is_edited: bool
    edited_at: Optional[datetime] = None
    is_deleted: bool
    created_at: datetime
    updated_at: datetime
    author: Optional[UserSummaryOut] = None
    replies: List[CommentOut] = []


class ReportOut(BaseModel):
    user_id: int
    reason: str
    reported_at: datetime


class AdminCommentOut(CommentOut):
    is_approved: bool
    deleted_at: Optional[datetime] = None
    report_count: int = 0
    reports: List[ReportOut] = []


class CommentLikeOut(BaseModel):
    liked: bool
    like_count: int


CommentOut.model_rebuild()
