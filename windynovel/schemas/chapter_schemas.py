from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ChapterCreate(BaseModel):
    story_id: int
    number: int = Field(ge=1)
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    notes: Optional[str] = Field(default=None, max_length=1000)
    is_published: bool = True


class ChapterUpdate(BaseModel):
    number: Optional[int] = Field(default=None, ge=1)
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    content: Optional[str] = Field(default=None, min_length=1)
    notes: Optional[str] = Field(default=None, max_length=1000)


class ChapterSummaryOut(BaseModel):
    id: int
    story_id: int
    number: int
    title: str
    word_count: int
    is_published: bool
    published_at: Optional[datetime] = None
    view_count: int
    like_count: int
    rating_average: float
    rating_count: int
    created_at: datetime
    updated_at: datetime

    model_config = {
        "from_attributes": True
    }


class ChapterOut(ChapterSummaryOut):
    content: str
    notes: Optional[str] = None


class LatestChapterOut(ChapterSummaryOut):
    story_title: str
    story_slug: str


class NavItemOut(BaseModel):
    number: int
    title: str

    model_config = {
        "from_attributes": True
    }


class StoryRefOut(BaseModel):
    id: int
    title: str
    author: str
    slug: str

    model_config = {
        "from_attributes": True
    }


class ChapterReadOut(BaseModel):
    chapter: ChapterOut
    story: StoryRefOut
    previous: Optional[NavItemOut] = None
    next: Optional[NavItemOut] = None


class LikeOut(BaseModel):
    liked: bool
    like_count: int


class RatingStatsOut(BaseModel):
    average: float
    count: int
    user_rating: Optional[int] = None
