from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class StoryStatusEnum(str, Enum):
    ONGOING = "ongoing"
    COMPLETED = "completed"
    PAUSED = "paused"
    DROPPED = "dropped"


class StoryCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    author: str = Field(min_length=1, max_length=100)
    translator: Optional[str] = Field(default=None, max_length=100)
    description: str = Field(min_length=1, max_length=2000)
    cover: Optional[str] = None
    tags: List[str] = []
    status: StoryStatusEnum = StoryStatusEnum.ONGOING
    is_published: bool = True


class StoryUpdate(BaseModel):
    # All optional so the client can send only what changed
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    slug: Optional[str] = Field(default=None, max_length=255)
    author: Optional[str] = Field(default=None, min_length=1, max_length=100)
    translator: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, min_length=1, max_length=2000)
    cover: Optional[str] = None
    tags: Optional[List[str]] = None
    status: Optional[StoryStatusEnum] = None


class PublishIn(BaseModel):
    is_published: bool


class FeatureIn(BaseModel):
    featured: bool
    featured_order: int = 0


class RatingIn(BaseModel):
    rating: int = Field(ge=1, le=5)


class StoryOut(BaseModel):
    id: int
    title: str
    slug: str
    author: str
    translator: Optional[str] = None
    description: str
    cover: Optional[str] = None
    tags: List[str] = []
    status: str
    total_chapters: int
    view_count: int
    like_count: int
    bookmark_count: int
    rating_average: float
    rating_count: int
    is_published: bool
    published_at: Optional[datetime] = None
    featured: bool
    featured_order: int
    created_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    model_config = {
        "from_attributes": True
    }

    @field_validator("status", mode="before")
    @classmethod
    def status_value(cls, v):
        return getattr(v, "value", v)


class StoryDetailOut(StoryOut):
    chapter_count: int
    is_bookmarked: bool = False


class StatisticsOut(BaseModel):
    stories: int
    authors: int
    readers: int
    total_views: int
