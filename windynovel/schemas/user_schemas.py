from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator


class UserCreate(BaseModel):
    username: str = Field(min_length=3, max_length=30, pattern=r"^[A-Za-z0-9_]+$")
    email: EmailStr
    password: str = Field(min_length=6)
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class UserLogin(BaseModel):
    # username or email
    login: str
    password: str


class ChangePasswordIn(BaseModel):
    current_password: str
    new_password: str = Field(min_length=6)
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValueError("New passwords do not match")
        return self


class PreferencesIn(BaseModel):
    theme: Optional[Literal["light", "dark"]] = None
    font_size: Optional[Literal["small", "medium", "large"]] = None
    font_family: Optional[Literal["serif", "sans-serif", "monospace"]] = None
    auto_bookmark: Optional[bool] = None


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = Field(default=None, max_length=50)
    bio: Optional[str] = Field(default=None, max_length=500)
    avatar: Optional[str] = None
    favorite_genres: Optional[List[str]] = None
    preferences: Optional[PreferencesIn] = None


class UserOut(BaseModel):
    id: int
    username: str
    email: str
    role: str
    display_name: Optional[str] = None
    avatar: Optional[str] = None
    bio: Optional[str] = None
    favorite_genres: List[str] = []
    preferences: dict = {}
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


class UserSummaryOut(BaseModel):
    id: int
    username: str
    display_name: Optional[str] = None
    avatar: Optional[str] = None

    model_config = {
        "from_attributes": True
    }


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut


class RoleIn(BaseModel):
    role: Literal["USER", "ADMIN"]


class StatusIn(BaseModel):
    is_active: bool


class ReadingProgressIn(BaseModel):
    story_id: int
    chapter_number: int = Field(ge=1)
    progress: int = Field(default=0, ge=0, le=100)


class ReadingHistoryOut(BaseModel):
    story_id: int
    story_title: str
    story_slug: str
    story_cover: Optional[str] = None
    chapter_number: int
    progress: int
    read_at: datetime


class BookmarkOut(BaseModel):
    story_id: int
    story_title: str
    story_slug: str
    story_cover: Optional[str] = None
    story_author: str
    total_chapters: int
    added_at: datetime


class BookmarkToggleOut(BaseModel):
    success: bool = True
    message: str
    bookmarked: bool
    bookmark_count: int
