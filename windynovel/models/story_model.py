from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Float,
    Boolean,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Enum as SqlEnum,
)
from sqlalchemy.orm import relationship
from windynovel.database import Base, utcnow
import enum


class StoryStatus(str, enum.Enum):
    ONGOING = "ongoing"
    COMPLETED = "completed"
    PAUSED = "paused"
    DROPPED = "dropped"


class StoryTag(str, enum.Enum):
    SCHOOL = "học đường"
    ROMANCE = "lãng mạn"
    ACTION = "hành động"
    FANTASY = "viễn tưởng"
    HORROR = "kinh dị"
    COMEDY = "hài hước"
    ADVENTURE = "phiêu lưu"
    DRAMA = "drama"
    SCIENCE = "khoa học"
    MYSTERY = "huyền bí"


class Story(Base):
    __tablename__ = "stories"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False, index=True)
    slug = Column(String(255), nullable=False, unique=True, index=True)
    author = Column(String(100), nullable=False)
    translator = Column(String(100), nullable=True)
    description = Column(Text, nullable=False)
    cover = Column(String, nullable=True)

    status = Column(
        SqlEnum(StoryStatus, name="story_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=StoryStatus.ONGOING,
    )

    # denormalized counters
    total_chapters = Column(Integer, nullable=False, default=0)
    view_count = Column(Integer, nullable=False, default=0)
    like_count = Column(Integer, nullable=False, default=0)
    bookmark_count = Column(Integer, nullable=False, default=0)

    rating_average = Column(Float, nullable=False, default=0.0)
    rating_count = Column(Integer, nullable=False, default=0)

    is_published = Column(Boolean, nullable=False, default=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    featured = Column(Boolean, nullable=False, default=False)
    featured_order = Column(Integer, nullable=False, default=0)

    created_by = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    last_updated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow, index=True)

    # tags are few and always shown with the story, so load them eagerly
    tag_links = relationship(
        "StoryTagLink",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="StoryTagLink.id",
    )

    @property
    def tags(self) -> list[str]:
        return [link.tag.value for link in self.tag_links]

    def set_tags(self, tags) -> None:
        wanted: list[StoryTag] = []
        for t in tags or []:
            tag = t if isinstance(t, StoryTag) else StoryTag(t)
            if tag not in wanted:
                wanted.append(tag)
        current = {link.tag: link for link in self.tag_links}
        self.tag_links = [current.get(tag) or StoryTagLink(tag=tag) for tag in wanted]


class StoryTagLink(Base):
    __tablename__ = "story_tags"
    __table_args__ = (
        UniqueConstraint("story_id", "tag", name="uq_story_tag"),
    )

    id = Column(Integer, primary_key=True, index=True)
    story_id = Column(
        Integer,
        ForeignKey("stories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tag = Column(
        SqlEnum(StoryTag, name="story_tag", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        index=True,
    )


class StoryRating(Base):
    __tablename__ = "story_ratings"
    __table_args__ = (
        UniqueConstraint("story_id", "user_id", name="uq_story_rating_user"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_story_rating_range"),
    )

    id = Column(Integer, primary_key=True, index=True)
    story_id = Column(
        Integer,
        ForeignKey("stories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    rating = Column(Integer, nullable=False)
    rated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
