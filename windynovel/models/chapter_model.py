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
)
from windynovel.database import Base, utcnow


class Chapter(Base):
    __tablename__ = "chapters"
    __table_args__ = (
        # chapter numbers are unique per story
        UniqueConstraint("story_id", "number", name="uq_chapter_story_number"),
        CheckConstraint("number >= 1", name="ck_chapter_number_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    story_id = Column(
        Integer,
        ForeignKey("stories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    number = Column(Integer, nullable=False)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    word_count = Column(Integer, nullable=False, default=0)
    notes = Column(String(1000), nullable=True)

    is_published = Column(Boolean, nullable=False, default=True, index=True)
    published_at = Column(DateTime(timezone=True), nullable=True, index=True)

    view_count = Column(Integer, nullable=False, default=0)
    like_count = Column(Integer, nullable=False, default=0)

    # aggregate of ChapterRating rows, recomputed on every rating
    rating_average = Column(Float, nullable=False, default=0.0)
    rating_count = Column(Integer, nullable=False, default=0)

    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    last_updated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class ChapterRating(Base):
    __tablename__ = "chapter_ratings"
    __table_args__ = (
        UniqueConstraint("chapter_id", "user_id", name="uq_chapter_rating_user"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_chapter_rating_range"),
    )

    id = Column(Integer, primary_key=True, index=True)
    chapter_id = Column(
        Integer,
        ForeignKey("chapters.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    rating = Column(Integer, nullable=False)
    rated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class ChapterLike(Base):
    __tablename__ = "chapter_likes"
    __table_args__ = (
        UniqueConstraint("chapter_id", "user_id", name="uq_chapter_like_user"),
    )

    id = Column(Integer, primary_key=True, index=True)
    chapter_id = Column(
        Integer,
        ForeignKey("chapters.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    liked_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
