from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, text

from windynovel.database import Base, utcnow


class UserRole:
    USER = "USER"
    ADMIN = "ADMIN"


DEFAULT_PREFERENCES = {
    "theme": "light",
    "font_size": "medium",
    "font_family": "serif",
    "auto_bookmark": True,
}


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(30), unique=True, index=True, nullable=False)
    email = Column(String(320), unique=True, index=True, nullable=False)
    password = Column(String, nullable=False)
    role = Column(String, nullable=False, default=UserRole.USER)  # USER or ADMIN

    avatar = Column(String, nullable=True)
    display_name = Column(String(50), nullable=True)
    bio = Column(String(500), nullable=True)
    favorite_genres = Column(JSON, nullable=False, default=list)
    preferences = Column(JSON, nullable=False, default=lambda: dict(DEFAULT_PREFERENCES))

    is_active = Column(Boolean, default=True, nullable=False, server_default=text("true"))
    last_login = Column(DateTime(timezone=True), nullable=True, default=utcnow)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_admin(self) -> bool:
        return (self.role or "").upper() == UserRole.ADMIN
