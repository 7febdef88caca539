"""SQLAlchemy ORM models for the like counter."""

from __future__ import annotations

from sqlalchemy import CheckConstraint, Integer, Text, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

LIKE_CEILING = 100_000


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class UrlLike(Base):
    """Like count for one canonical URL key."""

    __tablename__ = "url_likes"
    __table_args__ = (
        CheckConstraint("likes >= 0", name="ck_url_likes_non_negative"),
        CheckConstraint(f"likes <= {LIKE_CEILING}", name="ck_url_likes_ceiling"),
    )

    url: Mapped[str] = mapped_column(Text, primary_key=True)
    likes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
