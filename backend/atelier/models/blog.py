"""Journal posts published on the studio site."""
from __future__ import annotations

import uuid

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from atelier.db.base import Base
from atelier.models.mixins import TimestampMixin


class BlogPost(TimestampMixin, Base):
    """Article addressed by id or by its unique slug."""

    __tablename__ = "blog_posts"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    excerpt: Mapped[str | None] = mapped_column(Text())
    content: Mapped[str] = mapped_column(Text(), nullable=False)
    image: Mapped[str | None] = mapped_column(String(500))
    author: Mapped[str | None] = mapped_column(String(150))
    category: Mapped[str | None] = mapped_column(String(100))
    published: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
