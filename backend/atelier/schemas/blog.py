"""Pydantic schemas for journal posts."""
from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class BlogPostBase(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    excerpt: str | None = None
    content: str = Field(min_length=1)
    image: str | None = None
    author: str | None = None
    category: str | None = None
    published: bool = True


class BlogPostCreate(BlogPostBase):
    slug: str | None = None


class BlogPostUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    slug: str | None = None
    excerpt: str | None = None
    content: str | None = Field(default=None, min_length=1)
    image: str | None = None
    author: str | None = None
    category: str | None = None
    published: bool | None = None


class BlogPostRead(BlogPostBase):
    id: uuid.UUID
    slug: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
