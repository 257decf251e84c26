"""Journal posts: public reads by id or slug, back-office editing."""

from __future__ import annotations

import logging
import re
import unicodedata
from collections.abc import Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.core.errors import NotFound, ValidationFailed
from atelier.models import BlogPost

logger = logging.getLogger(__name__)

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    """``"Émaux d'hiver"`` -> ``"emaux-d-hiver"``."""

    ascii_value = (
        unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    )
    return _NON_SLUG_CHARS.sub("-", ascii_value.lower()).strip("-")


async def _slug_taken(
    session: AsyncSession, slug: str, *, exclude_id: UUID | None = None
) -> bool:
    stmt = select(BlogPost.id).where(BlogPost.slug == slug)
    if exclude_id is not None:
        stmt = stmt.where(BlogPost.id != exclude_id)
    return (await session.execute(stmt)).first() is not None


async def _unique_slug(session: AsyncSession, title: str) -> str:
    base = slugify(title) or "article"
    slug, suffix = base, 2
    while await _slug_taken(session, slug):
        slug = f"{base}-{suffix}"
        suffix += 1
    return slug


def _parse_uuid(identifier: str) -> UUID | None:
    try:
        return UUID(identifier)
    except ValueError:
        return None


async def list_published_posts(session: AsyncSession) -> Sequence[BlogPost]:
    stmt = (
        select(BlogPost)
        .where(BlogPost.published.is_(True))
        .order_by(BlogPost.created_at.desc())
    )
    return (await session.execute(stmt)).scalars().all()


async def get_published_post(session: AsyncSession, *, identifier: str) -> BlogPost:
    """Look a post up by UUID when the identifier parses as one, else by slug."""

    post_id = _parse_uuid(identifier)
    stmt = select(BlogPost).where(BlogPost.published.is_(True))
    if post_id is not None:
        stmt = stmt.where(BlogPost.id == post_id)
    else:
        stmt = stmt.where(BlogPost.slug == identifier.lower())
    post = (await session.execute(stmt)).scalar_one_or_none()
    if post is None:
        raise NotFound("Blog post not found")
    return post


async def list_posts(
    session: AsyncSession, *, published: bool | None = None
) -> Sequence[BlogPost]:
    stmt = select(BlogPost).order_by(BlogPost.created_at.desc())
    if published is not None:
        stmt = stmt.where(BlogPost.published.is_(published))
    return (await session.execute(stmt)).scalars().all()


async def get_post(session: AsyncSession, *, post_id: UUID) -> BlogPost:
    post = await session.get(BlogPost, post_id)
    if post is None:
        raise NotFound("Blog post not found")
    return post


async def create_post(
    session: AsyncSession, *, slug: str | None = None, **fields: Any
) -> BlogPost:
    if not (fields.get("title") or "").strip():
        raise ValidationFailed("Title is required")
    if not (fields.get("content") or "").strip():
        raise ValidationFailed("Content is required")
    if slug:
        slug = slugify(slug)
        if not slug:
            raise ValidationFailed("Slug is invalid")
        if await _slug_taken(session, slug):
            raise ValidationFailed("Slug is already in use")
    else:
        slug = await _unique_slug(session, fields["title"])
    post = BlogPost(slug=slug, **fields)
    session.add(post)
    await session.commit()
    logger.info("Blog post %s created as %s", post.id, post.slug)
    return post


async def update_post(
    session: AsyncSession, *, post_id: UUID, **fields: Any
) -> BlogPost:
    post = await get_post(session, post_id=post_id)
    for required in ("title", "content"):
        if required in fields and not (fields[required] or "").strip():
            raise ValidationFailed(f"{required.capitalize()} is required")
    if "slug" in fields:
        slug = slugify(fields["slug"] or "")
        if not slug:
            raise ValidationFailed("Slug is invalid")
        if await _slug_taken(session, slug, exclude_id=post.id):
            raise ValidationFailed("Slug is already in use")
        fields["slug"] = slug
    for key, value in fields.items():
        setattr(post, key, value)
    await session.commit()
    return post


async def delete_post(session: AsyncSession, *, post_id: UUID) -> None:
    post = await get_post(session, post_id=post_id)
    await session.delete(post)
    await session.commit()
