"""Back-office journal editing."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.api import deps
from atelier.api.errors import http_error
from atelier.core.errors import DomainError
from atelier.models import User
from atelier.schemas import ApiResponse, BlogPostCreate, BlogPostRead, BlogPostUpdate, ok
from atelier.services import blog_service

router = APIRouter()


@router.get("", response_model=ApiResponse[list[BlogPostRead]], summary="List posts")
async def list_posts(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
    published: Annotated[bool | None, Query()] = None,
) -> ApiResponse[list[BlogPostRead]]:
    posts = await blog_service.list_posts(session, published=published)
    return ok([BlogPostRead.model_validate(post) for post in posts])


@router.post(
    "",
    response_model=ApiResponse[BlogPostRead],
    status_code=status.HTTP_201_CREATED,
    summary="Create post",
)
async def create_post(
    payload: BlogPostCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[BlogPostRead]:
    try:
        post = await blog_service.create_post(session, **payload.model_dump())
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(BlogPostRead.model_validate(post), message="Post created")


@router.patch(
    "/{post_id}", response_model=ApiResponse[BlogPostRead], summary="Update post"
)
async def update_post(
    post_id: uuid.UUID,
    payload: BlogPostUpdate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[BlogPostRead]:
    try:
        post = await blog_service.update_post(
            session, post_id=post_id, **payload.model_dump(exclude_unset=True)
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(BlogPostRead.model_validate(post), message="Post updated")


@router.delete("/{post_id}", response_model=ApiResponse[None], summary="Delete post")
async def delete_post(
    post_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[None]:
    try:
        await blog_service.delete_post(session, post_id=post_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(message="Post deleted")
