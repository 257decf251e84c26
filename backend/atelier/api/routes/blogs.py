"""Public journal posts."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.api import deps
from atelier.api.errors import http_error
from atelier.core.errors import DomainError
from atelier.schemas import ApiResponse, BlogPostRead, ok
from atelier.services import blog_service

router = APIRouter()


@router.get("", response_model=ApiResponse[list[BlogPostRead]], summary="List posts")
async def list_posts(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
) -> ApiResponse[list[BlogPostRead]]:
    posts = await blog_service.list_published_posts(session)
    return ok([BlogPostRead.model_validate(post) for post in posts])


@router.get(
    "/{identifier}",
    response_model=ApiResponse[BlogPostRead],
    summary="Get a post by id or slug",
)
async def get_post(
    identifier: str,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
) -> ApiResponse[BlogPostRead]:
    try:
        post = await blog_service.get_published_post(session, identifier=identifier)
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(BlogPostRead.model_validate(post))
