"""Back-office product catalogue."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.api import deps
from atelier.api.errors import http_error
from atelier.core.errors import DomainError
from atelier.models import User
from atelier.schemas import (
    ApiResponse,
    ProductAdminRead,
    ProductCreate,
    ProductUpdate,
    ok,
)
from atelier.services import catalog_service

router = APIRouter()


@router.get(
    "", response_model=ApiResponse[list[ProductAdminRead]], summary="List products"
)
async def list_products(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
    category: Annotated[str | None, Query()] = None,
    is_active: Annotated[bool | None, Query()] = None,
) -> ApiResponse[list[ProductAdminRead]]:
    products = await catalog_service.list_all_products(
        session, category=category, is_active=is_active
    )
    return ok([ProductAdminRead.model_validate(product) for product in products])


@router.post(
    "",
    response_model=ApiResponse[ProductAdminRead],
    status_code=status.HTTP_201_CREATED,
    summary="Create product",
)
async def create_product(
    payload: ProductCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[ProductAdminRead]:
    try:
        product = await catalog_service.create_product(session, **payload.model_dump())
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(ProductAdminRead.model_validate(product), message="Product created")


@router.patch(
    "/{product_id}",
    response_model=ApiResponse[ProductAdminRead],
    summary="Update product",
)
async def update_product(
    product_id: uuid.UUID,
    payload: ProductUpdate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[ProductAdminRead]:
    try:
        product = await catalog_service.update_product(
            session, product_id=product_id, **payload.model_dump(exclude_unset=True)
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(ProductAdminRead.model_validate(product), message="Product updated")


@router.delete(
    "/{product_id}", response_model=ApiResponse[None], summary="Delete product"
)
async def delete_product(
    product_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
) -> ApiResponse[None]:
    try:
        await catalog_service.delete_product(session, product_id=product_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(message="Product deleted")
