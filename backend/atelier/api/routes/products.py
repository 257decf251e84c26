"""Public product catalog."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.api import deps
from atelier.api.errors import http_error
from atelier.core.errors import DomainError
from atelier.schemas import ApiResponse, ProductRead, ok
from atelier.services import catalog_service

router = APIRouter()


@router.get("", response_model=ApiResponse[list[ProductRead]], summary="List products")
async def list_products(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
) -> ApiResponse[list[ProductRead]]:
    products = await catalog_service.list_products(session)
    return ok([ProductRead.model_validate(product) for product in products])


@router.get(
    "/{product_id}", response_model=ApiResponse[ProductRead], summary="Get product"
)
async def get_product(
    product_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
) -> ApiResponse[ProductRead]:
    try:
        product = await catalog_service.get_product(session, product_id=product_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(ProductRead.model_validate(product))
