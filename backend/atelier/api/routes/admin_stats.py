"""Back-office dashboard."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.api import deps
from atelier.api.errors import http_error
from atelier.core.errors import DomainError
from atelier.models import User
from atelier.schemas import ApiResponse, DashboardStats, ok
from atelier.services import reporting_service

router = APIRouter()


@router.get("", response_model=ApiResponse[DashboardStats], summary="Dashboard figures")
async def dashboard(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[User, Depends(deps.require_admin)],
    months: Annotated[int, Query()] = 6,
) -> ApiResponse[DashboardStats]:
    try:
        stats = await reporting_service.dashboard_stats(session, months=months)
    except DomainError as exc:
        raise http_error(exc) from exc
    return ok(DashboardStats.model_validate(stats))
