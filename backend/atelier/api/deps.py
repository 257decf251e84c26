"""Common API dependencies."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.core.config import get_settings
from atelier.core.security import decode_access_token
from atelier.core.settings import get_payment_settings
from atelier.db.session import get_session
from atelier.integrations import SquareClient, StripeClient
from atelier.models import User, UserRole

settings = get_settings()

oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl=f"{settings.api_prefix}/auth/token", auto_error=False
)

_CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide an async database session."""
    async for session in get_session():
        yield session


async def _resolve_user(session: AsyncSession, token: str) -> User:
    try:
        payload = decode_access_token(token)
    except JWTError as exc:
        raise _CREDENTIALS_EXCEPTION from exc

    subject = payload.get("sub")
    if subject is None:
        raise _CREDENTIALS_EXCEPTION
    try:
        user_id = uuid.UUID(str(subject))
    except (ValueError, TypeError) as exc:
        raise _CREDENTIALS_EXCEPTION from exc

    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        raise _CREDENTIALS_EXCEPTION
    return user


async def get_current_user(
    token: Annotated[str | None, Depends(oauth2_scheme)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> User:
    """Authenticate request via bearer token."""
    if not token:
        raise _CREDENTIALS_EXCEPTION
    return await _resolve_user(session, token)


async def get_optional_user(
    token: Annotated[str | None, Depends(oauth2_scheme)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> User | None:
    """Checkout routes accept guests; a bad token is still rejected."""
    if not token:
        return None
    return await _resolve_user(session, token)


async def require_admin(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    if current_user.role is not UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required"
        )
    return current_user


def get_stripe_client() -> StripeClient:
    payment_settings = get_payment_settings()
    return StripeClient(
        payment_settings.stripe_secret_key,
        webhook_secret=payment_settings.stripe_webhook_secret,
    )


def get_square_client() -> SquareClient:
    payment_settings = get_payment_settings()
    return SquareClient(
        payment_settings.square_access_token,
        location_id=payment_settings.square_location_id,
        environment=payment_settings.square_environment,
        webhook_signature_key=payment_settings.square_webhook_signature_key,
        currency=payment_settings.currency,
    )

