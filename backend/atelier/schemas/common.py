"""Response envelope and shared field types."""

from __future__ import annotations

from typing import Annotated, Generic, TypeVar

from pydantic import BaseModel, BeforeValidator

from atelier.models import PaymentProvider

DataT = TypeVar("DataT")


class ApiResponse(BaseModel, Generic[DataT]):
    """``{success, message?, data?}`` wrapper around a payload."""

    success: bool = True
    message: str | None = None
    data: DataT | None = None


def ok(data: DataT | None = None, message: str | None = None) -> ApiResponse[DataT]:
    return ApiResponse(success=True, message=message, data=data)


def _blank_provider_to_none(value: object) -> object:
    if isinstance(value, str) and value.strip().lower() in {"", "none"}:
        return None
    return value


# "none" or an empty string means no online payment.
ProviderChoice = Annotated[
    PaymentProvider | None, BeforeValidator(_blank_provider_to_none)
]
