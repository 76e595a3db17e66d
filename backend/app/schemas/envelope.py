from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Uniform success envelope. Errors are rendered by the app's exception handlers."""

    success: bool = True
    data: T
    message: str | None = None


class ApiError(BaseModel):
    success: bool = False
    error: str
