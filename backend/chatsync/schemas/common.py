"""Shared API envelope and field bounds."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")

CONVERSATION_ID_MAX_LENGTH = 255


class ApiResponse(BaseModel, Generic[T]):
    """Consistent JSON envelope for API responses."""

    data: T
