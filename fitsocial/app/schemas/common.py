"""
Response envelope shared by every endpoint.
"""

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """
    ``{"success": true, "data": ..., "message": ...}``

    Failures use the error envelope built in core/exceptions.py.
    """
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, data: Optional[T] = None, message: Optional[str] = None) -> "ApiResponse[T]":
        return cls(success=True, data=data, message=message)
