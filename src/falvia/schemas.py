"""Response envelope shared by every rewards route."""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    """``{success, data, error, code}``. Failures are built by the error handlers."""

    success: bool = True
    data: T | None = None
    error: str | None = None
    code: str | None = None


def ok(data: T, code: str | None = None) -> Envelope[T]:
    """Wrap a successful result."""
    return Envelope(success=True, data=data, code=code)
