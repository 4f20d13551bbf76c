"""Uniform result type for HTTP calls made by the embed client."""

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

import httpx

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """Either a value (``ok``) or an error message, never an exception."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    error_code: Optional[str] = None

    @classmethod
    def success(cls, value: T = None, status_code: Optional[int] = None) -> "Result[T]":
        return cls(ok=True, value=value, status_code=status_code)

    @classmethod
    def failure(
        cls,
        error: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ) -> "Result[T]":
        return cls(ok=False, error=error, status_code=status_code, error_code=error_code)


def normalize(response: httpx.Response) -> Result[Any]:
    """Convert an API response envelope into a Result."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if response.is_success:
        if isinstance(body, dict) and body.get("status") == "success":
            return Result.success(body.get("data"), status_code=response.status_code)
        return Result.success(body, status_code=response.status_code)

    if isinstance(body, dict):
        return Result.failure(
            body.get("message") or f"HTTP {response.status_code}",
            status_code=response.status_code,
            error_code=body.get("error_code"),
        )
    return Result.failure(
        response.reason_phrase or f"HTTP {response.status_code}",
        status_code=response.status_code,
    )
