"""Explicit result wrapper for advisory operations that may degrade."""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """
    A value plus a flag telling whether it is a fallback.

    Advisory operations never raise; when the store fails they hand back a
    safe value (usually empty) with ``degraded=True`` and the error text.
    """
    value: T
    degraded: bool = False
    error: Optional[str] = None

    @classmethod
    def fallback(cls, value: T, error: Exception) -> "Result[T]":
        return cls(value=value, degraded=True, error=str(error))
