"""Per-target results for batch operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from .errors import GatewayError

T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T
    ok = True


@dataclass(frozen=True)
class Failure:
    error: GatewayError
    ok = False


Outcome = Union[Success[T], Failure]

__all__ = ["Success", "Failure", "Outcome"]
