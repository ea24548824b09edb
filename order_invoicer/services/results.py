"""Explicit step results returned to the pipeline instead of raised errors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from order_invoicer.services.exceptions import ServiceError

T = TypeVar("T")
E = TypeVar("E", bound=ServiceError)


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure(Generic[E]):
    error: E

    @property
    def ok(self) -> bool:
        return False


Result = Union[Success[T], Failure[E]]
