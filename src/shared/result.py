"""
Result type shared by every pipeline stage.

A ``Result`` is either ``Ok(value)`` or ``Err(error)``.  Client operations
and validation stages return one instead of raising, so a failure never
crosses the pipeline boundary as an exception.

Usage::

    result = await store.read_existing_ids()
    if not result.ok:
        return result          # propagate the Err unchanged
    existing = result.value
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful outcome carrying ``value``."""

    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Failed outcome carrying ``error``."""

    error: E

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err[E]]
