from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass
class PageResult(Generic[T]):
    """One page of a remote list plus the totals the service reported."""

    items: list[T] = field(default_factory=list)
    total_pages: int = 1
    total_items: int = 0
