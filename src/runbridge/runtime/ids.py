"""Identifier generators injected into the run state machine."""

from __future__ import annotations

from collections.abc import Callable
from itertools import count
from uuid import uuid4

IdGenerator = Callable[[], str]


def uuid_ids(*, prefix: str = "msg") -> IdGenerator:
    """Return a generator of random, globally unique identifiers."""

    def _next() -> str:
        return f"{prefix}-{uuid4().hex}"

    return _next


def sequential_ids(*, prefix: str = "msg", start: int = 1) -> IdGenerator:
    """Return a generator of deterministic identifiers: ``msg-1``, ``msg-2``..."""

    counter = count(start)

    def _next() -> str:
        return f"{prefix}-{next(counter)}"

    return _next


__all__ = ["IdGenerator", "sequential_ids", "uuid_ids"]
