"""Keyed state stores for cross-request behavioural tracking.

The conversation-pattern and behaviour-profile tables are the only mutable
state shared between concurrent validations. Both sit behind this narrow
``get`` / ``update`` interface so that two messages from the same lead cannot
lose each other's updates.

Merge functions must return a new value and never mutate the one they are
given: :meth:`KeyedStateStore.get` hands out the stored object directly.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Callable, Hashable
from typing import Generic, TypeVar

T = TypeVar("T")


class KeyedStateStore(ABC, Generic[T]):
    """Abstract per-key state store with atomic read-modify-write."""

    @abstractmethod
    async def get(self, key: Hashable) -> T | None:
        """Return the current value for *key*, or ``None``."""
        raise NotImplementedError

    @abstractmethod
    async def update(self, key: Hashable, merge: Callable[[T | None], T]) -> tuple[T | None, T]:
        """Atomically replace the value for *key* with ``merge(current)``.

        Returns:
            ``(previous, current)`` as seen inside the critical section.
        """
        raise NotImplementedError


class InMemoryStateStore(KeyedStateStore[T]):
    """Process-local store guarded by one ``asyncio.Lock`` per key.

    Entries live for the process lifetime. Replicas do not share state.
    """

    def __init__(self) -> None:
        self._values: dict[Hashable, T] = {}
        self._locks: defaultdict[Hashable, asyncio.Lock] = defaultdict(asyncio.Lock)

    def __len__(self) -> int:
        return len(self._values)

    async def get(self, key: Hashable) -> T | None:
        return self._values.get(key)

    async def update(self, key: Hashable, merge: Callable[[T | None], T]) -> tuple[T | None, T]:
        async with self._locks[key]:
            previous = self._values.get(key)
            current = merge(previous)
            self._values[key] = current
            return previous, current
