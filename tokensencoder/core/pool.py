"""
Items Pool
==========
A growable pool of reusable stateful items (encoders, per-token
processors, ...). Items are created lazily by a factory that receives
the slot id, and are never destroyed by ``release_all()``: the next
cycle gets the very same objects back, with their ids unchanged.

Generations:
    Every ``release_all()`` starts a new generation. An item acquired in
    a previous generation and not re-acquired since is *stale*; reading
    results through it is a caller bug that ``check_current()`` turns
    into a ProtocolError. Differentiable modules are bound to the pool
    that creates them and run this check themselves: forward on a stale
    module, or backward and errors reads not preceded by a forward in
    the current generation, raise ProtocolError.

Usage:
    >>> pool = ItemsPool(lambda id: Processor(id=id))
    >>> a, b = pool.get_item(), pool.get_item()   # ids 0 and 1
    >>> pool.release_all()
    >>> pool.get_item() is a                        # True, lowest free id
"""

from __future__ import annotations

import heapq
import logging
from typing import Callable, Generic, TypeVar

from tokensencoder.core.module import DifferentiableModule
from tokensencoder.errors import ProtocolError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ItemsPool(Generic[T]):
    """
    Pool of items identified by dense integer ids ``0..size-1``.

    Parameters
    ----------
    factory : callable
        ``factory(id)`` builds the item for slot ``id``. The item must
        expose that value as its ``id`` attribute.
    """

    def __init__(self, factory: Callable[[int], T]):
        self._factory = factory
        self._items: list[T] = []
        self._free: list[int] = []          # min-heap of free ids
        self._issued: dict[int, int] = {}   # id → generation it was issued in
        self._generation = 0

    @property
    def size(self) -> int:
        """Number of items ever created (and not shrunk away)."""
        return len(self._items)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def n_outstanding(self) -> int:
        return len(self._issued)

    def __len__(self) -> int:
        return len(self._items)

    def get_item(self) -> T:
        """Return the free item with the lowest id, creating one if needed."""
        if self._free:
            item_id = heapq.heappop(self._free)
            item = self._items[item_id]
        else:
            item_id = len(self._items)
            item = self._factory(item_id)
            if isinstance(item, DifferentiableModule):
                item.attach_pool(self)
            self._items.append(item)
            logger.debug(f"{type(self).__name__} grew to {len(self._items)} items")

        self._issued[item_id] = self._generation
        return item

    def get_items(self, n: int) -> list[T]:
        """Release every item, then acquire exactly ``n`` of them."""
        if n < 0:
            raise ValueError(f"Cannot get a negative number of items, got {n}")
        self.release_all()
        return [self.get_item() for _ in range(n)]

    def release_all(self) -> None:
        """Make every item available again, leaving their state untouched."""
        self._free = list(range(len(self._items)))
        self._issued.clear()
        self._generation += 1

    def is_stale(self, item: T) -> bool:
        item_id = getattr(item, "id")
        if item_id >= len(self._items) or self._items[item_id] is not item:
            return True
        return self._issued.get(item_id) != self._generation

    def check_current(self, item: T) -> None:
        if self.is_stale(item):
            raise ProtocolError(
                f"Item {getattr(item, 'id')} was released (generation "
                f"{self._generation}) and must be acquired again before use"
            )

    def shrink(self, size: int) -> None:
        """Drop the free items whose id is ``>= size``."""
        if size < 0:
            raise ValueError(f"Pool size must be non-negative, got {size}")
        outstanding_above = [i for i in self._issued if i >= size]
        if outstanding_above:
            raise ProtocolError(
                f"Cannot shrink pool to {size} items: ids "
                f"{sorted(outstanding_above)} are still in use"
            )

        del self._items[size:]
        self._free = [i for i in self._free if i < size]
        heapq.heapify(self._free)
