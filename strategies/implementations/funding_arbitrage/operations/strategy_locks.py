"""Per-strategy mutual exclusion for open/close/supervise operations."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Set


class StrategyLockRegistry:
    """
    One ``asyncio.Lock`` per strategy id, plus the set of ids with a close
    queued or running.

    Operations on different strategies never contend; operations on the
    same strategy are serialised. Holders keep the lock only around store
    writes and order submission, never across position polling.
    ``is_busy`` lets periodic callers skip a strategy that is currently held;
    ``is_closing`` lets a second closer return instead of closing twice.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._closing: Set[str] = set()

    def lock_for(self, strategy_id: str) -> asyncio.Lock:
        lock = self._locks.get(strategy_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[strategy_id] = lock
        return lock

    def is_busy(self, strategy_id: str) -> bool:
        lock = self._locks.get(strategy_id)
        return lock is not None and lock.locked()

    def is_closing(self, strategy_id: str) -> bool:
        return strategy_id in self._closing

    @asynccontextmanager
    async def hold(self, strategy_id: str) -> AsyncIterator[None]:
        async with self.lock_for(strategy_id):
            yield

    @asynccontextmanager
    async def closing(self, strategy_id: str) -> AsyncIterator[None]:
        """Wait for the lock and hold it for a close; ``is_closing`` is True meanwhile."""
        self._closing.add(strategy_id)
        try:
            async with self.lock_for(strategy_id):
                yield
        finally:
            self._closing.discard(strategy_id)

    def discard(self, strategy_id: str) -> None:
        """Forget the lock of a finished strategy (no-op while held or queued)."""
        lock = self._locks.get(strategy_id)
        if lock is not None and not lock.locked() and strategy_id not in self._closing:
            del self._locks[strategy_id]

    def __len__(self) -> int:
        return len(self._locks)
