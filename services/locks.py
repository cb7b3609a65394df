"""Сериализация операций над одним аукционом"""
import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
import logging

logger = logging.getLogger(__name__)


class AuctionBusy(Exception):
    """Не удалось дождаться блокировки аукциона"""

    def __init__(self, auction_id: int):
        super().__init__(f"Аукцион {auction_id} занят")
        self.auction_id = auction_id


class AuctionLocks:
    """Отдельная блокировка на каждый аукцион.

    Прием ставок и завершение одного аукциона выполняются строго по очереди,
    разные аукционы друг друга не ждут. Блокировка удаляется, когда ее
    больше никто не держит и не ждет.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: defaultdict[int, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, auction_id: int, timeout: Optional[float] = None) -> AsyncIterator[None]:
        lock = self._locks.setdefault(auction_id, asyncio.Lock())
        self._users[auction_id] += 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout if timeout is not None else self.timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Аукцион {auction_id}: не дождались блокировки")
                raise AuctionBusy(auction_id)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[auction_id] -= 1
            if self._users[auction_id] <= 0:
                del self._users[auction_id]
                self._locks.pop(auction_id, None)

    def is_locked(self, auction_id: int) -> bool:
        lock = self._locks.get(auction_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
