import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Hashable


class KeyedLocks:
    """
    Набір asyncio.Lock за ключем ("activation", 12), ("user", 3)...

    Доповнює SELECT ... FOR UPDATE у межах одного процесу: poller, webhook та
    HTTP-запити працюють в одному event loop і серіалізуються тут ще до БД.
    Lock видаляється, коли його ніхто не тримає і не чекає.
    """

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                self._waiters.pop(key, None)
                self._locks.pop(key, None)


def order_key(kind: str, order_id: int) -> tuple:
    return (kind, order_id)


def user_key(user_id: int) -> tuple:
    return ("user", user_id)
