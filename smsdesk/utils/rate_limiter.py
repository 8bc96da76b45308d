import time
from collections import OrderedDict, deque
from typing import Callable

from smsdesk.core.errors import RateLimited


class RateLimiter:
    """
    Sliding-window rate limiter з обмеженим розміром.

    Зберігає час запитів на ключ (user id, IP) і викидає застарілі записи;
    при переповненні видаляє найдавніше використаний ключ.
    """

    def __init__(
        self,
        max_requests: int,
        time_window: float,
        max_keys: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.time_window = time_window
        self.max_keys = max_keys
        self._clock = clock
        self._requests: "OrderedDict[str, deque]" = OrderedDict()

    def is_allowed(self, key: str) -> bool:
        now = self._clock()
        cutoff = now - self.time_window

        hits = self._requests.get(key)
        if hits is None:
            hits = deque()
            self._requests[key] = hits
        self._requests.move_to_end(key)

        # чистимо старі запити
        while hits and hits[0] <= cutoff:
            hits.popleft()

        if len(hits) >= self.max_requests:
            return False

        hits.append(now)
        self._evict()
        return True

    def check(self, key: str) -> None:
        if not self.is_allowed(key):
            raise RateLimited(
                "Too many requests, try again later",
                retry_after=int(self.time_window),
            )

    def _evict(self) -> None:
        while len(self._requests) > self.max_keys:
            self._requests.popitem(last=False)

    def reset(self) -> None:
        self._requests.clear()

    def __len__(self) -> int:
        return len(self._requests)
