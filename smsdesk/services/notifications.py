import asyncio
import json
import logging
from typing import Protocol

from redis.exceptions import RedisError

from smsdesk.utils.redis_client import redis_client, user_events_channel

logger = logging.getLogger("[LIFECYCLE]")


class NotificationSink(Protocol):
    def publish(self, user_id: int, event: str, payload: dict) -> None: ...


class RedisNotificationSink:
    """
    PUBLISH у канал user:{id}:events.

    Викликається лише після commit; доставка fire-and-forget, помилка Redis
    логиться і не впливає на стан замовлення.
    """

    def __init__(self, client=redis_client):
        self.client = client
        self._pending: set[asyncio.Task] = set()

    def publish(self, user_id: int, event: str, payload: dict) -> None:
        message = json.dumps({"event": event, "payload": payload}, default=str)
        task = asyncio.create_task(self._send(user_events_channel(user_id), message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, channel: str, message: str) -> None:
        try:
            await self.client.publish(channel, message)
        except (RedisError, OSError) as exc:
            logger.warning(f"Notification to '{channel}' failed: {exc}")

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)


class RecordingSink:
    """Зберігає події в пам'яті (тести, локальний запуск без Redis)."""

    def __init__(self):
        self.events: list[tuple[int, str, dict]] = []

    def publish(self, user_id: int, event: str, payload: dict) -> None:
        self.events.append((user_id, event, payload))

    def names(self, user_id: int | None = None) -> list[str]:
        return [e for uid, e, _ in self.events if user_id is None or uid == user_id]
