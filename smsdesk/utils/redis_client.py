import redis.asyncio as redis

from smsdesk.core.config import config


# створюємо клієнт (підключення відбувається при першому запиті)
redis_client = redis.from_url(
    config.REDIS_URL,
    encoding="utf-8",
    decode_responses=True,
)


def user_events_channel(user_id: int) -> str:
    return f"user:{user_id}:events"
