# Створення таблиць (міграції поза межами проєкту)
import asyncio

from smsdesk.core.database import engine, Base
from smsdesk.models import Activation, PricingOverride, Rental, Transaction, User  # noqa: F401


async def init_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


if __name__ == "__main__":
    asyncio.run(init_db())
