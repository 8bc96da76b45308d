from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from smsdesk.core.config import config


engine = create_async_engine(config.DATABASE_URL, echo=config.DEBUG_MODE)  # echo=True для debug (!)
async_session = async_sessionmaker(
	bind=engine,
	expire_on_commit=False,
	class_=AsyncSession
)

Base = declarative_base()


def utcnow() -> datetime:
	return datetime.now(timezone.utc)
