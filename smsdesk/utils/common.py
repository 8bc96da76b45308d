from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from smsdesk.core.database import utcnow
from smsdesk.core.errors import UserNotFound, UserSuspended
from smsdesk.models import User, UserStatus


MONEY_QUANT = Decimal("0.0001")


def money(value) -> Decimal:
	"""Приводить суму до Decimal з 4 знаками після крапки."""
	if not isinstance(value, Decimal):
		value = Decimal(str(value))
	return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
	# SQLite повертає naive datetime навіть для DateTime(timezone=True)
	if value is None:
		return None
	if value.tzinfo is None:
		return value.replace(tzinfo=timezone.utc)
	return value.astimezone(timezone.utc)


def is_expired(expires_at: datetime, now: Optional[datetime] = None) -> bool:
	# момент expires_at вже вважається простроченим
	now = now or utcnow()
	return now >= as_utc(expires_at)


def _from_timestamp(value) -> Optional[datetime]:
	# завеликий або NaN timestamp - не дата
	try:
		return datetime.fromtimestamp(value, tz=timezone.utc)
	except (OverflowError, OSError, ValueError):
		return None


def parse_provider_datetime(value) -> Optional[datetime]:
	"""endDate провайдера: ISO рядок або unix timestamp."""
	if value in (None, ""):
		return None
	if isinstance(value, (int, float)):
		return _from_timestamp(value)
	text = str(value).strip()
	if text.isdigit():
		return _from_timestamp(int(text))
	try:
		parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
	except ValueError:
		try:
			parsed = datetime.strptime(text, "%Y-%m-%d %H:%M:%S")
		except ValueError:
			return None
	return as_utc(parsed)


async def user_existing_check(session: AsyncSession, user_id: int) -> User:
	"""
	Перевіряє, чи користувач існує в базі даних і чи активний.
	Якщо ні, генерує виняток.
	"""
	user = await session.get(User, user_id)
	if not user:
		raise UserNotFound(f"User '{user_id}' not found.")
	if user.status == UserStatus.SUSPENDED:
		raise UserSuspended(f"User '{user_id}' is suspended.")
	return user
