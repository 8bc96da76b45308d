import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from smsdesk.core.errors import InsufficientFunds, UserNotFound
from smsdesk.models import (
	Activation, Rental, ReferenceType, Transaction, TransactionType, User
)
from smsdesk.utils.common import money, utcnow
from smsdesk.utils.logging import get_extra_data_log

logger = logging.getLogger("[LEDGER]")


@dataclass
class LedgerCheck:
	user_id: int
	balance: Decimal
	ledger_sum: Decimal
	entries: int

	@property
	def consistent(self) -> bool:
		return self.balance == self.ledger_sum


def reference_of(order: Union[Activation, Rental, None]):
	if order is None:
		return None, None
	kind = ReferenceType.ACTIVATION if isinstance(order, Activation) else ReferenceType.RENTAL
	return kind, str(order.id)


class Ledger:
	"""
	Append-only журнал руху коштів.

	Кожен запис відповідає рівно одній зміні User.balance; balance_before та
	balance_after фіксуються у момент запису і більше не перераховуються.
	Викликати лише всередині відкритої транзакції сесії, після lock_user().
	"""

	def __init__(self, session: AsyncSession):
		self.session = session

	async def lock_user(self, user_id: int) -> User:
		"""SELECT ... FOR UPDATE: перечитує баланс всередині блокування"""
		result = await self.session.execute(
			select(User)
			.where(User.id == user_id)
			.with_for_update()
			.execution_options(populate_existing=True)
		)
		user: User | None = result.scalar_one_or_none()
		if not user:
			raise UserNotFound(f"User '{user_id}' not found.")
		return user

	async def post(
		self,
		user: User,
		amount: Decimal,
		tx_type: TransactionType,
		order: Union[Activation, Rental, None] = None,
		description: Optional[str] = None,
		info: Optional[dict] = None,
		operation_id: Optional[str] = None,
	) -> Transaction:
		amount = money(amount)
		balance_before = money(user.balance)
		balance_after = balance_before + amount

		# списання, що робить баланс від'ємним, відхиляється до будь-яких змін
		if balance_after < 0:
			raise InsufficientFunds(required=-amount, current_balance=balance_before)

		user.balance = balance_after
		if tx_type == TransactionType.RECHARGE:
			user.total_recharged = money(user.total_recharged or 0) + amount
		elif tx_type == TransactionType.REFUND:
			user.total_spent = money(user.total_spent or 0) - amount
		elif amount < 0:
			user.total_spent = money(user.total_spent or 0) - amount

		reference_type, reference_id = reference_of(order)
		entry = Transaction(
			user_id=user.id,
			type=tx_type,
			amount=amount,
			balance_before=balance_before,
			balance_after=balance_after,
			reference_type=reference_type,
			reference_id=reference_id,
			operation_id=operation_id,
			description=description,
			info=info or {},
			created_at=utcnow(),
		)
		self.session.add(entry)

		logger.info("Ledger entry:", extra=get_extra_data_log(entry))
		return entry

	async def debit(self, user: User, amount: Decimal, tx_type: TransactionType, **kwargs) -> Transaction:
		return await self.post(user, -money(amount), tx_type, **kwargs)

	async def credit(self, user: User, amount: Decimal, tx_type: TransactionType, **kwargs) -> Transaction:
		return await self.post(user, money(amount), tx_type, **kwargs)

	async def verify(self, user_id: int) -> LedgerCheck:
		"""Інваріант: сума всіх записів користувача == поточний баланс"""
		user = await self.session.get(User, user_id, populate_existing=True)
		if not user:
			raise UserNotFound(f"User '{user_id}' not found.")

		row = (await self.session.execute(
			select(func.coalesce(func.sum(Transaction.amount), 0), func.count(Transaction.id))
			.where(Transaction.user_id == user_id)
		)).one()

		return LedgerCheck(
			user_id=user_id,
			balance=money(user.balance),
			ledger_sum=money(row[0]),
			entries=row[1],
		)
