from typing import Optional, Tuple, Type, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from smsdesk.core.errors import IdempotencyConflict
from smsdesk.models import Activation, Rental, Transaction


Order = Union[Activation, Rental]


async def check_order_token(
    db: AsyncSession,
    model: Type[Order],
    order_token: str,
    user_id: int,
) -> Tuple[bool, Optional[Order]]:
    """
    Перевіряє, чи вже існує замовлення з таким order_token
    Повертає:
        (is_duplicate: bool, existing_order: Activation | Rental | None)
    Якщо токен вже використано для іншого типу замовлення
    або іншим користувачем - кидає 409
    """
    other = Rental if model is Activation else Activation
    clash = await db.scalar(select(other.id).where(other.order_token == order_token))
    if clash is not None:
        raise IdempotencyConflict(
            f"Order token '{order_token}' already used for a different order type",
        )

    order = await db.scalar(select(model).where(model.order_token == order_token))
    if order is None:
        return False, None

    if order.user_id != user_id:
        raise IdempotencyConflict(
            f"Order token '{order_token}' already used by another user",
        )

    return True, order


async def check_idempotency(
    db: AsyncSession,
    operation_id: str,
    expected_type: Optional[str] = None,
) -> Tuple[bool, Optional[Transaction]]:
    """
    Перевіряє, чи вже існує транзакція з таким operation_id
    Повертає:
        (is_duplicate: bool, existing_transaction: Transaction | None)
    Якщо expected_type передано і тип не збігається - кидає 409
    """
    result = await db.execute(
        select(Transaction).where(Transaction.operation_id == operation_id)
    )
    tx: Transaction | None = result.scalar_one_or_none()

    if not tx:
        return False, None

    # Якщо є очікуваний тип операції - перевіряємо
    if expected_type is not None and tx.type.value != expected_type:
        raise IdempotencyConflict(
            f"Operation ID '{operation_id}' already used "
            f"for different operation type: {tx.type.value}"
        )

    return True, tx
