"""
Покупка активацій, оренда номерів та продовження оренди.

Послідовність: ідемпотентність за order_token -> ціна -> блокування
користувача (keyed lock + FOR UPDATE) -> перевірка балансу -> провайдер ->
списання + запис замовлення -> commit -> сповіщення. Помилка провайдера
означає, що локально нічого не змінилось.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Callable, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from smsdesk.core.config import config
from smsdesk.core.database import async_session
from smsdesk.core.errors import (
    InsufficientFunds, InvalidPayload, InvalidTransition, OrderNotFound,
    ReconciliationRequired,
)
from smsdesk.models import (
    Activation, ActivationStatus, Rental, RentalStatus, TransactionType
)
from smsdesk.services.ledger import Ledger
from smsdesk.services.lifecycle import order_snapshot
from smsdesk.services.notifications import NotificationSink
from smsdesk.services.pricing import activation_price, rental_price
from smsdesk.utils.common import is_expired, money, user_existing_check, utcnow
from smsdesk.utils.idempotency import check_order_token
from smsdesk.utils.locks import KeyedLocks, order_key, user_key
from smsdesk.utils.logging import get_extra_data_log
from smsdesk.utils.provider_client import PurchasedNumber, SmsProviderClient

logger = logging.getLogger("[PURCHASE]")
reconciliation_logger = logging.getLogger("[RECONCILIATION_REQUIRED]")


Order = Union[Activation, Rental]


@dataclass
class PurchaseResult:
    order: Order
    replay: bool = False
    balance: Optional[Decimal] = None


class PurchaseOrchestrator:
    def __init__(
        self,
        provider: SmsProviderClient,
        sink: NotificationSink,
        locks: Optional[KeyedLocks] = None,
        session_factory: async_sessionmaker = async_session,
    ):
        self.provider = provider
        self.sink = sink
        self.locks = locks or KeyedLocks()
        self.session_factory = session_factory

    # **************    Активації
    async def purchase_activation(
        self,
        user_id: int,
        service: str,
        country: int,
        order_token: str,
        operator: Optional[str] = None,
        max_price: Optional[Decimal] = None,
    ) -> PurchaseResult:
        async with self.locks.hold(user_key(user_id)):
            async with self.session_factory() as session:
                await user_existing_check(session, user_id)
                is_duplicate, existing = await check_order_token(session, Activation, order_token, user_id)
                if is_duplicate:
                    logger.info(f"Replay of activation order '{order_token}' for user {user_id}")
                    return PurchaseResult(order=existing, replay=True)

                cost = await activation_price(session, service, country, max_price)
                await self._ensure_funds(session, user_id, cost)

                purchased = await self.provider.purchase_activation(
                    service, country, operator, max_price, order_token,
                )

                def make_order() -> Activation:
                    now = utcnow()
                    return Activation(
                        user_id=user_id,
                        external_id=purchased.external_id,
                        order_token=order_token,
                        service=service,
                        country=country,
                        operator=operator,
                        phone_number=purchased.phone_number,
                        cost=cost,
                        status=ActivationStatus.WAIT_SMS,
                        expires_at=now + timedelta(minutes=config.ACTIVATION_EXPIRY_MINUTES),
                        created_at=now,
                        updated_at=now,
                    )

                order, balance = await self._persist_or_reconcile(
                    session, user_id, cost, TransactionType.ACTIVATION, make_order, purchased,
                    description=f"Activation {service}/{country}",
                )

        self.sink.publish(user_id, "balance_updated", {"balance": float(balance)})
        self.sink.publish(user_id, "activation_created", order_snapshot(order))
        return PurchaseResult(order=order, balance=balance)

    # **************    Оренда
    @staticmethod
    def _validate_hours(hours: int) -> None:
        if not config.RENTAL_MIN_HOURS <= hours <= config.RENTAL_MAX_HOURS:
            raise InvalidPayload(
                f"Rental time must be between {config.RENTAL_MIN_HOURS} "
                f"and {config.RENTAL_MAX_HOURS} hours",
                hours=hours,
            )

    async def rent_number(
        self,
        user_id: int,
        service: str,
        country: int,
        hours: int,
        order_token: str,
        operator: Optional[str] = None,
    ) -> PurchaseResult:
        self._validate_hours(hours)

        async with self.locks.hold(user_key(user_id)):
            async with self.session_factory() as session:
                await user_existing_check(session, user_id)
                is_duplicate, existing = await check_order_token(session, Rental, order_token, user_id)
                if is_duplicate:
                    logger.info(f"Replay of rental order '{order_token}' for user {user_id}")
                    return PurchaseResult(order=existing, replay=True)

                cost = rental_price(hours)
                await self._ensure_funds(session, user_id, cost)

                purchased = await self.provider.rent_number(
                    service, country, operator, hours, order_token,
                )

                def make_order() -> Rental:
                    now = utcnow()
                    return Rental(
                        user_id=user_id,
                        external_id=purchased.external_id,
                        order_token=order_token,
                        service=service,
                        country=country,
                        operator=operator,
                        phone_number=purchased.phone_number,
                        cost=cost,
                        duration_hours=hours,
                        status=RentalStatus.ACTIVE,
                        expires_at=purchased.end_date or now + timedelta(hours=hours),
                        messages=[],
                        created_at=now,
                        updated_at=now,
                    )

                order, balance = await self._persist_or_reconcile(
                    session, user_id, cost, TransactionType.RENTAL, make_order, purchased,
                    description=f"Rental {service}/{country} for {hours}h",
                )

        self.sink.publish(user_id, "balance_updated", {"balance": float(balance)})
        self.sink.publish(user_id, "rental_created", order_snapshot(order))
        return PurchaseResult(order=order, balance=balance)

    async def extend_rental(self, user_id: int, rental_id: int, hours: int) -> PurchaseResult:
        self._validate_hours(hours)
        price = rental_price(hours)

        # порядок блокувань: замовлення -> користувач
        async with self.locks.hold(order_key("rental", rental_id)):
            async with self.locks.hold(user_key(user_id)):
                async with self.session_factory() as session:
                    rental = await session.scalar(
                        select(Rental)
                        .where(Rental.id == rental_id)
                        .with_for_update()
                        .execution_options(populate_existing=True)
                    )
                    if rental is None or rental.user_id != user_id:
                        raise OrderNotFound(f"Rental '{rental_id}' not found")
                    if rental.status is not RentalStatus.ACTIVE or is_expired(rental.expires_at):
                        raise InvalidTransition(f"Rental in status {rental.status.name} cannot be extended")

                    await self._ensure_funds(session, user_id, price)
                    extended = await self.provider.extend_rental(rental.external_id, hours)

                    try:
                        ledger = Ledger(session)
                        user = await ledger.lock_user(user_id)
                        await ledger.debit(
                            user, price, TransactionType.RENTAL,
                            order=rental,
                            description=f"Rental {rental.id} extended by {hours}h",
                            info={"hours": hours},
                        )
                        rental.cost = money(rental.cost) + price
                        rental.duration_hours += hours
                        rental.expires_at = extended.end_date or rental.expires_at + timedelta(hours=hours)
                        rental.updated_at = utcnow()
                        await session.commit()
                    except SQLAlchemyError as exc:
                        await session.rollback()
                        self._reconciliation_alert(
                            "extend_rental", exc,
                            user_id=user_id, rental_id=rental_id, hours=hours,
                            price=str(price), external_id=rental.external_id,
                        )
                    balance = money(user.balance)

        logger.info(f"Rental {rental.id} extended by {hours}h", extra=get_extra_data_log(rental))
        self.sink.publish(user_id, "balance_updated", {"balance": float(balance)})
        self.sink.publish(user_id, "rental_extended", order_snapshot(rental))
        return PurchaseResult(order=rental, balance=balance)

    # **************    Спільне
    @staticmethod
    async def _ensure_funds(session: AsyncSession, user_id: int, cost: Decimal) -> None:
        user = await Ledger(session).lock_user(user_id)
        balance = money(user.balance)
        if balance < cost:
            raise InsufficientFunds(required=cost, current_balance=balance)

    @staticmethod
    async def _persist(
        session: AsyncSession,
        user_id: int,
        cost: Decimal,
        tx_type: TransactionType,
        make_order: Callable[[], Order],
        purchased: PurchasedNumber,
        description: str,
    ):
        order = make_order()
        session.add(order)
        await session.flush()

        ledger = Ledger(session)
        user = await ledger.lock_user(user_id)
        await ledger.debit(
            user, cost, tx_type,
            order=order,
            description=description,
            info={
                "external_id": purchased.external_id,
                "provider_cost": str(purchased.cost) if purchased.cost is not None else None,
            },
        )
        await session.commit()
        logger.info(f"{tx_type.value} {order.id} purchased", extra=get_extra_data_log(order))
        return order, money(user.balance)

    async def _persist_or_reconcile(
        self,
        session: AsyncSession,
        user_id: int,
        cost: Decimal,
        tx_type: TransactionType,
        make_order: Callable[[], Order],
        purchased: PurchasedNumber,
        description: str,
    ):
        """
        Провайдер вже видав номер: запис має з'явитись. Одна повторна спроба
        у новій сесії, далі - CRITICAL у reconciliation лог.
        """
        try:
            return await self._persist(session, user_id, cost, tx_type, make_order, purchased, description)
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning(f"Persisting {tx_type.value} failed, retrying: {exc}")

        try:
            async with self.session_factory() as retry_session:
                return await self._persist(
                    retry_session, user_id, cost, tx_type, make_order, purchased, description,
                )
        except (SQLAlchemyError, InsufficientFunds) as exc:
            self._reconciliation_alert(
                tx_type.value, exc,
                user_id=user_id, cost=str(cost), external_id=purchased.external_id,
                phone_number=purchased.phone_number,
            )

    @staticmethod
    def _reconciliation_alert(operation: str, exc: Exception, **context) -> None:
        reconciliation_logger.critical(
            f"Provider succeeded but local {operation} was not persisted: {exc}",
            extra={"context": context},
        )
        raise ReconciliationRequired(
            "Order was placed at the provider but could not be saved",
            **context,
        )
