"""
Order Lifecycle - єдине місце, де подія застосовується до замовлення.

Порядок завжди однаковий: keyed lock замовлення -> транзакція ->
SELECT ... FOR UPDATE -> перечитати статус -> transition() -> повернення
коштів через Ledger -> commit -> сповіщення. Ручні дії користувача, poller
та webhook ходять саме сюди, тож повернення не може статися двічі.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from smsdesk.core.config import config
from smsdesk.core.database import async_session
from smsdesk.core.errors import (
    CancellationTooEarly, CancellationWindowClosed, InvalidTransition,
    OrderNotFound, ProviderError,
)
from smsdesk.models import (
    Activation, ActivationStatus, ReferenceType, Rental, RentalStatus, TransactionType
)
from smsdesk.services.ledger import Ledger
from smsdesk.services.notifications import NotificationSink
from smsdesk.services.refund_policy import (
    NO_REFUND, RefundDecision, refund_for, rental_cancel_window_open
)
from smsdesk.services.state_machine import (
    OrderEvent, Transition, activation_event_for, rental_event_for, transition
)
from smsdesk.utils.common import as_utc, is_expired, money, utcnow
from smsdesk.utils.locks import KeyedLocks, order_key, user_key
from smsdesk.utils.logging import get_extra_data_log
from smsdesk.utils.provider_client import SmsProviderClient

logger = logging.getLogger("[LIFECYCLE]")


Order = Union[Activation, Rental]
Guard = Callable[[Order, Transition, datetime], None]
Action = Callable[[Order], Awaitable[None]]

MODELS = {
    ReferenceType.ACTIVATION: Activation,
    ReferenceType.RENTAL: Rental,
}


@dataclass
class ApplyResult:
    order: Order
    status: Union[ActivationStatus, RentalStatus]
    status_changed: bool = False
    data_changed: bool = False
    already_terminal: bool = False
    rejected: bool = False
    refund: RefundDecision = field(default=NO_REFUND)
    balance: Optional[object] = None

    @property
    def changed(self) -> bool:
        return self.status_changed or self.data_changed


@dataclass
class RefreshResult:
    result: Optional[ApplyResult]
    provider_called: bool = False
    expired: bool = False


def order_snapshot(order: Order) -> dict:
    snapshot = {
        "id": order.id,
        "external_id": order.external_id,
        "status": order.status.name,
        "phone_number": order.phone_number,
        "cost": float(order.cost),
        "expires_at": order.expires_at,
    }
    if isinstance(order, Activation):
        snapshot["sms_code"] = order.sms_code
    else:
        snapshot["messages"] = list(order.messages or [])
        snapshot["duration_hours"] = order.duration_hours
    return snapshot


def kind_of(order: Order) -> ReferenceType:
    return ReferenceType.ACTIVATION if isinstance(order, Activation) else ReferenceType.RENTAL


def merge_messages(existing: Optional[list], incoming: Optional[list]) -> list:
    merged = list(existing or [])
    for message in incoming or []:
        if message not in merged:
            merged.append(message)
    return merged


class OrderLifecycle:
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

    # **************    Застосування події
    async def apply_event(
        self,
        kind: ReferenceType,
        order_id: int,
        event: OrderEvent,
        *,
        user_id: Optional[int] = None,
        code: Optional[str] = None,
        messages: Optional[list] = None,
        end_date: Optional[datetime] = None,
        checked: bool = False,
        guard: Optional[Guard] = None,
        action: Optional[Action] = None,
        now: Optional[datetime] = None,
    ) -> ApplyResult:
        """
        Застосовує подію до замовлення.

        guard - перевірки дії користувача (піднімає доменну помилку),
        action - виклик провайдера, який має пройти ДО локальних змін.
        Термінальний статус повертається як ApplyResult(already_terminal=True).
        """
        model = MODELS[kind]
        now = now or utcnow()

        async with self.locks.hold(order_key(kind.value, order_id)):
            async with self.session_factory() as session:
                async with session.begin():
                    order = await self._lock_order(session, model, order_id, user_id)
                    tr = transition(order.status, event)

                    if tr.already_terminal:
                        return ApplyResult(order, order.status, already_terminal=True)

                    if guard is not None:
                        guard(order, tr, now)

                    if tr.rejected:
                        if checked:
                            self._mark_checked(order, now)
                        logger.info(
                            f"Event {event.value} ignored for {kind.value} {order.id} "
                            f"in status {order.status.name}"
                        )
                        return ApplyResult(order, order.status, rejected=True)

                    if action is not None:
                        await action(order)

                    decision = NO_REFUND
                    if tr.refund:
                        decision = refund_for(order, tr.new_status, now)

                    data_changed = self._merge_data(order, code, messages, end_date)
                    if checked:
                        self._mark_checked(order, now)
                    if tr.changed:
                        order.status = tr.new_status
                        order.updated_at = now

                    balance = None
                    if decision:
                        balance = await self._post_refund(session, order, decision)

                    snapshot = order_snapshot(order)
                    result = ApplyResult(
                        order=order,
                        status=order.status,
                        status_changed=tr.changed,
                        data_changed=data_changed,
                        refund=decision,
                        balance=balance,
                    )

                if result.changed:
                    logger.info(
                        f"{kind.value} {order.id}: {tr.current.name} -> {tr.new_status.name} "
                        f"({event.value})",
                        extra=get_extra_data_log(order),
                    )

        if result.changed:
            self._notify(order.user_id, kind, tr, snapshot, result)
        return result

    async def _lock_order(
        self, session: AsyncSession, model, order_id: int, user_id: Optional[int]
    ) -> Order:
        order = await session.scalar(
            select(model)
            .where(model.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        # чуже замовлення для користувача виглядає як відсутнє
        if order is None or (user_id is not None and order.user_id != user_id):
            raise OrderNotFound(f"{model.__name__} '{order_id}' not found")
        return order

    @staticmethod
    def _mark_checked(order: Order, now: datetime) -> None:
        order.last_check_at = now
        order.check_count = (order.check_count or 0) + 1

    @staticmethod
    def _merge_data(
        order: Order,
        code: Optional[str],
        messages: Optional[list],
        end_date: Optional[datetime],
    ) -> bool:
        changed = False
        if isinstance(order, Activation):
            if code and code != order.sms_code:
                order.sms_code = code
                changed = True
            return changed

        if messages:
            merged = merge_messages(order.messages, messages)
            if merged != list(order.messages or []):
                order.messages = merged
                changed = True
        if end_date is not None and as_utc(end_date) != as_utc(order.expires_at):
            order.expires_at = end_date
            changed = True
        return changed

    async def _post_refund(self, session: AsyncSession, order: Order, decision: RefundDecision):
        async with self.locks.hold(user_key(order.user_id)):
            ledger = Ledger(session)
            user = await ledger.lock_user(order.user_id)
            await ledger.credit(
                user, decision.refund, TransactionType.REFUND,
                order=order,
                description=f"Refund for {kind_of(order).value} {order.id}",
                info={"status": order.status.name, "cost": str(order.cost)},
            )
            if decision.fee > 0:
                await ledger.debit(
                    user, decision.fee, TransactionType.ADJUSTMENT,
                    order=order,
                    description=f"Cancellation fee for {kind_of(order).value} {order.id}",
                )
            await session.flush()
            return money(user.balance)

    def _notify(self, user_id: int, kind: ReferenceType, tr: Transition, snapshot: dict, result: ApplyResult) -> None:
        if result.status_changed and not tr.notify:
            return
        cancelled = result.status in (ActivationStatus.CANCELLED, RentalStatus.CANCELLED)
        suffix = "cancelled" if cancelled and result.status_changed else "updated"
        payload = dict(snapshot)
        if result.refund:
            payload["refund"] = float(result.refund.refund)
            payload["fee"] = float(result.refund.fee)
        self.sink.publish(user_id, f"{kind.value}_{suffix}", payload)
        if result.balance is not None:
            self.sink.publish(user_id, "balance_updated", {"balance": float(result.balance)})

    # **************    Активації: дії користувача
    async def cancel_activation(self, user_id: int, activation_id: int) -> ApplyResult:
        def guard(order: Activation, tr: Transition, now: datetime) -> None:
            if tr.rejected:
                raise InvalidTransition(
                    f"Activation in status {order.status.name} cannot be cancelled"
                )
            min_age = timedelta(seconds=config.ACTIVATION_MIN_CANCEL_SECONDS)
            if now - as_utc(order.created_at) < min_age:
                raise CancellationTooEarly(
                    f"Activation can be cancelled {config.ACTIVATION_MIN_CANCEL_SECONDS} "
                    f"seconds after purchase"
                )

        async def action(order: Activation) -> None:
            # помилка провайдера - без локальних змін
            await self.provider.cancel_activation(order.external_id)

        return await self.apply_event(
            ReferenceType.ACTIVATION, activation_id, OrderEvent.USER_CANCEL,
            user_id=user_id, guard=guard, action=action,
        )

    async def confirm_activation(self, user_id: int, activation_id: int) -> ApplyResult:
        def guard(order: Activation, tr: Transition, now: datetime) -> None:
            if tr.rejected or not order.sms_code:
                raise InvalidTransition("No SMS code received yet")

        async def action(order: Activation) -> None:
            try:
                await self.provider.confirm_activation(order.external_id)
            except ProviderError as exc:
                # код вже у користувача: закриваємо локально
                logger.warning(f"Provider confirm failed for activation {order.id}: {exc}")

        return await self.apply_event(
            ReferenceType.ACTIVATION, activation_id, OrderEvent.USER_CONFIRM,
            user_id=user_id, guard=guard, action=action,
        )

    async def retry_activation(self, user_id: int, activation_id: int) -> ApplyResult:
        def guard(order: Activation, tr: Transition, now: datetime) -> None:
            if tr.rejected:
                raise InvalidTransition(
                    f"Retry is not available in status {order.status.name}"
                )

        async def action(order: Activation) -> None:
            await self.provider.request_retry(order.external_id)

        return await self.apply_event(
            ReferenceType.ACTIVATION, activation_id, OrderEvent.USER_RETRY,
            user_id=user_id, guard=guard, action=action,
        )

    # **************    Оренда: дії користувача
    async def cancel_rental(self, user_id: int, rental_id: int) -> ApplyResult:
        def guard(order: Rental, tr: Transition, now: datetime) -> None:
            if tr.rejected:
                raise InvalidTransition(f"Rental in status {order.status.name} cannot be cancelled")
            if not rental_cancel_window_open(order, now):
                raise CancellationWindowClosed(
                    f"Rental can be cancelled only within "
                    f"{config.RENTAL_CANCEL_WINDOW_MINUTES} minutes"
                )

        async def action(order: Rental) -> None:
            await self.provider.cancel_rental(order.external_id)

        return await self.apply_event(
            ReferenceType.RENTAL, rental_id, OrderEvent.USER_CANCEL,
            user_id=user_id, guard=guard, action=action,
        )

    async def finish_rental(self, user_id: int, rental_id: int) -> ApplyResult:
        def guard(order: Rental, tr: Transition, now: datetime) -> None:
            if tr.rejected:
                raise InvalidTransition(f"Rental in status {order.status.name} cannot be finished")

        async def action(order: Rental) -> None:
            await self.provider.finish_rental(order.external_id)

        return await self.apply_event(
            ReferenceType.RENTAL, rental_id, OrderEvent.USER_FINISH,
            user_id=user_id, guard=guard, action=action,
        )

    # **************    Синхронізація з провайдером
    async def _load(self, kind: ReferenceType, order_id: int, user_id: Optional[int]) -> Order:
        model = MODELS[kind]
        async with self.session_factory() as session:
            order = await session.get(model, order_id)
        if order is None or (user_id is not None and order.user_id != user_id):
            raise OrderNotFound(f"{model.__name__} '{order_id}' not found")
        return order

    async def refresh(
        self,
        kind: ReferenceType,
        order_id: int,
        user_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> RefreshResult:
        """
        Звіряє одне замовлення: спершу локальний термін (без виклику
        провайдера), потім статус у провайдера.
        """
        now = now or utcnow()
        order = await self._load(kind, order_id, user_id)
        if order.status.is_terminal:
            return RefreshResult(ApplyResult(order, order.status, already_terminal=True))

        if is_expired(order.expires_at, now):
            result = await self.apply_event(kind, order_id, OrderEvent.EXPIRED, checked=True, now=now)
            return RefreshResult(result, expired=result.status_changed)

        if kind is ReferenceType.ACTIVATION:
            state = await self.provider.check_activation_status(order.external_id)
            event = activation_event_for(state.state)
            extra = {"code": state.code}
        else:
            state = await self.provider.check_rental_status(order.external_id)
            event = rental_event_for(state.state)
            extra = {"messages": state.messages}

        if event is None:
            logger.info(f"Unmapped provider state {state.state} for {kind.value} {order_id}")
            return RefreshResult(ApplyResult(order, order.status), provider_called=True)

        result = await self.apply_event(kind, order_id, event, checked=True, now=now, **extra)
        return RefreshResult(result, provider_called=True)

    async def check_activation(self, user_id: int, activation_id: int) -> ApplyResult:
        refreshed = await self.refresh(ReferenceType.ACTIVATION, activation_id, user_id)
        return refreshed.result

    async def check_rental(self, user_id: int, rental_id: int) -> ApplyResult:
        refreshed = await self.refresh(ReferenceType.RENTAL, rental_id, user_id)
        return refreshed.result
