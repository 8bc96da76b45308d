"""
Політика повернення коштів.

Активації: повернення залежить лише від статусу (WAIT_SMS - 100%,
WAIT_RETRY - 50%). Оренда: лише скасування у перші
RENTAL_CANCEL_WINDOW_MINUTES хвилин - 90% повернення та 10% комісії окремим
записом `adjustment`. Природне завершення оренди - без повернення.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Union

from smsdesk.core.config import config
from smsdesk.models import Activation, ActivationStatus, Rental, RentalStatus
from smsdesk.utils.common import as_utc, money, utcnow


ACTIVATION_REFUND_RATES = {
    ActivationStatus.WAIT_SMS: Decimal("1"),
    ActivationStatus.WAIT_RETRY: Decimal("0.5"),
}
RENTAL_REFUND_RATE = Decimal("0.9")
RENTAL_CANCEL_FEE_RATE = Decimal("0.1")

ZERO = Decimal("0")


@dataclass(frozen=True)
class RefundDecision:
    refund: Decimal = ZERO
    fee: Decimal = ZERO

    @property
    def net(self) -> Decimal:
        return self.refund - self.fee

    def __bool__(self) -> bool:
        return self.refund > 0 or self.fee > 0


NO_REFUND = RefundDecision()


def rental_cancel_window_open(
    rental: Rental,
    now: Optional[datetime] = None,
    window_minutes: Optional[int] = None,
) -> bool:
    now = now or utcnow()
    if window_minutes is None:
        window_minutes = config.RENTAL_CANCEL_WINDOW_MINUTES
    return now <= as_utc(rental.created_at) + timedelta(minutes=window_minutes)


def activation_refund(activation: Activation) -> RefundDecision:
    rate = ACTIVATION_REFUND_RATES.get(activation.status)
    if rate is None:
        return NO_REFUND
    return RefundDecision(refund=money(money(activation.cost) * rate))


def rental_refund(
    rental: Rental,
    new_status: RentalStatus,
    now: Optional[datetime] = None,
) -> RefundDecision:
    if rental.status is not RentalStatus.ACTIVE or new_status is not RentalStatus.CANCELLED:
        return NO_REFUND
    if not rental_cancel_window_open(rental, now):
        return NO_REFUND
    return RefundDecision(
        refund=money(money(rental.cost) * RENTAL_REFUND_RATE),
        fee=money(money(rental.cost) * RENTAL_CANCEL_FEE_RATE),
    )


def refund_for(
    order: Union[Activation, Rental],
    new_status: Union[ActivationStatus, RentalStatus],
    now: Optional[datetime] = None,
) -> RefundDecision:
    """Рахується по стану замовлення ДО переходу."""
    if isinstance(order, Activation):
        return activation_refund(order)
    return rental_refund(order, new_status, now)
