"""
Скінченний автомат статусів замовлень.

Вхідні події приходять з трьох джерел з однаковими правами: відповідь
провайдера при опитуванні, підписаний webhook, локальна перевірка терміну.
Дії користувача (скасування, підтвердження, повтор) - ще одне джерело.

`transition(current, event)` - чиста функція: нічого не пише, лише каже,
який буде новий статус і які побічні ефекти (повернення коштів, сповіщення)
треба застосувати. Термінальний статус ніколи не дає побічних ефектів.
"""
import enum
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Union

from smsdesk.models import ActivationStatus, RentalStatus
from smsdesk.utils.provider_client import ProviderState


class OrderEvent(enum.Enum):
    SMS_WAIT = "sms_wait"
    RETRY_WAIT = "retry_wait"
    CODE_RECEIVED = "code_received"
    PROVIDER_CANCELLED = "provider_cancelled"
    PROVIDER_FINISHED = "provider_finished"
    USER_CANCEL = "user_cancel"
    USER_CONFIRM = "user_confirm"
    USER_RETRY = "user_retry"
    USER_FINISH = "user_finish"
    RENT_ACTIVE = "rent_active"
    EXPIRED = "expired"


class SideEffect(enum.Enum):
    REFUND = "refund"
    NOTIFY = "notify"


Status = Union[ActivationStatus, RentalStatus]

_NONE: FrozenSet[SideEffect] = frozenset()
_NOTIFY = frozenset({SideEffect.NOTIFY})
_REFUND = frozenset({SideEffect.REFUND, SideEffect.NOTIFY})

A = ActivationStatus
R = RentalStatus
E = OrderEvent

# (поточний статус, подія) -> (новий статус, побічні ефекти)
ACTIVATION_TRANSITIONS = {
    A.WAIT_SMS: {
        E.SMS_WAIT: (A.WAIT_SMS, _NONE),
        E.RETRY_WAIT: (A.WAIT_RETRY, _NOTIFY),
        E.CODE_RECEIVED: (A.RECEIVED, _NOTIFY),
        E.PROVIDER_CANCELLED: (A.CANCELLED, _REFUND),
        E.USER_CANCEL: (A.CANCELLED, _REFUND),
        E.EXPIRED: (A.CANCELLED, _REFUND),
        E.PROVIDER_FINISHED: (A.COMPLETED, _NOTIFY),
    },
    A.WAIT_RETRY: {
        E.SMS_WAIT: (A.WAIT_RETRY, _NONE),
        E.RETRY_WAIT: (A.WAIT_RETRY, _NONE),
        # повторний запит коду, поки попередній ще не прийшов
        E.USER_RETRY: (A.WAIT_RETRY, _NONE),
        E.CODE_RECEIVED: (A.RECEIVED, _NOTIFY),
        E.PROVIDER_CANCELLED: (A.CANCELLED, _REFUND),
        E.USER_CANCEL: (A.CANCELLED, _REFUND),
        E.EXPIRED: (A.CANCELLED, _REFUND),
    },
    A.RECEIVED: {
        E.CODE_RECEIVED: (A.RECEIVED, _NONE),
        E.USER_CONFIRM: (A.COMPLETED, _NOTIFY),
        E.PROVIDER_FINISHED: (A.COMPLETED, _NOTIFY),
        # код вже доставлено: після терміну замовлення лише закривається
        E.EXPIRED: (A.COMPLETED, _NOTIFY),
        E.USER_RETRY: (A.WAIT_RETRY, _NOTIFY),
    },
    A.CANCELLED: {},
    A.COMPLETED: {},
}

RENTAL_TRANSITIONS = {
    R.ACTIVE: {
        E.RENT_ACTIVE: (R.ACTIVE, _NONE),
        E.SMS_WAIT: (R.ACTIVE, _NONE),
        E.EXPIRED: (R.EXPIRED, _NOTIFY),
        E.USER_CANCEL: (R.CANCELLED, _REFUND),
        E.PROVIDER_CANCELLED: (R.CANCELLED, _REFUND),
        E.USER_FINISH: (R.COMPLETED, _NOTIFY),
        E.PROVIDER_FINISHED: (R.COMPLETED, _NOTIFY),
    },
    R.EXPIRED: {},
    R.CANCELLED: {},
    R.COMPLETED: {},
}


@dataclass(frozen=True)
class Transition:
    current: Status
    event: OrderEvent
    new_status: Status
    side_effects: FrozenSet[SideEffect] = field(default_factory=frozenset)
    already_terminal: bool = False
    rejected: bool = False

    @property
    def changed(self) -> bool:
        return self.new_status != self.current

    @property
    def refund(self) -> bool:
        return SideEffect.REFUND in self.side_effects

    @property
    def notify(self) -> bool:
        return SideEffect.NOTIFY in self.side_effects


def is_terminal(status: Status) -> bool:
    return status.is_terminal


def _table_for(status: Status) -> dict:
    if isinstance(status, ActivationStatus):
        return ACTIVATION_TRANSITIONS
    return RENTAL_TRANSITIONS


def transition(current: Status, event: OrderEvent) -> Transition:
    if is_terminal(current):
        return Transition(current, event, current, _NONE, already_terminal=True)

    target = _table_for(current)[current].get(event)
    if target is None:
        return Transition(current, event, current, _NONE, rejected=True)

    new_status, effects = target
    if new_status == current:
        # повтор тієї ж події - no-op
        effects = _NONE
    return Transition(current, event, new_status, effects)


# ----------------------------------------------------- provider -> event
ACTIVATION_PROVIDER_EVENTS = {
    ProviderState.WAIT_CODE: E.SMS_WAIT,
    ProviderState.WAIT_RETRY: E.RETRY_WAIT,
    ProviderState.OK: E.CODE_RECEIVED,
    ProviderState.CANCEL: E.PROVIDER_CANCELLED,
    ProviderState.REVOKE: E.PROVIDER_CANCELLED,
    ProviderState.FINISH: E.PROVIDER_FINISHED,
}

RENTAL_PROVIDER_EVENTS = {
    ProviderState.WAIT_CODE: E.SMS_WAIT,
    ProviderState.OK: E.RENT_ACTIVE,
    ProviderState.CANCEL: E.PROVIDER_CANCELLED,
    ProviderState.REVOKE: E.PROVIDER_CANCELLED,
    ProviderState.FINISH: E.PROVIDER_FINISHED,
}


def activation_event_for(state: Optional[ProviderState]) -> Optional[OrderEvent]:
    return ACTIVATION_PROVIDER_EVENTS.get(state)


def rental_event_for(state: Optional[ProviderState]) -> Optional[OrderEvent]:
    return RENTAL_PROVIDER_EVENTS.get(state)
