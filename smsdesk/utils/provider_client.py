"""
Клієнт SMS-провайдера (SMS-Activate handler API).

Назовні віддає лише те, що потрібно движку замовлень: покупка, статус,
скасування/підтвердження/повтор для активацій і оренда/статус/продовження/
скасування для орендованих номерів. Відповіді провайдера перекладаються у
ProviderState, помилки - у ProviderRejected / ProviderUnavailable /
ProviderTimeout.
"""
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Protocol, Union

import httpx

from smsdesk.core.config import config
from smsdesk.core.errors import ProviderRejected, ProviderTimeout, ProviderUnavailable
from smsdesk.utils.common import parse_provider_datetime

logger = logging.getLogger(__name__)


class ProviderState(enum.Enum):
    WAIT_CODE = "STATUS_WAIT_CODE"
    WAIT_RETRY = "STATUS_WAIT_RETRY"
    OK = "STATUS_OK"
    CANCEL = "STATUS_CANCEL"
    FINISH = "STATUS_FINISH"
    REVOKE = "STATUS_REVOKE"

    @classmethod
    def parse(cls, value: str) -> Optional["ProviderState"]:
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


@dataclass
class PurchasedNumber:
    external_id: str
    phone_number: Optional[str]
    cost: Optional[Decimal] = None
    end_date: Optional[datetime] = None


@dataclass
class ActivationState:
    state: ProviderState
    code: Optional[str] = None


@dataclass
class RentalState:
    state: ProviderState
    messages: list = field(default_factory=list)


class SmsProviderClient(Protocol):
    async def purchase_activation(
        self, service: str, country: int, operator: Optional[str],
        max_price: Optional[Decimal], order_token: str,
    ) -> PurchasedNumber: ...

    async def check_activation_status(self, external_id: str) -> ActivationState: ...

    async def cancel_activation(self, external_id: str) -> None: ...

    async def confirm_activation(self, external_id: str) -> None: ...

    async def request_retry(self, external_id: str) -> None: ...

    async def rent_number(
        self, service: str, country: int, operator: Optional[str],
        hours: int, order_token: str,
    ) -> PurchasedNumber: ...

    async def check_rental_status(self, external_id: str) -> RentalState: ...

    async def extend_rental(self, external_id: str, hours: int) -> PurchasedNumber: ...

    async def cancel_rental(self, external_id: str) -> None: ...

    async def finish_rental(self, external_id: str) -> None: ...


# коди помилок, після яких запит можна повторити
TRANSIENT_ERRORS = {"NO_CONNECTION", "ERROR_SQL", "SQL_ERROR"}

KNOWN_ERRORS = {
    "BAD_ACTION", "BAD_SERVICE", "BAD_KEY", "NO_KEY", "BAD_STATUS", "BANNED",
    "CANT_CANCEL", "NO_NUMBERS", "NO_BALANCE", "NO_ACTIVATION", "NO_ID_RENT",
    "WRONG_MAX_PRICE", "WRONG_SERVICE", "WRONG_SECURITY", "INVALID_PHONE",
    "INCORECT_STATUS", "ACCOUNT_INACTIVE", "ALREADY_FINISH", "ALREADY_CANCEL",
    "CHANNELS_LIMIT", "ORDER_ALREADY_EXISTS", "EARLY_CANCEL_DENIED",
} | TRANSIENT_ERRORS

# setStatus
ACTIVATION_REQUEST_RETRY = 3
ACTIVATION_FINISH = 6
ACTIVATION_CANCEL = 8
# setRentStatus
RENT_FINISH = 1
RENT_CANCEL = 2


class SmsActivateClient:
    def __init__(
        self,
        base_url: str = config.PROVIDER_BASE_URL,
        api_key: str = config.PROVIDER_API_KEY,
        timeout: float = config.PROVIDER_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------ core
    async def _request(self, action: str, **params) -> Union[str, dict]:
        query = {"api_key": self.api_key, "action": action}
        query.update({k: v for k, v in params.items() if v is not None})

        try:
            response = await self._client.get(self.base_url, params=query)
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            # запит не дійшов до провайдера
            raise ProviderUnavailable(f"Provider unreachable: {exc}") from exc
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise ProviderTimeout(f"Provider call '{action}' timed out: {exc}") from exc

        if response.status_code >= 500:
            raise ProviderUnavailable(
                f"Provider error: {response.status_code} {response.text[:200]}"
            )
        if response.status_code != 200:
            raise ProviderRejected(
                f"Provider API error: {response.status_code} {response.text[:200]}"
            )

        try:
            body = response.json()
        except ValueError:
            body = response.text.strip()

        logger.debug("Provider response", extra={"action": action})
        self._raise_for_error(action, body)
        return body

    @staticmethod
    def _raise_for_error(action: str, body: Union[str, dict, list, int, float]) -> None:
        code = None
        if isinstance(body, str):
            code = body.split(":", 1)[0]
        elif isinstance(body, dict):
            if body.get("status") == "error":
                code = str(body.get("message") or "ERROR")
            elif isinstance(body.get("result"), str):
                code = body["result"]

        if code is None:
            return
        # для getStatus / getRentStatus STATUS_* - нормальна відповідь
        if ProviderState.parse(code) is not None:
            return
        if code in TRANSIENT_ERRORS:
            raise ProviderUnavailable(f"Provider temporarily failed on '{action}': {code}", code=code)
        if code in KNOWN_ERRORS or (isinstance(body, dict) and body.get("status") == "error"):
            raise ProviderRejected(f"Provider rejected '{action}': {code}", code=code)

    @staticmethod
    def _decimal(value) -> Optional[Decimal]:
        if value is None:
            return None
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return None

    # ------------------------------------------------------------- activations
    async def purchase_activation(
        self,
        service: str,
        country: int,
        operator: Optional[str],
        max_price: Optional[Decimal],
        order_token: str,
    ) -> PurchasedNumber:
        body = await self._request(
            "getNumberV2",
            service=service,
            country=country,
            operator=operator if operator and operator != "any" else None,
            maxPrice=str(max_price) if max_price else None,
            orderId=order_token,
        )
        if not isinstance(body, dict) or "activationId" not in body:
            raise ProviderRejected(f"Unexpected purchase response: {str(body)[:200]}")

        return PurchasedNumber(
            external_id=str(body["activationId"]),
            phone_number=body.get("phoneNumber"),
            cost=self._decimal(body.get("activationCost")),
        )

    async def check_activation_status(self, external_id: str) -> ActivationState:
        body = await self._request("getStatus", id=external_id)
        if not isinstance(body, str):
            raise ProviderUnavailable(f"Unexpected status response: {str(body)[:200]}")

        raw_state, _, code = body.partition(":")
        state = ProviderState.parse(raw_state)
        if state is None:
            raise ProviderUnavailable(f"Unknown activation status: {body[:100]}")
        return ActivationState(state=state, code=code or None)

    async def _set_status(self, external_id: str, status: int) -> None:
        await self._request("setStatus", id=external_id, status=status)

    async def cancel_activation(self, external_id: str) -> None:
        await self._set_status(external_id, ACTIVATION_CANCEL)

    async def confirm_activation(self, external_id: str) -> None:
        await self._set_status(external_id, ACTIVATION_FINISH)

    async def request_retry(self, external_id: str) -> None:
        await self._set_status(external_id, ACTIVATION_REQUEST_RETRY)

    # ----------------------------------------------------------------- rentals
    @staticmethod
    def _rented_phone(body) -> PurchasedNumber:
        if not isinstance(body, dict):
            raise ProviderRejected(f"Unexpected rent response: {str(body)[:200]}")
        phone = body.get("phone")
        if body.get("status") != "success" or not isinstance(phone, dict) or "id" not in phone:
            raise ProviderRejected(f"Unexpected rent response: {str(body)[:200]}")
        return PurchasedNumber(
            external_id=str(phone["id"]),
            phone_number=phone.get("number"),
            end_date=parse_provider_datetime(phone.get("endDate")),
        )

    async def rent_number(
        self,
        service: str,
        country: int,
        operator: Optional[str],
        hours: int,
        order_token: str,
    ) -> PurchasedNumber:
        body = await self._request(
            "getRentNumber",
            service=service,
            country=country,
            operator=operator or "any",
            rent_time=hours,
            orderId=order_token,
        )
        return self._rented_phone(body)

    async def check_rental_status(self, external_id: str) -> RentalState:
        body = await self._request("getRentStatus", id=external_id)
        if not isinstance(body, dict):
            raise ProviderUnavailable(f"Unexpected rent status response: {str(body)[:200]}")

        if body.get("status") == "error":
            # сюди потрапляють лише STATUS_* (інше відсіює _raise_for_error)
            state = ProviderState.parse(str(body.get("message")))
            return RentalState(state=state)

        values = body.get("values") or {}
        if isinstance(values, dict):
            values = [values[key] for key in sorted(values, key=str)]
        return RentalState(state=ProviderState.OK, messages=list(values))

    async def extend_rental(self, external_id: str, hours: int) -> PurchasedNumber:
        body = await self._request("continueRentNumber", id=external_id, rent_time=hours)
        return self._rented_phone(body)

    async def _set_rent_status(self, external_id: str, status: int) -> None:
        body = await self._request("setRentStatus", id=external_id, status=status)
        if isinstance(body, dict) and body.get("status") != "success":
            raise ProviderRejected(f"Rent status update failed: {str(body)[:200]}")

    async def cancel_rental(self, external_id: str) -> None:
        await self._set_rent_status(external_id, RENT_CANCEL)

    async def finish_rental(self, external_id: str) -> None:
        await self._set_rent_status(external_id, RENT_FINISH)
