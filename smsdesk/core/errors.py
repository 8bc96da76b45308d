"""
Доменні винятки движка замовлень.

Кожен виняток несе HTTP статус та detail, тож роутери їх не перехоплюють:
конвертацію робить `domain_error_handler`, зареєстрований у main.py.
"""
from decimal import Decimal
from typing import Any, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


class DomainError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    error: str = "domain_error"

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message or self.error)
        self.message = message or self.error
        self.details = details

    def to_detail(self) -> dict:
        detail = {"error": self.error, "message": self.message}
        for key, value in self.details.items():
            detail[key] = float(value) if isinstance(value, Decimal) else value
        return detail


# **************    Гроші та ціни
class InsufficientFunds(DomainError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    error = "insufficient_funds"

    def __init__(self, required: Decimal, current_balance: Decimal):
        super().__init__(
            "Insufficient balance",
            required=required,
            current_balance=current_balance,
            shortfall=required - current_balance,
        )


class MaxPriceTooLow(DomainError):
    error = "max_price_too_low"


class PricingUnavailable(DomainError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error = "pricing_unavailable"


# **************    Провайдер
class ProviderError(DomainError):
    error = "provider_error"

    def __init__(self, message: str = "", code: Optional[str] = None, **details: Any):
        super().__init__(message, **details)
        self.code = code


class ProviderRejected(ProviderError):
    """Провайдер однозначно відмовив: локальних змін не робимо."""
    status_code = status.HTTP_400_BAD_REQUEST
    error = "provider_rejected"


class ProviderUnavailable(ProviderError):
    """Тимчасова помилка: read-шлях можна повторити."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error = "provider_unavailable"


class ProviderTimeout(ProviderUnavailable):
    """Невідомий результат: покупку повторювати лише з тим самим order_token."""
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    error = "provider_timeout"


# **************    Замовлення
class OrderNotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "order_not_found"


class UserNotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "user_not_found"


class UserSuspended(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "user_suspended"


class InvalidTransition(DomainError):
    status_code = status.HTTP_409_CONFLICT
    error = "invalid_transition"


class CancellationTooEarly(DomainError):
    error = "cancellation_too_early"


class CancellationWindowClosed(DomainError):
    error = "cancellation_window_closed"


class IdempotencyConflict(DomainError):
    status_code = status.HTTP_409_CONFLICT
    error = "idempotency_conflict"


class ReconciliationRequired(DomainError):
    """Провайдер вже списав кошти, але локальний запис не збережено."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "reconciliation_required"


# **************    Webhook / захист
class InvalidSignature(DomainError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "invalid_signature"


class InvalidPayload(DomainError):
    error = "invalid_payload"


class RateLimited(DomainError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error = "rate_limited"


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "detail": exc.to_detail()},
    )
