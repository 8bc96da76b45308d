from fastapi import Depends, Header, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from smsdesk.core.config import config
from smsdesk.core.database import async_session
from smsdesk.services.lifecycle import OrderLifecycle
from smsdesk.services.notifications import NotificationSink
from smsdesk.services.poller import ReconciliationPoller
from smsdesk.services.purchase import PurchaseOrchestrator
from smsdesk.services.webhook import WebhookIngestion
from smsdesk.utils.common import user_existing_check
from smsdesk.utils.locks import KeyedLocks


# Dependency для отримання сесії
async def get_session() -> AsyncSession:
    async with async_session() as session:
        yield session


# Dependency: перевірка адмін токену
def access_admin(x_admin_token: str = Header(...)):
    if x_admin_token != config.ADMIN_TOKEN:
        raise HTTPException(status_code=403, detail="Invalid admin token")


security = HTTPBearer()

# Dependency: перевірка user токену; користувача визначає gateway (X-User-Id)
async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    x_user_id: int = Header(...),
    session: AsyncSession = Depends(get_session),
) -> int:
    if credentials.credentials != config.USER_TOKEN_BEARER:
        raise HTTPException(status_code=403, detail="Invalid user token")
    await user_existing_check(session, x_user_id)
    return x_user_id


# Сервіси живуть в app.state (створюються в lifespan, підміняються в тестах)
def get_lifecycle(request: Request) -> OrderLifecycle:
    return request.app.state.lifecycle


def get_purchase(request: Request) -> PurchaseOrchestrator:
    return request.app.state.purchase


def get_webhook(request: Request) -> WebhookIngestion:
    return request.app.state.webhook


def get_poller(request: Request) -> ReconciliationPoller:
    return request.app.state.poller


# Dependency: rate limit покупок (на користувача) та webhooks (на IP)
def purchase_rate_limit(request: Request, user_id: int = Depends(get_current_user)) -> int:
    request.app.state.purchase_limiter.check(f"user:{user_id}")
    return user_id


def webhook_rate_limit(request: Request) -> None:
    client = request.client.host if request.client else "unknown"
    request.app.state.webhook_limiter.check(f"ip:{client}")


def get_locks(request: Request) -> KeyedLocks:
    return request.app.state.locks


def get_sink(request: Request) -> NotificationSink:
    return request.app.state.sink
