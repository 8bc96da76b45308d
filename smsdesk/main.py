from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI

from smsdesk.core.config import config
from smsdesk.core.errors import DomainError, domain_error_handler
from smsdesk.core.logging_config import setup_logging
from smsdesk.core.scheduler import init_scheduler, shutdown_scheduler
from smsdesk.routers.account import account_router
from smsdesk.routers.activations import activations_router
from smsdesk.routers.admin import admin_router
from smsdesk.routers.rentals import rentals_router
from smsdesk.routers.webhook import webhook_router
from smsdesk.services.lifecycle import OrderLifecycle
from smsdesk.services.notifications import RedisNotificationSink
from smsdesk.services.poller import ReconciliationPoller
from smsdesk.services.purchase import PurchaseOrchestrator
from smsdesk.services.webhook import WebhookIngestion
from smsdesk.utils.locks import KeyedLocks
from smsdesk.utils.provider_client import SmsActivateClient
from smsdesk.utils.rate_limiter import RateLimiter

setup_logging()


def build_services(app: FastAPI, provider, sink, session_factory=None) -> None:
    """Збирає сервіси в app.state (тести передають fake provider та sink)."""
    extra = {"session_factory": session_factory} if session_factory else {}
    locks = KeyedLocks()

    app.state.provider = provider
    app.state.sink = sink
    app.state.locks = locks
    app.state.lifecycle = OrderLifecycle(provider, sink, locks, **extra)
    app.state.purchase = PurchaseOrchestrator(provider, sink, locks, **extra)
    app.state.webhook = WebhookIngestion(app.state.lifecycle, **extra)
    app.state.poller = ReconciliationPoller(app.state.lifecycle, **extra)
    app.state.purchase_limiter = RateLimiter(config.PURCHASE_RATE_LIMIT, config.RATE_LIMIT_WINDOW_SECONDS)
    app.state.webhook_limiter = RateLimiter(config.WEBHOOK_RATE_LIMIT, config.RATE_LIMIT_WINDOW_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    provider = SmsActivateClient()
    sink = RedisNotificationSink()
    build_services(app, provider, sink)

    scheduler = AsyncIOScheduler()
    if config.POLLER_ENABLED:
        init_scheduler(scheduler, app.state.poller)
        scheduler.start()

    yield

    shutdown_scheduler(scheduler)
    await sink.drain()
    await provider.aclose()


app = FastAPI(
    title="SMS Desk",
    description="Сервіс активацій та оренди віртуальних номерів з балансом користувача",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_exception_handler(DomainError, domain_error_handler)


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(account_router)
app.include_router(activations_router)
app.include_router(rentals_router)
app.include_router(webhook_router)
app.include_router(admin_router)
