from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings


class AppConfig(BaseSettings):
    POSTGRES_USER: str = "smsdesk"
    POSTGRES_PASSWORD: str = "smsdesk"
    POSTGRES_DB: str = "smsdesk"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: str = "5432"
    # повний URL (наприклад sqlite+aiosqlite для тестів) має пріоритет
    SQLALCHEMY_URL: Optional[str] = None

    ADMIN_TOKEN: str
    USER_TOKEN_BEARER: str

    DEBUG_MODE: bool = False
    LOG_DIR: str = "logs"

    REDIS_HOST: str = "localhost"
    REDIS_PORT: str = "6379"
    REDIS_DB: int = 0

    # SMS provider (SMS-Activate handler API)
    PROVIDER_BASE_URL: str = "https://api.sms-activate.io/stubs/handler_api.php"
    PROVIDER_API_KEY: str = ""
    PROVIDER_TIMEOUT_SECONDS: float = 30.0
    WEBHOOK_SECRET: str

    # ціни
    DEFAULT_ACTIVATION_PRICE: Decimal = Decimal("0.50")
    RENTAL_BASE_PRICE: Decimal = Decimal("0.20")  # за 4 години
    PRICE_MARKUP_PERCENT: Decimal = Decimal("20")

    # життєвий цикл замовлень
    ACTIVATION_EXPIRY_MINUTES: int = 20
    ACTIVATION_MIN_CANCEL_SECONDS: int = 120
    RENTAL_CANCEL_WINDOW_MINUTES: int = 20
    RENTAL_MIN_HOURS: int = 4
    RENTAL_MAX_HOURS: int = 1344

    # фоновий poller
    POLLER_ENABLED: bool = True
    POLL_INTERVAL_SECONDS: int = 10
    POLL_REQUEST_DELAY_SECONDS: float = 1.0

    # rate limits
    PURCHASE_RATE_LIMIT: int = 5
    WEBHOOK_RATE_LIMIT: int = 120
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    @property
    def DATABASE_URL(self) -> str:
        if self.SQLALCHEMY_URL:
            return self.SQLALCHEMY_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def REDIS_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    class Config:
        env_file = ".env"


config = AppConfig()
