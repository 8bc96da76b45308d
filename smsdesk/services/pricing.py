from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from smsdesk.core.config import config
from smsdesk.core.errors import MaxPriceTooLow, PricingUnavailable
from smsdesk.models import PricingOverride
from smsdesk.utils.common import money


async def activation_price(
    session: AsyncSession,
    service: str,
    country: int,
    max_price: Optional[Decimal] = None,
) -> Decimal:
    """
    Ціна активації: PricingOverride(service, country) або дефолтна.
    max_price нижче ціни - відмова; інакше береться min(max_price, ціна).
    """
    override = await session.scalar(
        select(PricingOverride).where(
            PricingOverride.service == service,
            PricingOverride.country == country,
            PricingOverride.enabled.is_(True),
        )
    )
    price = override.price if override else config.DEFAULT_ACTIVATION_PRICE
    if price is None or money(price) <= 0:
        raise PricingUnavailable(f"No price for service '{service}' in country {country}")
    price = money(price)

    if max_price is not None:
        max_price = money(max_price)
        if max_price < price:
            raise MaxPriceTooLow(
                "Max price is lower than the current price",
                max_price=max_price,
                current_price=price,
            )
        price = min(max_price, price)

    return price


def rental_price(hours: int) -> Decimal:
    base = money(config.RENTAL_BASE_PRICE)
    if base <= 0:
        raise PricingUnavailable("Rental price is not configured")
    markup = Decimal(1) + Decimal(config.PRICE_MARKUP_PERCENT) / Decimal(100)
    # базова ціна - за 4 години
    return money(base * Decimal(hours) / Decimal(4) * markup)
