from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from smsdesk.core.dependencies import (
    get_current_user, get_lifecycle, get_purchase, get_session, purchase_rate_limit
)
from smsdesk.core.errors import OrderNotFound
from smsdesk.models import Rental
from smsdesk.routers.account import USER_AUTH_RESPONSES
from smsdesk.schemas.rentals import (
    RentalActionResponse, RentalCreate, RentalDetail, RentalExtend,
    RentalPaginatedList, RentalPurchaseResponse,
)
from smsdesk.schemas.serializers import serialize_rental_action, serialize_rental_purchase
from smsdesk.services.lifecycle import OrderLifecycle
from smsdesk.services.purchase import PurchaseOrchestrator


rentals_router = APIRouter(prefix="/api/v1/rentals", tags=["Rentals"])

PURCHASE_RESPONSES = {
    **USER_AUTH_RESPONSES,
    400: {"description": "Invalid rental time / provider rejected."},
    402: {"description": "Insufficient balance."},
    429: {"description": "Too many purchase requests."},
    503: {"description": "Provider unavailable."},
    504: {"description": "Provider timeout."},
}


@rentals_router.post(
    "",
    summary="Оренда номера",
    description="Ціна: RENTAL_BASE_PRICE за 4 години + націнка. Час оренди 4..1344 год.",
    response_model=RentalPurchaseResponse,
    status_code=status.HTTP_200_OK,
    responses=PURCHASE_RESPONSES,
)
async def rent_number(
    payload: RentalCreate,
    user_id: int = Depends(purchase_rate_limit),
    purchase: PurchaseOrchestrator = Depends(get_purchase),
):
    result = await purchase.rent_number(
        user_id=user_id,
        service=payload.service,
        country=payload.country,
        operator=payload.operator,
        hours=payload.hours,
        order_token=payload.order_token,
    )
    return serialize_rental_purchase(result)


@rentals_router.get(
    "",
    summary="Оренди користувача",
    response_model=RentalPaginatedList,
    status_code=status.HTTP_200_OK,
    responses=USER_AUTH_RESPONSES,
)
async def list_rentals(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    total = (await session.execute(
        select(func.count()).select_from(Rental).where(Rental.user_id == user_id)
    )).scalar_one()

    result = await session.execute(
        select(Rental)
        .where(Rental.user_id == user_id)
        .order_by(Rental.id.desc())
        .limit(limit)
        .offset(offset)
    )
    rentals: List[Rental] = result.scalars().all()

    return RentalPaginatedList(
        total=total,
        limit=limit,
        offset=offset,
        rentals=[RentalDetail.model_validate(r) for r in rentals],
    )


@rentals_router.get(
    "/{rental_id}",
    summary="Деталі оренди",
    response_model=RentalDetail,
    status_code=status.HTTP_200_OK,
    responses=USER_AUTH_RESPONSES,
)
async def get_rental(
    rental_id: int,
    user_id: int = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    rental = await session.get(Rental, rental_id)
    if not rental or rental.user_id != user_id:
        raise OrderNotFound(f"Rental '{rental_id}' not found")
    return RentalDetail.model_validate(rental)


@rentals_router.get(
    "/{rental_id}/status",
    summary="Статус оренди та нові SMS",
    response_model=RentalActionResponse,
    status_code=status.HTTP_200_OK,
    responses=USER_AUTH_RESPONSES,
)
async def check_rental_status(
    rental_id: int,
    user_id: int = Depends(get_current_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    result = await lifecycle.check_rental(user_id, rental_id)
    return serialize_rental_action(result)


@rentals_router.post(
    "/{rental_id}/extend",
    summary="Продовження оренди",
    response_model=RentalPurchaseResponse,
    status_code=status.HTTP_200_OK,
    responses={
        **PURCHASE_RESPONSES,
        409: {"description": "Rental is not active."},
    },
)
async def extend_rental(
    rental_id: int,
    payload: RentalExtend,
    user_id: int = Depends(purchase_rate_limit),
    purchase: PurchaseOrchestrator = Depends(get_purchase),
):
    result = await purchase.extend_rental(user_id, rental_id, payload.hours)
    return serialize_rental_purchase(result)


@rentals_router.post(
    "/{rental_id}/cancel",
    summary="Скасування оренди",
    description="Лише у перші 20 хвилин: повернення 90%, комісія 10%.",
    response_model=RentalActionResponse,
    status_code=status.HTTP_200_OK,
    responses={
        **USER_AUTH_RESPONSES,
        400: {"description": "Cancellation window closed."},
        409: {"description": "Rental is not active."},
    },
)
async def cancel_rental(
    rental_id: int,
    user_id: int = Depends(get_current_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    result = await lifecycle.cancel_rental(user_id, rental_id)
    return serialize_rental_action(result)


@rentals_router.post(
    "/{rental_id}/finish",
    summary="Завершення оренди",
    response_model=RentalActionResponse,
    status_code=status.HTTP_200_OK,
    responses={
        **USER_AUTH_RESPONSES,
        409: {"description": "Rental is not active."},
    },
)
async def finish_rental(
    rental_id: int,
    user_id: int = Depends(get_current_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    result = await lifecycle.finish_rental(user_id, rental_id)
    return serialize_rental_action(result)
