from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from smsdesk.core.dependencies import (
    get_current_user, get_lifecycle, get_purchase, get_session, purchase_rate_limit
)
from smsdesk.core.errors import OrderNotFound
from smsdesk.models import Activation
from smsdesk.routers.account import USER_AUTH_RESPONSES
from smsdesk.schemas.activations import (
    ActivationActionResponse, ActivationCreate, ActivationDetail,
    ActivationPaginatedList, ActivationPurchaseResponse,
)
from smsdesk.schemas.serializers import (
    serialize_activation_action, serialize_activation_purchase
)
from smsdesk.services.lifecycle import OrderLifecycle
from smsdesk.services.purchase import PurchaseOrchestrator


activations_router = APIRouter(prefix="/api/v1/activations", tags=["Activations"])


@activations_router.post(
    "",
    summary="Покупка активації",
    description=(
        "Купує номер у провайдера і списує вартість з балансу. "
        "Повтор з тим самим order_token повертає вже створене замовлення."
    ),
    response_model=ActivationPurchaseResponse,
    status_code=status.HTTP_200_OK,
    responses={
        **USER_AUTH_RESPONSES,
        400: {
            "description": "Provider rejected / max price too low.",
            "content": {
                "application/json": {
                    "example": {"success": False, "detail": {"error": "provider_rejected", "message": "Provider rejected 'getNumberV2': NO_NUMBERS"}}
                }
            },
        },
        402: {
            "description": "Payment required.",
            "content": {
                "application/json": {
                    "example": {
                        "success": False,
                        "detail": {
                            "error": "insufficient_funds", "message": "Insufficient balance",
                            "required": 0.5, "current_balance": 0.1, "shortfall": 0.4,
                        },
                    }
                }
            },
        },
        429: {"description": "Too many purchase requests."},
        503: {"description": "Provider unavailable."},
        504: {"description": "Provider timeout. Retry with the same order_token."},
    },
)
async def purchase_activation(
    payload: ActivationCreate,
    user_id: int = Depends(purchase_rate_limit),
    purchase: PurchaseOrchestrator = Depends(get_purchase),
):
    result = await purchase.purchase_activation(
        user_id=user_id,
        service=payload.service,
        country=payload.country,
        operator=payload.operator,
        max_price=payload.max_price,
        order_token=payload.order_token,
    )
    return serialize_activation_purchase(result)


@activations_router.get(
    "",
    summary="Активації користувача",
    response_model=ActivationPaginatedList,
    status_code=status.HTTP_200_OK,
    responses=USER_AUTH_RESPONSES,
)
async def list_activations(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    total = (await session.execute(
        select(func.count()).select_from(Activation).where(Activation.user_id == user_id)
    )).scalar_one()

    result = await session.execute(
        select(Activation)
        .where(Activation.user_id == user_id)
        .order_by(Activation.id.desc())
        .limit(limit)
        .offset(offset)
    )
    activations: List[Activation] = result.scalars().all()

    return ActivationPaginatedList(
        total=total,
        limit=limit,
        offset=offset,
        activations=[ActivationDetail.model_validate(a) for a in activations],
    )


@activations_router.get(
    "/{activation_id}",
    summary="Деталі активації",
    response_model=ActivationDetail,
    status_code=status.HTTP_200_OK,
    responses=USER_AUTH_RESPONSES,
)
async def get_activation(
    activation_id: int,
    user_id: int = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    activation = await session.get(Activation, activation_id)
    if not activation or activation.user_id != user_id:
        raise OrderNotFound(f"Activation '{activation_id}' not found")
    return ActivationDetail.model_validate(activation)


@activations_router.get(
    "/{activation_id}/status",
    summary="Перевірка статусу у провайдера",
    description="Спершу локальний термін дії, далі запит до провайдера.",
    response_model=ActivationActionResponse,
    status_code=status.HTTP_200_OK,
    responses=USER_AUTH_RESPONSES,
)
async def check_activation_status(
    activation_id: int,
    user_id: int = Depends(get_current_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    result = await lifecycle.check_activation(user_id, activation_id)
    return serialize_activation_action(result)


@activations_router.post(
    "/{activation_id}/cancel",
    summary="Скасування активації",
    description="WAIT_SMS - повернення 100%, WAIT_RETRY - 50%.",
    response_model=ActivationActionResponse,
    status_code=status.HTTP_200_OK,
    responses={
        **USER_AUTH_RESPONSES,
        400: {"description": "Cancellation too early / provider rejected."},
        409: {"description": "Activation cannot be cancelled in its current status."},
    },
)
async def cancel_activation(
    activation_id: int,
    user_id: int = Depends(get_current_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    result = await lifecycle.cancel_activation(user_id, activation_id)
    return serialize_activation_action(result)


@activations_router.post(
    "/{activation_id}/confirm",
    summary="Підтвердження отриманого коду",
    response_model=ActivationActionResponse,
    status_code=status.HTTP_200_OK,
    responses={
        **USER_AUTH_RESPONSES,
        409: {"description": "No SMS code received yet."},
    },
)
async def confirm_activation(
    activation_id: int,
    user_id: int = Depends(get_current_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    result = await lifecycle.confirm_activation(user_id, activation_id)
    return serialize_activation_action(result)


@activations_router.post(
    "/{activation_id}/retry",
    summary="Запит ще одного SMS коду",
    response_model=ActivationActionResponse,
    status_code=status.HTTP_200_OK,
    responses={
        **USER_AUTH_RESPONSES,
        409: {"description": "Retry is not available in the current status."},
    },
)
async def retry_activation(
    activation_id: int,
    user_id: int = Depends(get_current_user),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    result = await lifecycle.retry_activation(user_id, activation_id)
    return serialize_activation_action(result)
