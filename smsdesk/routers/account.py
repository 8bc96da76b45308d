from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from smsdesk.core.dependencies import get_current_user, get_session
from smsdesk.models import Transaction, TransactionType, User
from smsdesk.schemas.transactions import (
    BalanceResponse, TransactionDetail, TransactionPaginatedList
)
from smsdesk.utils.common import money


# API для фронтенду: баланс та історія
account_router = APIRouter(prefix="/api/v1", tags=["Account"])

USER_AUTH_RESPONSES = {
    401: {
        "description": "Unauthorized.",
        "content": {"application/json": {"example": {"detail": "Not authenticated."}}},
    },
    403: {
        "description": "Forbidden.",
        "content": {"application/json": {"example": {"detail": "Invalid user token."}}},
    },
    404: {
        "description": "Not found.",
        "content": {
            "application/json": {
                "example": {"success": False, "detail": {"error": "user_not_found", "message": "User '7' not found."}}
            }
        },
    },
}


@account_router.get(
    "/balance",
    summary="Баланс користувача",
    description="Headers: Authorization: Bearer {user_token}, X-User-Id",
    response_model=BalanceResponse,
    status_code=status.HTTP_200_OK,
    responses=USER_AUTH_RESPONSES,
)
async def user_balance(
    user_id: int = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    user = await session.get(User, user_id)

    return BalanceResponse(
        user_id=user.id,
        username=user.username,
        status=user.status.value,
        balance=float(money(user.balance)),
        total_spent=float(money(user.total_spent)),
        total_recharged=float(money(user.total_recharged)),
    )


@account_router.get(
    "/transactions",
    summary="Історія руху коштів",
    response_model=TransactionPaginatedList,
    status_code=status.HTTP_200_OK,
    responses=USER_AUTH_RESPONSES,
)
async def list_user_transactions(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    type: Optional[TransactionType] = Query(None),
    user_id: int = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    # базовий запит
    stmt = select(Transaction).where(Transaction.user_id == user_id)
    count_stmt = select(func.count()).select_from(Transaction).where(Transaction.user_id == user_id)

    # фільтр по типу
    if type:
        stmt = stmt.where(Transaction.type == type)
        count_stmt = count_stmt.where(Transaction.type == type)

    total = (await session.execute(count_stmt)).scalar_one()

    # пагінація
    stmt = stmt.order_by(Transaction.id.desc()).limit(limit).offset(offset)
    result = await session.execute(stmt)
    db_transactions: List[Transaction] = result.scalars().all()

    return TransactionPaginatedList(
        total=total,
        limit=limit,
        offset=offset,
        transactions=[TransactionDetail.model_validate(t) for t in db_transactions]
    )
