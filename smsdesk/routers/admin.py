import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from smsdesk.core.dependencies import access_admin, get_locks, get_poller, get_session, get_sink
from smsdesk.core.errors import IdempotencyConflict
from smsdesk.models import TransactionType, User
from smsdesk.schemas.admin import (
    AdjustmentRequest, LedgerEntryResponse, LedgerVerifyResponse,
    RechargeRequest, TickReportResponse, UserCreate, UserResponse,
)
from smsdesk.services.ledger import Ledger
from smsdesk.services.notifications import NotificationSink
from smsdesk.services.poller import ReconciliationPoller
from smsdesk.utils.common import money, utcnow
from smsdesk.utils.idempotency import check_idempotency
from smsdesk.utils.locks import KeyedLocks, user_key
from smsdesk.utils.logging import get_extra_data_log

logger = logging.getLogger("[ADMIN]")


# Admin API
admin_router = APIRouter(
    prefix="/api/admin",
    tags=["Admin API"],
    dependencies=[Depends(access_admin)],
)

ADMIN_RESPONSES = {
    403: {
        "description": "Forbidden.",
        "content": {
            "application/json": {
                "example": {"detail": "Invalid admin token."}
            },
        },
    },
    404: {
        "description": "Not found.",
        "content": {
            "application/json": {
                "example": {"success": False, "detail": {"error": "user_not_found", "message": "User '7' not found."}}
            },
        },
    },
}


@admin_router.post(
    "/users",
    summary="Створення користувача",
    description="Доступ лише для адміністратора. Headers: X-Admin-Token",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        **ADMIN_RESPONSES,
        409: {
            "description": "Conflict.",
            "content": {
                "application/json": {
                    "example": {"detail": "Username already exists."}
                },
            },
        },
    },
)
async def create_user(
    payload: UserCreate,
    session: AsyncSession = Depends(get_session)
):
    now = utcnow()
    user = User(
        username=payload.username,
        status=payload.status,
        balance=0,
        total_spent=0,
        total_recharged=0,
        created_at=now,
        updated_at=now,
    )
    session.add(user)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Username '{payload.username}' already exists."
        )

    logger.info(f"Created user {user.id} '{user.username}'")
    return UserResponse.model_validate(user)


@admin_router.post(
    "/users/{user_id}/recharge",
    summary="Поповнення балансу",
    description="Ідемпотентно за operation_id. Headers: X-Admin-Token",
    response_model=LedgerEntryResponse,
    status_code=status.HTTP_200_OK,
    responses={
        **ADMIN_RESPONSES,
        409: {"description": "operation_id already used for another operation."},
    },
)
async def recharge_user(
    user_id: int,
    payload: RechargeRequest,
    session: AsyncSession = Depends(get_session),
    locks: KeyedLocks = Depends(get_locks),
    sink: NotificationSink = Depends(get_sink),
):
    async with locks.hold(user_key(user_id)):
        # Перевіряємо ідемпотентність
        is_duplicate, existing_tx = await check_idempotency(
            session, payload.operation_id, expected_type=TransactionType.RECHARGE.value
        )
        if is_duplicate and existing_tx is not None:
            if existing_tx.user_id != user_id:
                raise IdempotencyConflict(
                    f"Operation ID '{payload.operation_id}' already used for another user"
                )
            logger.warning("Found duplicate transaction: ", extra=get_extra_data_log(existing_tx))
            return LedgerEntryResponse(
                replay=True,
                transaction_id=existing_tx.id,
                user_id=existing_tx.user_id,
                amount=float(existing_tx.amount),
                balance_before=float(existing_tx.balance_before),
                balance_after=float(existing_tx.balance_after),
                operation_id=existing_tx.operation_id,
            )

        ledger = Ledger(session)
        user = await ledger.lock_user(user_id)
        tx = await ledger.credit(
            user, payload.amount, TransactionType.RECHARGE,
            operation_id=payload.operation_id,
            description=payload.description or "Balance recharge",
        )
        await session.commit()

    logger.info("Recharged balance. Transaction:", extra=get_extra_data_log(tx))
    sink.publish(user_id, "balance_updated", {"balance": float(money(user.balance))})

    return LedgerEntryResponse(
        transaction_id=tx.id,
        user_id=user_id,
        amount=float(tx.amount),
        balance_before=float(tx.balance_before),
        balance_after=float(tx.balance_after),
        operation_id=tx.operation_id,
    )


@admin_router.post(
    "/users/{user_id}/adjustment",
    summary="Ручне коригування балансу",
    description="Додатна або від'ємна сума; баланс не може стати від'ємним.",
    response_model=LedgerEntryResponse,
    status_code=status.HTTP_200_OK,
    responses={
        **ADMIN_RESPONSES,
        402: {"description": "Adjustment would make the balance negative."},
    },
)
async def adjust_user_balance(
    user_id: int,
    payload: AdjustmentRequest,
    session: AsyncSession = Depends(get_session),
    locks: KeyedLocks = Depends(get_locks),
    sink: NotificationSink = Depends(get_sink),
):
    async with locks.hold(user_key(user_id)):
        ledger = Ledger(session)
        user = await ledger.lock_user(user_id)
        tx = await ledger.post(
            user, payload.amount, TransactionType.ADJUSTMENT,
            description=payload.description,
            info={"source": "admin"},
        )
        await session.commit()

    logger.info("Manual adjustment. Transaction:", extra=get_extra_data_log(tx))
    sink.publish(user_id, "balance_updated", {"balance": float(money(user.balance))})

    return LedgerEntryResponse(
        transaction_id=tx.id,
        user_id=user_id,
        amount=float(tx.amount),
        balance_before=float(tx.balance_before),
        balance_after=float(tx.balance_after),
    )


@admin_router.get(
    "/users/{user_id}/ledger/verify",
    summary="Перевірка інваріанту балансу",
    description="Сума всіх записів журналу має дорівнювати поточному балансу.",
    response_model=LedgerVerifyResponse,
    status_code=status.HTTP_200_OK,
    responses=ADMIN_RESPONSES,
)
async def verify_user_ledger(
    user_id: int,
    session: AsyncSession = Depends(get_session)
):
    check = await Ledger(session).verify(user_id)
    if not check.consistent:
        logger.error(
            f"Ledger mismatch for user {user_id}: balance={check.balance} ledger={check.ledger_sum}"
        )

    return LedgerVerifyResponse(
        user_id=check.user_id,
        balance=float(check.balance),
        ledger_sum=float(check.ledger_sum),
        entries=check.entries,
        consistent=check.consistent,
    )


@admin_router.post(
    "/reconciliation/run",
    summary="Позачерговий запуск звірки з провайдером",
    response_model=TickReportResponse,
    status_code=status.HTTP_200_OK,
    responses={403: ADMIN_RESPONSES[403]},
)
async def run_reconciliation(
    poller: ReconciliationPoller = Depends(get_poller)
):
    report = await poller.run_tick()
    logger.info(f"Manual reconciliation tick: {report.as_dict()}")
    return TickReportResponse(**report.as_dict())
