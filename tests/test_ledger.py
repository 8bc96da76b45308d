from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from smsdesk.core.errors import InsufficientFunds, UserNotFound
from smsdesk.models import Activation, ActivationStatus, Transaction, TransactionType
from smsdesk.services.ledger import Ledger
from smsdesk.utils.common import utcnow


@pytest.mark.asyncio
async def test_entries_record_balance_before_and_after(session_factory, make_user):
    user_id = await make_user("10.00")

    async with session_factory() as session:
        ledger = Ledger(session)
        user = await ledger.lock_user(user_id)
        tx = await ledger.debit(user, Decimal("0.50"), TransactionType.ACTIVATION)
        await session.commit()

    assert tx.amount == Decimal("-0.50")
    assert tx.balance_before == Decimal("10.00")
    assert tx.balance_after == Decimal("9.50")
    assert user.total_spent == Decimal("0.50")
    assert user.total_recharged == Decimal("10.00")


@pytest.mark.asyncio
async def test_negative_balance_is_rejected_before_any_write(session_factory, make_user):
    user_id = await make_user("0.10")

    async with session_factory() as session:
        ledger = Ledger(session)
        user = await ledger.lock_user(user_id)
        with pytest.raises(InsufficientFunds) as exc:
            await ledger.debit(user, Decimal("0.50"), TransactionType.ACTIVATION)
        assert exc.value.details["shortfall"] == Decimal("0.40")
        assert user.balance == Decimal("0.10")

    async with session_factory() as session:
        entries = (await session.scalars(select(Transaction).where(Transaction.user_id == user_id))).all()
    assert len(entries) == 1


@pytest.mark.asyncio
async def test_verify_matches_running_sum(session_factory, make_user):
    user_id = await make_user("5.00")

    async with session_factory() as session:
        ledger = Ledger(session)
        user = await ledger.lock_user(user_id)
        await ledger.debit(user, Decimal("1.25"), TransactionType.RENTAL)
        await ledger.credit(user, Decimal("0.25"), TransactionType.ADJUSTMENT)
        await session.commit()

    async with session_factory() as session:
        check = await Ledger(session).verify(user_id)

    assert check.consistent
    assert check.balance == Decimal("4.00")
    assert check.entries == 3


@pytest.mark.asyncio
async def test_unknown_user(session_factory):
    async with session_factory() as session:
        with pytest.raises(UserNotFound):
            await Ledger(session).lock_user(404)


@pytest.mark.asyncio
async def test_second_refund_for_same_order_violates_unique_index(session_factory, make_user):
    user_id = await make_user("1.00")

    async with session_factory() as session:
        activation = Activation(
            user_id=user_id, external_id="x-1", order_token="token-x-1",
            service="tg", country=0, cost=Decimal("0.50"),
            status=ActivationStatus.CANCELLED, expires_at=utcnow(),
        )
        session.add(activation)
        await session.flush()

        ledger = Ledger(session)
        user = await ledger.lock_user(user_id)
        await ledger.credit(user, Decimal("0.50"), TransactionType.REFUND, order=activation)
        await session.commit()

        await ledger.credit(user, Decimal("0.50"), TransactionType.REFUND, order=activation)
        with pytest.raises(IntegrityError):
            await session.commit()
