import asyncio
import json

import pytest
from sqlalchemy import select

from conftest import user_headers
from smsdesk.core.config import config
from smsdesk.core.errors import InvalidSignature
from smsdesk.models import Activation, ActivationStatus, Transaction, TransactionType
from smsdesk.services.webhook import sign, verify_signature
from smsdesk.utils.common import parse_provider_datetime
from smsdesk.utils.provider_client import ActivationState, ProviderState


def _signed(payload: dict, secret: str = None):
    body = json.dumps(payload).encode()
    return body, {
        "Content-Type": "application/json",
        "X-Webhook-Signature": "sha256=" + sign(body, secret or config.WEBHOOK_SECRET),
    }


async def _buy(async_client, user_id, token):
    resp = await async_client.post(
        "/api/v1/activations",
        json={"service": "tg", "country": 0, "order_token": token},
        headers=user_headers(user_id),
    )
    assert resp.status_code == 200
    return resp.json()["activation"]


def test_signature_accepts_plain_and_prefixed_hex():
    body = b'{"id": "1"}'
    digest = sign(body, "s3cret")
    verify_signature(body, digest, "s3cret")
    verify_signature(body, "sha256=" + digest, "s3cret")
    with pytest.raises(InvalidSignature):
        verify_signature(body, digest, "other")
    with pytest.raises(InvalidSignature):
        verify_signature(body, None, "s3cret")


@pytest.mark.asyncio
async def test_code_delivered_by_webhook(async_client, services, make_user):
    user_id = await make_user("10.00")
    activation = await _buy(async_client, user_id, "hook-0001")

    body, headers = _signed({"id": activation["external_id"], "status": "STATUS_OK", "code": "9876"})
    resp = await async_client.post("/api/webhook/activation", content=body, headers=headers)

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "changed": True, "status": "RECEIVED"}

    async with services.session_factory() as session:
        got = await session.get(Activation, activation["id"])
    assert got.status is ActivationStatus.RECEIVED
    assert got.sms_code == "9876"


@pytest.mark.asyncio
async def test_replay_on_completed_order_is_a_noop(async_client, services, make_user):
    user_id = await make_user("10.00")
    activation = await _buy(async_client, user_id, "hook-0002")

    finish, headers = _signed({"id": activation["external_id"], "status": "STATUS_FINISH"})
    first = await async_client.post("/api/webhook/activation", content=finish, headers=headers)
    assert first.json()["status"] == "COMPLETED"

    cancel, headers = _signed({"id": activation["external_id"], "status": "STATUS_CANCEL"})
    for _ in range(2):
        resp = await async_client.post("/api/webhook/activation", content=cancel, headers=headers)
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "changed": False, "status": "COMPLETED"}

    async with services.session_factory() as session:
        refunds = (await session.scalars(
            select(Transaction).where(Transaction.type == TransactionType.REFUND)
        )).all()
    assert refunds == []


@pytest.mark.asyncio
async def test_duplicate_cancel_webhook_refunds_once(async_client, services, make_user):
    user_id = await make_user("10.00")
    activation = await _buy(async_client, user_id, "hook-0003")

    body, headers = _signed({"id": activation["external_id"], "status": "STATUS_CANCEL"})
    results = [
        (await async_client.post("/api/webhook/activation", content=body, headers=headers)).json()
        for _ in range(3)
    ]

    assert [r["changed"] for r in results] == [True, False, False]
    balance = await async_client.get("/api/v1/balance", headers=user_headers(user_id))
    assert balance.json()["balance"] == 10.0


@pytest.mark.asyncio
async def test_bad_signature_is_rejected_before_parsing(async_client, services):
    body = b"not even json"
    resp = await async_client.post(
        "/api/webhook/activation",
        content=body,
        headers={"X-Webhook-Signature": "sha256=" + sign(body, "wrong-secret")},
    )
    assert resp.status_code == 401
    assert resp.json()["detail"]["error"] == "invalid_signature"

    missing = await async_client.post("/api/webhook/activation", content=body)
    assert missing.status_code == 401


@pytest.mark.asyncio
async def test_malformed_and_unknown_orders(async_client, services):
    body = b"{broken"
    headers = {"X-Webhook-Signature": sign(body, config.WEBHOOK_SECRET)}
    resp = await async_client.post("/api/webhook/activation", content=body, headers=headers)
    assert resp.status_code == 400

    body, headers = _signed({"id": "does-not-exist", "status": "STATUS_OK"})
    resp = await async_client.post("/api/webhook/activation", content=body, headers=headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_unknown_status_is_acknowledged(async_client, services, make_user):
    user_id = await make_user("10.00")
    activation = await _buy(async_client, user_id, "hook-0004")

    body, headers = _signed({"id": activation["external_id"], "status": "STATUS_SOMETHING_NEW"})
    resp = await async_client.post("/api/webhook/activation", content=body, headers=headers)

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "changed": False, "status": "WAIT_SMS"}


@pytest.mark.asyncio
async def test_rental_webhook_updates_messages_and_end_date(async_client, services, make_user):
    user_id = await make_user("10.00")
    resp = await async_client.post(
        "/api/v1/rentals",
        json={"service": "tg", "country": 0, "hours": 4, "order_token": "hook-r-0001"},
        headers=user_headers(user_id),
    )
    rental = resp.json()["rental"]

    body, headers = _signed({
        "id": rental["external_id"],
        "status": "STATUS_OK",
        "endDate": "2030-01-01 12:00:00",
        "messages": [{"text": "code 31337"}],
    })
    resp = await async_client.post("/api/webhook/rental", content=body, headers=headers)
    assert resp.json() == {"success": True, "changed": True, "status": "ACTIVE"}

    detail = await async_client.get(f"/api/v1/rentals/{rental['id']}", headers=user_headers(user_id))
    assert detail.json()["messages"] == [{"text": "code 31337"}]
    assert detail.json()["expires_at"].startswith("2030-01-01T12:00:00")

    body, headers = _signed({"id": rental["external_id"], "status": "STATUS_REVOKE"})
    resp = await async_client.post("/api/webhook/rental", content=body, headers=headers)
    assert resp.json()["status"] == "CANCELLED"


def test_non_ascii_signature_is_a_mismatch():
    body = b'{"id": "1"}'
    with pytest.raises(InvalidSignature):
        verify_signature(body, "sha256=éé", "s3cret")


@pytest.mark.asyncio
async def test_non_ascii_signature_header_is_rejected(async_client, services):
    resp = await async_client.post(
        "/api/webhook/activation",
        content=b'{"id": "1", "status": "STATUS_OK"}',
        headers={"X-Webhook-Signature": b"sha256=\xe9\xe9"},
    )
    assert resp.status_code == 401
    assert resp.json()["detail"]["error"] == "invalid_signature"


@pytest.mark.asyncio
async def test_code_inline_in_status(async_client, services, make_user):
    user_id = await make_user("10.00")
    activation = await _buy(async_client, user_id, "hook-0005")

    body, headers = _signed({"id": activation["external_id"], "status": "STATUS_OK:4321"})
    resp = await async_client.post("/api/webhook/activation", content=body, headers=headers)

    assert resp.json() == {"success": True, "changed": True, "status": "RECEIVED"}
    async with services.session_factory() as session:
        got = await session.get(Activation, activation["id"])
    assert got.sms_code == "4321"


def test_out_of_range_timestamps_are_not_dates():
    assert parse_provider_datetime(10 ** 20) is None
    assert parse_provider_datetime(str(10 ** 20)) is None
    assert parse_provider_datetime(float("nan")) is None
    assert parse_provider_datetime(1893499200).year == 2030


@pytest.mark.asyncio
async def test_out_of_range_end_date_is_ignored(async_client, services, make_user):
    user_id = await make_user("10.00")
    resp = await async_client.post(
        "/api/v1/rentals",
        json={"service": "tg", "country": 0, "hours": 4, "order_token": "hook-r-0002"},
        headers=user_headers(user_id),
    )
    rental = resp.json()["rental"]

    body, headers = _signed({"id": rental["external_id"], "status": "STATUS_OK", "endDate": 10 ** 20})
    resp = await async_client.post("/api/webhook/rental", content=body, headers=headers)

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "changed": False, "status": "ACTIVE"}


@pytest.mark.asyncio
async def test_poller_and_webhook_race_refunds_once(async_client, services, make_user):
    user_id = await make_user("10.00")
    activation = await _buy(async_client, user_id, "hook-0006")
    services.provider.activation_states[activation["external_id"]] = ActivationState(ProviderState.CANCEL)

    body, headers = _signed({"id": activation["external_id"], "status": "STATUS_CANCEL"})
    report, resp = await asyncio.gather(
        services.poller.run_tick(),
        async_client.post("/api/webhook/activation", content=body, headers=headers),
    )

    assert resp.status_code == 200
    assert resp.json()["status"] == "CANCELLED"
    assert report.failed == 0
    # зміну застосовує рівно один із двох каналів
    assert report.updated + int(resp.json()["changed"]) == 1

    async with services.session_factory() as session:
        refunds = (await session.scalars(
            select(Transaction).where(Transaction.type == TransactionType.REFUND)
        )).all()
    assert len(refunds) == 1
    balance = await async_client.get("/api/v1/balance", headers=user_headers(user_id))
    assert balance.json()["balance"] == 10.0
