import pytest

from conftest import user_headers
from smsdesk.core.config import config


@pytest.mark.asyncio
async def test_health(async_client):
	resp = await async_client.get("/health")
	assert resp.status_code == 200
	assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_auth_is_required(async_client, make_user):
	user_id = await make_user("1.00")

	resp = await async_client.get("/api/v1/balance", headers={"X-User-Id": str(user_id)})
	assert resp.status_code in (401, 403)

	resp = await async_client.get("/api/v1/balance", headers=user_headers(user_id, token="wrong"))
	assert resp.status_code == 403

	resp = await async_client.get("/api/v1/balance", headers=user_headers(99999))
	assert resp.status_code == 404
	assert resp.json()["detail"]["error"] == "user_not_found"


@pytest.mark.asyncio
async def test_purchase_and_cancel_flow(async_client, services, make_user):
	user_id = await make_user("10.00")
	headers = user_headers(user_id)

	resp = await async_client.post(
		"/api/v1/activations",
		json={"service": "tg", "country": 0, "order_token": "api-flow-0001"},
		headers=headers,
	)
	assert resp.status_code == 200
	data = resp.json()
	assert data["success"] is True
	assert data["replay"] is False
	assert data["balance"] == 9.5
	activation = data["activation"]
	assert activation["status"] == "WAIT_SMS"
	assert activation["status_code"] == 0
	assert activation["cost"] == 0.5

	replay = await async_client.post(
		"/api/v1/activations",
		json={"service": "tg", "country": 0, "order_token": "api-flow-0001"},
		headers=headers,
	)
	assert replay.json()["replay"] is True
	assert replay.json()["activation"]["id"] == activation["id"]

	resp = await async_client.post(f"/api/v1/activations/{activation['id']}/cancel", headers=headers)
	assert resp.status_code == 200
	data = resp.json()
	assert data["changed"] is True
	assert data["refund"] == 0.5
	assert data["activation"]["status"] == "CANCELLED"

	resp = await async_client.post(f"/api/v1/activations/{activation['id']}/cancel", headers=headers)
	assert resp.status_code == 200
	assert resp.json()["already_terminal"] is True
	assert resp.json()["refund"] == 0

	balance = await async_client.get("/api/v1/balance", headers=headers)
	assert balance.json()["balance"] == 10.0

	history = await async_client.get("/api/v1/transactions", headers=headers)
	data = history.json()
	assert data["total"] == 3
	assert [t["type"] for t in data["transactions"]] == ["refund", "activation", "recharge"]

	refunds = await async_client.get("/api/v1/transactions?type=refund", headers=headers)
	assert refunds.json()["total"] == 1


@pytest.mark.asyncio
async def test_insufficient_funds_response(async_client, services, make_user):
	user_id = await make_user("0.10")

	resp = await async_client.post(
		"/api/v1/activations",
		json={"service": "tg", "country": 0},
		headers=user_headers(user_id),
	)

	assert resp.status_code == 402
	detail = resp.json()["detail"]
	assert detail["error"] == "insufficient_funds"
	assert detail["required"] == 0.5
	assert detail["current_balance"] == 0.1
	assert detail["shortfall"] == 0.4
	assert services.provider.called("purchase_activation") == []


@pytest.mark.asyncio
async def test_purchase_rate_limit(async_client, services, make_user):
	user_id = await make_user("10.00")
	headers = user_headers(user_id)

	codes = []
	for i in range(config.PURCHASE_RATE_LIMIT + 1):
		resp = await async_client.post(
			"/api/v1/activations",
			json={"service": "tg", "country": 0, "order_token": f"api-limit-{i:04d}"},
			headers=headers,
		)
		codes.append(resp.status_code)

	assert codes[:-1] == [200] * config.PURCHASE_RATE_LIMIT
	assert codes[-1] == 429


@pytest.mark.asyncio
async def test_activation_status_and_listing(async_client, services, make_user):
	from smsdesk.utils.provider_client import ActivationState, ProviderState

	user_id = await make_user("10.00")
	headers = user_headers(user_id)
	resp = await async_client.post(
		"/api/v1/activations",
		json={"service": "tg", "country": 0, "order_token": "api-status-0001"},
		headers=headers,
	)
	activation = resp.json()["activation"]

	# код ще не прийшов - статус без змін
	resp = await async_client.get(f"/api/v1/activations/{activation['id']}/status", headers=headers)
	assert resp.json()["changed"] is False
	assert resp.json()["activation"]["status"] == "WAIT_SMS"

	services.provider.activation_states[activation["external_id"]] = ActivationState(ProviderState.OK, "321")
	resp = await async_client.get(f"/api/v1/activations/{activation['id']}/status", headers=headers)
	assert resp.json()["activation"]["sms_code"] == "321"

	resp = await async_client.post(f"/api/v1/activations/{activation['id']}/confirm", headers=headers)
	assert resp.json()["activation"]["status"] == "COMPLETED"

	listing = await async_client.get("/api/v1/activations", headers=headers)
	assert listing.json()["total"] == 1

	other = await make_user("1.00")
	resp = await async_client.get(f"/api/v1/activations/{activation['id']}", headers=user_headers(other))
	assert resp.status_code == 404


@pytest.mark.asyncio
async def test_rental_flow(async_client, services, make_user):
	user_id = await make_user("10.00")
	headers = user_headers(user_id)

	resp = await async_client.post(
		"/api/v1/rentals",
		json={"service": "tg", "country": 0, "hours": 4, "order_token": "api-rent-0001"},
		headers=headers,
	)
	assert resp.status_code == 200
	rental = resp.json()["rental"]
	assert rental["status"] == "active"
	assert rental["cost"] == 0.24

	resp = await async_client.post(
		f"/api/v1/rentals/{rental['id']}/extend", json={"hours": 2}, headers=headers
	)
	assert resp.status_code == 400

	resp = await async_client.post(
		f"/api/v1/rentals/{rental['id']}/extend", json={"hours": 8}, headers=headers
	)
	assert resp.status_code == 200
	assert resp.json()["rental"]["duration_hours"] == 12
	assert resp.json()["rental"]["cost"] == 0.72

	resp = await async_client.post(f"/api/v1/rentals/{rental['id']}/finish", headers=headers)
	assert resp.json()["rental"]["status"] == "completed"

	resp = await async_client.post(f"/api/v1/rentals/{rental['id']}/cancel", headers=headers)
	assert resp.status_code == 200
	assert resp.json()["already_terminal"] is True

	listing = await async_client.get("/api/v1/rentals", headers=headers)
	assert listing.json()["total"] == 1
