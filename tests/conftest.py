import os
import sys
import tempfile
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

# конфіг читається при імпорті smsdesk - змінні оточення виставляємо до нього
_TMP_DIR = tempfile.mkdtemp(prefix="smsdesk-tests-")
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("USER_TOKEN_BEARER", "test-user-token")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")
os.environ["SQLALCHEMY_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/default.db"
os.environ["LOG_DIR"] = os.path.join(_TMP_DIR, "logs")
os.environ["POLLER_ENABLED"] = "false"
os.environ["ACTIVATION_MIN_CANCEL_SECONDS"] = "0"
os.environ["POLL_REQUEST_DELAY_SECONDS"] = "0"

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from uuid import uuid4

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
	create_async_engine, AsyncSession, async_sessionmaker
)
from sqlalchemy.pool import NullPool

from smsdesk.main import app, build_services
from smsdesk.core.config import config
from smsdesk.core.database import Base
from smsdesk.core.dependencies import get_session
from smsdesk.core.errors import ProviderRejected
from smsdesk.models import TransactionType, User, UserStatus
from smsdesk.services.ledger import Ledger
from smsdesk.services.notifications import RecordingSink
from smsdesk.utils.provider_client import (
	ActivationState, ProviderState, PurchasedNumber, RentalState
)


class FakeProvider:
	"""
	Сценарний провайдер: стани задаються тестом, кожен виклик записується.
	fail["method"] = exc - наступні виклики методу кидають exc.
	"""

	def __init__(self):
		self.calls: list[tuple] = []
		self.fail: dict[str, Exception] = {}
		self.activation_states: dict[str, ActivationState] = {}
		self.rental_states: dict[str, RentalState] = {}
		self.end_date = None
		self._next_id = 1000

	def _record(self, name: str, *args):
		self.calls.append((name, *args))
		if name in self.fail:
			raise self.fail[name]

	def called(self, name: str) -> list[tuple]:
		return [c for c in self.calls if c[0] == name]

	def _new_id(self) -> str:
		self._next_id += 1
		return str(self._next_id)

	async def purchase_activation(self, service, country, operator, max_price, order_token):
		self._record("purchase_activation", service, country, order_token)
		external_id = self._new_id()
		self.activation_states[external_id] = ActivationState(ProviderState.WAIT_CODE)
		return PurchasedNumber(external_id=external_id, phone_number="380991234567", cost=Decimal("0.30"))

	async def check_activation_status(self, external_id):
		self._record("check_activation_status", external_id)
		return self.activation_states[external_id]

	async def cancel_activation(self, external_id):
		self._record("cancel_activation", external_id)

	async def confirm_activation(self, external_id):
		self._record("confirm_activation", external_id)

	async def request_retry(self, external_id):
		self._record("request_retry", external_id)

	async def rent_number(self, service, country, operator, hours, order_token):
		self._record("rent_number", service, country, hours, order_token)
		external_id = self._new_id()
		self.rental_states[external_id] = RentalState(ProviderState.OK)
		return PurchasedNumber(external_id=external_id, phone_number="447700900123", end_date=self.end_date)

	async def check_rental_status(self, external_id):
		self._record("check_rental_status", external_id)
		return self.rental_states[external_id]

	async def extend_rental(self, external_id, hours):
		self._record("extend_rental", external_id, hours)
		return PurchasedNumber(external_id=external_id, phone_number="447700900123", end_date=self.end_date)

	async def cancel_rental(self, external_id):
		self._record("cancel_rental", external_id)

	async def finish_rental(self, external_id):
		self._record("finish_rental", external_id)


@dataclass
class Services:
	session_factory: async_sessionmaker
	provider: FakeProvider
	sink: RecordingSink

	@property
	def lifecycle(self):
		return app.state.lifecycle

	@property
	def purchase(self):
		return app.state.purchase

	@property
	def poller(self):
		return app.state.poller

	@property
	def webhook(self):
		return app.state.webhook


# Окрема SQLite база для КОЖНОГО тесту
@pytest_asyncio.fixture
async def session_factory(tmp_path):
	engine = create_async_engine(
		f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
		poolclass=NullPool,
	)
	async with engine.begin() as conn:
		await conn.run_sync(Base.metadata.create_all)

	SessionLocal = async_sessionmaker(
		engine,
		class_=AsyncSession,
		expire_on_commit=False,
	)
	yield SessionLocal
	await engine.dispose()


@pytest_asyncio.fixture
async def services(session_factory):
	provider = FakeProvider()
	sink = RecordingSink()
	build_services(app, provider, sink, session_factory=session_factory)

	async def get_test_db():
		async with session_factory() as session:
			yield session

	# Override на час тесту
	app.dependency_overrides[get_session] = get_test_db

	yield Services(session_factory=session_factory, provider=provider, sink=sink)

	# Cleanup після тесту
	app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def async_client(services):
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://test") as client:
		yield client


@pytest_asyncio.fixture
async def make_user(session_factory):
	"""Користувач з початковим балансом, внесеним через журнал."""

	async def _make(balance: str = "10.00", status: UserStatus = UserStatus.ACTIVE) -> int:
		async with session_factory() as session:
			user = User(
				username=f"user_{uuid4().hex[:8]}",
				status=status,
				balance=0,
				total_spent=0,
				total_recharged=0,
			)
			session.add(user)
			await session.flush()
			if Decimal(balance) > 0:
				await Ledger(session).credit(
					user, Decimal(balance), TransactionType.RECHARGE, description="initial"
				)
			await session.commit()
			return user.id

	return _make


def user_headers(user_id: int, token: Optional[str] = None) -> dict:
	return {
		"Authorization": f"Bearer {token or config.USER_TOKEN_BEARER}",
		"X-User-Id": str(user_id),
	}


def admin_headers() -> dict:
	return {"X-Admin-Token": config.ADMIN_TOKEN}


def provider_rejects(code: str = "NO_NUMBERS") -> ProviderRejected:
	return ProviderRejected(f"Provider rejected: {code}", code=code)
