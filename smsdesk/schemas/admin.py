from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from smsdesk.models import UserStatus


# **************    Users
class UserCreate(BaseModel):
	username: str = Field(..., min_length=1, max_length=64)
	status: UserStatus = UserStatus.ACTIVE


class UserResponse(BaseModel):
	id: int
	username: str
	status: UserStatus
	balance: float
	created_at: datetime

	model_config = ConfigDict(
		from_attributes=True,
		use_enum_values=True
	)


# **************    Ledger
class RechargeRequest(BaseModel):
	amount: Decimal = Field(..., gt=0)
	operation_id: str = Field(..., min_length=1, max_length=100)
	description: Optional[str] = None


class AdjustmentRequest(BaseModel):
	amount: Decimal
	description: str = Field(..., min_length=1)

	@field_validator("amount")
	@classmethod
	def non_zero(cls, v: Decimal):
		if v == 0:
			raise ValueError("amount must not be zero")
		return v


class LedgerEntryResponse(BaseModel):
	success: bool = True
	replay: bool = False
	transaction_id: int
	user_id: int
	amount: float
	balance_before: float
	balance_after: float
	operation_id: Optional[str] = None


class LedgerVerifyResponse(BaseModel):
	user_id: int
	balance: float
	ledger_sum: float
	entries: int
	consistent: bool


# **************    Reconciliation
class TickReportResponse(BaseModel):
	checked: int
	updated: int
	expired: int
	failed: int
	skipped: bool
	duration: float
