from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_serializer

from smsdesk.models import ActivationStatus


class ActivationCreate(BaseModel):
	service: str = Field(..., min_length=1, max_length=50)
	country: int = Field(..., ge=0)
	operator: Optional[str] = None
	max_price: Optional[Decimal] = Field(default=None, gt=0)
	# ключ ідемпотентності покупки; повтор з тим самим токеном - replay
	order_token: str = Field(default_factory=lambda: uuid4().hex, min_length=8, max_length=100)


class ActivationDetail(BaseModel):
	id: int
	external_id: str
	service: str
	country: int
	operator: Optional[str] = None
	phone_number: Optional[str] = None
	cost: Decimal
	status: ActivationStatus
	sms_code: Optional[str] = None
	expires_at: datetime
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)

	@computed_field
	@property
	def status_code(self) -> int:
		return self.status.value

	@field_serializer("status")
	def format_status(self, v: ActivationStatus, _info):
		return v.name

	@field_serializer("cost")
	def format_cost(self, v: Decimal, _info):
		return float(round(v, 4))


class ActivationPurchaseResponse(BaseModel):
	success: bool = True
	replay: bool = False
	activation: ActivationDetail
	balance: Optional[float] = None


class ActivationActionResponse(BaseModel):
	success: bool = True
	changed: bool
	already_terminal: bool = False
	activation: ActivationDetail
	refund: float = 0
	fee: float = 0
	balance: Optional[float] = None


class ActivationPaginatedList(BaseModel):
	total: int
	limit: int
	offset: int
	activations: List[ActivationDetail]
