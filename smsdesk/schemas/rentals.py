from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from smsdesk.models import RentalStatus


class RentalCreate(BaseModel):
	service: str = Field(..., min_length=1, max_length=50)
	country: int = Field(..., ge=0)
	operator: Optional[str] = None
	hours: int = Field(default=4, ge=1)
	order_token: str = Field(default_factory=lambda: uuid4().hex, min_length=8, max_length=100)


class RentalExtend(BaseModel):
	hours: int = Field(..., ge=1)


class RentalDetail(BaseModel):
	id: int
	external_id: str
	service: str
	country: int
	operator: Optional[str] = None
	phone_number: Optional[str] = None
	cost: Decimal
	duration_hours: int
	status: RentalStatus
	messages: List[Any] = []
	expires_at: datetime
	created_at: datetime

	model_config = ConfigDict(
		from_attributes=True,
		use_enum_values=True
	)

	@field_serializer("cost")
	def format_cost(self, v: Decimal, _info):
		return float(round(v, 4))


class RentalPurchaseResponse(BaseModel):
	success: bool = True
	replay: bool = False
	rental: RentalDetail
	balance: Optional[float] = None


class RentalActionResponse(BaseModel):
	success: bool = True
	changed: bool
	already_terminal: bool = False
	rental: RentalDetail
	refund: float = 0
	fee: float = 0
	balance: Optional[float] = None


class RentalPaginatedList(BaseModel):
	total: int
	limit: int
	offset: int
	rentals: List[RentalDetail]
