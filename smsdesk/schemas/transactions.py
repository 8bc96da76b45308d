from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_serializer

from smsdesk.models import ReferenceType, TransactionType


class TransactionDetail(BaseModel):
	id: int
	type: TransactionType
	amount: Decimal
	balance_before: Decimal
	balance_after: Decimal
	reference_type: Optional[ReferenceType] = None
	reference_id: Optional[str] = None
	operation_id: Optional[str] = None
	description: Optional[str] = None
	created_at: datetime

	model_config = ConfigDict(
		from_attributes=True,
		use_enum_values=True
	)

	@field_serializer("amount", "balance_before", "balance_after")
	def format_amount(self, v: Decimal, _info):
		return float(round(v, 4))  # 4 знаки після крапки


class TransactionPaginatedList(BaseModel):
	total: int
	limit: int
	offset: int
	transactions: List[TransactionDetail]


class BalanceResponse(BaseModel):
	user_id: int
	username: str
	status: str
	balance: float
	total_spent: float
	total_recharged: float
