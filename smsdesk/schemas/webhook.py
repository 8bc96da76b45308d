from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from smsdesk.utils.common import parse_provider_datetime


class WebhookPayload(BaseModel):
	id: str
	status: str
	code: Optional[str] = None
	end_date: Optional[datetime] = Field(default=None, alias="endDate")
	messages: Optional[List[Any]] = None

	model_config = ConfigDict(populate_by_name=True)

	@field_validator("id", "code", mode="before")
	@classmethod
	def as_text(cls, v):
		if v is None:
			return None
		if isinstance(v, (int, float)):
			return str(v)
		return v

	@field_validator("end_date", mode="before")
	@classmethod
	def parse_end_date(cls, v):
		return parse_provider_datetime(v)


class WebhookAckResponse(BaseModel):
	success: bool = True
	changed: bool
	status: str
