from sqlalchemy import (
	Column, Integer, String, Numeric, Boolean, DateTime, UniqueConstraint
)

from smsdesk.core.database import Base, utcnow


class PricingOverride(Base):
	__tablename__ = "pricing_overrides"
	__table_args__ = (
		UniqueConstraint("service", "country", name="uq_pricing_service_country"),
	)

	id = Column(Integer, primary_key=True)
	service = Column(String(64), nullable=False)
	country = Column(Integer, nullable=False)
	price = Column(Numeric(12, 4), nullable=False)
	enabled = Column(Boolean, nullable=False, default=True)
	updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
