import enum

from sqlalchemy import (
	Column, Integer, String, Numeric, DateTime, ForeignKey, JSON, Index,
	Enum as AlchemyEnum
)
from sqlalchemy.orm import relationship

from smsdesk.core.database import Base, utcnow


class RentalStatus(enum.Enum):
	ACTIVE = "active"
	EXPIRED = "expired"
	CANCELLED = "cancelled"
	COMPLETED = "completed"

	@property
	def is_terminal(self) -> bool:
		return self is not RentalStatus.ACTIVE


class Rental(Base):
	__tablename__ = "rentals"
	__table_args__ = (
		Index("ix_rentals_user_status", "user_id", "status"),
	)

	id = Column(Integer, primary_key=True)
	user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

	external_id = Column(String(50), unique=True, nullable=False)
	order_token = Column(String(100), unique=True, nullable=False)

	service = Column(String(50), nullable=False)
	country = Column(Integer, nullable=False)
	operator = Column(String(50), nullable=True)
	phone_number = Column(String(20), nullable=True)

	cost = Column(Numeric(12, 4), nullable=False)  # зростає лише при продовженні
	duration_hours = Column(Integer, nullable=False)
	status = Column(AlchemyEnum(RentalStatus), nullable=False, default=RentalStatus.ACTIVE)

	expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
	messages = Column(JSON, nullable=False, default=list)  # отримані SMS
	last_check_at = Column(DateTime(timezone=True), nullable=True)
	check_count = Column(Integer, nullable=False, default=0)

	created_at = Column(DateTime(timezone=True), default=utcnow)
	updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

	user = relationship("User", back_populates="rentals")
