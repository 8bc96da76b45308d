import enum

from sqlalchemy import (
	Column, Integer, String, Numeric, DateTime, ForeignKey, Index,
	Enum as AlchemyEnum
)
from sqlalchemy.orm import relationship

from smsdesk.core.database import Base, utcnow


class ActivationStatus(enum.Enum):
	WAIT_SMS = 0      # очікування SMS
	WAIT_RETRY = 1    # очікування повторного коду
	RECEIVED = 3      # код отримано
	CANCELLED = 6     # скасовано
	COMPLETED = 8     # завершено

	@property
	def is_terminal(self) -> bool:
		return self in (ActivationStatus.CANCELLED, ActivationStatus.COMPLETED)


class Activation(Base):
	__tablename__ = "activations"
	__table_args__ = (
		Index("ix_activations_user_status", "user_id", "status"),
	)

	id = Column(Integer, primary_key=True)
	user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

	external_id = Column(String(50), unique=True, nullable=False)  # id у провайдера
	order_token = Column(String(100), unique=True, nullable=False)  # для ідемпотентності

	service = Column(String(50), nullable=False)
	country = Column(Integer, nullable=False)
	operator = Column(String(50), nullable=True)
	phone_number = Column(String(20), nullable=True)

	cost = Column(Numeric(12, 4), nullable=False)  # фіксується при покупці
	status = Column(AlchemyEnum(ActivationStatus), nullable=False, default=ActivationStatus.WAIT_SMS)
	sms_code = Column(String(20), nullable=True)

	expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
	last_check_at = Column(DateTime(timezone=True), nullable=True)
	check_count = Column(Integer, nullable=False, default=0)

	created_at = Column(DateTime(timezone=True), default=utcnow)
	updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

	user = relationship("User", back_populates="activations")
