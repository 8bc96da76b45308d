import enum

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Enum as AlchemyEnum
from sqlalchemy.orm import relationship

from smsdesk.core.database import Base, utcnow


class UserStatus(enum.Enum):
	ACTIVE = "active"
	SUSPENDED = "suspended"
	PENDING = "pending"


class User(Base):
	__tablename__ = "users"

	id = Column(Integer, primary_key=True, index=True)
	username = Column(String(64), unique=True, nullable=False)
	status = Column(AlchemyEnum(UserStatus), nullable=False, default=UserStatus.ACTIVE)

	# змінюються лише через Ledger
	balance = Column(Numeric(12, 4), nullable=False, default=0)
	total_spent = Column(Numeric(12, 4), nullable=False, default=0)
	total_recharged = Column(Numeric(12, 4), nullable=False, default=0)

	created_at = Column(DateTime(timezone=True), default=utcnow)
	updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

	# ORM-зв’язки
	activations = relationship("Activation", back_populates="user")
	rentals = relationship("Rental", back_populates="user")
	transactions = relationship("Transaction", back_populates="user")
