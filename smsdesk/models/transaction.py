import enum

from sqlalchemy import (
	Column, Integer, String, ForeignKey, Numeric, DateTime, JSON, Enum, Index, text
)
from sqlalchemy.orm import relationship

from smsdesk.core.database import Base, utcnow


class TransactionType(enum.Enum):
	RECHARGE = "recharge"        # поповнення
	ACTIVATION = "activation"    # покупка активації
	RENTAL = "rental"            # оренда номера / продовження
	REFUND = "refund"            # повернення
	ADJUSTMENT = "adjustment"    # комісія, ручне коригування


class ReferenceType(enum.Enum):
	ACTIVATION = "activation"
	RENTAL = "rental"


class Transaction(Base):
	__tablename__ = "transactions"
	__table_args__ = (
		Index("ix_transactions_user_type", "user_id", "type"),
		Index("ix_transactions_reference", "reference_type", "reference_id"),
		# не більше одного refund на замовлення
		Index(
			"uq_transactions_single_refund",
			"reference_type", "reference_id",
			unique=True,
			postgresql_where=text("type = 'REFUND'"),
			sqlite_where=text("type = 'REFUND'"),
		),
	)

	id = Column(Integer, primary_key=True)
	user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

	type = Column(Enum(TransactionType), nullable=False)

	amount = Column(Numeric(12, 4), nullable=False)  # + або -
	balance_before = Column(Numeric(12, 4), nullable=False)
	balance_after = Column(Numeric(12, 4), nullable=False)

	reference_type = Column(Enum(ReferenceType), nullable=True)
	reference_id = Column(String(100), nullable=True)
	operation_id = Column(String, unique=True, nullable=True)  # для ідемпотентності поповнень

	description = Column(String, nullable=True)
	info = Column(JSON, default=dict)   # metadata (!)
	created_at = Column(DateTime(timezone=True), default=utcnow)

	user = relationship("User", back_populates="transactions")
