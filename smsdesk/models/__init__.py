from smsdesk.models.user import User, UserStatus
from smsdesk.models.activation import Activation, ActivationStatus
from smsdesk.models.rental import Rental, RentalStatus
from smsdesk.models.transaction import Transaction, TransactionType, ReferenceType
from smsdesk.models.pricing import PricingOverride

__all__ = [
	"User", "UserStatus",
	"Activation", "ActivationStatus",
	"Rental", "RentalStatus",
	"Transaction", "TransactionType", "ReferenceType",
	"PricingOverride",
]
