from smsdesk.schemas.activations import (
	ActivationActionResponse, ActivationDetail, ActivationPurchaseResponse
)
from smsdesk.schemas.rentals import RentalActionResponse, RentalDetail, RentalPurchaseResponse
from smsdesk.services.lifecycle import ApplyResult
from smsdesk.services.purchase import PurchaseResult


def _money(value):
	return float(value) if value is not None else None


def serialize_activation_purchase(result: PurchaseResult) -> ActivationPurchaseResponse:
	return ActivationPurchaseResponse(
		replay=result.replay,
		activation=ActivationDetail.model_validate(result.order),
		balance=_money(result.balance),
	)


def serialize_rental_purchase(result: PurchaseResult) -> RentalPurchaseResponse:
	return RentalPurchaseResponse(
		replay=result.replay,
		rental=RentalDetail.model_validate(result.order),
		balance=_money(result.balance),
	)


def serialize_activation_action(result: ApplyResult) -> ActivationActionResponse:
	return ActivationActionResponse(
		changed=result.changed,
		already_terminal=result.already_terminal,
		activation=ActivationDetail.model_validate(result.order),
		refund=float(result.refund.refund),
		fee=float(result.refund.fee),
		balance=_money(result.balance),
	)


def serialize_rental_action(result: ApplyResult) -> RentalActionResponse:
	return RentalActionResponse(
		changed=result.changed,
		already_terminal=result.already_terminal,
		rental=RentalDetail.model_validate(result.order),
		refund=float(result.refund.refund),
		fee=float(result.refund.fee),
		balance=_money(result.balance),
	)
