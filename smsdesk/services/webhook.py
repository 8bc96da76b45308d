import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from smsdesk.core.database import async_session
from smsdesk.core.errors import InvalidPayload, InvalidSignature, OrderNotFound
from smsdesk.models import ReferenceType
from smsdesk.schemas.webhook import WebhookPayload
from smsdesk.services.lifecycle import MODELS, OrderLifecycle
from smsdesk.services.state_machine import activation_event_for, rental_event_for
from smsdesk.utils.provider_client import ProviderState

logger = logging.getLogger("[WEBHOOK]")

SIGNATURE_PREFIX = "sha256="


@dataclass
class WebhookAck:
    changed: bool
    status: str
    success: bool = True

    def as_dict(self) -> dict:
        return {"success": self.success, "changed": self.changed, "status": self.status}


def sign(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> None:
    if not signature or not secret:
        raise InvalidSignature("Missing webhook signature")
    signature = signature.strip()
    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX):]
    # заголовок може містити не-ASCII символи: порівнюємо байти
    expected = sign(raw_body, secret).encode()
    if not hmac.compare_digest(expected, signature.lower().encode("utf-8", "replace")):
        raise InvalidSignature("Webhook signature mismatch")


class WebhookIngestion:
    """
    Підписані повідомлення провайдера -> той самий OrderLifecycle, що й у
    poller. Повтор повідомлення для термінального замовлення - no-op з 200.
    """

    def __init__(self, lifecycle: OrderLifecycle, session_factory: async_sessionmaker = async_session):
        self.lifecycle = lifecycle
        self.session_factory = session_factory

    async def ingest(
        self,
        kind: ReferenceType,
        raw_body: bytes,
        signature: Optional[str],
        secret: str,
    ) -> WebhookAck:
        # підпис перевіряється до розбору тіла
        try:
            verify_signature(raw_body, signature, secret)
        except InvalidSignature:
            logger.warning(f"Rejected {kind.value} webhook with invalid signature")
            raise

        try:
            payload = WebhookPayload.model_validate(json.loads(raw_body))
        except (ValueError, ValidationError) as exc:
            raise InvalidPayload(f"Malformed webhook payload: {exc}") from exc

        model = MODELS[kind]
        async with self.session_factory() as session:
            order_id = await session.scalar(
                select(model.id).where(model.external_id == payload.id)
            )
        if order_id is None:
            raise OrderNotFound(f"{model.__name__} with external id '{payload.id}' not found")

        # статус може нести код, як у відповіді getStatus: STATUS_OK:4321
        raw_state, _, inline_code = payload.status.partition(":")
        state = ProviderState.parse(raw_state)
        if kind is ReferenceType.ACTIVATION:
            event = activation_event_for(state)
        else:
            event = rental_event_for(state)

        if event is None:
            logger.info(f"Unknown {kind.value} webhook status '{payload.status}' for {payload.id}, ignored")
            async with self.session_factory() as session:
                order = await session.get(model, order_id)
            return WebhookAck(changed=False, status=order.status.name)

        result = await self.lifecycle.apply_event(
            kind, order_id, event,
            code=payload.code or inline_code or None,
            messages=payload.messages,
            end_date=payload.end_date,
        )
        logger.info(
            f"{kind.value} webhook {payload.id}: {payload.status} -> "
            f"{result.status.name} (changed={result.changed})"
        )
        return WebhookAck(changed=result.changed, status=result.status.name)
