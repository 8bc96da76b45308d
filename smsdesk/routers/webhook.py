from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status

from smsdesk.core.config import config
from smsdesk.core.dependencies import get_webhook, webhook_rate_limit
from smsdesk.models import ReferenceType
from smsdesk.schemas.webhook import WebhookAckResponse
from smsdesk.services.webhook import WebhookIngestion


# Webhooks провайдера
webhook_router = APIRouter(
    prefix="/api/webhook",
    tags=["Provider Webhooks"],
    dependencies=[Depends(webhook_rate_limit)],
)

WEBHOOK_RESPONSES = {
    400: {"description": "Malformed payload."},
    401: {
        "description": "Unauthorized.",
        "content": {
            "application/json": {
                "example": {"success": False, "detail": {"error": "invalid_signature", "message": "Webhook signature mismatch"}}
            }
        },
    },
    404: {"description": "Order with this external id not found."},
    429: {"description": "Too many requests."},
}


async def _ingest(kind: ReferenceType, request: Request, signature: Optional[str], webhook: WebhookIngestion):
    # підпис рахується від сирого тіла запиту
    raw_body = await request.body()
    ack = await webhook.ingest(kind, raw_body, signature, config.WEBHOOK_SECRET)
    return WebhookAckResponse(**ack.as_dict())


@webhook_router.post(
    "/activation",
    summary="Оновлення статусу активації",
    description="Headers: X-Webhook-Signature: sha256=<hex HMAC-SHA256 тіла>",
    response_model=WebhookAckResponse,
    status_code=status.HTTP_200_OK,
    responses=WEBHOOK_RESPONSES,
)
async def activation_webhook(
    request: Request,
    x_webhook_signature: Optional[str] = Header(None),
    webhook: WebhookIngestion = Depends(get_webhook),
):
    return await _ingest(ReferenceType.ACTIVATION, request, x_webhook_signature, webhook)


@webhook_router.post(
    "/rental",
    summary="Оновлення статусу оренди",
    description="Headers: X-Webhook-Signature: sha256=<hex HMAC-SHA256 тіла>",
    response_model=WebhookAckResponse,
    status_code=status.HTTP_200_OK,
    responses=WEBHOOK_RESPONSES,
)
async def rental_webhook(
    request: Request,
    x_webhook_signature: Optional[str] = Header(None),
    webhook: WebhookIngestion = Depends(get_webhook),
):
    return await _ingest(ReferenceType.RENTAL, request, x_webhook_signature, webhook)
