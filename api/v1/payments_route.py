from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from core.payments.manager import PaymentManager
from core.response_envelope import document_response
from services.payment_service import get_payment_manager, process_webhook

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/webhooks/{provider}")
@document_response(
    message="Webhook processed",
    response_codes={400: "Malformed webhook body", 401: "Invalid signature", 404: "Unknown provider"},
)
async def payment_webhook(provider: str, request: Request, manager: PaymentManager = Depends(get_payment_manager)):
    """
    Receive payment webhooks for a specific provider.

    Accepted `provider` path values:
    - `paystack` (signed with `X-Paystack-Signature`)
    """
    body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    return await process_webhook(manager, provider_name=provider, body=body, headers=headers)
