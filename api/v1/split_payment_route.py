from __future__ import annotations

from fastapi import APIRouter, Depends

from core.payments.manager import PaymentManager
from core.response_envelope import document_response
from schemas.checkout_schema import SplitPaymentIn
from services.payment_service import get_payment_manager
from services.split_payment_service import initialize_split_payment, provision_vendor_subaccount

router = APIRouter(prefix="/split-payments", tags=["Split Payments"])


@router.post("/initialize/{order_id}")
@document_response(
    message="Split payment initialized",
    response_codes={
        404: "Order or vendor not found",
        409: "Vendor subaccount not provisioned",
        503: "Split settlement not configured",
    },
)
async def initialize(order_id: str, payload: SplitPaymentIn, manager: PaymentManager = Depends(get_payment_manager)):
    return await initialize_split_payment(manager, order_id=order_id, payload=payload)


@router.post("/vendors/{vendor_id}/subaccount")
@document_response(
    message="Vendor subaccount ready",
    response_codes={400: "Vendor bank details missing", 404: "Vendor not found"},
)
async def create_subaccount(vendor_id: str, manager: PaymentManager = Depends(get_payment_manager)):
    return await provision_vendor_subaccount(manager, vendor_id=vendor_id)
