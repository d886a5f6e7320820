from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from reconciler import services
from reconciler.auth import verify_token
from reconciler.config import credential_status, server_polling_enabled
from reconciler.errors import ActiveIntentExists, NotFound
from reconciler.normalizer import normalize
from reconciler.providers.base import PaymentRequest
from reconciler.providers.factory import build_adapter, provider_kind

logger = structlog.get_logger(__name__)

router = APIRouter()


class CreatePaymentRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    amount_minor_units: int
    payer_email: Optional[str] = None
    payer_name: Optional[str] = None
    description: Optional[str] = None


class StatusCheckRequest(BaseModel):
    provider_reference: str = Field(..., min_length=1)


class IntentOut(BaseModel):
    order_id: str
    provider_kind: str
    provider_reference: str
    amount_minor_units: int
    canonical_status: str
    raw_provider_payload: Optional[dict] = None
    created_at: datetime
    last_checked_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


def create_payment(provider: str, request: CreatePaymentRequest, scheduler=None) -> dict:
    adapter = build_adapter(provider)
    payment = PaymentRequest(
        order_id=request.order_id,
        amount_minor_units=request.amount_minor_units,
        payer_email=request.payer_email,
        payer_name=request.payer_name,
        description=request.description,
    )
    # cheap checks first: nothing below reaches the provider or the store
    adapter.validate(payment)
    adapter.ensure_configured()

    if services.order_store().get(request.order_id) is None:
        raise NotFound(f"Order {request.order_id} not found")
    intents = services.intent_store()
    active = intents.find_active(request.order_id)
    if active is not None:
        raise ActiveIntentExists(
            f"Order {request.order_id} already has an active {active.provider_kind} payment",
            provider=active.provider_kind,
        )

    created = adapter.create(payment)
    intent = intents.record_created(request.order_id, adapter.kind, request.amount_minor_units, created)

    if scheduler is not None and server_polling_enabled():
        scheduler.schedule(intent.order_id, adapter.kind, intent.provider_reference)

    return {
        "order_id": intent.order_id,
        "provider_kind": intent.provider_kind,
        "provider_reference": intent.provider_reference,
        "status": intent.canonical_status,
        "display": created.display_payload,
    }


def check_status(provider: str, reference: str) -> dict:
    kind = provider_kind(provider)
    if services.intent_store().find_by_reference(reference, kind) is None:
        raise NotFound(f"No payment intent for reference {reference}")

    snapshot = build_adapter(kind).query_status(reference)
    result = services.build_reconciler().apply_snapshot(
        kind, snapshot, provider_reference=reference, channel="status_check"
    )
    status = result.status or normalize(kind, snapshot.raw_status)
    return {
        "pix_id": reference,
        "status": status.value,
        "value": snapshot.value,
        "payer_name": snapshot.payer_name,
        "end_to_end_id": snapshot.end_to_end_id,
        "changed": result.changed,
    }


@router.post("/payments/{provider}")
def create_payment_api(provider: str, request: CreatePaymentRequest, http_request: Request):
    return create_payment(provider, request, getattr(http_request.app.state, "scheduler", None))


@router.post("/payments/{provider}/status")
def check_status_api(provider: str, request: StatusCheckRequest):
    return check_status(provider, request.provider_reference)


@router.get("/admin/orders/{order_id}/intents")
def list_intents(order_id: str, auth=Depends(verify_token)):
    intents = services.intent_store().list_for_order(order_id)
    return [IntentOut.model_validate(i).model_dump(mode="json") for i in intents]


@router.get("/admin/payments/{reference}/order")
def order_for_payment(reference: str, auth=Depends(verify_token)):
    order = services.order_store().find_by_payment_reference(reference)
    if order is None:
        raise NotFound(f"No order for payment {reference}")
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "payment_method": order.payment_method,
        "payment_reference": order.payment_reference,
        "payment_status": order.payment_status,
    }


@router.post("/admin/intents/{provider}/{reference}/refresh")
def refresh_intent(provider: str, reference: str, auth=Depends(verify_token)):
    logger.info("admin_refresh_requested", provider=provider, provider_reference=reference)
    return check_status(provider, reference)


@router.get("/health")
def health(request: Request):
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "ok": True,
        "providers": credential_status(),
        "active_pollers": len(scheduler.active()) if scheduler is not None else 0,
    }
