"""
Provider push notifications.

Each delivery is parsed, normalized and driven through the transition engine.
Anything syntactically valid is acknowledged with 200, including references
we do not know, so providers do not retry forever. Replays are harmless
because the transition engine ignores updates to terminal intents.
"""
from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import asdict, dataclass
from urllib.parse import parse_qsl

import structlog
from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from reconciler import services
from reconciler.config import env
from reconciler.errors import NotFound, ValidationError
from reconciler.normalizer import normalize
from reconciler.providers.factory import build_adapter
from reconciler.providers.mercadopago import MercadoPagoAdapter
from reconciler.reconcile import Reconciler
from reconciler.status import ProviderKind
from reconciler.store import IntentStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@dataclass
class WebhookOutcome:
    received: bool = True
    order_id: str | None = None
    status: str | None = None
    changed: bool = False
    message: str | None = None


@dataclass
class MercadoPagoNotification:
    topic: str | None
    payment_id: str | None
    action: str | None = None


def decode_body(body: bytes, content_type: str | None = None) -> dict:
    """JSON object, or a form-encoded body. Anything else is malformed."""
    if not body:
        return {}
    if content_type and "application/x-www-form-urlencoded" in content_type:
        try:
            return dict(parse_qsl(body.decode("utf-8"), keep_blank_values=True))
        except UnicodeDecodeError:
            raise ValidationError("Invalid payload")
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise ValidationError("Invalid payload")
    if not isinstance(data, dict):
        raise ValidationError("Invalid payload")
    return data


def parse_mercadopago(payload: dict, query: dict) -> MercadoPagoNotification:
    """
    Accept both the JSON notification ``{"type", "action", "data": {"id"}}``
    and the older query-string form ``?topic=payment&id=…``.
    """
    topic = payload.get("type") or payload.get("topic") or query.get("type") or query.get("topic")
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    payment_id = data.get("id") or query.get("data.id")
    if not payment_id and topic == "payment":
        resource = payload.get("resource")
        payment_id = query.get("id") or (str(resource).rstrip("/").rsplit("/", 1)[-1] if resource else None)
    return MercadoPagoNotification(
        topic=topic,
        payment_id=str(payment_id) if payment_id not in (None, "") else None,
        action=payload.get("action"),
    )


def verify_mercadopago_signature(secret: str, signature: str | None, request_id: str | None,
                                 data_id: str) -> None:
    """Check the ``x-signature`` header (``ts=…,v1=…``) against the shared secret."""
    if not signature:
        raise ValidationError("Missing signature")
    parts = dict(
        item.strip().split("=", 1) for item in signature.split(",") if "=" in item
    )
    ts, received = parts.get("ts"), parts.get("v1")
    if not ts or not received:
        raise ValidationError("Invalid signature")
    manifest_id = data_id.lower() if data_id.isalnum() else data_id
    manifest = f"id:{manifest_id};request-id:{request_id or ''};ts:{ts};"
    expected = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, received):
        raise ValidationError("Invalid signature")


class WebhookReconciler:
    def __init__(self, intents: IntentStore, reconciler: Reconciler, adapter_factory=build_adapter):
        self.intents = intents
        self.reconciler = reconciler
        self.adapter_factory = adapter_factory

    def handle_pushinpay(self, payload: dict) -> WebhookOutcome:
        kind = ProviderKind.QR_TRANSFER_DOMESTIC
        reference = payload.get("id")
        if not reference:
            raise ValidationError("Payment id missing", provider=kind.value)
        reference = str(reference)
        if self.intents.find_by_reference(reference, kind) is None:
            logger.info("webhook_intent_not_found", provider=kind.value, provider_reference=reference)
            return WebhookOutcome(message="Order not found")

        # the posted status is only a hint; the transaction is read back from PushinPay
        try:
            snapshot = self.adapter_factory(kind).query_status(reference)
        except NotFound:
            logger.info("webhook_payment_unknown_to_provider", provider=kind.value, payment_id=reference)
            return WebhookOutcome(message="Payment not found")
        claimed = normalize(kind, payload.get("status"))
        status = normalize(kind, snapshot.raw_status)
        if claimed is not status:
            logger.warning("webhook_status_not_confirmed", provider=kind.value, provider_reference=reference,
                           claimed_status=claimed.value, provider_status=status.value)
        return self._apply(kind, reference, status, snapshot.raw)

    def handle_mercadopago(self, kind: ProviderKind, notification: MercadoPagoNotification) -> WebhookOutcome:
        if notification.topic != "payment":
            logger.info("webhook_ignored", provider=kind.value, topic=notification.topic)
            return WebhookOutcome(message="Notification type ignored")
        if not notification.payment_id:
            raise ValidationError("Payment id missing", provider=kind.value)

        adapter: MercadoPagoAdapter = self.adapter_factory(kind)
        try:
            snapshot = adapter.fetch_payment(notification.payment_id)
        except NotFound:
            logger.info("webhook_payment_unknown_to_provider", provider=kind.value,
                        payment_id=notification.payment_id)
            return WebhookOutcome(message="Payment not found")
        status = normalize(kind, snapshot.raw_status)

        if kind is ProviderKind.REDIRECT_CHECKOUT:
            # checkout intents are keyed by preference id; the payment points back via the order id
            if not snapshot.order_id:
                logger.info("webhook_no_external_reference", provider=kind.value,
                            payment_id=notification.payment_id)
                return WebhookOutcome(message="No order reference")
            intent = self.intents.latest_for_order(snapshot.order_id, kind)
            if intent is None:
                logger.info("webhook_intent_not_found", provider=kind.value, order_id=snapshot.order_id)
                return WebhookOutcome(message="Order not found")
            return self._apply(kind, intent.provider_reference, status, snapshot.raw, order_id=snapshot.order_id)

        return self._apply(kind, snapshot.provider_reference, status, snapshot.raw)

    def _apply(self, kind, reference, status, raw, order_id=None) -> WebhookOutcome:
        result = self.reconciler.apply(
            reference, status, provider_kind=kind, order_id=order_id, raw_payload=raw, channel="webhook"
        )
        if not result.found:
            logger.info("webhook_intent_not_found", provider=kind.value, provider_reference=reference)
            return WebhookOutcome(message="Order not found")
        return WebhookOutcome(
            order_id=result.order_id,
            status=result.status.value,
            changed=result.changed,
        )


def webhook_reconciler() -> WebhookReconciler:
    return WebhookReconciler(services.intent_store(), services.build_reconciler())


def _response(outcome: WebhookOutcome) -> dict:
    return {k: v for k, v in asdict(outcome).items() if v is not None}


@router.post("/pushinpay")
async def pushinpay_webhook(request: Request):
    body = await request.body()
    payload = decode_body(body, request.headers.get("content-type"))
    logger.info("webhook_received", provider=ProviderKind.QR_TRANSFER_DOMESTIC.value,
                provider_reference=payload.get("id"), raw_status=payload.get("status"))
    outcome = await run_in_threadpool(webhook_reconciler().handle_pushinpay, payload)
    return _response(outcome)


async def _mercadopago(kind: ProviderKind, request: Request) -> dict:
    body = await request.body()
    payload = decode_body(body, request.headers.get("content-type"))
    notification = parse_mercadopago(payload, dict(request.query_params))
    logger.info("webhook_received", provider=kind.value, topic=notification.topic,
                payment_id=notification.payment_id, action=notification.action)

    secret = env("MERCADOPAGO_WEBHOOK_SECRET")
    if secret and notification.topic == "payment" and notification.payment_id:
        verify_mercadopago_signature(
            secret,
            request.headers.get("x-signature"),
            request.headers.get("x-request-id"),
            notification.payment_id,
        )

    outcome = await run_in_threadpool(webhook_reconciler().handle_mercadopago, kind, notification)
    return _response(outcome)


@router.post("/mercadopago-brasil")
async def mercadopago_brasil_webhook(request: Request):
    return await _mercadopago(ProviderKind.QR_TRANSFER_CROSSBORDER, request)


@router.post("/mercadopago")
async def mercadopago_webhook(request: Request):
    return await _mercadopago(ProviderKind.REDIRECT_CHECKOUT, request)
