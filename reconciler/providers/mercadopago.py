from __future__ import annotations

import time

import structlog

from reconciler.config import MERCADOPAGO_API_URL, app_url, env, webhook_url
from reconciler.errors import ProviderUnavailable
from reconciler.providers.base import (
    CreatedPayment,
    PaymentRequest,
    ProviderAdapter,
    StatusSnapshot,
    shorten,
)
from reconciler.status import ProviderKind

logger = structlog.get_logger(__name__)


def to_minor_units(amount) -> int | None:
    if amount is None:
        return None
    try:
        return int(round(float(amount) * 100))
    except (TypeError, ValueError):
        return None


class MercadoPagoAdapter(ProviderAdapter):
    """Shared plumbing for both MercadoPago accounts."""

    minimum_amount = 100

    def __init__(self, credential: str | None = None, base_url: str | None = None):
        super().__init__(credential, base_url or env("MERCADOPAGO_API_URL", MERCADOPAGO_API_URL))

    def fetch_payment(self, payment_id: str) -> StatusSnapshot:
        """Read one payment; webhooks only carry its id."""
        data = self._call("GET", f"/v1/payments/{payment_id}")
        return self._snapshot(data, str(payment_id))

    def _snapshot(self, data: dict, fallback_reference: str) -> StatusSnapshot:
        transaction = (data.get("point_of_interaction") or {}).get("transaction_data") or {}
        payment_id = data.get("id")
        external_reference = data.get("external_reference")
        return StatusSnapshot(
            provider_reference=str(payment_id) if payment_id is not None else fallback_reference,
            raw_status=data.get("status"),
            value=to_minor_units(data.get("transaction_amount")),
            payer_name=(data.get("payer") or {}).get("first_name"),
            end_to_end_id=transaction.get("transaction_id"),
            order_id=str(external_reference) if external_reference else None,
            raw=data,
        )


class MercadoPagoPixAdapter(MercadoPagoAdapter):
    """PIX payments on the MercadoPago Brasil account."""

    kind = ProviderKind.QR_TRANSFER_CROSSBORDER
    webhook_path = "mercadopago-brasil"

    def _create(self, request: PaymentRequest) -> CreatedPayment:
        names = (request.payer_name or "").split()
        body = {
            "transaction_amount": request.amount_minor_units / 100,
            "description": shorten(request.description or f"Pedido {request.order_id}"),
            "payment_method_id": "pix",
            "payer": {
                "email": request.payer_email or "cliente@email.com",
                "first_name": names[0] if names else "Cliente",
                "last_name": " ".join(names[1:]) or "Loja",
            },
            "notification_url": webhook_url(self.webhook_path),
            "external_reference": request.order_id,
        }
        idempotency_key = f"{request.order_id}-{int(time.time() * 1000)}"
        logger.info("mercadopago_pix_create", order_id=request.order_id, value=request.amount_minor_units)

        data = self._call("POST", "/v1/payments", json=body, headers={"X-Idempotency-Key": idempotency_key})
        if data.get("id") is None:
            raise ProviderUnavailable("MercadoPago response carried no id", provider=self.name)

        transaction = (data.get("point_of_interaction") or {}).get("transaction_data") or {}
        qr_base64 = transaction.get("qr_code_base64")
        return CreatedPayment(
            provider_reference=str(data["id"]),
            display_payload={
                "qr_code": transaction.get("qr_code") or "",
                "qr_code_base64": f"data:image/png;base64,{qr_base64}" if qr_base64 else "",
                "status": data.get("status"),
                "expiration_date": data.get("date_of_expiration"),
            },
            raw=data,
        )

    def query_status(self, provider_reference: str) -> StatusSnapshot:
        return self.fetch_payment(provider_reference)


class MercadoPagoCheckoutAdapter(MercadoPagoAdapter):
    """
    Checkout Pro preference on the MercadoPago Uruguay account.

    The reference is the preference id. Payments made against it are found
    through the preference's external_reference, which is the order id.
    """

    kind = ProviderKind.REDIRECT_CHECKOUT
    webhook_path = "mercadopago"
    currency = "UYU"

    def _create(self, request: PaymentRequest) -> CreatedPayment:
        base = app_url()
        order_id = request.order_id
        confirmation = f"{base}/payment-confirmation?external_reference={order_id}"
        body = {
            "items": [{
                "title": shorten(request.description or f"Pedido {order_id}"),
                "quantity": 1,
                "currency_id": self.currency,
                "unit_price": request.amount_minor_units / 100,
            }],
            "external_reference": order_id,
            "back_urls": {
                "success": f"{confirmation}&payment=success",
                "failure": f"{confirmation}&payment=failure",
                "pending": f"{confirmation}&payment=pending",
            },
            "auto_return": "approved",
            "notification_url": webhook_url(self.webhook_path),
        }
        if request.payer_email:
            body["payer"] = {"email": request.payer_email}
        logger.info("mercadopago_preference_create", order_id=order_id, value=request.amount_minor_units)

        data = self._call("POST", "/checkout/preferences", json=body)
        if not data.get("id"):
            raise ProviderUnavailable("MercadoPago response carried no preference id", provider=self.name)
        return CreatedPayment(
            provider_reference=str(data["id"]),
            display_payload={
                "init_point": data.get("init_point"),
                "sandbox_init_point": data.get("sandbox_init_point"),
            },
            raw=data,
        )

    def query_status(self, provider_reference: str) -> StatusSnapshot:
        preference = self._call("GET", f"/checkout/preferences/{provider_reference}")
        order_id = preference.get("external_reference")
        if not order_id:
            return StatusSnapshot(provider_reference=provider_reference, raw_status=None, raw=preference)

        found = self._call("GET", "/v1/payments/search", params={
            "external_reference": order_id,
            "sort": "date_created",
            "criteria": "desc",
        })
        results = found.get("results") or []
        if not results:
            # buyer has not paid yet
            return StatusSnapshot(provider_reference=provider_reference, raw_status=None,
                                  order_id=str(order_id), raw=found)

        snapshot = self._snapshot(results[0], provider_reference)
        snapshot.provider_reference = provider_reference
        return snapshot
