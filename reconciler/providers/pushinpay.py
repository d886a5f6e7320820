from __future__ import annotations

import structlog

from reconciler.config import PUSHINPAY_API_URL, env, webhook_url
from reconciler.providers.base import CreatedPayment, PaymentRequest, ProviderAdapter, StatusSnapshot
from reconciler.errors import ProviderUnavailable
from reconciler.status import ProviderKind

logger = structlog.get_logger(__name__)


class PushinPayAdapter(ProviderAdapter):
    """PIX cash-in through PushinPay. The provider pushes status changes."""

    kind = ProviderKind.QR_TRANSFER_DOMESTIC
    minimum_amount = 50
    webhook_path = "pushinpay"

    def __init__(self, credential: str | None = None, base_url: str | None = None):
        super().__init__(credential, base_url or env("PUSHINPAY_API_URL", PUSHINPAY_API_URL))

    def _create(self, request: PaymentRequest) -> CreatedPayment:
        callback = webhook_url(self.webhook_path)
        logger.info("pushinpay_create", order_id=request.order_id, value=request.amount_minor_units,
                    webhook_url=callback)
        data = self._call("POST", "/api/pix/cashIn", json={
            "value": request.amount_minor_units,
            "webhook_url": callback,
        })
        reference = data.get("id")
        if not reference:
            raise ProviderUnavailable("PushinPay response carried no id", provider=self.name)
        return CreatedPayment(
            provider_reference=str(reference),
            display_payload={
                "qr_code": data.get("qr_code"),
                "qr_code_base64": data.get("qr_code_base64"),
                "status": data.get("status"),
            },
            raw=data,
        )

    def query_status(self, provider_reference: str) -> StatusSnapshot:
        data = self._call("GET", f"/api/transactions/{provider_reference}")
        return snapshot_from_transaction(provider_reference, data)


def snapshot_from_transaction(provider_reference: str, data: dict) -> StatusSnapshot:
    """Build a snapshot from a transaction body; webhooks use the same shape."""
    value = data.get("value")
    try:
        value = int(value) if value is not None else None
    except (TypeError, ValueError):
        value = None
    return StatusSnapshot(
        provider_reference=str(data.get("id") or provider_reference),
        raw_status=data.get("status"),
        value=value,
        payer_name=data.get("payer_name"),
        end_to_end_id=data.get("end_to_end_id"),
        raw=data,
    )
