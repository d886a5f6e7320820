"""
Mapping of provider status vocabularies onto CanonicalStatus.

Each provider has one closed table. Anything not in the table, including
None and non-string values, reads as PENDING so an unknown intermediate state
can never end a reconciliation.
"""
from typing import Any, Mapping

from reconciler.status import CanonicalStatus, ProviderKind

PUSHINPAY_STATUSES: Mapping[str, CanonicalStatus] = {
    "created": CanonicalStatus.PENDING,
    "paid": CanonicalStatus.PAID,
    "canceled": CanonicalStatus.CANCELLED,
    "cancelled": CanonicalStatus.CANCELLED,
    "expired": CanonicalStatus.EXPIRED,
}

MERCADOPAGO_STATUSES: Mapping[str, CanonicalStatus] = {
    "approved": CanonicalStatus.PAID,
    "cancelled": CanonicalStatus.CANCELLED,
    "refunded": CanonicalStatus.CANCELLED,
    "rejected": CanonicalStatus.CANCELLED,
    "charged_back": CanonicalStatus.CANCELLED,
    "pending": CanonicalStatus.PENDING,
    "in_process": CanonicalStatus.PENDING,
    "authorized": CanonicalStatus.PENDING,
    "in_mediation": CanonicalStatus.PENDING,
}

STATUS_TABLES: Mapping[ProviderKind, Mapping[str, CanonicalStatus]] = {
    ProviderKind.QR_TRANSFER_DOMESTIC: PUSHINPAY_STATUSES,
    ProviderKind.QR_TRANSFER_CROSSBORDER: MERCADOPAGO_STATUSES,
    ProviderKind.REDIRECT_CHECKOUT: MERCADOPAGO_STATUSES,
}


def normalize(provider_kind: ProviderKind | str, raw_status: Any) -> CanonicalStatus:
    table = STATUS_TABLES.get(ProviderKind(provider_kind), {})
    if not isinstance(raw_status, str):
        return CanonicalStatus.PENDING
    return table.get(raw_status.strip().lower(), CanonicalStatus.PENDING)
