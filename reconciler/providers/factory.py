from __future__ import annotations

from reconciler.errors import NotFound
from reconciler.providers.base import ProviderAdapter
from reconciler.providers.mercadopago import MercadoPagoCheckoutAdapter, MercadoPagoPixAdapter
from reconciler.providers.pushinpay import PushinPayAdapter
from reconciler.status import ProviderKind

ADAPTERS: dict[ProviderKind, type[ProviderAdapter]] = {
    ProviderKind.QR_TRANSFER_DOMESTIC: PushinPayAdapter,
    ProviderKind.QR_TRANSFER_CROSSBORDER: MercadoPagoPixAdapter,
    ProviderKind.REDIRECT_CHECKOUT: MercadoPagoCheckoutAdapter,
}


def provider_kind(name: str | ProviderKind) -> ProviderKind:
    try:
        return ProviderKind(name)
    except ValueError:
        raise NotFound(f"Unknown payment provider {name!r}")


def build_adapter(name: str | ProviderKind) -> ProviderAdapter:
    """Adapters read their credential lazily, on first provider call."""
    return ADAPTERS[provider_kind(name)]()
