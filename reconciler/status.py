from enum import Enum


class CanonicalStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not CanonicalStatus.PENDING


class ProviderKind(str, Enum):
    # Values are what the order records as its payment_method.
    QR_TRANSFER_DOMESTIC = "pix"
    QR_TRANSFER_CROSSBORDER = "pix_brasil"
    REDIRECT_CHECKOUT = "mercadopago"
