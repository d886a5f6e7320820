from __future__ import annotations

from dataclasses import asdict, dataclass
from html import escape

import requests
import structlog

from reconciler.config import env, provider_timeout
from reconciler.models import Order
from reconciler.status import CanonicalStatus, ProviderKind

logger = structlog.get_logger(__name__)

RESEND_URL = "https://api.resend.com/emails"

# PIX customers are in Brazil, checkout customers in Uruguay.
LANGUAGES = {
    ProviderKind.QR_TRANSFER_DOMESTIC: "pt",
    ProviderKind.QR_TRANSFER_CROSSBORDER: "pt",
    ProviderKind.REDIRECT_CHECKOUT: "es",
}

SUBJECTS = {
    "pt": "Pedido #{number} confirmado",
    "es": "Pedido #{number} confirmado",
}

GREETINGS = {
    "pt": "Olá {name}, recebemos o pagamento do seu pedido #{number}.",
    "es": "Hola {name}, recibimos el pago de tu pedido #{number}.",
}


@dataclass
class OrderNotification:
    order_id: str
    order_number: str | None
    customer_name: str | None
    customer_phone: str | None
    customer_email: str | None
    canonical_status: CanonicalStatus
    total: int | None
    delivery_address: str | None = None
    language: str = "es"

    @classmethod
    def from_order(cls, order: Order, status: CanonicalStatus) -> "OrderNotification":
        try:
            kind = ProviderKind(order.payment_method)
        except ValueError:
            kind = None
        return cls(
            order_id=order.id,
            order_number=order.order_number,
            customer_name=order.customer_name,
            customer_phone=order.customer_phone,
            customer_email=order.customer_email,
            canonical_status=status,
            total=order.total,
            delivery_address=order.delivery_address,
            language=LANGUAGES.get(kind, "es"),
        )


def render(notification: OrderNotification) -> tuple[str, str]:
    number = notification.order_number or notification.order_id
    lang = notification.language if notification.language in SUBJECTS else "es"
    subject = SUBJECTS[lang].format(number=number)
    name = escape(notification.customer_name or "Cliente")
    body = GREETINGS[lang].format(name=name, number=escape(str(number)))
    lines = [f"<p>{body}</p>"]
    if notification.total is not None:
        lines.append(f"<p>Total: {notification.total / 100:.2f}</p>")
    if notification.delivery_address:
        lines.append(f"<p>{escape(notification.delivery_address)}</p>")
    return subject, "\n".join(lines)


class NotificationDispatcher:
    def dispatch(self, notification: OrderNotification) -> None:
        raise NotImplementedError


class LogOnlyDispatcher(NotificationDispatcher):
    def dispatch(self, notification: OrderNotification) -> None:
        payload = asdict(notification)
        payload["canonical_status"] = notification.canonical_status.value
        logger.info("notification_logged", **payload)


class ResendEmailDispatcher(NotificationDispatcher):
    """Sends the order confirmation email through Resend."""

    def __init__(self, api_key: str, sender: str):
        self.api_key = api_key
        self.sender = sender

    def dispatch(self, notification: OrderNotification) -> None:
        if not notification.customer_email:
            logger.info("notification_skipped_no_email", order_id=notification.order_id)
            return
        subject, html = render(notification)
        r = requests.post(
            RESEND_URL,
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
            json={
                "from": self.sender,
                "to": [notification.customer_email],
                "subject": subject,
                "html": html,
            },
            timeout=provider_timeout(),
        )
        r.raise_for_status()
        logger.info("notification_sent", order_id=notification.order_id, channel="email")


def build_dispatcher() -> NotificationDispatcher:
    api_key = env("RESEND_API_KEY")
    if not api_key:
        return LogOnlyDispatcher()
    return ResendEmailDispatcher(api_key, env("NOTIFICATION_FROM", "Pedidos <onboarding@resend.dev>"))
