"""
Glue shared by the webhook and polling channels: apply a status, then fire
the confirmation exactly when the transition engine reports the first entry
into PAID.
"""
from typing import Any

import structlog

from reconciler.normalizer import normalize
from reconciler.notifications import NotificationDispatcher, OrderNotification
from reconciler.providers.base import StatusSnapshot
from reconciler.status import CanonicalStatus, ProviderKind
from reconciler.store import OrderStore
from reconciler.transitions import TransitionEngine, TransitionResult

logger = structlog.get_logger(__name__)


class Reconciler:
    def __init__(self, engine: TransitionEngine, orders: OrderStore, dispatcher: NotificationDispatcher):
        self.engine = engine
        self.orders = orders
        self.dispatcher = dispatcher

    def apply(
        self,
        provider_reference: str,
        status: CanonicalStatus,
        *,
        provider_kind: ProviderKind | None = None,
        order_id: str | None = None,
        raw_payload: Any = None,
        channel: str = "unknown",
        dispatch: bool = True,
    ) -> TransitionResult:
        """
        Apply a canonical status. With dispatch=False the caller owns sending the
        confirmation for a first entry into PAID (see notify).
        """
        result = self.engine.apply_status(order_id, provider_reference, status, provider_kind, raw_payload)
        if result.changed:
            logger.info("payment_status_reconciled", channel=channel, order_id=result.order_id,
                        provider_reference=provider_reference, status=result.status.value)
        if dispatch and result.first_entry_to_paid:
            self.notify(result.order_id, result.status)
        return result

    def apply_snapshot(self, provider_kind: ProviderKind, snapshot: StatusSnapshot, *,
                       provider_reference: str | None = None, channel: str = "unknown",
                       dispatch: bool = True) -> TransitionResult:
        status = normalize(provider_kind, snapshot.raw_status)
        return self.apply(
            provider_reference or snapshot.provider_reference,
            status,
            provider_kind=provider_kind,
            raw_payload=snapshot.raw,
            channel=channel,
            dispatch=dispatch,
        )

    def notify(self, order_id: str, status: CanonicalStatus) -> None:
        """Dispatch the confirmation. Failures are logged, never raised."""
        try:
            order = self.orders.get(order_id)
            if order is None:
                logger.warning("notification_order_missing", order_id=order_id)
                return
            self.dispatcher.dispatch(OrderNotification.from_order(order, status))
        except Exception as e:
            logger.error("notification_dispatch_failed", order_id=order_id, error=str(e))
